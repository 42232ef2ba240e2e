"""
Data models for check-in scheduling: schedules, per-firing jobs and call sessions
"""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.time_utils import now_utc, to_iso, from_iso


class Cadence(Enum):
    """Recurrence rule for a schedule"""
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    CUSTOM = "custom"


class JobStatus(Enum):
    """Status of a single schedule firing"""
    QUEUED = "queued"
    SCHEDULED = "scheduled"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED})


def _json_or_empty(value: str, default):
    return json.loads(value) if value else default


@dataclass
class Schedule:
    """
    A user's recurring check-in configuration.

    ``next_run_at`` is always a UTC instant that, in ``timezone``, falls on
    ``minute_of_day`` and on a weekday enabled in ``weekday_mask``.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str = ""
    contact: str = ""
    timezone: str = "UTC"
    minute_of_day: int = 540
    cadence: Cadence = Cadence.DAILY
    weekday_mask: int = 127
    custom_days: List[int] = field(default_factory=list)
    active: bool = True
    next_run_at: Optional[datetime] = None
    owner_name: str = ""
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    @property
    def time_of_day(self) -> str:
        return f"{self.minute_of_day // 60:02d}:{self.minute_of_day % 60:02d}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary for Redis hash storage"""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "contact": self.contact,
            "timezone": self.timezone,
            "minute_of_day": self.minute_of_day,
            "cadence": self.cadence.value,
            "weekday_mask": self.weekday_mask,
            "custom_days": json.dumps(self.custom_days),
            "active": "1" if self.active else "0",
            "next_run_at": to_iso(self.next_run_at),
            "owner_name": self.owner_name,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schedule":
        """Create from a Redis hash"""
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            contact=data["contact"],
            timezone=data["timezone"],
            minute_of_day=int(data["minute_of_day"]),
            cadence=Cadence(data["cadence"]),
            weekday_mask=int(data["weekday_mask"]),
            custom_days=_json_or_empty(data.get("custom_days", ""), []),
            active=data.get("active") == "1",
            next_run_at=from_iso(data.get("next_run_at")),
            owner_name=data.get("owner_name", ""),
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"])
        )


@dataclass
class Job:
    """One firing of a schedule, tracked through the call provider's lifecycle"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    schedule_id: str = ""
    owner_id: str = ""
    scheduled_for: datetime = field(default_factory=now_utc)
    status: JobStatus = JobStatus.QUEUED
    external_call_id: Optional[str] = None
    attempt_count: int = 0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "owner_id": self.owner_id,
            "scheduled_for": to_iso(self.scheduled_for),
            "status": self.status.value,
            "external_call_id": self.external_call_id or "",
            "attempt_count": self.attempt_count,
            "error": self.error or "",
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=data["id"],
            schedule_id=data["schedule_id"],
            owner_id=data["owner_id"],
            scheduled_for=from_iso(data["scheduled_for"]),
            status=JobStatus(data["status"]),
            external_call_id=data.get("external_call_id") or None,
            attempt_count=int(data.get("attempt_count", 0)),
            error=data.get("error") or None,
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"])
        )


@dataclass
class Session:
    """Provider-reported details of the conversation behind a job"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    job_id: str = ""
    owner_id: str = ""
    external_call_id: str = ""
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    disposition: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "external_call_id": self.external_call_id,
            "started_at": to_iso(self.started_at),
            "ended_at": to_iso(self.ended_at),
            "duration_seconds": "" if self.duration_seconds is None else self.duration_seconds,
            "disposition": self.disposition,
            "metadata": json.dumps(self.metadata),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        duration = data.get("duration_seconds")
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            owner_id=data["owner_id"],
            external_call_id=data.get("external_call_id", ""),
            started_at=from_iso(data.get("started_at")),
            ended_at=from_iso(data.get("ended_at")),
            duration_seconds=int(duration) if duration not in (None, "") else None,
            disposition=data.get("disposition", ""),
            metadata=_json_or_empty(data.get("metadata", ""), {}),
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"])
        )

    def calculate_duration(self):
        """Derive duration from start/end times when the provider did not report one"""
        if self.duration_seconds is None and self.started_at and self.ended_at:
            self.duration_seconds = int((self.ended_at - self.started_at).total_seconds())
