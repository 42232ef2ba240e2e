"""
Data models for generated content: events, media artifacts and canonical people/tags
"""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.time_utils import from_iso, now_utc, to_iso

# Mood is stored as -2..2, energy as 1..5; both are spoken about as words
MOOD_WORDS = ("awful", "low", "neutral", "good", "great")
ENERGY_WORDS = ("drained", "tired", "moderate", "lively", "energized")

MOOD_MIN = -2
ENERGY_MIN = 1
NEUTRAL_MOOD = 0
MODERATE_ENERGY = 3


def mood_number_to_word(mood: int) -> str:
    if isinstance(mood, bool) or not isinstance(mood, int) or not MOOD_MIN <= mood < MOOD_MIN + len(MOOD_WORDS):
        raise ValueError(f"Mood {mood!r} out of range -2..2")
    return MOOD_WORDS[mood - MOOD_MIN]


def mood_word_to_number(word: str) -> int:
    normalized = word.strip().lower() if isinstance(word, str) else ""
    if normalized not in MOOD_WORDS:
        raise ValueError(f"Unknown mood word {word!r}, expected one of {', '.join(MOOD_WORDS)}")
    return MOOD_WORDS.index(normalized) + MOOD_MIN


def energy_number_to_word(energy: int) -> str:
    if isinstance(energy, bool) or not isinstance(energy, int) or not ENERGY_MIN <= energy < ENERGY_MIN + len(ENERGY_WORDS):
        raise ValueError(f"Energy {energy!r} out of range 1..5")
    return ENERGY_WORDS[energy - ENERGY_MIN]


def energy_word_to_number(word: str) -> int:
    normalized = word.strip().lower() if isinstance(word, str) else ""
    if normalized not in ENERGY_WORDS:
        raise ValueError(f"Unknown energy word {word!r}, expected one of {', '.join(ENERGY_WORDS)}")
    return ENERGY_WORDS.index(normalized) + ENERGY_MIN


def _json_or_empty(value: str, default):
    return json.loads(value) if value else default


@dataclass
class Event:
    """
    One memorable moment extracted from a check-in conversation.
    Every entry in ``people`` must appear verbatim in ``summary``.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str = ""
    session_id: str = ""
    title: str = ""
    summary: str = ""
    people: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    mood: int = NEUTRAL_MOOD
    energy: int = MODERATE_ENERGY
    anniversary_candidate: bool = False
    happened_at: datetime = field(default_factory=now_utc)
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def missing_participants(self) -> List[str]:
        """People that are not mentioned in the summary"""
        return [name for name in self.people if name not in self.summary]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "session_id": self.session_id,
            "title": self.title,
            "summary": self.summary,
            "people": json.dumps(self.people),
            "tags": json.dumps(self.tags),
            "mood": self.mood,
            "energy": self.energy,
            "anniversary_candidate": "1" if self.anniversary_candidate else "0",
            "happened_at": to_iso(self.happened_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            session_id=data.get("session_id", ""),
            title=data["title"],
            summary=data["summary"],
            people=_json_or_empty(data.get("people", ""), []),
            tags=_json_or_empty(data.get("tags", ""), []),
            mood=int(data["mood"]),
            energy=int(data["energy"]),
            anniversary_candidate=data.get("anniversary_candidate") == "1",
            happened_at=from_iso(data["happened_at"]),
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"])
        )


class MediaStatus(Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass
class MediaArtifact:
    """Media synthesized for a set of events, finalized by a provider callback"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str = ""
    content_id: str = ""
    status: MediaStatus = MediaStatus.PENDING
    provider_task_id: Optional[str] = None
    artifact_ref: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    event_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "content_id": self.content_id,
            "status": self.status.value,
            "provider_task_id": self.provider_task_id or "",
            "artifact_ref": self.artifact_ref or "",
            "metadata": json.dumps(self.metadata),
            "error": self.error or "",
            "event_ids": json.dumps(self.event_ids),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaArtifact":
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            content_id=data["content_id"],
            status=MediaStatus(data["status"]),
            provider_task_id=data.get("provider_task_id") or None,
            artifact_ref=data.get("artifact_ref") or None,
            metadata=_json_or_empty(data.get("metadata", ""), {}),
            error=data.get("error") or None,
            event_ids=_json_or_empty(data.get("event_ids", ""), []),
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"])
        )


class EntityKind(Enum):
    PERSON = "person"
    TAG = "tag"


@dataclass
class CanonicalEntity:
    """A person or tag shared across an owner's events"""
    kind: EntityKind
    owner_id: str
    key: str
    display_name: str
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalEntity":
        return cls(
            kind=EntityKind(data["kind"]),
            owner_id=data["owner_id"],
            key=data["key"],
            display_name=data["display_name"],
            usage_count=int(data.get("usage_count", 0)),
            last_used_at=from_iso(data.get("last_used_at")),
            created_at=from_iso(data.get("created_at"))
        )
