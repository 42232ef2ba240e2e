"""
ScheduleStore - durable per-owner check-in schedules in Redis
"""
import logging
import re
from datetime import datetime
from typing import Iterable, List, Optional, Tuple, Union

import redis

from config.settings import KEY_PREFIX
from utils.redis_atomic import AtomicRedisOperations, create_atomic_redis_ops
from utils.time_utils import ensure_utc, now_utc, to_epoch, to_iso

from .cadence import (
    minute_of_day, next_run_at_utc, parse_cadence, resolve_timezone, weekday_mask
)
from .errors import InvalidContact
from .models import Cadence, Schedule

logger = logging.getLogger("schedule-store")

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def validate_contact(contact: str) -> str:
    """
    Check that a contact address is an E.164 phone number

    Raises:
        InvalidContact: If the number is not in +<country><number> form
    """
    cleaned = (contact or "").strip()
    if not E164_PATTERN.match(cleaned):
        raise InvalidContact(f"Invalid phone number '{contact}', expected E.164 format like +14155550123")
    return cleaned


class ScheduleStore:
    """
    Stores one schedule per owner.

    Layout:
    - ``<prefix>:schedules:<id>``       hash with the schedule fields
    - ``<prefix>:schedules:owner``      hash owner_id -> schedule id
    - ``<prefix>:schedules:by_next_run`` sorted set of active schedules by next run epoch
    """

    def __init__(self, redis_client: redis.Redis, atomic_ops: AtomicRedisOperations = None):
        self.redis_client = redis_client
        self.atomic_ops = atomic_ops or create_atomic_redis_ops(redis_client)
        self.schedules_key = f"{KEY_PREFIX}:schedules"
        self.owner_index_key = f"{self.schedules_key}:owner"
        self.due_index_key = f"{self.schedules_key}:by_next_run"

    def _schedule_key(self, schedule_id: str) -> str:
        return f"{self.schedules_key}:{schedule_id}"

    def upsert(
        self,
        owner_id: str,
        contact: str,
        timezone: str,
        time_of_day: str,
        cadence: Union[str, Cadence],
        custom_days: Optional[Iterable[int]] = None,
        active: bool = True,
        owner_name: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[Schedule, bool]:
        """
        Create or update an owner's schedule

        All input is validated before anything is written. The next run is
        (re)computed on create, when the schedule is switched on, and when the
        timing of an active schedule changes; otherwise the stored slot is left
        alone so a concurrent Executor advance is never rolled back.

        Returns:
            Tuple of (schedule, created)

        Raises:
            ScheduleValidationError: For a bad contact, timezone, time or cadence
        """
        contact = validate_contact(contact)
        resolve_timezone(timezone)
        minute = minute_of_day(time_of_day)
        kind = parse_cadence(cadence)
        mask = weekday_mask(kind, custom_days)
        days = sorted(set(custom_days)) if kind is Cadence.CUSTOM else []
        now = ensure_utc(now or now_utc())

        existing = self.get(owner_id)
        created = existing is None

        if created:
            schedule = Schedule(owner_id=owner_id, created_at=now)
            recompute = active
        else:
            schedule = existing
            timing_changed = (
                schedule.timezone != timezone
                or schedule.minute_of_day != minute
                or schedule.weekday_mask != mask
            )
            newly_active = active and not schedule.active
            recompute = active and (newly_active or timing_changed or schedule.next_run_at is None)

        schedule.contact = contact
        schedule.timezone = timezone
        schedule.minute_of_day = minute
        schedule.cadence = kind
        schedule.weekday_mask = mask
        schedule.custom_days = days
        schedule.active = active
        if owner_name is not None:
            schedule.owner_name = owner_name
        schedule.updated_at = now

        if recompute:
            schedule.next_run_at = next_run_at_utc(minute, mask, timezone, now)

        self._save(schedule, write_slot=created or recompute)

        action = "Created" if created else "Updated"
        logger.info(
            f"{action} schedule {schedule.id} for owner {owner_id}: {schedule.time_of_day} {timezone} "
            f"{kind.value} active={active} next_run={to_iso(schedule.next_run_at) or '-'}"
        )
        return schedule, created

    def _save(self, schedule: Schedule, write_slot: bool):
        data = schedule.to_dict()
        if not write_slot:
            data.pop("next_run_at")

        pipe = self.redis_client.pipeline()
        pipe.hset(self._schedule_key(schedule.id), mapping=data)
        pipe.hset(self.owner_index_key, schedule.owner_id, schedule.id)
        if not schedule.active:
            pipe.zrem(self.due_index_key, schedule.id)
        elif write_slot:
            # An active schedule without a slot yet is due immediately
            score = to_epoch(schedule.next_run_at) if schedule.next_run_at else 0
            pipe.zadd(self.due_index_key, {schedule.id: score})
        pipe.execute()

    def deactivate(self, owner_id: str, now: Optional[datetime] = None) -> bool:
        """
        Switch off an owner's schedule; history and the last slot stay in place

        Returns:
            False if the owner has no schedule
        """
        schedule_id = self.redis_client.hget(self.owner_index_key, owner_id)
        if not schedule_id:
            logger.warning(f"No schedule to deactivate for owner {owner_id}")
            return False

        pipe = self.redis_client.pipeline()
        pipe.hset(self._schedule_key(schedule_id), mapping={
            "active": "0",
            "updated_at": to_iso(now or now_utc())
        })
        pipe.zrem(self.due_index_key, schedule_id)
        pipe.execute()

        logger.info(f"Deactivated schedule {schedule_id} for owner {owner_id}")
        return True

    def get(self, owner_id: str) -> Optional[Schedule]:
        schedule_id = self.redis_client.hget(self.owner_index_key, owner_id)
        if not schedule_id:
            return None
        return self.get_by_id(schedule_id)

    def get_by_id(self, schedule_id: str) -> Optional[Schedule]:
        data = self.redis_client.hgetall(self._schedule_key(schedule_id))
        if not data:
            return None
        return Schedule.from_dict(data)

    def due_schedules(self, now: Optional[datetime] = None, limit: int = 100) -> List[Schedule]:
        """
        All active schedules whose next run is at or before ``now``

        Active schedules that were never given a slot are included.
        """
        now = ensure_utc(now or now_utc())
        schedule_ids = self.redis_client.zrangebyscore(
            self.due_index_key, "-inf", to_epoch(now), start=0, num=limit
        )

        due = []
        for schedule_id in schedule_ids:
            schedule = self.get_by_id(schedule_id)
            if schedule is None:
                logger.warning(f"Dropping dangling schedule id {schedule_id} from due index")
                self.redis_client.zrem(self.due_index_key, schedule_id)
                continue
            if not schedule.active:
                continue
            if schedule.next_run_at is not None and schedule.next_run_at > now:
                continue
            due.append(schedule)

        return due

    def advance(self, schedule: Schedule, now: datetime) -> Optional[datetime]:
        """
        Claim the schedule's current slot and move it to the next one

        Returns:
            The new next run if this caller claimed the slot, None if the slot
            was already taken or the schedule was deactivated
        """
        new_next_run = next_run_at_utc(schedule.minute_of_day, schedule.weekday_mask, schedule.timezone, now)
        claimed = self.atomic_ops.advance_schedule(
            schedule_key=self._schedule_key(schedule.id),
            due_index_key=self.due_index_key,
            schedule_id=schedule.id,
            expected_next_run=to_iso(schedule.next_run_at),
            new_next_run=to_iso(new_next_run),
            new_score=to_epoch(new_next_run),
            updated_at=to_iso(now)
        )
        return new_next_run if claimed else None

    def list_schedules(self) -> List[Schedule]:
        schedules = []
        for schedule_id in self.redis_client.hvals(self.owner_index_key):
            schedule = self.get_by_id(schedule_id)
            if schedule:
                schedules.append(schedule)
        return sorted(schedules, key=lambda s: s.owner_id)
