"""
EventStore - persistence for extracted events and their people/tag usage
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence

import redis

from config.settings import KEY_PREFIX
from utils.time_utils import ensure_utc, now_utc, to_epoch

from .entities import EntityResolver
from .models import EntityKind, Event, energy_number_to_word, mood_number_to_word

logger = logging.getLogger("event-store")


class EventValidationError(ValueError):
    """An edit would break an event invariant"""


class EventStore:
    """
    Stores events and keeps canonical people/tags in step with them.

    Every person on a stored event is written verbatim in its summary.
    """

    def __init__(self, redis_client: redis.Redis, resolver: EntityResolver = None):
        self.redis_client = redis_client
        self.resolver = resolver or EntityResolver(redis_client)
        self.events_key = f"{KEY_PREFIX}:events"

    def _event_key(self, event_id: str) -> str:
        return f"{self.events_key}:{event_id}"

    def _owner_index_key(self, owner_id: str) -> str:
        return f"{self.events_key}:owner:{owner_id}"

    def _save(self, event: Event):
        pipe = self.redis_client.pipeline()
        pipe.hset(self._event_key(event.id), mapping=event.to_dict())
        pipe.zadd(self._owner_index_key(event.owner_id), {event.id: to_epoch(event.happened_at)})
        pipe.execute()

    def create_events(
        self,
        owner_id: str,
        session_id: str,
        events: Sequence[Event],
        now: Optional[datetime] = None
    ) -> List[Event]:
        """
        Persist events for one session, resolving their people and tags

        People missing from an event's summary are dropped with a warning.
        """
        now = ensure_utc(now or now_utc())
        stored = []

        for event in events:
            event.owner_id = owner_id
            event.session_id = session_id
            event.created_at = now
            event.updated_at = now

            missing = event.missing_participants()
            if missing:
                logger.warning(f"Dropping people not named in event summary '{event.title}': {missing}")
            event.people = self.resolver.normalize_all(
                EntityKind.PERSON, [name for name in event.people if name not in missing]
            )
            event.tags = self.resolver.normalize_all(EntityKind.TAG, event.tags)

            for name in event.people:
                self.resolver.resolve(owner_id, EntityKind.PERSON, name, now)
            for tag in event.tags:
                self.resolver.resolve(owner_id, EntityKind.TAG, tag, now)

            self._save(event)
            stored.append(event)

        logger.info(f"Stored {len(stored)} events for owner {owner_id} from session {session_id}")
        return stored

    def get(self, event_id: str) -> Optional[Event]:
        data = self.redis_client.hgetall(self._event_key(event_id))
        if not data:
            return None
        return Event.from_dict(data)

    def get_many(self, event_ids: Sequence[str]) -> List[Event]:
        events = []
        for event_id in event_ids:
            event = self.get(event_id)
            if event is None:
                logger.warning(f"Event {event_id} not found")
                continue
            events.append(event)
        return events

    def update_event(
        self,
        event_id: str,
        title: Optional[str] = None,
        summary: Optional[str] = None,
        people: Optional[Sequence[str]] = None,
        tags: Optional[Sequence[str]] = None,
        mood: Optional[int] = None,
        energy: Optional[int] = None,
        anniversary_candidate: Optional[bool] = None,
        now: Optional[datetime] = None
    ) -> Optional[Event]:
        """
        Apply an owner edit; people and tag usage is reconciled

        Returns:
            The updated event, or None if it does not exist

        Raises:
            EventValidationError: If a person is not written in the summary,
                or mood/energy is out of range
        """
        event = self.get(event_id)
        if event is None:
            return None

        now = ensure_utc(now or now_utc())
        old_people = list(event.people)
        old_tags = list(event.tags)

        if title is not None:
            event.title = title.strip()
        if summary is not None:
            event.summary = summary.strip()
        if people is not None:
            event.people = self.resolver.normalize_all(EntityKind.PERSON, people)
        if tags is not None:
            event.tags = self.resolver.normalize_all(EntityKind.TAG, tags)
        if anniversary_candidate is not None:
            event.anniversary_candidate = anniversary_candidate

        try:
            if mood is not None:
                mood_number_to_word(mood)
                event.mood = mood
            if energy is not None:
                energy_number_to_word(energy)
                event.energy = energy
        except ValueError as e:
            raise EventValidationError(str(e)) from e

        missing = event.missing_participants()
        if missing:
            raise EventValidationError(f"People not named in the summary: {', '.join(missing)}")

        event.updated_at = now
        self.resolver.reconcile(event.owner_id, EntityKind.PERSON, old_people, event.people, now=now)
        self.resolver.reconcile(event.owner_id, EntityKind.TAG, old_tags, event.tags, now=now)
        self._save(event)

        logger.info(f"Updated event {event_id}")
        return event

    def delete_event(self, event_id: str) -> bool:
        event = self.get(event_id)
        if event is None:
            return False

        self.resolver.release(event.owner_id, EntityKind.PERSON, event.people)
        self.resolver.release(event.owner_id, EntityKind.TAG, event.tags)

        pipe = self.redis_client.pipeline()
        pipe.delete(self._event_key(event_id))
        pipe.zrem(self._owner_index_key(event.owner_id), event_id)
        pipe.execute()

        logger.info(f"Deleted event {event_id}")
        return True

    def list_events(self, owner_id: str, limit: int = 20) -> List[Event]:
        """Owner's events, most recent happened_at first"""
        event_ids = self.redis_client.zrevrange(self._owner_index_key(owner_id), 0, limit - 1)
        return self.get_many(event_ids)
