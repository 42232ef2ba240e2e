"""
EntityResolver - canonical people and tags shared across an owner's events

Names are normalized (people: trimmed, tags: trimmed and lowercased) and
looked up by exact key inside the owner's scope. Usage counters follow the
events that reference an entity and never drop below zero.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

import redis

from config.settings import KEY_PREFIX
from utils.redis_atomic import AtomicRedisOperations, create_atomic_redis_ops
from utils.time_utils import now_utc, to_iso

from .models import CanonicalEntity, EntityKind

logger = logging.getLogger("entity-resolver")


def normalize_tag(tag: str) -> str:
    return tag.strip().lower()


def normalize_person_name(name: str) -> str:
    return name.strip()


@dataclass
class ReconcileResult:
    """Normalized keys touched by one reconcile"""
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)


class EntityResolver:
    """Create-or-reuse lookups and usage bookkeeping for people and tags"""

    def __init__(self, redis_client: redis.Redis, atomic_ops: AtomicRedisOperations = None):
        self.redis_client = redis_client
        self.atomic_ops = atomic_ops or create_atomic_redis_ops(redis_client)
        self.entities_key = f"{KEY_PREFIX}:entities"

    def _scope_key(self, owner_id: str, kind: EntityKind) -> str:
        return f"{self.entities_key}:{kind.value}:{owner_id}"

    def _entity_key(self, owner_id: str, kind: EntityKind, normalized_key: str) -> str:
        return f"{self._scope_key(owner_id, kind)}:key:{normalized_key}"

    def _usage_index_key(self, owner_id: str, kind: EntityKind) -> str:
        return f"{self._scope_key(owner_id, kind)}:by_usage"

    @staticmethod
    def normalize(kind: EntityKind, name: str) -> str:
        if kind is EntityKind.TAG:
            return normalize_tag(name)
        return normalize_person_name(name)

    def normalize_all(self, kind: EntityKind, names: Iterable[str]) -> List[str]:
        """Normalized, de-duplicated names in first-seen order, blanks dropped"""
        seen = []
        for name in names:
            key = self.normalize(kind, name)
            if key and key not in seen:
                seen.append(key)
        return seen

    def resolve(
        self,
        owner_id: str,
        kind: EntityKind,
        name: str,
        now: Optional[datetime] = None
    ) -> Tuple[CanonicalEntity, bool]:
        """
        Reuse the owner's entity for ``name`` or create it

        A hit bumps usage and refreshes last-used; a miss creates the entity
        with usage 1.

        Returns:
            Tuple of (entity, created)

        Raises:
            ValueError: If the name normalizes to nothing
        """
        key = self.normalize(kind, name)
        if not key:
            raise ValueError(f"Empty {kind.value} name")

        created, usage = self.atomic_ops.resolve_entity(
            entity_key=self._entity_key(owner_id, kind, key),
            usage_index_key=self._usage_index_key(owner_id, kind),
            normalized_key=key,
            display_name=key,
            kind=kind.value,
            owner_id=owner_id,
            now_iso=to_iso(now or now_utc())
        )
        if created:
            logger.info(f"Created {kind.value} '{key}' for owner {owner_id}")

        entity = self.get(owner_id, kind, key)
        return entity, created

    def reconcile(
        self,
        owner_id: str,
        kind: EntityKind,
        old: Iterable[str],
        new: Iterable[str],
        fresh_keys: Iterable[str] = (),
        now: Optional[datetime] = None
    ) -> ReconcileResult:
        """
        Bring usage counters in line after an event's names changed

        Args:
            old: Names the event referenced before the edit
            new: Names it references after the edit
            fresh_keys: Normalized keys already counted for this edit (e.g.
                just created by ``resolve``); they are not incremented again
        """
        now_iso = to_iso(now or now_utc())
        old_keys = self.normalize_all(kind, old)
        new_keys = self.normalize_all(kind, new)
        skip: Set[str] = {self.normalize(kind, key) for key in fresh_keys}
        result = ReconcileResult()

        for key in old_keys:
            if key in new_keys:
                continue
            usage = self.atomic_ops.adjust_entity_usage(
                self._entity_key(owner_id, kind, key), self._usage_index_key(owner_id, kind), key, -1
            )
            if usage < 0:
                logger.warning(f"Cannot decrement missing {kind.value} '{key}' for owner {owner_id}")
                continue
            result.removed.append(key)

        for key in new_keys:
            if key in old_keys:
                self.atomic_ops.adjust_entity_usage(
                    self._entity_key(owner_id, kind, key), self._usage_index_key(owner_id, kind), key, 0, now_iso
                )
                result.kept.append(key)
            elif key in skip:
                result.added.append(key)
            else:
                self.resolve(owner_id, kind, key, now)
                result.added.append(key)

        logger.debug(
            f"Reconciled {kind.value}s for owner {owner_id}: "
            f"+{result.added} -{result.removed} ={result.kept}"
        )
        return result

    def release(self, owner_id: str, kind: EntityKind, names: Iterable[str]) -> List[str]:
        """Decrement usage for every name (event deleted)"""
        return self.reconcile(owner_id, kind, names, []).removed

    def get(self, owner_id: str, kind: EntityKind, name: str) -> Optional[CanonicalEntity]:
        data = self.redis_client.hgetall(self._entity_key(owner_id, kind, self.normalize(kind, name)))
        if not data:
            return None
        return CanonicalEntity.from_dict(data)

    def known_names(self, owner_id: str, kind: EntityKind, limit: int = 50) -> List[str]:
        """Display names ordered by usage, most used first"""
        keys = self.redis_client.zrevrange(self._usage_index_key(owner_id, kind), 0, limit - 1)
        names = []
        for key in keys:
            display_name = self.redis_client.hget(self._entity_key(owner_id, kind, key), "display_name")
            if display_name:
                names.append(display_name)
        return names

    def list_entities(self, owner_id: str, kind: EntityKind, limit: int = 50) -> List[CanonicalEntity]:
        entities = []
        for key in self.redis_client.zrevrange(self._usage_index_key(owner_id, kind), 0, limit - 1):
            entity = self.get(owner_id, kind, key)
            if entity is not None:
                entities.append(entity)
        return entities

    def usage_counts(self, owner_id: str, kind: EntityKind) -> Dict[str, int]:
        return {
            key: int(score)
            for key, score in self.redis_client.zrevrange(
                self._usage_index_key(owner_id, kind), 0, -1, withscores=True
            )
        }
