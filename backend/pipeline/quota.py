"""
Quota ledger for media synthesis

A unit is reserved before a synthesis request goes out and released only
when the request fails before the provider assigned a task.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict

import redis

from config.settings import KEY_PREFIX, QUOTA_DEFAULT_LIMIT
from utils.redis_atomic import AtomicRedisOperations, create_atomic_redis_ops

logger = logging.getLogger("quota-ledger")


@dataclass
class QuotaDecision:
    allowed: bool
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class QuotaLedger(ABC):
    """Check-and-reserve / release contract for generation quota"""

    @abstractmethod
    def reserve(self, owner_id: str) -> QuotaDecision:
        """Atomically take one unit if the owner has any left"""

    @abstractmethod
    def release(self, owner_id: str) -> int:
        """Give one unit back; returns the used count afterwards"""


class RedisQuotaLedger(QuotaLedger):
    """Per-owner used counter with a default limit and optional override"""

    def __init__(
        self,
        redis_client: redis.Redis,
        atomic_ops: AtomicRedisOperations = None,
        default_limit: int = None
    ):
        self.redis_client = redis_client
        self.atomic_ops = atomic_ops or create_atomic_redis_ops(redis_client)
        self.default_limit = QUOTA_DEFAULT_LIMIT if default_limit is None else default_limit
        self.quota_key = f"{KEY_PREFIX}:quota"

    def _used_key(self, owner_id: str) -> str:
        return f"{self.quota_key}:{owner_id}:used"

    def _limit_key(self, owner_id: str) -> str:
        return f"{self.quota_key}:{owner_id}:limit"

    def reserve(self, owner_id: str) -> QuotaDecision:
        allowed, used, limit = self.atomic_ops.reserve_quota(
            self._used_key(owner_id), self._limit_key(owner_id), self.default_limit
        )
        if not allowed:
            logger.info(f"Quota exhausted for owner {owner_id} ({used}/{limit})")
        return QuotaDecision(allowed=allowed, used=used, limit=limit)

    def release(self, owner_id: str) -> int:
        used = self.atomic_ops.release_quota(self._used_key(owner_id))
        logger.info(f"Released quota unit for owner {owner_id}, used now {used}")
        return used

    def set_limit(self, owner_id: str, limit: int):
        if limit < 0:
            raise ValueError("Quota limit cannot be negative")
        self.redis_client.set(self._limit_key(owner_id), limit)

    def reset(self, owner_id: str):
        """Start a new billing period for the owner"""
        self.redis_client.delete(self._used_key(owner_id))

    def usage(self, owner_id: str) -> Dict[str, int]:
        used = int(self.redis_client.get(self._used_key(owner_id)) or 0)
        limit_value = self.redis_client.get(self._limit_key(owner_id))
        limit = int(limit_value) if limit_value is not None else self.default_limit
        return {"used": used, "limit": limit, "remaining": max(0, limit - used)}
