"""
Atomic Redis operations for the check-in service

Every entity mutation that can race (schedule advance, job transition,
attempt counting, quota reservation, media artifact finalization and
canonical entity counters) is a single Lua script executed on the Redis
server, so concurrent ticks and duplicate webhook deliveries never observe
a partial update.
"""
import logging
from typing import Iterable, Optional, Tuple

import redis

logger = logging.getLogger("redis-atomic")

# Claim a schedule slot: swap next_run_at only if the schedule is still
# active and still holds the slot the caller observed (compare-and-set)
ADVANCE_SCHEDULE_SCRIPT = """
local active = redis.call('HGET', KEYS[1], 'active')
if active ~= '1' then
    return 0
end

local current = redis.call('HGET', KEYS[1], 'next_run_at')
if not current then
    current = ''
end
if current ~= ARGV[1] then
    return 0
end

redis.call('HSET', KEYS[1], 'next_run_at', ARGV[2], 'updated_at', ARGV[5])
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[4])
return 1
"""

# Move a job to a new status only if its current status is in the allowed set
TRANSITION_JOB_SCRIPT = """
local current = redis.call('HGET', KEYS[1], 'status')
if not current then
    return {0, ''}
end

for i = 6, #ARGV do
    if current == ARGV[i] then
        redis.call('HSET', KEYS[1], 'status', ARGV[1], 'updated_at', ARGV[2])
        if ARGV[3] ~= '' then
            redis.call('HSET', KEYS[1], 'external_call_id', ARGV[3])
            redis.call('HSET', KEYS[2], ARGV[3], ARGV[5])
        end
        if ARGV[4] ~= '' then
            redis.call('HSET', KEYS[1], 'error', ARGV[4])
        end
        return {1, current}
    end
end

return {0, current}
"""

INCREMENT_ATTEMPT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local new_count = redis.call('HINCRBY', KEYS[1], 'attempt_count', 1)
redis.call('HSET', KEYS[1], 'updated_at', ARGV[1])
return new_count
"""

RESERVE_QUOTA_SCRIPT = """
local limit = tonumber(redis.call('GET', KEYS[2]) or ARGV[1])
local used = tonumber(redis.call('GET', KEYS[1]) or '0')
if used >= limit then
    return {0, used, limit}
end
used = redis.call('INCR', KEYS[1])
return {1, used, limit}
"""

RELEASE_QUOTA_SCRIPT = """
local used = tonumber(redis.call('GET', KEYS[1]) or '0')
if used <= 0 then
    redis.call('SET', KEYS[1], 0)
    return 0
end
return redis.call('DECR', KEYS[1])
"""

# Media artifacts only leave 'pending' once
FINALIZE_ARTIFACT_SCRIPT = """
local current = redis.call('HGET', KEYS[1], 'status')
if current ~= 'pending' then
    return 0
end

redis.call('HSET', KEYS[1], 'status', ARGV[1], 'updated_at', ARGV[2])
if ARGV[3] ~= '' then
    redis.call('HSET', KEYS[1], 'artifact_ref', ARGV[3])
end
if ARGV[4] ~= '' then
    redis.call('HSET', KEYS[1], 'metadata', ARGV[4])
end
if ARGV[5] ~= '' then
    redis.call('HSET', KEYS[1], 'error', ARGV[5])
end
return 1
"""

# Reuse-or-create a canonical entity; returns {created, usage_count}
RESOLVE_ENTITY_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    local usage = redis.call('HINCRBY', KEYS[1], 'usage_count', 1)
    redis.call('HSET', KEYS[1], 'last_used_at', ARGV[3])
    redis.call('ZADD', KEYS[2], usage, ARGV[1])
    return {0, usage}
end

redis.call('HSET', KEYS[1],
    'key', ARGV[1],
    'display_name', ARGV[2],
    'kind', ARGV[4],
    'owner_id', ARGV[5],
    'usage_count', 1,
    'last_used_at', ARGV[3],
    'created_at', ARGV[3])
redis.call('ZADD', KEYS[2], 1, ARGV[1])
return {1, 1}
"""

# Apply a usage delta (floored at 0) and optionally refresh last_used_at
ADJUST_ENTITY_USAGE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end

local usage = tonumber(redis.call('HGET', KEYS[1], 'usage_count') or '0') + tonumber(ARGV[1])
if usage < 0 then
    usage = 0
end
redis.call('HSET', KEYS[1], 'usage_count', usage)
if ARGV[2] ~= '' then
    redis.call('HSET', KEYS[1], 'last_used_at', ARGV[2])
end
redis.call('ZADD', KEYS[2], usage, ARGV[3])
return usage
"""


class AtomicRedisOperations:
    """
    Registered Lua scripts for the check-in stores.

    Callers pass fully-built key names; the scripts know nothing about the
    key layout.
    """

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize with Redis client

        Args:
            redis_client: Redis client instance (decode_responses=True)
        """
        self.redis = redis_client

        self._advance_script = self.redis.register_script(ADVANCE_SCHEDULE_SCRIPT)
        self._transition_script = self.redis.register_script(TRANSITION_JOB_SCRIPT)
        self._attempt_script = self.redis.register_script(INCREMENT_ATTEMPT_SCRIPT)
        self._reserve_script = self.redis.register_script(RESERVE_QUOTA_SCRIPT)
        self._release_script = self.redis.register_script(RELEASE_QUOTA_SCRIPT)
        self._finalize_script = self.redis.register_script(FINALIZE_ARTIFACT_SCRIPT)
        self._resolve_script = self.redis.register_script(RESOLVE_ENTITY_SCRIPT)
        self._adjust_script = self.redis.register_script(ADJUST_ENTITY_USAGE_SCRIPT)

    def advance_schedule(
        self,
        schedule_key: str,
        due_index_key: str,
        schedule_id: str,
        expected_next_run: str,
        new_next_run: str,
        new_score: float,
        updated_at: str
    ) -> bool:
        """
        Atomically move a schedule to its next slot

        Returns:
            True if this caller claimed the slot, False if the schedule was
            deactivated or already advanced by someone else
        """
        result = self._advance_script(
            keys=[schedule_key, due_index_key],
            args=[expected_next_run, new_next_run, new_score, schedule_id, updated_at]
        )
        claimed = bool(result)
        if not claimed:
            logger.info(f"Schedule {schedule_id} slot {expected_next_run or '<unset>'} already claimed or inactive")
        return claimed

    def transition_job(
        self,
        job_key: str,
        external_index_key: str,
        job_id: str,
        new_status: str,
        allowed_from: Iterable[str],
        updated_at: str,
        external_call_id: Optional[str] = None,
        error: Optional[str] = None
    ) -> Tuple[bool, Optional[str]]:
        """
        Conditionally update a job's status

        Returns:
            Tuple of (applied, status observed before the update). The observed
            status is None when the job does not exist.
        """
        applied, previous = self._transition_script(
            keys=[job_key, external_index_key],
            args=[new_status, updated_at, external_call_id or "", error or "", job_id, *allowed_from]
        )
        return bool(applied), (previous or None)

    def increment_attempt(self, job_key: str, updated_at: str) -> int:
        """Increment a job's attempt counter; -1 if the job is missing"""
        return int(self._attempt_script(keys=[job_key], args=[updated_at]))

    def reserve_quota(self, used_key: str, limit_key: str, default_limit: int) -> Tuple[bool, int, int]:
        """
        Check-and-increment one quota unit

        Returns:
            Tuple of (allowed, used_after, limit)
        """
        allowed, used, limit = self._reserve_script(keys=[used_key, limit_key], args=[default_limit])
        return bool(allowed), int(used), int(limit)

    def release_quota(self, used_key: str) -> int:
        """Give back one quota unit, never going below zero"""
        return int(self._release_script(keys=[used_key]))

    def finalize_artifact(
        self,
        artifact_key: str,
        new_status: str,
        updated_at: str,
        artifact_ref: str = "",
        metadata_json: str = "",
        error: str = ""
    ) -> bool:
        """Flip a pending artifact to a terminal status; False if not pending"""
        return bool(self._finalize_script(
            keys=[artifact_key],
            args=[new_status, updated_at, artifact_ref, metadata_json, error]
        ))

    def resolve_entity(
        self,
        entity_key: str,
        usage_index_key: str,
        normalized_key: str,
        display_name: str,
        kind: str,
        owner_id: str,
        now_iso: str
    ) -> Tuple[bool, int]:
        """
        Reuse or create a canonical entity

        Returns:
            Tuple of (created, usage_count)
        """
        created, usage = self._resolve_script(
            keys=[entity_key, usage_index_key],
            args=[normalized_key, display_name, now_iso, kind, owner_id]
        )
        return bool(created), int(usage)

    def adjust_entity_usage(
        self,
        entity_key: str,
        usage_index_key: str,
        normalized_key: str,
        delta: int,
        touched_at: str = ""
    ) -> int:
        """Apply a usage delta floored at zero; -1 if the entity is missing"""
        return int(self._adjust_script(
            keys=[entity_key, usage_index_key],
            args=[delta, touched_at, normalized_key]
        ))


def create_atomic_redis_ops(redis_client: redis.Redis = None) -> AtomicRedisOperations:
    """
    Factory function to create AtomicRedisOperations instance

    Args:
        redis_client: Redis client instance (defaults to creating new one)

    Returns:
        AtomicRedisOperations instance
    """
    if redis_client is None:
        from config.redis import create_redis_connection
        redis_client = create_redis_connection()

    return AtomicRedisOperations(redis_client)
