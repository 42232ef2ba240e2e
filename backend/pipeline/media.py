"""
Stage B - media synthesis for a set of extracted events

Quota is reserved before the provider is contacted. If the request fails
before the provider assigned a task id the unit is released; once a task
exists the unit is spent whatever the callback later reports.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

import redis

from config.settings import KEY_PREFIX
from utils.redis_atomic import AtomicRedisOperations, create_atomic_redis_ops
from utils.time_utils import ensure_utc, now_utc, to_epoch, to_iso

from .models import Event, MediaArtifact, MediaStatus, mood_number_to_word, energy_number_to_word
from .quota import QuotaDecision, QuotaLedger, RedisQuotaLedger
from .synthesis_client import (
    HttpMediaSynthesisClient, MediaCallback, MediaFailed, MediaReady,
    MediaSynthesisClient, SynthesisRequest
)

logger = logging.getLogger("media-synthesis")

DEFAULT_TITLE = "Today's Check-in"
MAX_TITLE_LENGTH = 80

# Style by rounded average mood
MOOD_STYLES = {
    -2: "slow piano ballad, melancholic, gentle",
    -1: "acoustic folk, reflective, soft",
    0: "indie pop, acoustic, calm",
    1: "indie pop, warm, uplifting",
    2: "upbeat synthpop, bright, celebratory",
}
HIGH_ENERGY_STYLE = "driving rhythm"
LOW_ENERGY_STYLE = "sparse arrangement"


def build_synthesis_request(events: Sequence[Event]) -> SynthesisRequest:
    """Derive title, prompt text and style from the events (deterministic)"""
    if not events:
        return SynthesisRequest(title=DEFAULT_TITLE, prompt="", style=MOOD_STYLES[0])

    title = events[0].title[:MAX_TITLE_LENGTH] or DEFAULT_TITLE

    lines = []
    for event in events:
        lines.append(f"[{event.title}]")
        lines.append(event.summary)
        lines.append(f"Feeling {mood_number_to_word(event.mood)}, energy {energy_number_to_word(event.energy)}.")
    prompt = "\n".join(lines)

    average_mood = round(sum(event.mood for event in events) / len(events))
    average_energy = sum(event.energy for event in events) / len(events)
    style = MOOD_STYLES[max(-2, min(2, average_mood))]
    if average_energy >= 4:
        style = f"{style}, {HIGH_ENERGY_STYLE}"
    elif average_energy <= 2:
        style = f"{style}, {LOW_ENERGY_STYLE}"

    return SynthesisRequest(title=title, prompt=prompt, style=style)


@dataclass
class MediaDispatchResult:
    """status is one of "pending", "failed", "denied" """
    status: str
    artifact: Optional[MediaArtifact] = None
    quota: Optional[QuotaDecision] = None
    error: Optional[str] = None


class MediaArtifactStore:
    """Media artifacts indexed by provider task id, content id and owner"""

    def __init__(self, redis_client: redis.Redis, atomic_ops: AtomicRedisOperations = None):
        self.redis_client = redis_client
        self.atomic_ops = atomic_ops or create_atomic_redis_ops(redis_client)
        self.media_key = f"{KEY_PREFIX}:media"
        self.task_index_key = f"{self.media_key}:by_task"

    def _artifact_key(self, artifact_id: str) -> str:
        return f"{self.media_key}:{artifact_id}"

    def _content_index_key(self, content_id: str) -> str:
        return f"{self.media_key}:content:{content_id}"

    def _owner_index_key(self, owner_id: str) -> str:
        return f"{self.media_key}:owner:{owner_id}"

    def save(self, artifact: MediaArtifact):
        pipe = self.redis_client.pipeline()
        pipe.hset(self._artifact_key(artifact.id), mapping=artifact.to_dict())
        if artifact.provider_task_id:
            pipe.hset(self.task_index_key, artifact.provider_task_id, artifact.id)
        pipe.zadd(self._content_index_key(artifact.content_id), {artifact.id: to_epoch(artifact.created_at)})
        pipe.zadd(self._owner_index_key(artifact.owner_id), {artifact.id: to_epoch(artifact.created_at)})
        pipe.execute()

    def get(self, artifact_id: str) -> Optional[MediaArtifact]:
        data = self.redis_client.hgetall(self._artifact_key(artifact_id))
        if not data:
            return None
        return MediaArtifact.from_dict(data)

    def find_by_task_id(self, task_id: str) -> Optional[MediaArtifact]:
        artifact_id = self.redis_client.hget(self.task_index_key, task_id)
        if not artifact_id:
            return None
        return self.get(artifact_id)

    def finalize(
        self,
        artifact: MediaArtifact,
        status: MediaStatus,
        artifact_ref: str = "",
        metadata: Optional[dict] = None,
        error: str = "",
        now: Optional[datetime] = None
    ) -> bool:
        return self.atomic_ops.finalize_artifact(
            self._artifact_key(artifact.id),
            status.value,
            to_iso(now or now_utc()),
            artifact_ref=artifact_ref or "",
            metadata_json=json.dumps(metadata) if metadata else "",
            error=error or ""
        )

    def list_for_content(self, content_id: str) -> List[MediaArtifact]:
        artifact_ids = self.redis_client.zrevrange(self._content_index_key(content_id), 0, -1)
        return [artifact for artifact in map(self.get, artifact_ids) if artifact is not None]

    def list_for_owner(self, owner_id: str, limit: int = 20) -> List[MediaArtifact]:
        artifact_ids = self.redis_client.zrevrange(self._owner_index_key(owner_id), 0, limit - 1)
        return [artifact for artifact in map(self.get, artifact_ids) if artifact is not None]


class MediaSynthesizer:
    """Quota-guarded synthesis dispatch plus callback finalization"""

    def __init__(
        self,
        artifact_store: MediaArtifactStore,
        quota: QuotaLedger = None,
        client: MediaSynthesisClient = None
    ):
        self.artifact_store = artifact_store
        self.quota = quota or RedisQuotaLedger(artifact_store.redis_client, artifact_store.atomic_ops)
        self.client = client or HttpMediaSynthesisClient()

    def dispatch(
        self,
        owner_id: str,
        content_id: str,
        events: Sequence[Event],
        now: Optional[datetime] = None
    ) -> MediaDispatchResult:
        """
        Request media for ``events``

        Returns:
            MediaDispatchResult with status "denied" (no quota, nothing
            stored), "failed" (request rejected, quota released, failed
            artifact stored) or "pending" (task accepted)
        """
        now = ensure_utc(now or now_utc())
        request = build_synthesis_request(events)
        decision = self.quota.reserve(owner_id)
        if not decision.allowed:
            return MediaDispatchResult(status="denied", quota=decision, error="Quota exhausted")

        artifact = MediaArtifact(
            owner_id=owner_id,
            content_id=content_id,
            metadata={"title": request.title, "style": request.style},
            event_ids=[event.id for event in events],
            created_at=now,
            updated_at=now
        )

        try:
            task_id = self.client.submit(request)
        except Exception as e:
            logger.error(f"Synthesis request for content {content_id} failed: {e}")
            self.quota.release(owner_id)
            artifact.status = MediaStatus.FAILED
            artifact.error = str(e) or e.__class__.__name__
            self.artifact_store.save(artifact)
            return MediaDispatchResult(status="failed", artifact=artifact, quota=decision, error=artifact.error)

        artifact.provider_task_id = task_id
        self.artifact_store.save(artifact)
        logger.info(f"Media artifact {artifact.id} pending on task {task_id} for content {content_id}")
        return MediaDispatchResult(status="pending", artifact=artifact, quota=decision)

    def complete(self, task_id: str, artifact_ref: str, metadata: Optional[dict] = None) -> bool:
        """Mark the task's artifact ready; False for unknown or already-final tasks"""
        artifact = self.artifact_store.find_by_task_id(task_id)
        if artifact is None:
            logger.warning(f"Completion for unknown synthesis task {task_id}")
            return False

        merged = dict(artifact.metadata)
        merged.update(metadata or {})
        applied = self.artifact_store.finalize(artifact, MediaStatus.READY, artifact_ref=artifact_ref, metadata=merged)
        if applied:
            logger.info(f"Media artifact {artifact.id} ready: {artifact_ref}")
        else:
            logger.info(f"Ignoring completion for task {task_id}, artifact {artifact.id} already final")
        return applied

    def fail(self, task_id: str, reason: str) -> bool:
        """Mark the task's artifact failed; the quota unit stays spent"""
        artifact = self.artifact_store.find_by_task_id(task_id)
        if artifact is None:
            logger.warning(f"Failure for unknown synthesis task {task_id}")
            return False

        applied = self.artifact_store.finalize(artifact, MediaStatus.FAILED, error=reason)
        if applied:
            logger.warning(f"Media artifact {artifact.id} failed: {reason}")
        else:
            logger.info(f"Ignoring failure for task {task_id}, artifact {artifact.id} already final")
        return applied

    def apply_callback(self, callback: MediaCallback) -> bool:
        if isinstance(callback, MediaReady):
            return self.complete(callback.task_id, callback.artifact_ref, callback.metadata)
        if isinstance(callback, MediaFailed):
            return self.fail(callback.task_id, callback.reason)
        raise TypeError(f"Unsupported media callback {callback!r}")
