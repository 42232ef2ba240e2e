"""
WebhookIngestor - applies call provider events to jobs and sessions

Deliveries are at-least-once and may arrive out of order. Every event is
gated on an atomic job transition, so a duplicate or late event finds the
transition refused and changes nothing.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis
from rq import Queue

from config.settings import GENERATION_QUEUE_NAME
from pipeline.tasks import extract_session_events
from scheduling.job_tracker import JobTracker, SessionStore
from scheduling.models import Job, JobStatus

from .context import job_id_from_room_name
from .events import CallCompleted, CallEvent, CallFailed, CallStarted, parse_call_event

logger = logging.getLogger("webhook-ingestor")

# Completed dispositions that mean no conversation took place
ADVERSE_DISPOSITIONS = {
    "no-answer",
    "busy",
    "voicemail",
    "failed",
    "rejected",
    "canceled",
    "cancelled",
    "error",
}


def is_adverse_disposition(disposition: Optional[str]) -> bool:
    if not disposition:
        return False
    return disposition.strip().lower().replace("_", "-") in ADVERSE_DISPOSITIONS


@dataclass
class IngestResult:
    """What the ingestor did with one event"""
    applied: bool
    action: str
    job_id: Optional[str] = None
    session_id: Optional[str] = None


class WebhookIngestor:
    """
    Applies CallStarted / CallCompleted / CallFailed events.

    A genuine completion hands the session to content extraction on the
    generation queue; the webhook path never waits for generation.
    """

    def __init__(
        self,
        job_tracker: JobTracker,
        session_store: SessionStore,
        generation_queue: Queue = None,
        redis_client: redis.Redis = None
    ):
        self.job_tracker = job_tracker
        self.session_store = session_store
        if generation_queue is None:
            generation_queue = Queue(GENERATION_QUEUE_NAME, connection=redis_client or job_tracker.redis_client)
        self.generation_queue = generation_queue

    def ingest_payload(self, payload: Dict[str, Any]) -> IngestResult:
        """Parse a raw provider payload and apply it"""
        event = parse_call_event(payload)
        if event is None:
            return IngestResult(applied=False, action="ignored")
        return self.ingest(event)

    def ingest(self, event: CallEvent) -> IngestResult:
        job = self._find_job(event.external_call_id)
        if job is None:
            logger.warning(f"Dropping {type(event).__name__} for unknown call {event.external_call_id}")
            return IngestResult(applied=False, action="unknown_call")

        if isinstance(event, CallStarted):
            return self._on_started(job, event)
        if isinstance(event, CallCompleted):
            if is_adverse_disposition(event.disposition):
                return self._on_failed(job, CallFailed(
                    external_call_id=event.external_call_id,
                    reason=f"Call ended with disposition '{event.disposition}'",
                    occurred_at=event.occurred_at
                ), disposition=event.disposition, duration_sec=event.duration_sec, metadata=event.metadata)
            return self._on_completed(job, event)
        if isinstance(event, CallFailed):
            return self._on_failed(job, event)

        raise TypeError(f"Unsupported call event {event!r}")

    def _find_job(self, external_call_id: str) -> Optional[Job]:
        job = self.job_tracker.find_by_external_id(external_call_id)
        if job is not None:
            return job

        # The provider may report on the room before the dispatcher has
        # recorded acceptance; rooms are named after their job
        job_id = job_id_from_room_name(external_call_id)
        if job_id:
            return self.job_tracker.get(job_id)
        return None

    def _on_started(self, job: Job, event: CallStarted) -> IngestResult:
        if not self.job_tracker.transition(job.id, JobStatus.STARTED, external_call_id=event.external_call_id):
            return IngestResult(applied=False, action="duplicate", job_id=job.id)

        session = self.session_store.start_session(job, event.external_call_id, started_at=event.occurred_at)
        return IngestResult(applied=True, action="started", job_id=job.id, session_id=session.id)

    def _on_completed(self, job: Job, event: CallCompleted) -> IngestResult:
        if not self.job_tracker.transition(job.id, JobStatus.COMPLETED, external_call_id=event.external_call_id):
            return IngestResult(applied=False, action="duplicate", job_id=job.id)

        session = self.session_store.finish_session(
            job,
            event.external_call_id,
            disposition=event.disposition,
            duration_seconds=event.duration_sec,
            metadata=event.metadata,
            ended_at=event.occurred_at
        )
        self._hand_off(session.id)
        return IngestResult(applied=True, action="completed", job_id=job.id, session_id=session.id)

    def _on_failed(
        self,
        job: Job,
        event: CallFailed,
        disposition: Optional[str] = None,
        duration_sec: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> IngestResult:
        if not self.job_tracker.transition(
            job.id, JobStatus.FAILED, external_call_id=event.external_call_id, error=event.reason
        ):
            return IngestResult(applied=False, action="duplicate", job_id=job.id)

        session_id = None
        if disposition is not None or self.session_store.get_by_job(job.id) is not None:
            session = self.session_store.finish_session(
                job,
                event.external_call_id,
                disposition=disposition or "failed",
                duration_seconds=duration_sec,
                metadata=metadata,
                ended_at=event.occurred_at
            )
            session_id = session.id

        logger.info(f"Job {job.id} failed: {event.reason}")
        return IngestResult(applied=True, action="failed", job_id=job.id, session_id=session_id)

    def _hand_off(self, session_id: str):
        try:
            rq_job = self.generation_queue.enqueue(extract_session_events, session_id)
            logger.info(f"Queued content extraction for session {session_id} (rq job: {rq_job.id})")
        except redis.RedisError as e:
            logger.error(f"Failed to queue content extraction for session {session_id}: {e}")
            self.session_store.update_metadata(session_id, {"generation_error": f"Failed to queue extraction: {e}"})
