"""
RQ tasks for the generation pipeline

    completed call -> extract_session_events (Stage A)
                   -> synthesize_media_for_events (Stage B)
                   -> handle_media_callback (provider callback)

Each stage runs as its own job on the generation queue; a failure in one
stage is recorded and never reaches back into the call lifecycle.
"""
import logging
from typing import Any, Dict, List

from rq import Queue
from rq.decorators import job

from config.redis import create_redis_connection
from config.settings import GENERATION_QUEUE_NAME
from scheduling.job_tracker import SessionStore
from utils.time_utils import now_utc, to_iso

from .entities import EntityResolver
from .event_store import EventStore
from .extraction import EventExtractor, stub_events
from .media import MediaArtifactStore, MediaSynthesizer
from .models import EntityKind
from .synthesis_client import parse_media_callback
from .transcript import transcript_from_metadata, truncate_transcript

logger = logging.getLogger("generation-tasks")

KNOWN_ENTITY_LIMIT = 50

# Redis connection for RQ
redis_conn = create_redis_connection()


def build_extractor() -> EventExtractor:
    return EventExtractor()


def build_synthesizer(redis_client) -> MediaSynthesizer:
    return MediaSynthesizer(MediaArtifactStore(redis_client))


@job(GENERATION_QUEUE_NAME, connection=redis_conn, timeout=300)
def extract_session_events(session_id: str) -> str:
    """
    Stage A: turn a completed session's transcript into stored events

    A session that already carries ``event_ids`` has been processed and is
    left alone, and a session is claimed before extraction so a redelivery
    racing an in-flight run does nothing either.
    """
    sessions = SessionStore(redis_conn)
    session = sessions.get(session_id)
    if session is None:
        logger.error(f"Session {session_id} not found for extraction")
        return f"Session {session_id} not found"

    if session.metadata.get("event_ids"):
        logger.info(f"Session {session_id} already has events, skipping extraction")
        return f"Session {session_id} already processed"

    if not sessions.claim_extraction(session.id, to_iso(now_utc())):
        logger.info(f"Session {session_id} extraction already claimed, skipping")
        return f"Session {session_id} already claimed"

    resolver = EntityResolver(redis_conn)
    event_store = EventStore(redis_conn, resolver)
    reference_time = session.ended_at or session.started_at or now_utc()
    text = truncate_transcript(transcript_from_metadata(session.metadata))

    extraction_error = None
    try:
        if not text:
            logger.warning(f"No transcript available for session {session_id}")
            extraction_error = "No transcript available"
            events = stub_events(text, reference_time)
        else:
            extractor = build_extractor()
            events = extractor.extract_sync(
                text,
                reference_time,
                known_people=resolver.known_names(session.owner_id, EntityKind.PERSON, KNOWN_ENTITY_LIMIT),
                known_tags=resolver.known_names(session.owner_id, EntityKind.TAG, KNOWN_ENTITY_LIMIT)
            )
            if extractor.used_stub:
                extraction_error = extractor.last_error
    except Exception:
        # Nothing stored yet, so a retry may take the session again
        sessions.release_extraction(session.id)
        raise

    stored = event_store.create_events(session.owner_id, session.id, events)
    event_ids = [event.id for event in stored]

    updates: Dict[str, Any] = {"event_ids": event_ids}
    if extraction_error:
        updates["extraction_error"] = extraction_error
    sessions.update_metadata(session.id, updates)

    queue = Queue(GENERATION_QUEUE_NAME, connection=redis_conn)
    rq_job = queue.enqueue(synthesize_media_for_events, session.owner_id, session.id, event_ids)
    logger.info(f"Session {session_id}: {len(event_ids)} events stored, media queued (rq job: {rq_job.id})")
    return f"Extracted {len(event_ids)} events from session {session_id}"


@job(GENERATION_QUEUE_NAME, connection=redis_conn, timeout=120)
def synthesize_media_for_events(owner_id: str, content_id: str, event_ids: List[str]) -> str:
    """Stage B: request media for stored events"""
    events = EventStore(redis_conn).get_many(event_ids)
    if not events:
        logger.error(f"No stored events for content {content_id}, skipping media synthesis")
        return f"No events for content {content_id}"

    result = build_synthesizer(redis_conn).dispatch(owner_id, content_id, events)
    if result.status == "denied":
        logger.info(f"Media synthesis for content {content_id} denied: quota {result.quota.used}/{result.quota.limit}")
    elif result.status == "failed":
        logger.error(f"Media synthesis for content {content_id} failed: {result.error}")
    return f"Media synthesis for content {content_id}: {result.status}"


@job(GENERATION_QUEUE_NAME, connection=redis_conn, timeout=60)
def handle_media_callback(payload: Dict[str, Any]) -> str:
    """Apply a provider callback to its pending media artifact"""
    callback = parse_media_callback(payload)
    if callback is None:
        return "Media callback ignored"

    applied = build_synthesizer(redis_conn).apply_callback(callback)
    outcome = "applied" if applied else "no-op"
    return f"Media callback for task {callback.task_id}: {outcome}"
