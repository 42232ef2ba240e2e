"""
Tests for WebhookIngestor: idempotent lifecycle updates and the generation hand-off
"""
import pytest
import redis

from calls.events import CallCompleted, CallFailed, CallStarted
from calls.webhook_ingestor import WebhookIngestor, is_adverse_disposition
from pipeline.tasks import extract_session_events
from scheduling.models import JobStatus


@pytest.fixture
def ingestor(job_tracker, session_store, mock_queue):
    return WebhookIngestor(job_tracker, session_store, generation_queue=mock_queue)


@pytest.fixture
def dispatched_job(job_tracker, sample_job):
    """A job the provider accepted as checkin-<job id>"""
    job_tracker.transition(sample_job.id, JobStatus.SCHEDULED, external_call_id=f"checkin-{sample_job.id}")
    return job_tracker.get(sample_job.id)


class TestLifecycle:

    def test_started_then_completed(self, ingestor, job_tracker, session_store, mock_queue, dispatched_job):
        call_id = dispatched_job.external_call_id

        started = ingestor.ingest(CallStarted(external_call_id=call_id))
        completed = ingestor.ingest(CallCompleted(
            external_call_id=call_id, duration_sec=240, metadata={"transcript": "User: good day"}
        ))

        assert started.action == "started"
        assert completed.action == "completed"
        assert completed.session_id == started.session_id
        assert job_tracker.get(dispatched_job.id).status == JobStatus.COMPLETED

        session = session_store.get(completed.session_id)
        assert session.duration_seconds == 240
        assert session.metadata["transcript"] == "User: good day"
        mock_queue.enqueue.assert_called_once_with(extract_session_events, session.id)

    def test_duplicate_completion_is_noop(self, ingestor, mock_queue, dispatched_job):
        event = CallCompleted(external_call_id=dispatched_job.external_call_id)

        first = ingestor.ingest(event)
        second = ingestor.ingest(event)

        assert first.applied is True
        assert second.applied is False
        assert second.action == "duplicate"
        assert mock_queue.enqueue.call_count == 1

    def test_late_start_after_completion(self, ingestor, job_tracker, dispatched_job):
        ingestor.ingest(CallCompleted(external_call_id=dispatched_job.external_call_id))
        result = ingestor.ingest(CallStarted(external_call_id=dispatched_job.external_call_id))

        assert result.action == "duplicate"
        assert job_tracker.get(dispatched_job.id).status == JobStatus.COMPLETED

    def test_failure_then_completion(self, ingestor, job_tracker, mock_queue, dispatched_job):
        ingestor.ingest(CallFailed(external_call_id=dispatched_job.external_call_id, reason="SIP 486"))
        result = ingestor.ingest(CallCompleted(external_call_id=dispatched_job.external_call_id))

        assert result.applied is False
        stored = job_tracker.get(dispatched_job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "SIP 486"
        mock_queue.enqueue.assert_not_called()

    @pytest.mark.parametrize("disposition", ["no-answer", "busy", "voicemail", "no_answer"])
    def test_adverse_disposition_fails_job(self, ingestor, job_tracker, session_store, mock_queue,
                                           dispatched_job, disposition):
        result = ingestor.ingest(CallCompleted(
            external_call_id=dispatched_job.external_call_id, disposition=disposition, duration_sec=0
        ))

        assert result.action == "failed"
        assert job_tracker.get(dispatched_job.id).status == JobStatus.FAILED
        assert session_store.get(result.session_id).disposition == disposition
        mock_queue.enqueue.assert_not_called()

    def test_failed_without_session_creates_none(self, ingestor, session_store, dispatched_job):
        result = ingestor.ingest(CallFailed(external_call_id=dispatched_job.external_call_id))

        assert result.applied is True
        assert result.session_id is None
        assert session_store.get_by_job(dispatched_job.id) is None


class TestCallLookup:

    def test_unknown_call_dropped(self, ingestor):
        result = ingestor.ingest(CallStarted(external_call_id="call-nobody"))
        assert result.action == "unknown_call"

    def test_room_name_before_acceptance(self, ingestor, job_tracker, sample_job):
        """A webhook for a room whose dispatch has not been recorded yet still finds the job"""
        result = ingestor.ingest(CallStarted(external_call_id=f"checkin-{sample_job.id}"))

        assert result.action == "started"
        stored = job_tracker.get(sample_job.id)
        assert stored.status == JobStatus.STARTED
        assert stored.external_call_id == f"checkin-{sample_job.id}"

    def test_raw_livekit_payload(self, ingestor, job_tracker, dispatched_job):
        result = ingestor.ingest_payload({
            "event": "room_finished",
            "room": {"name": dispatched_job.external_call_id, "metadata": ""},
        })
        assert result.action == "completed"

    def test_ignored_payload(self, ingestor):
        assert ingestor.ingest_payload({"type": "ringing", "external_call_id": "x"}).action == "ignored"

    def test_numeric_call_id_dropped(self, ingestor, job_tracker, sample_job):
        result = ingestor.ingest_payload({"type": "started", "callId": 12345})

        assert result.action == "unknown_call"
        assert job_tracker.get(sample_job.id).status == JobStatus.QUEUED


class TestHandOff:

    def test_queue_error_recorded_on_session(self, ingestor, session_store, mock_queue, dispatched_job):
        mock_queue.enqueue.side_effect = redis.ConnectionError("down")

        result = ingestor.ingest(CallCompleted(external_call_id=dispatched_job.external_call_id))

        assert result.applied is True
        session = session_store.get(result.session_id)
        assert "Failed to queue extraction" in session.metadata["generation_error"]


class TestAdverseDisposition:

    @pytest.mark.parametrize("value, expected", [
        ("completed", False),
        ("", False),
        (None, False),
        ("NO_ANSWER", True),
        (" Busy ", True),
    ])
    def test_is_adverse(self, value, expected):
        assert is_adverse_disposition(value) is expected
