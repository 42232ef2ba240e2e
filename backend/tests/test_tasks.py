"""
Tests for the scheduling RQ tasks (executor tick and call dispatch)
"""
from unittest.mock import Mock, patch

import pytest

from calls.dispatcher import CallDispatcher
from scheduling import tasks
from scheduling.models import JobStatus


@pytest.fixture
def task_redis(fake_redis):
    with patch.object(tasks, "redis_conn", fake_redis):
        yield fake_redis


class TestDispatchCall:
    """Tests for dispatch_call task"""

    def test_dispatch_success(self, task_redis, job_tracker, mock_adapter, sample_job):
        with patch.object(tasks, "build_dispatcher", side_effect=lambda tracker: CallDispatcher(tracker, adapter=mock_adapter)):
            message = tasks.dispatch_call(sample_job.id)

        assert message == f"Job {sample_job.id} accepted as checkin-{sample_job.id}"
        assert job_tracker.get(sample_job.id).status == JobStatus.SCHEDULED
        assert len(mock_adapter.calls_placed) == 1

    def test_dispatch_failure(self, task_redis, job_tracker, mock_adapter, sample_job):
        mock_adapter.should_fail = True
        mock_adapter.failure_error = "carrier down"

        with patch.object(tasks, "build_dispatcher", side_effect=lambda tracker: CallDispatcher(tracker, adapter=mock_adapter)):
            message = tasks.dispatch_call(sample_job.id)

        assert message == f"Job {sample_job.id} failed: carrier down"
        assert job_tracker.get(sample_job.id).status == JobStatus.FAILED

    def test_missing_job(self, task_redis):
        assert tasks.dispatch_call("missing") == "Job missing not found"

    def test_already_processed(self, task_redis, job_tracker, sample_job):
        job_tracker.transition(sample_job.id, JobStatus.CANCELED)
        build = Mock()

        with patch.object(tasks, "build_dispatcher", build):
            message = tasks.dispatch_call(sample_job.id)

        assert "already processed" in message
        build.assert_not_called()

    def test_missing_schedule_fails_job(self, task_redis, job_tracker, sample_job):
        task_redis.delete(f"checkin:schedules:{sample_job.schedule_id}")

        message = tasks.dispatch_call(sample_job.id)

        assert "not found" in message
        stored = job_tracker.get(sample_job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == f"Schedule {sample_job.schedule_id} not found"

    def test_misconfigured_provider_fails_job(self, task_redis, job_tracker, sample_job):
        with patch.object(tasks, "USE_MOCK_CALLS", False), \
                patch("calls.dispatcher.SIP_OUTBOUND_TRUNK_ID", None):
            message = tasks.dispatch_call(sample_job.id)

        assert "SIP_OUTBOUND_TRUNK_ID" in message
        assert job_tracker.get(sample_job.id).status == JobStatus.FAILED

    def test_mock_calls_setting(self, job_tracker):
        with patch.object(tasks, "USE_MOCK_CALLS", True):
            dispatcher = tasks.build_dispatcher(job_tracker)
        assert dispatcher.adapter.__class__.__name__ == "MockCallAdapter"


class TestRunExecutorTick:

    def test_tick_report(self, task_redis, sample_schedule, mock_queue):
        with patch("scheduling.executor.Queue", return_value=mock_queue), \
                patch("scheduling.executor.now_utc", return_value=sample_schedule.next_run_at):
            report = tasks.run_executor_tick()

        assert report["processed"] == 1
        assert report["failed"] == 0
        assert len(report["job_ids"]) == 1
        mock_queue.enqueue.assert_called_once_with(tasks.dispatch_call, report["job_ids"][0])
