"""
Tests for worker functionality
"""
from unittest.mock import Mock, patch

from scheduling.executor import TickReport
from scheduling.worker import EXECUTOR_TICK_JOB_ID, CheckinWorker, ExecutorDaemon, register_recurring_tick


class TestCheckinWorker:
    """Tests for CheckinWorker class"""

    def test_init(self, fake_redis):
        worker = CheckinWorker(redis_conn=fake_redis)

        assert worker.call_queue.name == "checkin_calls"
        assert worker.generation_queue.name == "checkin_generation"
        assert worker.running is False
        assert worker.worker is None

    @patch("scheduling.worker.Worker")
    def test_start_worker_serves_both_queues(self, mock_worker_class, fake_redis):
        mock_worker_instance = Mock()
        mock_worker_class.return_value = mock_worker_instance

        worker = CheckinWorker(redis_conn=fake_redis)
        worker.start_worker("test-worker")

        queues = mock_worker_class.call_args[0][0]
        assert [q.name for q in queues] == ["checkin_calls", "checkin_generation"]
        assert mock_worker_class.call_args.kwargs["name"] == "test-worker"
        mock_worker_instance.work.assert_called_once_with(with_scheduler=True, logging_level=20)
        assert worker.running is False

    def test_stop_requests_worker_shutdown(self, fake_redis):
        worker = CheckinWorker(redis_conn=fake_redis)
        worker.worker = Mock()
        worker.running = True

        worker.stop()

        worker.worker.request_stop.assert_called_once()
        assert worker.running is False

    def test_get_worker_stats(self, fake_redis):
        worker = CheckinWorker(redis_conn=fake_redis)

        with patch("scheduling.worker.Worker.all", return_value=[Mock(), Mock()]):
            stats = worker.get_worker_stats()

        assert stats["worker_count"] == 2
        assert stats["checkin_calls"]["queue_size"] == 0
        assert stats["checkin_generation"]["failed_jobs"] == 0


class TestRegisterRecurringTick:

    @patch("scheduling.worker.Scheduler")
    def test_replaces_existing_registration(self, mock_scheduler_class, fake_redis):
        scheduler = Mock()
        old_tick = Mock(id=EXECUTOR_TICK_JOB_ID)
        other = Mock(id="something-else")
        scheduler.get_jobs.return_value = [old_tick, other]
        mock_scheduler_class.return_value = scheduler

        register_recurring_tick(fake_redis, interval=30)

        scheduler.cancel.assert_called_once_with(old_tick)
        kwargs = scheduler.schedule.call_args.kwargs
        assert kwargs["interval"] == 30
        assert kwargs["repeat"] is None
        assert kwargs["id"] == EXECUTOR_TICK_JOB_ID
        assert kwargs["func"].__name__ == "run_executor_tick"


class TestExecutorDaemon:

    def test_run_ticks_until_stopped(self, fake_redis):
        executor = Mock()
        daemon = ExecutorDaemon(redis_conn=fake_redis, executor=executor)

        def tick():
            daemon.running = False
            return TickReport()

        executor.tick.side_effect = tick
        daemon.run(check_interval=1)

        executor.tick.assert_called_once()
        assert daemon.running is False

    def test_redis_error_does_not_stop_loop(self, fake_redis):
        import redis

        executor = Mock()
        daemon = ExecutorDaemon(redis_conn=fake_redis, executor=executor)
        calls = []

        def tick():
            calls.append(1)
            if len(calls) == 1:
                raise redis.ConnectionError("blip")
            daemon.running = False

        executor.tick.side_effect = tick
        with patch("scheduling.worker.time.sleep"):
            daemon.run(check_interval=0)

        assert len(calls) == 2

    def test_unexpected_error_does_not_stop_loop(self, fake_redis):
        executor = Mock()
        daemon = ExecutorDaemon(redis_conn=fake_redis, executor=executor)
        calls = []

        def tick():
            calls.append(1)
            if len(calls) == 1:
                raise ValueError("Invalid isoformat string: 'garbage'")
            daemon.running = False

        executor.tick.side_effect = tick
        with patch("scheduling.worker.time.sleep"):
            daemon.run(check_interval=0)

        assert len(calls) == 2
