"""
RQ worker and executor daemon for the check-in service
"""
import logging
import signal
import time
from datetime import datetime, timezone
from typing import Optional

import redis
from rq import Queue, Worker
from rq_scheduler import Scheduler

from config.redis import create_redis_connection, get_redis_url
from config.settings import CALL_QUEUE_NAME, EXECUTOR_INTERVAL_SECONDS, GENERATION_QUEUE_NAME

from .executor import Executor
from .job_tracker import JobTracker
from .schedule_store import ScheduleStore

logger = logging.getLogger("checkin-worker")

EXECUTOR_TICK_JOB_ID = "checkin-executor-tick"


class CheckinWorker:
    """
    Runs an RQ worker over the call and generation queues
    """

    def __init__(self, redis_conn: redis.Redis = None):
        self.redis_conn = redis_conn or create_redis_connection()
        self.call_queue = Queue(CALL_QUEUE_NAME, connection=self.redis_conn)
        self.generation_queue = Queue(GENERATION_QUEUE_NAME, connection=self.redis_conn)
        self.worker: Optional[Worker] = None
        self.running = False

        # Set up signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.stop()

    def start_worker(self, worker_name: Optional[str] = None):
        """
        Start processing jobs; call dispatch is served before generation work

        Args:
            worker_name: Optional name for the worker (defaults to a timestamped name)
        """
        if self.running:
            logger.warning("Worker is already running")
            return

        logger.info("Starting check-in worker...")
        self.worker = Worker(
            [self.call_queue, self.generation_queue],
            connection=self.redis_conn,
            name=worker_name or f"checkin-worker-{int(time.time())}"
        )
        self.running = True

        try:
            self.worker.work(with_scheduler=True, logging_level=logging.INFO)
        except KeyboardInterrupt:
            logger.info("Worker interrupted by user")
        finally:
            self.running = False
            logger.info("Worker stopped")

    def stop(self):
        if self.worker and self.running:
            logger.info("Stopping worker...")
            self.worker.request_stop(signal.SIGTERM, None)
            self.running = False
        else:
            logger.info("Worker not running")

    def get_worker_stats(self) -> dict:
        """Queue depths and registry sizes for both queues"""
        stats = {"worker_count": len(Worker.all(connection=self.redis_conn)), "is_running": self.running}
        for queue in (self.call_queue, self.generation_queue):
            stats[queue.name] = {
                "queue_size": len(queue),
                "failed_jobs": len(queue.failed_job_registry),
                "finished_jobs": len(queue.finished_job_registry),
                "started_jobs": len(queue.started_job_registry),
                "scheduled_jobs": len(queue.scheduled_job_registry),
            }
        return stats


def register_recurring_tick(redis_conn: redis.Redis, interval: int = EXECUTOR_INTERVAL_SECONDS) -> Scheduler:
    """
    Register the executor tick with rq-scheduler, replacing any earlier registration

    Requires an ``rqscheduler`` process to move the tick onto the call queue.
    """
    from .tasks import run_executor_tick

    scheduler = Scheduler(queue_name=CALL_QUEUE_NAME, connection=redis_conn)
    for scheduled in scheduler.get_jobs():
        if scheduled.id == EXECUTOR_TICK_JOB_ID:
            scheduler.cancel(scheduled)

    scheduler.schedule(
        scheduled_time=datetime.now(timezone.utc),
        func=run_executor_tick,
        interval=interval,
        repeat=None,  # Repeat indefinitely
        id=EXECUTOR_TICK_JOB_ID
    )
    logger.info(f"Registered executor tick every {interval}s")
    return scheduler


class ExecutorDaemon:
    """
    Plain loop running the executor tick in-process
    """

    def __init__(self, redis_conn: redis.Redis = None, executor: Executor = None):
        self.redis_conn = redis_conn or create_redis_connection()
        self.executor = executor or Executor(ScheduleStore(self.redis_conn), JobTracker(self.redis_conn))
        self.running = False

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        logger.info(f"Executor daemon received signal {signum}, shutting down...")
        self.running = False

    def _sleep(self, seconds: int):
        # Short naps so a shutdown signal is honoured promptly
        deadline = time.monotonic() + seconds
        while self.running and time.monotonic() < deadline:
            time.sleep(min(1.0, deadline - time.monotonic()))

    def run(self, check_interval: int = EXECUTOR_INTERVAL_SECONDS):
        logger.info(f"Starting executor daemon (ticking every {check_interval}s)")
        self.running = True

        while self.running:
            try:
                self.executor.tick()
            except redis.RedisError as e:
                logger.error(f"Redis error during tick: {e}")
            except Exception as e:
                logger.error(f"Error in executor daemon: {e}", exc_info=True)
            self._sleep(check_interval)

        logger.info("Executor daemon stopped")


def main():
    """
    Run the worker, the executor loop, or register the recurring tick
    """
    import argparse
    import multiprocessing

    parser = argparse.ArgumentParser(description="Check-in scheduling worker")
    parser.add_argument(
        "mode",
        choices=["worker", "executor", "schedule", "both"],
        help="worker (process jobs), executor (tick loop), schedule (register tick with rq-scheduler), or both"
    )
    parser.add_argument(
        "--check-interval",
        type=int,
        default=EXECUTOR_INTERVAL_SECONDS,
        help=f"Executor tick interval in seconds (default: {EXECUTOR_INTERVAL_SECONDS})"
    )
    parser.add_argument("--worker-name", help="Name for the worker process")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.mode == "worker":
        CheckinWorker().start_worker(worker_name=args.worker_name)

    elif args.mode == "executor":
        ExecutorDaemon().run(check_interval=args.check_interval)

    elif args.mode == "schedule":
        register_recurring_tick(create_redis_connection(), interval=args.check_interval)
        logger.info(f"Run `rqscheduler --url {get_redis_url()}` to move the tick onto the queue")

    elif args.mode == "both":
        def run_worker():
            CheckinWorker().start_worker(worker_name=args.worker_name)

        def run_executor():
            ExecutorDaemon().run(check_interval=args.check_interval)

        worker_process = multiprocessing.Process(target=run_worker)
        executor_process = multiprocessing.Process(target=run_executor)

        try:
            worker_process.start()
            executor_process.start()
            worker_process.join()
            executor_process.join()
        except KeyboardInterrupt:
            logger.info("Shutting down both processes...")
            worker_process.terminate()
            executor_process.terminate()
            worker_process.join()
            executor_process.join()


if __name__ == "__main__":
    main()
