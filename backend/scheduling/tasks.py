"""
RQ tasks for the check-in schedule: the executor tick and call dispatch
"""
import logging

from rq.decorators import job

from config.redis import create_redis_connection
from config.settings import CALL_QUEUE_NAME, USE_MOCK_CALLS

from .executor import Executor
from .job_tracker import JobTracker
from .models import JobStatus
from .schedule_store import ScheduleStore

logger = logging.getLogger("checkin-tasks")

# Redis connection for RQ
redis_conn = create_redis_connection()


def build_dispatcher(job_tracker: JobTracker):
    from calls.dispatcher import CallDispatcher
    from calls.provider_adapter import create_call_adapter

    adapter = create_call_adapter(mock=True) if USE_MOCK_CALLS else None
    return CallDispatcher(job_tracker, adapter=adapter)


@job(CALL_QUEUE_NAME, connection=redis_conn, timeout=120)
def run_executor_tick() -> dict:
    """
    RQ task running one executor tick

    Returns:
        The tick report as a dict
    """
    executor = Executor(ScheduleStore(redis_conn), JobTracker(redis_conn))
    report = executor.tick()
    return report.to_dict()


@job(CALL_QUEUE_NAME, connection=redis_conn, timeout=300)
def dispatch_call(job_id: str) -> str:
    """
    RQ task placing the outbound call for a queued job

    Args:
        job_id: The check-in job to dispatch

    Returns:
        Status message indicating the result
    """
    job_tracker = JobTracker(redis_conn)
    checkin_job = job_tracker.get(job_id)
    if checkin_job is None:
        logger.error(f"Job {job_id} not found")
        return f"Job {job_id} not found"

    if checkin_job.status != JobStatus.QUEUED:
        logger.warning(f"Job {job_id} is not queued (status: {checkin_job.status.value})")
        return f"Job {job_id} already processed"

    schedule = ScheduleStore(redis_conn).get_by_id(checkin_job.schedule_id)
    if schedule is None:
        error_msg = f"Schedule {checkin_job.schedule_id} not found"
        logger.error(f"{error_msg} for job {job_id}")
        job_tracker.transition(job_id, JobStatus.FAILED, error=error_msg)
        return error_msg

    try:
        dispatcher = build_dispatcher(job_tracker)
    except ValueError as e:
        logger.error(f"Cannot dispatch job {job_id}: {e}")
        job_tracker.transition(job_id, JobStatus.FAILED, error=str(e))
        return f"Job {job_id} failed: {e}"

    result = dispatcher.dispatch_sync(checkin_job, schedule)
    if result.success:
        return f"Job {job_id} accepted as {result.external_call_id}"
    return f"Job {job_id} failed: {result.error}"
