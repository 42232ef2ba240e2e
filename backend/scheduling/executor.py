"""
Executor - the periodic tick that turns due schedules into queued jobs

A tick may run more than once for the same minute (overlapping workers,
retried RQ jobs). Each due schedule is claimed with a compare-and-set on its
observed next run before a job is created, so a slot yields at most one job
however many ticks see it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from rq import Queue

from config.settings import CALL_QUEUE_NAME, EXECUTOR_BATCH_LIMIT
from utils.time_utils import ensure_utc, now_utc, to_iso

from .job_tracker import JobTracker
from .models import Job, JobStatus
from .schedule_store import ScheduleStore

logger = logging.getLogger("checkin-executor")


@dataclass
class TickReport:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    job_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "job_ids": list(self.job_ids)
        }


class Executor:
    """Claims due schedule slots and hands the resulting jobs to the call queue"""

    def __init__(
        self,
        schedule_store: ScheduleStore,
        job_tracker: JobTracker,
        call_queue: Queue = None,
        batch_limit: int = None
    ):
        self.schedule_store = schedule_store
        self.job_tracker = job_tracker
        if call_queue is None:
            call_queue = Queue(CALL_QUEUE_NAME, connection=schedule_store.redis_client)
        self.call_queue = call_queue
        self.batch_limit = batch_limit or EXECUTOR_BATCH_LIMIT

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        Process every schedule due at ``now``

        One schedule's failure is logged and counted; it never stops the
        rest of the tick.
        """
        from .tasks import dispatch_call

        now = ensure_utc(now or now_utc())
        report = TickReport()

        due = self.schedule_store.due_schedules(now, limit=self.batch_limit)
        if due:
            logger.info(f"Tick at {to_iso(now)}: {len(due)} schedules due")
        else:
            logger.debug(f"Tick at {to_iso(now)}: nothing due")

        for schedule in due:
            job: Optional[Job] = None
            try:
                slot = schedule.next_run_at
                new_next_run = self.schedule_store.advance(schedule, now)
                if new_next_run is None:
                    logger.info(f"Schedule {schedule.id} slot already claimed, skipping")
                    report.skipped += 1
                    continue

                if slot is None:
                    logger.info(f"Schedule {schedule.id} had no slot, next run set to {to_iso(new_next_run)}")
                    report.skipped += 1
                    continue

                job = self.job_tracker.create_job(schedule, slot, now=now)
                rq_job = self.call_queue.enqueue(dispatch_call, job.id)

                logger.info(
                    f"Queued job {job.id} for schedule {schedule.id} slot {to_iso(slot)} "
                    f"(rq job: {rq_job.id}), next run {to_iso(new_next_run)}"
                )
                report.processed += 1
                report.job_ids.append(job.id)

            except Exception as e:
                report.failed += 1
                logger.error(f"Error processing schedule {schedule.id} for owner {schedule.owner_id}: {e}", exc_info=True)
                if job is not None:
                    self.job_tracker.transition(job.id, JobStatus.FAILED, error=f"Failed to queue call: {e}")

        if due:
            logger.info(
                f"Tick done: {report.processed} processed, {report.skipped} skipped, {report.failed} failed"
            )
        return report
