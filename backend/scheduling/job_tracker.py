"""
JobTracker - per-firing job state machine, and the call sessions attached to jobs

Job statuses only move forward:

    queued -> scheduled -> started -> completed | failed
    queued | scheduled -> canceled

Transitions out of a terminal status are logged and ignored.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import redis

from config.settings import KEY_PREFIX
from utils.redis_atomic import AtomicRedisOperations, create_atomic_redis_ops
from utils.time_utils import ensure_utc, now_utc, to_epoch, to_iso

from .models import Job, JobStatus, Schedule, Session

logger = logging.getLogger("job-tracker")

# Statuses a job may be in for each target status to be applied
ALLOWED_TRANSITIONS = {
    JobStatus.SCHEDULED: {JobStatus.QUEUED},
    # The provider can report the call as started before the dispatcher
    # records acceptance
    JobStatus.STARTED: {JobStatus.QUEUED, JobStatus.SCHEDULED},
    JobStatus.COMPLETED: {JobStatus.QUEUED, JobStatus.SCHEDULED, JobStatus.STARTED},
    JobStatus.FAILED: {JobStatus.QUEUED, JobStatus.SCHEDULED, JobStatus.STARTED},
    JobStatus.CANCELED: {JobStatus.QUEUED, JobStatus.SCHEDULED},
}


class JobTracker:
    """Creates jobs and applies atomic, forward-only status transitions"""

    def __init__(self, redis_client: redis.Redis, atomic_ops: AtomicRedisOperations = None):
        self.redis_client = redis_client
        self.atomic_ops = atomic_ops or create_atomic_redis_ops(redis_client)
        self.jobs_key = f"{KEY_PREFIX}:jobs"
        self.external_index_key = f"{self.jobs_key}:by_external_id"

    def _job_key(self, job_id: str) -> str:
        return f"{self.jobs_key}:{job_id}"

    def _owner_index_key(self, owner_id: str) -> str:
        return f"{self.jobs_key}:owner:{owner_id}"

    def create_job(self, schedule: Schedule, scheduled_for: datetime, now: Optional[datetime] = None) -> Job:
        """Persist a new queued job for one schedule slot"""
        now = ensure_utc(now or now_utc())
        job = Job(
            schedule_id=schedule.id,
            owner_id=schedule.owner_id,
            scheduled_for=ensure_utc(scheduled_for),
            status=JobStatus.QUEUED,
            created_at=now,
            updated_at=now
        )

        pipe = self.redis_client.pipeline()
        pipe.hset(self._job_key(job.id), mapping=job.to_dict())
        pipe.zadd(self._owner_index_key(job.owner_id), {job.id: to_epoch(now)})
        pipe.execute()

        logger.info(f"Created job {job.id} for schedule {schedule.id} slot {to_iso(job.scheduled_for)}")
        return job

    def get(self, job_id: str) -> Optional[Job]:
        data = self.redis_client.hgetall(self._job_key(job_id))
        if not data:
            return None
        return Job.from_dict(data)

    def find_by_external_id(self, external_call_id: str) -> Optional[Job]:
        job_id = self.redis_client.hget(self.external_index_key, external_call_id)
        if not job_id:
            return None
        return self.get(job_id)

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        external_call_id: Optional[str] = None,
        error: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Apply a status transition if the state machine allows it

        Args:
            job_id: Job to update
            status: Target status
            external_call_id: Provider call id to record (and index) with the change
            error: Error text recorded with the change

        Returns:
            True if the job changed, False if the transition was a no-op
        """
        applied, previous = self.atomic_ops.transition_job(
            job_key=self._job_key(job_id),
            external_index_key=self.external_index_key,
            job_id=job_id,
            new_status=status.value,
            allowed_from=[s.value for s in ALLOWED_TRANSITIONS[status]],
            updated_at=to_iso(now or now_utc()),
            external_call_id=external_call_id,
            error=error
        )

        if applied:
            logger.info(f"Job {job_id}: {previous} -> {status.value}")
        elif previous is None:
            logger.warning(f"Job {job_id} not found, ignoring transition to {status.value}")
        elif JobStatus(previous).is_terminal:
            logger.info(f"Job {job_id} already {previous}, ignoring transition to {status.value}")
        else:
            logger.info(f"Job {job_id} is {previous}, transition to {status.value} not allowed")

        return applied

    def record_attempt(self, job_id: str, now: Optional[datetime] = None) -> int:
        """Count one dispatch try, regardless of its outcome"""
        count = self.atomic_ops.increment_attempt(self._job_key(job_id), to_iso(now or now_utc()))
        if count < 0:
            logger.warning(f"Cannot record attempt for missing job {job_id}")
        return count

    def list_jobs(self, owner_id: str, limit: int = 20) -> List[Job]:
        """Most recent jobs for an owner, newest first"""
        job_ids = self.redis_client.zrevrange(self._owner_index_key(owner_id), 0, limit - 1)
        jobs = []
        for job_id in job_ids:
            job = self.get(job_id)
            if job:
                jobs.append(job)
        return jobs

    def job_stats(self, owner_id: str) -> Dict[str, Any]:
        """Counts per status plus the most recent failure reason"""
        job_ids = self.redis_client.zrevrange(self._owner_index_key(owner_id), 0, -1)
        counts = {status.value: 0 for status in JobStatus}
        last_error = None

        for job_id in job_ids:
            job = self.get(job_id)
            if not job:
                continue
            counts[job.status.value] += 1
            if last_error is None and job.status == JobStatus.FAILED and job.error:
                last_error = job.error

        return {
            "total": sum(counts.values()),
            "by_status": counts,
            "last_error": last_error
        }


class SessionStore:
    """
    Call sessions, one per job, written only by the webhook ingestor

    The job -> session index is claimed with HSETNX so concurrent start and
    finish deliveries converge on the same session.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client
        self.sessions_key = f"{KEY_PREFIX}:sessions"
        self.job_index_key = f"{self.sessions_key}:by_job"
        self.extraction_claims_key = f"{self.sessions_key}:extraction_claims"

    def _session_key(self, session_id: str) -> str:
        return f"{self.sessions_key}:{session_id}"

    def _owner_index_key(self, owner_id: str) -> str:
        return f"{self.sessions_key}:owner:{owner_id}"

    def get(self, session_id: str) -> Optional[Session]:
        data = self.redis_client.hgetall(self._session_key(session_id))
        if not data:
            return None
        return Session.from_dict(data)

    def get_by_job(self, job_id: str) -> Optional[Session]:
        session_id = self.redis_client.hget(self.job_index_key, job_id)
        if not session_id:
            return None
        return self.get(session_id)

    def _get_or_create(self, job: Job, external_call_id: str, now: datetime) -> Session:
        candidate = Session(job_id=job.id, owner_id=job.owner_id, external_call_id=external_call_id,
                            created_at=now, updated_at=now)
        if self.redis_client.hsetnx(self.job_index_key, job.id, candidate.id):
            self.redis_client.zadd(self._owner_index_key(job.owner_id), {candidate.id: to_epoch(now)})
            logger.info(f"Created session {candidate.id} for job {job.id}")
            return candidate

        session_id = self.redis_client.hget(self.job_index_key, job.id)
        existing = self.get(session_id)
        if existing is None:
            # Claimed by a concurrent delivery that has not written the hash yet
            candidate.id = session_id
            return candidate
        return existing

    def _save(self, session: Session):
        self.redis_client.hset(self._session_key(session.id), mapping=session.to_dict())

    def start_session(
        self,
        job: Job,
        external_call_id: str,
        started_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Session:
        now = now_utc()
        session = self._get_or_create(job, external_call_id, now)
        if session.started_at is None:
            session.started_at = ensure_utc(started_at or now)
        if metadata:
            session.metadata.update(metadata)
        session.updated_at = now
        self._save(session)
        return session

    def finish_session(
        self,
        job: Job,
        external_call_id: str,
        disposition: Optional[str] = None,
        duration_seconds: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ended_at: Optional[datetime] = None
    ) -> Session:
        """
        Record the end of a call, creating the session if the start was never seen
        """
        now = now_utc()
        session = self._get_or_create(job, external_call_id, now)
        session.ended_at = ensure_utc(ended_at or now)
        session.disposition = disposition or "completed"
        if duration_seconds is not None:
            session.duration_seconds = int(duration_seconds)
        session.calculate_duration()
        if metadata:
            session.metadata.update(metadata)
        session.updated_at = now
        self._save(session)

        logger.info(f"Finished session {session.id} for job {job.id}: {session.disposition}, {session.duration_seconds}s")
        return session

    def update_metadata(self, session_id: str, updates: Dict[str, Any]) -> Optional[Session]:
        session = self.get(session_id)
        if session is None:
            logger.warning(f"Session {session_id} not found for metadata update")
            return None
        session.metadata.update(updates)
        session.updated_at = now_utc()
        self._save(session)
        return session

    def claim_extraction(self, session_id: str, claimed_by: str) -> bool:
        """Mark the session as being extracted; False if another run holds it"""
        return bool(self.redis_client.hsetnx(self.extraction_claims_key, session_id, claimed_by))

    def release_extraction(self, session_id: str):
        self.redis_client.hdel(self.extraction_claims_key, session_id)

    def list_sessions(self, owner_id: str, limit: int = 20) -> List[Session]:
        session_ids = self.redis_client.zrevrange(self._owner_index_key(owner_id), 0, limit - 1)
        sessions = []
        for session_id in session_ids:
            session = self.get(session_id)
            if session:
                sessions.append(session)
        return sessions
