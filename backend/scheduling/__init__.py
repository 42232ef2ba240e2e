"""
Scheduling module for the check-in service

Contains components for recurring check-in calls:
- Schedule / Job / Session: persisted entities
- ScheduleStore: per-owner schedules and the due index
- JobTracker / SessionStore: per-firing job state machine and call sessions
- Executor: periodic tick turning due schedules into queued jobs
- RQ Tasks: executor tick and call dispatch
"""

from .executor import Executor, TickReport
from .job_tracker import JobTracker, SessionStore
from .models import Cadence, Job, JobStatus, Schedule, Session
from .schedule_store import ScheduleStore

__all__ = [
    "Executor",
    "TickReport",
    "JobTracker",
    "SessionStore",
    "Cadence",
    "Job",
    "JobStatus",
    "Schedule",
    "Session",
    "ScheduleStore"
]
