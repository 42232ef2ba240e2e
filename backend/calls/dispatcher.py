"""
Call dispatcher - turns a queued job into an outbound call via the call provider
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from livekit import api

from config.settings import LIVEKIT_AGENT_NAME, SIP_OUTBOUND_TRUNK_ID
from scheduling.job_tracker import JobTracker
from scheduling.models import Job, JobStatus, Schedule

from .context import (
    build_call_context, classify_sip_error, describe_provider_error,
    generate_room_name, prepare_call_metadata
)
from .provider_adapter import CallProviderAdapter, CallRequest, LiveKitCallAdapter

logger = logging.getLogger("call-dispatcher")


@dataclass
class DispatchResult:
    """Outcome of one dispatch attempt"""
    success: bool
    job_id: str
    external_call_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False


class CallDispatcher:
    """
    Places the call for a job and records the outcome on the job.

    Provider failures are captured as a failed job; dispatch never raises.
    """

    def __init__(
        self,
        job_tracker: JobTracker,
        adapter: CallProviderAdapter = None,
        agent_name: str = None,
        trunk_id: str = None
    ):
        """
        Args:
            job_tracker: Tracker used to record attempts and transitions
            adapter: Call provider adapter (defaults to LiveKit)
            agent_name: Agent registration name to dispatch
            trunk_id: Outbound SIP trunk id
        """
        self.job_tracker = job_tracker
        self.agent_name = agent_name or LIVEKIT_AGENT_NAME
        self.trunk_id = trunk_id or SIP_OUTBOUND_TRUNK_ID

        if adapter is None:
            if not self.trunk_id or not self.trunk_id.startswith("ST_"):
                logger.error("SIP_OUTBOUND_TRUNK_ID is not set or invalid")
                raise ValueError("SIP_OUTBOUND_TRUNK_ID must be set and start with 'ST_'")
            adapter = LiveKitCallAdapter()
        self.adapter = adapter

    async def dispatch(self, job: Job, schedule: Schedule) -> DispatchResult:
        """
        Place the outbound call for ``job``

        Args:
            job: The queued job
            schedule: Owning schedule (contact address and timezone)

        Returns:
            DispatchResult describing acceptance or the captured failure
        """
        attempt = self.job_tracker.record_attempt(job.id)
        room_name = generate_room_name(job)

        try:
            context = build_call_context(schedule, job.scheduled_for)
            request = CallRequest(
                job_id=job.id,
                contact=schedule.contact,
                room_name=room_name,
                agent_name=self.agent_name,
                metadata=prepare_call_metadata(job, schedule, context),
                trunk_id=self.trunk_id
            )

            logger.info(f"Dispatching job {job.id} to {schedule.contact} in room {room_name} (attempt {attempt})")
            external_call_id = await self.adapter.dispatch(request)

            if not self.job_tracker.transition(job.id, JobStatus.SCHEDULED, external_call_id=external_call_id):
                logger.info(f"Job {job.id} moved on before acceptance was recorded")

            logger.info(f"Job {job.id} accepted by provider as {external_call_id}")
            return DispatchResult(success=True, job_id=job.id, external_call_id=external_call_id)

        except api.TwirpError as e:
            sip_status = (e.metadata or {}).get('sip_status_code', 'unknown')
            error_msg = f"LiveKit error: {describe_provider_error(e)}"
            logger.error(f"Provider rejected job {job.id}: {error_msg}, SIP status: {sip_status}")
            return self._fail(job, error_msg, classify_sip_error(str(sip_status))[1])

        except Exception as e:
            error_msg = describe_provider_error(e)
            logger.error(f"Error dispatching job {job.id}: {error_msg}", exc_info=True)
            metadata = getattr(e, 'metadata', None) or {}
            retryable = classify_sip_error(str(metadata['sip_status_code']))[1] if 'sip_status_code' in metadata else True
            return self._fail(job, error_msg, retryable)

    def _fail(self, job: Job, error_msg: str, retryable: bool) -> DispatchResult:
        self.job_tracker.transition(job.id, JobStatus.FAILED, error=error_msg)
        return DispatchResult(success=False, job_id=job.id, error=error_msg, retryable=retryable)

    def dispatch_sync(self, job: Job, schedule: Schedule) -> DispatchResult:
        """
        Synchronous wrapper for dispatch (for use in RQ tasks)
        """
        return asyncio.run(self.dispatch(job, schedule))
