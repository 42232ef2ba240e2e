"""
Business logic for call dispatch - pure functions with no external dependencies

Renders the conversational context handed to the voice agent. Every value
interpolated into agent instructions is sanitized here first.
"""
import logging
import re
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from config.settings import (
    AGENT_DISPLAY_NAME, LOCAL_TIME_MAX_LENGTH, OWNER_NAME_MAX_LENGTH, WEEKDAY_LABEL_MAX_LENGTH
)
from scheduling.models import Job, Schedule
from utils.time_utils import format_local_time, to_local

logger = logging.getLogger("call-context")

ROOM_NAME_PREFIX = "checkin-"
DEFAULT_OWNER_NAME = "there"
WEEKEND_LABEL = "Weekend"

CONTROL_CHARACTERS = re.compile("[\x00-\x1f\x7f-\x9f\u200b-\u200f\u2028-\u202e\u2066-\u2069\ufeff]")
WHITESPACE_RUN = re.compile(r"\s+")


def sanitize_prompt_value(value: Optional[str], max_length: int, default: str = "") -> str:
    """
    Make a user-controlled string safe to embed in agent instructions

    Control and bidi/zero-width characters become spaces, whitespace runs
    collapse, and the result is capped at ``max_length``.
    """
    cleaned = CONTROL_CHARACTERS.sub(" ", value or "")
    cleaned = WHITESPACE_RUN.sub(" ", cleaned).strip()
    cleaned = cleaned[:max_length].rstrip()
    return cleaned or default


def weekday_label(local_dt: datetime) -> str:
    """Weekday name, with Saturday and Sunday both reported as "Weekend" """
    if local_dt.weekday() >= 5:
        return WEEKEND_LABEL
    return local_dt.strftime("%A")


@dataclass
class CallContext:
    """Sanitized values the agent can greet the owner with"""
    owner_name: str
    local_time: str
    weekday: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def build_call_context(schedule: Schedule, at: datetime) -> CallContext:
    """
    Render the context for a call placed at ``at`` in the schedule's timezone
    """
    local_dt = to_local(at, schedule.timezone)
    return CallContext(
        owner_name=sanitize_prompt_value(schedule.owner_name, OWNER_NAME_MAX_LENGTH, DEFAULT_OWNER_NAME),
        local_time=sanitize_prompt_value(format_local_time(at, schedule.timezone), LOCAL_TIME_MAX_LENGTH),
        weekday=sanitize_prompt_value(weekday_label(local_dt), WEEKDAY_LABEL_MAX_LENGTH)
    )


def build_agent_instructions(context: CallContext) -> str:
    """System instructions for the check-in agent"""
    return (
        f"You are {AGENT_DISPLAY_NAME}, a warm companion calling for a short daily check-in. "
        f"You are speaking with {context.owner_name}. "
        f"It is {context.local_time} for them ({context.weekday}). "
        "Ask how their day went, listen, and reflect back what you hear. "
        "Keep the call under ten minutes and end it kindly."
    )


def prepare_call_metadata(job: Job, schedule: Schedule, context: CallContext) -> Dict[str, Any]:
    """Metadata attached to the agent dispatch"""
    return {
        "job_id": job.id,
        "schedule_id": schedule.id,
        "owner_id": job.owner_id,
        "context": context.to_dict(),
        "instructions": build_agent_instructions(context)
    }


def generate_room_name(job: Job) -> str:
    return f"{ROOM_NAME_PREFIX}{job.id}"


def job_id_from_room_name(room_name: str) -> Optional[str]:
    """Recover the job id from a room created by generate_room_name"""
    if isinstance(room_name, str) and room_name.startswith(ROOM_NAME_PREFIX) and len(room_name) > len(ROOM_NAME_PREFIX):
        return room_name[len(ROOM_NAME_PREFIX):]
    return None


def classify_sip_error(sip_status_code: str) -> Tuple[str, bool]:
    """
    Classify SIP error code into human-readable message and retryability

    Returns:
        Tuple of (human_readable_message, is_retryable)
    """
    status_meanings = {
        '486': ('Phone was busy', True),
        '487': ('Call was cancelled or timed out', True),
        '408': ('No answer - call timed out', True),
        '480': ('Phone temporarily unavailable', True),
        '503': ('Service temporarily unavailable', True),
        '404': ('Phone number not found', False),
        '603': ('Call declined', False),
        '410': ('Phone number no longer in service', False)
    }

    return status_meanings.get(sip_status_code, (f'SIP error {sip_status_code}', True))


def describe_provider_error(error: Exception) -> str:
    """Error text recorded on a failed job"""
    message = getattr(error, 'message', None) or str(error) or error.__class__.__name__
    metadata = getattr(error, 'metadata', None) or {}
    sip_status = metadata.get('sip_status_code')
    if sip_status:
        meaning, _ = classify_sip_error(str(sip_status))
        return f"{meaning} (SIP {sip_status}): {message}"
    return message
