"""
Call handling for scheduled check-ins

- CallDispatcher: places the outbound call for a queued job
- WebhookIngestor: applies provider lifecycle events to jobs and sessions
"""

from .dispatcher import CallDispatcher, DispatchResult
from .events import CallCompleted, CallFailed, CallStarted, parse_call_event

__all__ = [
    "CallDispatcher",
    "DispatchResult",
    "CallCompleted",
    "CallFailed",
    "CallStarted",
    "parse_call_event"
]
