"""
Call provider events

Provider webhook payloads are translated here into a small tagged union so
the ingestor's state machine never sees transport details. Two payload shapes
are understood:

- LiveKit room webhooks (``participant_joined``, ``participant_left``,
  ``room_finished``) where the room name is the external call id
- A generic envelope ``{"type": "started" | "completed" | "failed", ...}``
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .provider_adapter import OWNER_PARTICIPANT_IDENTITY

logger = logging.getLogger("call-events")

# LiveKit disconnect reasons that mean the owner never had a conversation
ADVERSE_DISCONNECT_REASONS = {
    "USER_UNAVAILABLE",
    "USER_REJECTED",
    "SIP_TRUNK_FAILURE",
    "JOIN_FAILURE",
}


@dataclass(frozen=True)
class CallStarted:
    external_call_id: str
    occurred_at: Optional[datetime] = None


@dataclass(frozen=True)
class CallCompleted:
    external_call_id: str
    disposition: str = "completed"
    duration_sec: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    occurred_at: Optional[datetime] = None


@dataclass(frozen=True)
class CallFailed:
    external_call_id: str
    reason: str = "Call failed"
    occurred_at: Optional[datetime] = None


CallEvent = Union[CallStarted, CallCompleted, CallFailed]


def _pick(data: Dict[str, Any], *names: str, default=None):
    """First present key among camelCase / snake_case spellings"""
    for name in names:
        if name in data and data[name] not in (None, ""):
            return data[name]
    return default


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _epoch_to_datetime(value) -> Optional[datetime]:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _decode_metadata(raw) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Room metadata is not JSON, keeping it as raw text")
        return {"raw": raw}
    return decoded if isinstance(decoded, dict) else {"raw": decoded}


def _parse_livekit(payload: Dict[str, Any]) -> Optional[CallEvent]:
    event_name = payload.get("event")
    room = payload.get("room")
    if not isinstance(room, dict):
        room = {}
    room_name = _pick(room, "name")
    if not room_name:
        logger.warning(f"LiveKit {event_name} webhook without room name")
        return None
    room_name = str(room_name)

    occurred_at = _epoch_to_datetime(_pick(payload, "createdAt", "created_at"))
    participant = payload.get("participant")
    if not isinstance(participant, dict):
        participant = {}
    is_owner = (
        _pick(participant, "identity") == OWNER_PARTICIPANT_IDENTITY
        or str(_pick(participant, "kind", default="")).upper() == "SIP"
    )

    if event_name == "participant_joined":
        if not is_owner:
            return None
        return CallStarted(external_call_id=room_name, occurred_at=occurred_at)

    if event_name == "participant_left":
        reason = str(_pick(participant, "disconnectReason", "disconnect_reason", default=""))
        if is_owner and reason.upper() in ADVERSE_DISCONNECT_REASONS:
            return CallFailed(external_call_id=room_name, reason=f"Call not connected: {reason}", occurred_at=occurred_at)
        return None

    if event_name == "room_finished":
        created = _epoch_to_datetime(_pick(room, "creationTime", "creation_time"))
        duration = None
        if created and occurred_at:
            duration = max(0, int((occurred_at - created).total_seconds()))
        return CallCompleted(
            external_call_id=room_name,
            disposition="completed",
            duration_sec=duration,
            metadata=_decode_metadata(_pick(room, "metadata")),
            occurred_at=occurred_at
        )

    return None


def _parse_generic(payload: Dict[str, Any]) -> Optional[CallEvent]:
    event_type = str(payload.get("type", "")).lower()
    external_call_id = _pick(payload, "external_call_id", "externalCallId", "call_id", "callId")
    if not external_call_id:
        logger.warning(f"Call event '{event_type}' without external call id")
        return None
    external_call_id = str(external_call_id)

    occurred_at = None
    if payload.get("occurred_at"):
        try:
            occurred_at = datetime.fromisoformat(payload["occurred_at"])
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unparseable occurred_at {payload['occurred_at']!r}")

    if event_type == "started":
        return CallStarted(external_call_id=external_call_id, occurred_at=occurred_at)

    if event_type == "completed":
        duration = _pick(payload, "duration_sec", "durationSec", "duration_seconds")
        return CallCompleted(
            external_call_id=external_call_id,
            disposition=str(_pick(payload, "disposition", "ended_reason", "endedReason", default="completed")),
            duration_sec=_int_or_none(duration),
            metadata=_decode_metadata(payload.get("metadata")),
            occurred_at=occurred_at
        )

    if event_type == "failed":
        return CallFailed(
            external_call_id=external_call_id,
            reason=str(_pick(payload, "reason", "error", default="Call failed")),
            occurred_at=occurred_at
        )

    return None


def parse_call_event(payload: Dict[str, Any]) -> Optional[CallEvent]:
    """
    Translate a provider webhook payload into a CallEvent

    Returns:
        The event, or None for payloads that carry no lifecycle change
        (agent joins, informational room events, unknown types)
    """
    if not isinstance(payload, dict):
        logger.warning(f"Ignoring non-object call event payload: {type(payload).__name__}")
        return None

    if "event" in payload and "room" in payload:
        event = _parse_livekit(payload)
    elif "type" in payload:
        event = _parse_generic(payload)
    else:
        logger.warning(f"Unrecognized call event payload keys: {sorted(payload.keys())}")
        return None

    if event is None:
        logger.debug(f"Call event payload produced no lifecycle change: {payload.get('event') or payload.get('type')}")
    return event
