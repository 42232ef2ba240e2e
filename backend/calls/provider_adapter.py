"""
Call provider adapter - abstracts the outbound call provider for easier testing

The dispatcher talks to this interface only; LiveKit specifics (agent
dispatch, SIP participant creation, room naming) stay in this module.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from livekit import api

logger = logging.getLogger("call-provider-adapter")

# Identity given to the dialed participant; webhook parsing relies on it
OWNER_PARTICIPANT_IDENTITY = "owner"


@dataclass
class CallRequest:
    """Everything the provider needs to place one check-in call"""
    job_id: str
    contact: str
    room_name: str
    agent_name: str
    metadata: Dict[str, Any]
    trunk_id: Optional[str] = None


class CallProviderAdapter(ABC):
    """Abstract interface for placing outbound calls"""

    @abstractmethod
    async def dispatch(self, request: CallRequest) -> str:
        """Place the call and return the provider's external call id"""
        pass


class LiveKitCallAdapter(CallProviderAdapter):
    """
    Places calls through LiveKit: an agent is dispatched into a fresh room
    and the owner is dialed into it over SIP. The room name doubles as the
    external call id reported back in room webhooks.
    """

    async def dispatch(self, request: CallRequest) -> str:
        lkapi = api.LiveKitAPI()
        try:
            dispatch = await lkapi.agent_dispatch.create_dispatch(
                api.CreateAgentDispatchRequest(
                    agent_name=request.agent_name,
                    room=request.room_name,
                    metadata=json.dumps(request.metadata)
                )
            )
            logger.info(f"Created agent dispatch {getattr(dispatch, 'id', None)} for room {request.room_name}")

            participant = await lkapi.sip.create_sip_participant(
                api.CreateSIPParticipantRequest(
                    room_name=request.room_name,
                    sip_trunk_id=request.trunk_id,
                    sip_call_to=request.contact,
                    participant_identity=OWNER_PARTICIPANT_IDENTITY,
                    wait_until_answered=True,
                )
            )
            logger.info(f"Created SIP participant {getattr(participant, 'participant_id', None)} in room {request.room_name}")
            return request.room_name
        finally:
            await lkapi.aclose()


class MockProviderError(Exception):
    """Carries SIP status metadata the way LiveKit's TwirpError does"""

    def __init__(self, message: str, metadata: Dict[str, str]):
        self.message = message
        self.metadata = metadata
        super().__init__(message)


class MockCallAdapter(CallProviderAdapter):
    """Mock implementation for tests and dry runs"""

    def __init__(self):
        self.calls_placed = []
        self.should_fail = False
        self.failure_error = None
        self.failure_sip_code = None

    async def dispatch(self, request: CallRequest) -> str:
        if self.should_fail:
            if self.failure_sip_code:
                raise MockProviderError(
                    self.failure_error or "SIP error",
                    {'sip_status_code': self.failure_sip_code, 'sip_status': 'Mock SIP Error'}
                )
            raise RuntimeError(self.failure_error or "Mock provider failure")

        self.calls_placed.append({
            'job_id': request.job_id,
            'contact': request.contact,
            'room_name': request.room_name,
            'agent_name': request.agent_name,
            'trunk_id': request.trunk_id,
            'metadata': request.metadata
        })
        return request.room_name

    def reset(self):
        self.calls_placed.clear()
        self.should_fail = False
        self.failure_error = None
        self.failure_sip_code = None


def create_call_adapter(mock: bool = False) -> CallProviderAdapter:
    """Factory function to create a call provider adapter"""
    if mock:
        return MockCallAdapter()
    return LiveKitCallAdapter()
