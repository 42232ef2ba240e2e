"""
Media synthesis provider client and callback parsing

The provider accepts a generation request synchronously and answers with a
task id; the finished media arrives later on a callback:

    {"code": 200, "msg": "success",
     "data": {"callbackType": "complete", "task_id": "...",
              "data": [{"id": "...", "audio_url": "...", "title": "...", "duration": 120}]}}
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import requests

from config.settings import (
    MEDIA_CALLBACK_URL, MEDIA_SYNTHESIS_API_KEY, MEDIA_SYNTHESIS_MODEL,
    MEDIA_SYNTHESIS_TIMEOUT, MEDIA_SYNTHESIS_URL
)

logger = logging.getLogger("synthesis-client")

PROVIDER_OK = 200
FINAL_CALLBACK_TYPE = "complete"
ERROR_CALLBACK_TYPE = "error"


class SynthesisError(Exception):
    """The provider did not accept a synthesis request"""


@dataclass
class SynthesisRequest:
    title: str
    prompt: str
    style: str


class MediaSynthesisClient(ABC):
    @abstractmethod
    def submit(self, request: SynthesisRequest) -> str:
        """
        Submit a request and return the provider task id

        Raises:
            SynthesisError: If no task was created
        """


class HttpMediaSynthesisClient(MediaSynthesisClient):
    """JSON-over-HTTP synthesis API with bearer authentication"""

    def __init__(
        self,
        url: str = None,
        api_key: str = None,
        model: str = None,
        callback_url: str = None,
        timeout: float = None,
        session: requests.Session = None
    ):
        self.url = url or MEDIA_SYNTHESIS_URL
        self.api_key = api_key or MEDIA_SYNTHESIS_API_KEY
        self.model = model or MEDIA_SYNTHESIS_MODEL
        self.callback_url = callback_url or MEDIA_CALLBACK_URL
        self.timeout = timeout or MEDIA_SYNTHESIS_TIMEOUT
        self.session = session or requests.Session()

    def build_payload(self, request: SynthesisRequest) -> Dict[str, Any]:
        return {
            "prompt": request.prompt,
            "style": request.style,
            "title": request.title,
            "customMode": True,
            "instrumental": False,
            "model": self.model,
            "callBackUrl": self.callback_url,
        }

    def submit(self, request: SynthesisRequest) -> str:
        if not self.api_key:
            raise SynthesisError("MEDIA_SYNTHESIS_API_KEY is not configured")

        try:
            response = self.session.post(
                self.url,
                json=self.build_payload(request),
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SynthesisError(f"Synthesis request failed: {e}") from e

        if not response.ok:
            raise SynthesisError(f"Synthesis request rejected with HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise SynthesisError("Synthesis response is not JSON") from e

        if not isinstance(body, dict):
            raise SynthesisError("Synthesis response is not an object")
        if body.get("code") != PROVIDER_OK:
            raise SynthesisError(f"Synthesis provider error {body.get('code')}: {body.get('msg') or 'unknown error'}")

        task_id = (body.get("data") or {}).get("taskId")
        if not isinstance(task_id, str) or not task_id:
            raise SynthesisError("Synthesis response has no taskId")

        logger.info(f"Synthesis task {task_id} accepted for '{request.title}'")
        return task_id


@dataclass(frozen=True)
class MediaReady:
    task_id: str
    artifact_ref: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MediaFailed:
    task_id: str
    reason: str


MediaCallback = Union[MediaReady, MediaFailed]


def _first_track_with_audio(tracks: List[Any]) -> Optional[Dict[str, Any]]:
    for track in tracks:
        if isinstance(track, dict) and track.get("audio_url"):
            return track
    return None


def parse_media_callback(payload: Dict[str, Any]) -> Optional[MediaCallback]:
    """
    Translate a provider callback into MediaReady / MediaFailed

    Returns:
        None for intermediate callback types and payloads without a task id
    """
    if not isinstance(payload, dict):
        logger.warning(f"Ignoring non-object media callback: {type(payload).__name__}")
        return None

    data = payload.get("data")
    if not isinstance(data, dict):
        logger.warning("Media callback missing data field")
        return None

    task_id = data.get("task_id") or data.get("taskId")
    if not isinstance(task_id, str) or not task_id:
        logger.warning("Media callback missing task id")
        return None

    callback_type = data.get("callbackType")
    code = payload.get("code")

    if callback_type == ERROR_CALLBACK_TYPE:
        return MediaFailed(task_id=task_id, reason=f"Provider error {code}: {payload.get('msg') or 'unknown error'}")

    if callback_type != FINAL_CALLBACK_TYPE:
        logger.info(f"Ignoring intermediate media callback '{callback_type}' for task {task_id}")
        return None

    if code != PROVIDER_OK:
        return MediaFailed(task_id=task_id, reason=f"Provider error {code}: {payload.get('msg') or 'unknown error'}")

    tracks = data.get("data") if isinstance(data.get("data"), list) else []
    track = _first_track_with_audio(tracks)
    if track is None:
        return MediaFailed(task_id=task_id, reason="Provider completed without any tracks")

    return MediaReady(
        task_id=task_id,
        artifact_ref=track["audio_url"],
        metadata={"tracks": tracks}
    )
