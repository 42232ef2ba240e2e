"""
Tests for the HTTP media synthesis client and callback parsing
"""
from unittest.mock import Mock

import pytest
import requests

from pipeline.synthesis_client import (
    HttpMediaSynthesisClient, MediaFailed, MediaReady, SynthesisError, SynthesisRequest, parse_media_callback
)

REQUEST = SynthesisRequest(title="Lunch", prompt="[Lunch]\nTacos", style="indie pop, warm, uplifting")


def http_response(status=200, body=None, json_error=False):
    response = Mock()
    response.status_code = status
    response.ok = status < 400
    response.text = "body"
    if json_error:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return HttpMediaSynthesisClient(
        url="https://synth.test/generate",
        api_key="key-123",
        model="V5",
        callback_url="https://hooks.test/media",
        timeout=5,
        session=session
    )


class TestSubmit:

    def test_accepted(self, client, session):
        session.post.return_value = http_response(body={"code": 200, "msg": "success", "data": {"taskId": "task-1"}})

        assert client.submit(REQUEST) == "task-1"

        args, kwargs = session.post.call_args
        assert args == ("https://synth.test/generate",)
        assert kwargs["headers"] == {"Authorization": "Bearer key-123"}
        assert kwargs["timeout"] == 5
        assert kwargs["json"] == {
            "prompt": "[Lunch]\nTacos",
            "style": "indie pop, warm, uplifting",
            "title": "Lunch",
            "customMode": True,
            "instrumental": False,
            "model": "V5",
            "callBackUrl": "https://hooks.test/media",
        }

    def test_missing_api_key(self, session):
        client = HttpMediaSynthesisClient(api_key="", session=session)
        client.api_key = None
        with pytest.raises(SynthesisError, match="API_KEY"):
            client.submit(REQUEST)
        session.post.assert_not_called()

    @pytest.mark.parametrize("response, message", [
        (http_response(status=503), "HTTP 503"),
        (http_response(json_error=True), "not JSON"),
        (http_response(body=["task-1"]), "not an object"),
        (http_response(body={"code": 429, "msg": "insufficient credits"}), "insufficient credits"),
        (http_response(body={"code": 200, "data": {}}), "no taskId"),
    ])
    def test_rejections(self, client, session, response, message):
        session.post.return_value = response
        with pytest.raises(SynthesisError, match=message):
            client.submit(REQUEST)

    def test_transport_error(self, client, session):
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(SynthesisError, match="refused"):
            client.submit(REQUEST)


class TestParseMediaCallback:

    def test_complete(self):
        tracks = [{"id": "a", "audio_url": ""}, {"id": "b", "audio_url": "https://cdn.test/b.mp3", "duration": 120}]
        callback = parse_media_callback({
            "code": 200, "msg": "success",
            "data": {"callbackType": "complete", "task_id": "task-1", "data": tracks}
        })

        assert callback == MediaReady(task_id="task-1", artifact_ref="https://cdn.test/b.mp3", metadata={"tracks": tracks})

    def test_intermediate_ignored(self):
        payload = {"code": 200, "data": {"callbackType": "first", "task_id": "task-1", "data": []}}
        assert parse_media_callback(payload) is None

    def test_error_callback(self):
        payload = {"code": 501, "msg": "generation failed", "data": {"callbackType": "error", "taskId": "task-1"}}
        assert parse_media_callback(payload) == MediaFailed(task_id="task-1", reason="Provider error 501: generation failed")

    def test_complete_with_error_code(self):
        payload = {"code": 400, "msg": "content policy", "data": {"callbackType": "complete", "task_id": "task-1"}}
        callback = parse_media_callback(payload)
        assert isinstance(callback, MediaFailed)
        assert "content policy" in callback.reason

    def test_complete_without_tracks(self):
        payload = {"code": 200, "data": {"callbackType": "complete", "task_id": "task-1", "data": []}}
        assert isinstance(parse_media_callback(payload), MediaFailed)

    @pytest.mark.parametrize("payload", [None, {}, {"data": "x"}, {"data": {"callbackType": "complete"}}])
    def test_unusable(self, payload):
        assert parse_media_callback(payload) is None
