"""
Tests for Stage A event extraction with a scripted structured-generation client
"""
import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from openai import OpenAIError

from pipeline.extraction import (
    STUB_TAG, EventExtractor, build_user_prompt, construct_context_prompt, parse_events, stub_events
)
from pipeline.extraction_client import (
    ExtractionError, OpenAIExtractionClient, StructuredExtractionClient, parse_json_object
)

REFERENCE_TIME = datetime(2025, 3, 7, 18, 30, tzinfo=timezone.utc)


def event_payload(**overrides):
    event = {
        "title": "Lunch with Maria",
        "summary": "Had tacos with Maria near the office.",
        "people": ["Maria"],
        "tags": ["Food"],
        "mood": "good",
        "energy": "lively",
        "anniversary_candidate": False,
    }
    event.update(overrides)
    return {"events": [event]}


class ScriptedClient(StructuredExtractionClient):
    """Returns (or raises) the scripted responses in order and records prompts"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def generate(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class TestParseEvents:

    def test_valid_response(self):
        events = parse_events(event_payload(), REFERENCE_TIME)

        assert len(events) == 1
        event = events[0]
        assert event.title == "Lunch with Maria"
        assert event.people == ["Maria"]
        assert event.mood == 1
        assert event.energy == 4
        assert event.happened_at == REFERENCE_TIME

    @pytest.mark.parametrize("data, message", [
        ({"events": []}, "no events"),
        ({}, "no events"),
        (event_payload(title=" "), "no title"),
        (event_payload(people="Maria"), "people must be a list"),
        (event_payload(mood="ecstatic"), "Unknown mood word"),
        (event_payload(energy=3), "Unknown energy word"),
        (event_payload(people=["Tom"]), "Tom"),
    ])
    def test_contract_violations(self, data, message):
        with pytest.raises(ExtractionError, match=message):
            parse_events(data, REFERENCE_TIME)

    def test_non_boolean_anniversary_is_false(self):
        events = parse_events(event_payload(anniversary_candidate="yes"), REFERENCE_TIME)
        assert events[0].anniversary_candidate is False


class TestPrompts:

    def test_context_prompt_with_both_lists(self):
        prompt = construct_context_prompt(["Maria", "Tom"], ["work"])
        assert "Existing People: Maria, Tom" in prompt
        assert "Existing Tags: work" in prompt
        assert "prefer using the exact names and tags" in prompt

    def test_context_prompt_empty(self):
        prompt = construct_context_prompt([], [])
        assert "No existing people." in prompt
        assert "No existing tags." in prompt
        assert "Create new names and tags as needed." in prompt

    def test_context_prompt_people_only(self):
        assert "prefer using the exact names from the list" in construct_context_prompt(["Maria"], [])

    def test_retry_prompt_carries_reason(self):
        prompt = build_user_prompt("hello", REFERENCE_TIME, "event 0 has no title")
        assert prompt.startswith('Diary Entry (2025-03-07T18:30:00+00:00): "hello"')
        assert "rejected: event 0 has no title" in prompt


class TestStubEvents:

    def test_stub_shape(self):
        events = stub_events("x" * 150, REFERENCE_TIME)

        assert len(events) == 1
        event = events[0]
        assert event.title == "Diary Entry from 3/7/2025"
        assert event.summary == "x" * 100 + "..."
        assert event.tags == [STUB_TAG]
        assert event.people == []
        assert (event.mood, event.energy) == (0, 3)

    def test_short_text_not_ellipsized(self):
        assert stub_events("Quiet day", REFERENCE_TIME)[0].summary == "Quiet day"


class TestEventExtractor:

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        client = ScriptedClient([event_payload()])
        extractor = EventExtractor(client=client, max_attempts=3)

        events = await extractor.extract("Had tacos with Maria", REFERENCE_TIME, known_people=["Maria"])

        assert events[0].title == "Lunch with Maria"
        assert extractor.used_stub is False
        assert len(client.calls) == 1
        assert "Existing People: Maria" in client.calls[0][0]

    @pytest.mark.asyncio
    async def test_retry_after_invalid_response(self):
        client = ScriptedClient([event_payload(people=["Tom"]), event_payload()])
        extractor = EventExtractor(client=client, max_attempts=3)

        events = await extractor.extract("Had tacos with Maria", REFERENCE_TIME)

        assert events[0].people == ["Maria"]
        assert len(client.calls) == 2
        assert "Tom" in client.calls[1][1]
        assert extractor.used_stub is False

    @pytest.mark.asyncio
    async def test_stub_after_exhausting_attempts(self):
        client = ScriptedClient([
            ExtractionError("OpenAI request failed: timeout"),
            {"events": []},
            event_payload(mood="meh"),
        ])
        extractor = EventExtractor(client=client, max_attempts=3)

        events = await extractor.extract("A quiet day at home", REFERENCE_TIME)

        assert len(client.calls) == 3
        assert extractor.used_stub is True
        assert "mood" in extractor.last_error.lower()
        assert events[0].tags == [STUB_TAG]
        assert events[0].summary == "A quiet day at home"

    @pytest.mark.asyncio
    async def test_stub_when_collaborator_keeps_crashing(self):
        client = ScriptedClient([
            RuntimeError("collaborator crashed"),
            asyncio.TimeoutError(),
            AttributeError("'NoneType' object has no attribute 'choices'"),
        ])
        extractor = EventExtractor(client=client, max_attempts=3)

        events = await extractor.extract("Walked the dog", REFERENCE_TIME)

        assert len(events) == 1
        assert events[0].tags == [STUB_TAG]
        assert extractor.used_stub is True
        assert "TimeoutError" in client.calls[2][1]
        assert "NoneType" in extractor.last_error

    def test_extract_sync(self):
        extractor = EventExtractor(client=ScriptedClient([event_payload()]), max_attempts=1)
        events = extractor.extract_sync("Had tacos with Maria", REFERENCE_TIME)
        assert len(events) == 1


class TestParseJsonObject:

    def test_wrapped_in_prose(self):
        assert parse_json_object('Here you go:\n```json\n{"events": []}\n```') == {"events": []}

    @pytest.mark.parametrize("text", ["no json here", "{not json}", "[1, 2]"])
    def test_unusable(self, text):
        with pytest.raises(ExtractionError):
            parse_json_object(text)


class TestOpenAIExtractionClient:

    def _client_returning(self, content):
        completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
        openai_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(
            create=AsyncMock(return_value=completion)
        )))
        return openai_client

    @pytest.mark.asyncio
    async def test_json_mode_request(self):
        openai_client = self._client_returning('{"events": []}')
        client = OpenAIExtractionClient(model="gpt-test", client=openai_client)

        assert await client.generate("system", "user") == {"events": []}

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_empty_content(self):
        client = OpenAIExtractionClient(client=self._client_returning(None))
        with pytest.raises(ExtractionError, match="Empty response"):
            await client.generate("system", "user")

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        openai_client = self._client_returning("{}")
        openai_client.chat.completions.create.side_effect = OpenAIError("connection reset")
        client = OpenAIExtractionClient(client=openai_client)

        with pytest.raises(ExtractionError, match="connection reset"):
            await client.generate("system", "user")
