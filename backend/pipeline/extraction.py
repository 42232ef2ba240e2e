"""
Stage A - extract memorable events from a check-in transcript

The structured generation collaborator is given a bounded number of
attempts. A response that breaks the output contract counts as a failed
attempt and the reason is fed back into the next prompt. When every attempt
fails a deterministic stub event is returned, so a completed call always
yields at least one event.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from config.settings import EXTRACTION_MAX_ATTEMPTS
from utils.time_utils import ensure_utc, format_short_date

from .extraction_client import ExtractionError, OpenAIExtractionClient, StructuredExtractionClient
from .models import (
    ENERGY_WORDS, MODERATE_ENERGY, MOOD_WORDS, NEUTRAL_MOOD, Event,
    energy_word_to_number, mood_word_to_number
)

logger = logging.getLogger("event-extraction")

STUB_TAG = "diary"
STUB_SUMMARY_LENGTH = 100

SYSTEM_PROMPT = f"""You are an assistant that extracts memorable events from a person's spoken diary check-in.
Identify distinct events, the people involved, and relevant tags.
Respond with a JSON object of the form:
{{"events": [{{"title": str, "summary": str, "people": [str], "tags": [str], "mood": str, "energy": str, "anniversary_candidate": bool}}]}}
- title: a concise title for the event
- summary: a 1-2 sentence summary of the event
- people: names or nicknames of people involved, each written exactly as it appears in the summary
- tags: 1-3 short tags related to the event
- mood: one of {", ".join(MOOD_WORDS)}
- energy: one of {", ".join(ENERGY_WORDS)}
- anniversary_candidate: true if the event is worth remembering on its anniversary
"""


def construct_context_prompt(known_people: Sequence[str], known_tags: Sequence[str]) -> str:
    """Existing people/tags block steering the model toward canonical names"""
    people_line = f"Existing People: {', '.join(known_people)}" if known_people else "No existing people."
    tags_line = f"Existing Tags: {', '.join(known_tags)}" if known_tags else "No existing tags."

    instruction = "Create new names and tags as needed."
    if known_people and known_tags:
        instruction = (
            "When extracting people and tags, prefer using the exact names and tags from the lists above "
            "if they match the context; otherwise, create new ones."
        )
    elif known_people:
        instruction = (
            "When extracting people, prefer using the exact names from the list above "
            "if they match the context; otherwise, create new names."
        )
    elif known_tags:
        instruction = (
            "When extracting tags, prefer using the exact tags from the list above "
            "if they match the context; otherwise, create new tags."
        )

    return f"\n{people_line}\n{tags_line}\n{instruction}\n"


def build_user_prompt(text: str, reference_time: datetime, previous_error: Optional[str] = None) -> str:
    prompt = f'Diary Entry ({ensure_utc(reference_time).isoformat()}): "{text}"'
    if previous_error:
        prompt += (
            f"\n\nYour previous response was rejected: {previous_error}. "
            "Return a corrected JSON object."
        )
    return prompt


def _required_text(raw: Dict[str, Any], name: str, index: int) -> str:
    value = raw.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ExtractionError(f"event {index} has no {name}")
    return value.strip()


def _string_list(raw: Dict[str, Any], name: str, index: int) -> List[str]:
    value = raw.get(name) or []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ExtractionError(f"event {index} {name} must be a list of strings")
    return [item.strip() for item in value if item.strip()]


def parse_events(data: Dict[str, Any], reference_time: datetime) -> List[Event]:
    """
    Validate a model response and build events from it

    Raises:
        ExtractionError: Describing the first contract violation found
    """
    raw_events = data.get("events")
    if not isinstance(raw_events, list) or not raw_events:
        raise ExtractionError("response contains no events")

    events = []
    for index, raw in enumerate(raw_events):
        if not isinstance(raw, dict):
            raise ExtractionError(f"event {index} is not an object")

        title = _required_text(raw, "title", index)
        summary = _required_text(raw, "summary", index)
        people = _string_list(raw, "people", index)
        tags = _string_list(raw, "tags", index)

        try:
            mood = mood_word_to_number(raw.get("mood", ""))
            energy = energy_word_to_number(raw.get("energy", ""))
        except ValueError as e:
            raise ExtractionError(f"event {index}: {e}") from e

        event = Event(
            title=title,
            summary=summary,
            people=people,
            tags=tags,
            mood=mood,
            energy=energy,
            anniversary_candidate=raw.get("anniversary_candidate") is True,
            happened_at=ensure_utc(reference_time)
        )

        missing = event.missing_participants()
        if missing:
            raise ExtractionError(
                f"event {index} names people not written in its summary: {', '.join(missing)}"
            )
        events.append(event)

    return events


def stub_events(text: str, reference_time: datetime) -> List[Event]:
    """The single placeholder event used when extraction gives up"""
    summary = text[:STUB_SUMMARY_LENGTH] + ("..." if len(text) > STUB_SUMMARY_LENGTH else "")
    reference_time = ensure_utc(reference_time)
    return [Event(
        title=f"Diary Entry from {format_short_date(reference_time)}",
        summary=summary,
        people=[],
        tags=[STUB_TAG],
        mood=NEUTRAL_MOOD,
        energy=MODERATE_ENERGY,
        happened_at=reference_time
    )]


class EventExtractor:
    """Bounded-retry wrapper around a StructuredExtractionClient"""

    def __init__(self, client: StructuredExtractionClient = None, max_attempts: int = None):
        self.client = client or OpenAIExtractionClient()
        self.max_attempts = max_attempts or EXTRACTION_MAX_ATTEMPTS
        self.last_error: Optional[str] = None
        self.used_stub = False

    async def extract(
        self,
        text: str,
        reference_time: datetime,
        known_people: Sequence[str] = (),
        known_tags: Sequence[str] = ()
    ) -> List[Event]:
        """
        Extract events from ``text``; never returns an empty list

        Args:
            text: Transcript text
            reference_time: When the conversation happened; becomes every event's happened_at
            known_people: Owner's existing people, most used first
            known_tags: Owner's existing tags, most used first
        """
        system_prompt = SYSTEM_PROMPT + construct_context_prompt(list(known_people), list(known_tags))
        self.last_error = None
        self.used_stub = False

        for attempt in range(1, self.max_attempts + 1):
            user_prompt = build_user_prompt(text, reference_time, self.last_error)
            try:
                data = await self.client.generate(system_prompt, user_prompt)
                events = parse_events(data, reference_time)
            except Exception as e:
                self.last_error = str(e) or type(e).__name__
                logger.warning(f"Extraction attempt {attempt}/{self.max_attempts} failed: {e}")
                continue

            logger.info(f"Extracted {len(events)} events on attempt {attempt}")
            return events

        logger.error(f"Extraction failed after {self.max_attempts} attempts, using stub: {self.last_error}")
        self.used_stub = True
        return stub_events(text, reference_time)

    def extract_sync(
        self,
        text: str,
        reference_time: datetime,
        known_people: Sequence[str] = (),
        known_tags: Sequence[str] = ()
    ) -> List[Event]:
        """
        Synchronous wrapper for extract (for use in RQ tasks)
        """
        return asyncio.run(self.extract(text, reference_time, known_people, known_tags))
