"""
Structured generation collaborator for content extraction
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from openai import AsyncOpenAI, OpenAIError

from config.settings import OPENAI_EXTRACTION_MODEL

logger = logging.getLogger("extraction-client")


class ExtractionError(Exception):
    """A structured generation attempt produced nothing usable"""


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of a model response

    Models sometimes wrap the object in prose or code fences, so the
    outermost braces are located first.

    Raises:
        ExtractionError: If no JSON object can be decoded
    """
    json_start = text.find('{')
    json_end = text.rfind('}') + 1

    if json_start == -1 or json_end == 0:
        raise ExtractionError("No JSON object found in response")

    try:
        data = json.loads(text[json_start:json_end])
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ExtractionError("Response JSON is not an object")
    return data


class StructuredExtractionClient(ABC):
    """Anything that turns a prompt pair into a JSON object"""

    @abstractmethod
    async def generate(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        """
        Raises:
            ExtractionError: On transport failure or an unparseable response
        """


class OpenAIExtractionClient(StructuredExtractionClient):
    """Chat completions in JSON mode (reads OPENAI_API_KEY from the environment)"""

    def __init__(self, model: str = None, client: AsyncOpenAI = None, temperature: float = 0.2):
        self.model = model or OPENAI_EXTRACTION_MODEL
        self.client = client
        self.temperature = temperature

    async def generate(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        try:
            if self.client is None:
                self.client = AsyncOpenAI()
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
            )
        except OpenAIError as e:
            raise ExtractionError(f"OpenAI request failed: {e}") from e

        content = resp.choices[0].message.content if resp and resp.choices else ""
        if not content:
            raise ExtractionError("Empty response from model")

        logger.debug(f"Extraction response ({self.model}): {content[:200]}")
        return parse_json_object(content)
