"""
Transcript helpers - pull the conversation text out of session metadata
"""
import logging
from typing import Any, Dict, List

from config.settings import MAX_TRANSCRIPT_LENGTH

logger = logging.getLogger("transcript")

TRUNCATION_SUFFIX = "\n\n[Transcript truncated due to length]"
SPEAKER_LABELS = {"user": "User", "assistant": "Assistant"}


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        # Multi-part content: keep the text parts only
        parts = [
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text" and part.get("text")
        ]
        return " ".join(parts).strip()
    return ""


def transcript_from_messages(messages: List[Any]) -> str:
    """Render user/assistant turns as ``Speaker: text`` lines"""
    lines = []
    for message in messages:
        if not isinstance(message, dict):
            continue
        label = SPEAKER_LABELS.get(message.get("role"))
        if label is None:
            continue
        text = _message_text(message.get("content", message.get("message")))
        if text:
            lines.append(f"{label}: {text}")
    return "\n".join(lines)


def transcript_from_metadata(metadata: Dict[str, Any]) -> str:
    """
    Find the conversation text recorded on a session

    Looks at ``transcript`` first, then a ``messages`` list, then a
    provider ``summary``. Returns an empty string when nothing usable exists.
    """
    transcript = metadata.get("transcript")
    if isinstance(transcript, str) and transcript.strip():
        return transcript.strip()

    messages = metadata.get("messages")
    if isinstance(messages, list):
        text = transcript_from_messages(messages)
        if text:
            return text
    elif messages is not None:
        logger.warning(f"Session messages are {type(messages).__name__}, expected a list")

    summary = metadata.get("summary")
    if isinstance(summary, str) and summary.strip():
        return summary.strip()

    return ""


def truncate_transcript(text: str, max_length: int = MAX_TRANSCRIPT_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    logger.info(f"Truncating transcript from {len(text)} to {max_length} characters")
    return text[:max_length] + TRUNCATION_SUFFIX
