"""
Generation pipeline for completed check-in calls

Contains the two generation stages and the stores behind them:
- EventExtractor: Stage A, transcript to events with bounded retries
- EventStore / EntityResolver: events and their canonical people and tags
- MediaSynthesizer: Stage B, quota-guarded media synthesis
- RQ Tasks: run each stage on the generation queue
"""

from .entities import EntityResolver
from .event_store import EventStore
from .extraction import EventExtractor
from .media import MediaArtifactStore, MediaSynthesizer
from .models import CanonicalEntity, EntityKind, Event, MediaArtifact, MediaStatus
from .quota import QuotaDecision, RedisQuotaLedger

__all__ = [
    "EntityResolver",
    "EventStore",
    "EventExtractor",
    "MediaArtifactStore",
    "MediaSynthesizer",
    "CanonicalEntity",
    "EntityKind",
    "Event",
    "MediaArtifact",
    "MediaStatus",
    "QuotaDecision",
    "RedisQuotaLedger"
]
