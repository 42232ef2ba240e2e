"""
Pytest configuration and fixtures for check-in service tests
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import fakeredis
import pytest

from calls.provider_adapter import MockCallAdapter
from pipeline.entities import EntityResolver
from pipeline.event_store import EventStore
from pipeline.media import MediaArtifactStore
from pipeline.quota import RedisQuotaLedger
from scheduling.job_tracker import JobTracker, SessionStore
from scheduling.schedule_store import ScheduleStore
from utils.redis_atomic import create_atomic_redis_ops


@pytest.fixture
def fake_redis():
    """
    In-memory Redis with Lua support, so the atomic scripts run for real
    """
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def atomic_ops(fake_redis):
    return create_atomic_redis_ops(fake_redis)


@pytest.fixture
def schedule_store(fake_redis, atomic_ops):
    return ScheduleStore(fake_redis, atomic_ops)


@pytest.fixture
def job_tracker(fake_redis, atomic_ops):
    return JobTracker(fake_redis, atomic_ops)


@pytest.fixture
def session_store(fake_redis):
    return SessionStore(fake_redis)


@pytest.fixture
def entity_resolver(fake_redis, atomic_ops):
    return EntityResolver(fake_redis, atomic_ops)


@pytest.fixture
def event_store(fake_redis, entity_resolver):
    return EventStore(fake_redis, entity_resolver)


@pytest.fixture
def artifact_store(fake_redis, atomic_ops):
    return MediaArtifactStore(fake_redis, atomic_ops)


@pytest.fixture
def quota_ledger(fake_redis, atomic_ops):
    return RedisQuotaLedger(fake_redis, atomic_ops, default_limit=2)


@pytest.fixture
def mock_queue():
    """Stand-in for an RQ queue; records enqueue calls"""
    queue = Mock()
    queue.enqueue.return_value = Mock(id="rq-job-1")
    return queue


@pytest.fixture
def mock_adapter():
    return MockCallAdapter()


@pytest.fixture
def sample_now():
    """Monday 2025-01-13 12:00 UTC (07:00 in New York)"""
    return datetime(2025, 1, 13, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_schedule(schedule_store, sample_now):
    """Daily 09:00 New York schedule created at sample_now"""
    schedule, _ = schedule_store.upsert(
        owner_id="owner-1",
        contact="+15551234567",
        timezone="America/New_York",
        time_of_day="09:00",
        cadence="daily",
        owner_name="Alex",
        now=sample_now
    )
    return schedule


@pytest.fixture
def sample_job(job_tracker, sample_schedule):
    return job_tracker.create_job(sample_schedule, sample_schedule.next_run_at, now=sample_schedule.created_at)
