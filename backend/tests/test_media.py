"""
Tests for Stage B media synthesis: quota accounting and callback finalization
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from pipeline.media import DEFAULT_TITLE, MediaSynthesizer, build_synthesis_request
from pipeline.models import Event, MediaStatus
from pipeline.synthesis_client import MediaFailed, MediaReady, MediaSynthesisClient, SynthesisError

NOW = datetime(2025, 1, 13, 15, 0, tzinfo=timezone.utc)


def make_events():
    return [
        Event(id="e1", title="Lunch with Maria", summary="Tacos with Maria", mood=2, energy=5),
        Event(id="e2", title="Long meeting", summary="Budget review ran late", mood=0, energy=3),
    ]


@pytest.fixture
def synth_client():
    client = Mock(spec=MediaSynthesisClient)
    client.submit.return_value = "task-1"
    return client


@pytest.fixture
def synthesizer(artifact_store, quota_ledger, synth_client):
    return MediaSynthesizer(artifact_store, quota=quota_ledger, client=synth_client)


class TestBuildSynthesisRequest:

    def test_deterministic(self):
        first = build_synthesis_request(make_events())
        second = build_synthesis_request(make_events())
        assert first == second

    def test_title_prompt_and_style(self):
        request = build_synthesis_request(make_events())

        assert request.title == "Lunch with Maria"
        assert "[Long meeting]" in request.prompt
        assert "Feeling great, energy energized." in request.prompt
        # average mood 1, average energy 4
        assert request.style == "indie pop, warm, uplifting, driving rhythm"

    def test_low_energy_style(self):
        request = build_synthesis_request([Event(title="Sick day", summary="Stayed in bed", mood=-2, energy=1)])
        assert request.style == "slow piano ballad, melancholic, gentle, sparse arrangement"

    def test_no_events(self):
        assert build_synthesis_request([]).title == DEFAULT_TITLE


class TestDispatch:

    def test_pending_artifact(self, synthesizer, artifact_store, quota_ledger, synth_client):
        result = synthesizer.dispatch("owner-1", "session-1", make_events(), now=NOW)

        assert result.status == "pending"
        artifact = artifact_store.find_by_task_id("task-1")
        assert artifact.id == result.artifact.id
        assert artifact.status == MediaStatus.PENDING
        assert artifact.event_ids == ["e1", "e2"]
        assert artifact.content_id == "session-1"
        assert quota_ledger.usage("owner-1")["used"] == 1
        synth_client.submit.assert_called_once()

    def test_failure_before_task_releases_quota(self, synthesizer, artifact_store, quota_ledger, synth_client):
        synth_client.submit.side_effect = SynthesisError("Synthesis request rejected with HTTP 500: oops")

        result = synthesizer.dispatch("owner-1", "session-1", make_events(), now=NOW)

        assert result.status == "failed"
        assert quota_ledger.usage("owner-1")["used"] == 0
        stored = artifact_store.list_for_content("session-1")
        assert len(stored) == 1
        assert stored[0].status == MediaStatus.FAILED
        assert "HTTP 500" in stored[0].error

    def test_unexpected_error_also_releases(self, synthesizer, quota_ledger, synth_client):
        synth_client.submit.side_effect = TimeoutError()

        result = synthesizer.dispatch("owner-1", "session-1", make_events(), now=NOW)

        assert result.error == "TimeoutError"
        assert quota_ledger.usage("owner-1")["used"] == 0

    def test_unusable_events_reserve_nothing(self, synthesizer, artifact_store, quota_ledger, synth_client):
        events = [Event(id="e1", title="Corrupt", summary="Stored with a bad mood", mood=7, energy=3)]

        with pytest.raises(ValueError, match="Mood 7"):
            synthesizer.dispatch("owner-1", "session-1", events, now=NOW)

        assert quota_ledger.usage("owner-1")["used"] == 0
        assert artifact_store.list_for_content("session-1") == []
        synth_client.submit.assert_not_called()

    def test_denied_stores_nothing(self, synthesizer, artifact_store, quota_ledger, synth_client):
        quota_ledger.set_limit("owner-1", 0)

        result = synthesizer.dispatch("owner-1", "session-1", make_events(), now=NOW)

        assert result.status == "denied"
        assert result.quota.allowed is False
        assert artifact_store.list_for_owner("owner-1") == []
        synth_client.submit.assert_not_called()


class TestCallbacks:

    def test_ready_applied_once(self, synthesizer, artifact_store):
        synthesizer.dispatch("owner-1", "session-1", make_events(), now=NOW)
        ready = MediaReady(task_id="task-1", artifact_ref="https://cdn.test/a.mp3", metadata={"tracks": [{"id": "a"}]})

        assert synthesizer.apply_callback(ready) is True
        assert synthesizer.apply_callback(ready) is False

        artifact = artifact_store.find_by_task_id("task-1")
        assert artifact.status == MediaStatus.READY
        assert artifact.artifact_ref == "https://cdn.test/a.mp3"
        assert artifact.metadata["tracks"] == [{"id": "a"}]
        assert artifact.metadata["title"] == "Lunch with Maria"

    def test_failure_after_ready_ignored(self, synthesizer, artifact_store):
        synthesizer.dispatch("owner-1", "session-1", make_events(), now=NOW)
        synthesizer.complete("task-1", "https://cdn.test/a.mp3")

        assert synthesizer.apply_callback(MediaFailed(task_id="task-1", reason="late error")) is False
        assert artifact_store.find_by_task_id("task-1").status == MediaStatus.READY

    def test_failed_callback_keeps_quota_spent(self, synthesizer, artifact_store, quota_ledger):
        synthesizer.dispatch("owner-1", "session-1", make_events(), now=NOW)

        assert synthesizer.fail("task-1", "Provider error 501") is True

        artifact = artifact_store.find_by_task_id("task-1")
        assert artifact.status == MediaStatus.FAILED
        assert artifact.error == "Provider error 501"
        assert quota_ledger.usage("owner-1")["used"] == 1

    def test_unknown_task(self, synthesizer):
        assert synthesizer.complete("task-unknown", "https://cdn.test/x.mp3") is False
        assert synthesizer.fail("task-unknown", "boom") is False
