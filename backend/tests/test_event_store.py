"""
Tests for EventStore persistence and owner edits
"""
from datetime import datetime, timedelta, timezone

import pytest

from pipeline.event_store import EventValidationError
from pipeline.models import EntityKind, Event

NOW = datetime(2025, 1, 13, 15, 0, tzinfo=timezone.utc)


def make_event(**overrides):
    fields = {
        "title": "Lunch",
        "summary": "Tacos with Maria and Tom",
        "people": ["Maria", "Tom"],
        "tags": ["Food", "friends"],
        "mood": 1,
        "energy": 4,
        "happened_at": NOW,
    }
    fields.update(overrides)
    return Event(**fields)


@pytest.fixture
def stored_event(event_store):
    return event_store.create_events("owner-1", "session-1", [make_event()], now=NOW)[0]


class TestCreateEvents:

    def test_events_persisted_with_entities(self, event_store, entity_resolver, stored_event):
        loaded = event_store.get(stored_event.id)

        assert loaded.owner_id == "owner-1"
        assert loaded.session_id == "session-1"
        assert loaded.tags == ["food", "friends"]
        assert loaded.people == ["Maria", "Tom"]
        assert entity_resolver.usage_counts("owner-1", EntityKind.TAG) == {"food": 1, "friends": 1}
        assert entity_resolver.usage_counts("owner-1", EntityKind.PERSON) == {"Maria": 1, "Tom": 1}

    def test_people_missing_from_summary_dropped(self, event_store, entity_resolver):
        event = make_event(summary="Tacos with Maria", people=["Maria", "Tom"])

        stored = event_store.create_events("owner-1", "session-1", [event], now=NOW)[0]

        assert stored.people == ["Maria"]
        assert entity_resolver.get("owner-1", EntityKind.PERSON, "Tom") is None

    def test_reused_entities_count_each_event(self, event_store, entity_resolver):
        event_store.create_events("owner-1", "s1", [make_event(), make_event(tags=["food"])], now=NOW)
        assert entity_resolver.usage_counts("owner-1", EntityKind.TAG)["food"] == 2

    def test_list_most_recent_first(self, event_store):
        older = make_event(title="Older", happened_at=NOW - timedelta(days=1))
        newer = make_event(title="Newer")
        event_store.create_events("owner-1", "s1", [older, newer], now=NOW)

        assert [e.title for e in event_store.list_events("owner-1")] == ["Newer", "Older"]

    def test_get_many_skips_missing(self, event_store, stored_event):
        assert [e.id for e in event_store.get_many(["missing", stored_event.id])] == [stored_event.id]


class TestUpdateEvent:

    def test_replace_person(self, event_store, entity_resolver, stored_event):
        updated = event_store.update_event(
            stored_event.id, summary="Tacos with Maria and Sam", people=["Maria", "Sam"], now=NOW
        )

        assert updated.people == ["Maria", "Sam"]
        assert event_store.get(stored_event.id).summary == "Tacos with Maria and Sam"
        assert entity_resolver.usage_counts("owner-1", EntityKind.PERSON) == {"Maria": 1, "Sam": 1, "Tom": 0}

    def test_person_not_in_summary_rejected(self, event_store, entity_resolver, stored_event):
        with pytest.raises(EventValidationError, match="Sam"):
            event_store.update_event(stored_event.id, people=["Maria", "Sam"])

        assert event_store.get(stored_event.id).people == ["Maria", "Tom"]
        assert entity_resolver.get("owner-1", EntityKind.PERSON, "Sam") is None

    def test_summary_edit_that_drops_a_name_rejected(self, event_store, stored_event):
        with pytest.raises(EventValidationError):
            event_store.update_event(stored_event.id, summary="Tacos with Maria")

    @pytest.mark.parametrize("kwargs", [{"mood": 3}, {"energy": 0}])
    def test_out_of_range_scales_rejected(self, event_store, stored_event, kwargs):
        with pytest.raises(EventValidationError):
            event_store.update_event(stored_event.id, **kwargs)

    def test_tag_edit_reconciles(self, event_store, entity_resolver, stored_event):
        event_store.update_event(stored_event.id, tags=["Friends", "Park"], mood=2, anniversary_candidate=True)

        loaded = event_store.get(stored_event.id)
        assert loaded.tags == ["friends", "park"]
        assert loaded.mood == 2
        assert loaded.anniversary_candidate is True
        assert entity_resolver.usage_counts("owner-1", EntityKind.TAG) == {"food": 0, "friends": 1, "park": 1}

    def test_missing_event(self, event_store):
        assert event_store.update_event("missing", title="x") is None


class TestDeleteEvent:

    def test_delete_releases_usage(self, event_store, entity_resolver, stored_event):
        assert event_store.delete_event(stored_event.id) is True

        assert event_store.get(stored_event.id) is None
        assert event_store.list_events("owner-1") == []
        assert entity_resolver.usage_counts("owner-1", EntityKind.PERSON) == {"Maria": 0, "Tom": 0}

    def test_delete_missing(self, event_store):
        assert event_store.delete_event("missing") is False
