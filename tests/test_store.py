"""Tests for the activity store and its derived views."""

import itertools

import pytest

from diary_sync.diary.activity import Activity, activities_from_documents
from diary_sync.diary.errors import NotFound, TimeConflict, ValidationFailed
from diary_sync.diary.store import (
    ALL_DATES,
    ActivityStore,
    Origin,
    filter_by_date,
    group_by_date,
    sort_activities,
    unique_dates,
)
from diary_sync.session import SessionContext


def make_id_factory():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


class TestActivityStoreAdd:
    """Tests for ActivityStore.add."""

    def setup_method(self):
        self.store = ActivityStore(SessionContext("alice"), id_factory=make_id_factory())

    def test_back_to_back_activities(self):
        gym = self.store.add("2024-01-10", "09:00", "10:00", "Gym")
        work = self.store.add("2024-01-10", "10:00", "11:00", "Work")

        assert [a.id for a in self.store.activities] == [gym.id, work.id]
        assert [a.description for a in self.store.activities] == ["Gym", "Work"]

    def test_overlap_rejected_store_unchanged(self):
        self.store.add("2024-01-10", "09:00", "10:00", "Gym")

        with pytest.raises(TimeConflict) as exc_info:
            self.store.add("2024-01-10", "09:30", "10:30", "Call")

        assert exc_info.value.conflicting.description == "Gym"
        assert len(self.store) == 1

    def test_same_time_on_other_date_allowed(self):
        self.store.add("2024-01-10", "09:00", "10:00", "Gym")
        self.store.add("2024-01-11", "09:00", "10:00", "Gym")

        assert len(self.store) == 2

    @pytest.mark.parametrize("start,end", [("10:00", "10:00"), ("11:00", "10:00")])
    @pytest.mark.parametrize("description", ["Gym", "x" * 500, "  padded  "])
    def test_non_positive_range_rejected(self, start, end, description):
        with pytest.raises(ValidationFailed):
            self.store.add("2024-01-10", start, end, description)
        assert len(self.store) == 0

    @pytest.mark.parametrize(
        "fields",
        [
            ("", "09:00", "10:00", "Gym"),
            ("2024-01-10", "", "10:00", "Gym"),
            ("2024-01-10", "09:00", "", "Gym"),
            ("2024-01-10", "09:00", "10:00", ""),
            ("2024-01-10", "09:00", "10:00", "   "),
        ],
    )
    def test_empty_field_rejected(self, fields):
        with pytest.raises(ValidationFailed):
            self.store.add(*fields)

    def test_invalid_date_rejected(self):
        with pytest.raises(ValidationFailed):
            self.store.add("2024-13-40", "09:00", "10:00", "Gym")

    def test_description_trimmed(self):
        activity = self.store.add("2024-01-10", "09:00", "10:00", "  Gym  ")
        assert activity.description == "Gym"

    def test_ids_are_unique(self):
        store = ActivityStore()
        a = store.add("2024-01-10", "09:00", "10:00", "A")
        b = store.add("2024-01-10", "10:00", "11:00", "B")
        assert a.id != b.id

    def test_sorted_after_out_of_order_adds(self):
        self.store.add("2024-01-11", "08:00", "09:00", "C")
        self.store.add("2024-01-10", "14:00", "15:00", "B")
        self.store.add("2024-01-10", "07:00", "08:00", "A")
        self.store.add("2024-01-09", "23:00", "23:59", "Z")

        keys = [(a.date, a.start_time) for a in self.store.activities]
        assert keys == sorted(keys)
        assert [a.description for a in self.store.activities] == ["Z", "A", "B", "C"]


class TestActivityStoreUpdateDelete:
    """Tests for ActivityStore.update and delete."""

    def setup_method(self):
        self.store = ActivityStore(id_factory=make_id_factory())
        self.gym = self.store.add("2024-01-10", "09:00", "10:00", "Gym")
        self.work = self.store.add("2024-01-10", "10:00", "11:00", "Work")

    def test_update_to_unchanged_range_succeeds(self):
        updated = self.store.update(self.gym.id, "2024-01-10", "09:00", "10:00", "Gym session")

        assert updated.id == self.gym.id
        assert self.store.get(self.gym.id).description == "Gym session"
        assert len(self.store) == 2

    def test_update_conflicting_with_other_rejected(self):
        with pytest.raises(TimeConflict):
            self.store.update(self.gym.id, "2024-01-10", "09:30", "10:30", "Gym")

        assert self.store.get(self.gym.id) == self.gym

    def test_update_invalid_range_rejected(self):
        with pytest.raises(ValidationFailed):
            self.store.update(self.gym.id, "2024-01-10", "10:00", "09:00", "Gym")

    def test_update_unknown_id(self):
        with pytest.raises(NotFound):
            self.store.update("missing", "2024-01-10", "12:00", "13:00", "X")

    def test_update_resorts(self):
        self.store.update(self.gym.id, "2024-01-10", "12:00", "13:00", "Gym")

        assert [a.id for a in self.store.activities] == [self.work.id, self.gym.id]

    def test_update_moves_to_other_date(self):
        self.store.update(self.work.id, "2024-01-09", "10:00", "11:00", "Work")

        assert self.store.activities[0].id == self.work.id
        assert self.store.activities[0].date == "2024-01-09"

    def test_delete(self):
        removed = self.store.delete(self.gym.id)

        assert removed == self.gym
        assert [a.id for a in self.store.activities] == [self.work.id]

    def test_delete_unknown_id(self):
        before = self.store.activities

        with pytest.raises(NotFound) as exc_info:
            self.store.delete("does-not-exist")

        assert exc_info.value.activity_id == "does-not-exist"
        assert self.store.activities == before

    def test_deleted_slot_can_be_reused(self):
        self.store.delete(self.gym.id)
        self.store.add("2024-01-10", "09:30", "10:00", "Call")
        assert len(self.store) == 2


class TestActivityStoreListeners:
    """Tests for origin-tagged change notifications."""

    def setup_method(self):
        self.store = ActivityStore(id_factory=make_id_factory())
        self.events = []
        self.store.add_listener(lambda origin, snapshot: self.events.append((origin, snapshot)))

    def test_local_mutations_tagged_local_edit(self):
        a = self.store.add("2024-01-10", "09:00", "10:00", "Gym")
        self.store.update(a.id, "2024-01-10", "09:00", "10:30", "Gym")
        self.store.delete(a.id)

        assert [origin for origin, _ in self.events] == [Origin.LOCAL_EDIT] * 3
        assert self.events[-1][1] == ()

    def test_rejected_mutation_not_published(self):
        self.store.add("2024-01-10", "09:00", "10:00", "Gym")
        with pytest.raises(TimeConflict):
            self.store.add("2024-01-10", "09:00", "10:00", "Gym")

        assert len(self.events) == 1

    def test_replace_all_tagged_remote_and_sorted(self):
        docs = [
            {"id": "b", "date": "2024-01-11", "startTime": "08:00", "endTime": "09:00", "description": "B"},
            {"id": "a", "date": "2024-01-10", "startTime": "08:00", "endTime": "09:00", "description": "A"},
        ]
        self.store.replace_from_documents(docs)

        origin, snapshot = self.events[-1]
        assert origin is Origin.REMOTE_REPLACE
        assert [a.id for a in snapshot] == ["a", "b"]

    def test_remove_listener(self):
        self.store.remove_listener(self.store._listeners[0])
        self.store.add("2024-01-10", "09:00", "10:00", "Gym")
        assert self.events == []

    def test_clear_is_silent(self):
        self.store.add("2024-01-10", "09:00", "10:00", "Gym")
        self.store.clear()

        assert len(self.store) == 0
        assert len(self.events) == 1


class TestDerivedViews:
    """Tests for grouping, filtering and unique dates."""

    def setup_method(self):
        self.store = ActivityStore(id_factory=make_id_factory())
        self.store.add("2024-01-11", "08:00", "09:00", "X")
        self.store.add("2024-01-10", "10:00", "11:00", "Work")
        self.store.add("2024-01-10", "09:00", "10:00", "Gym")

    def test_group_by_date(self):
        grouped = group_by_date(self.store.activities)

        assert list(grouped) == ["2024-01-10", "2024-01-11"]
        assert [a.description for a in grouped["2024-01-10"]] == ["Gym", "Work"]

    def test_group_then_flatten_round_trip(self):
        grouped = group_by_date(self.store.activities)
        flattened = [a for day in grouped.values() for a in day]

        assert tuple(flattened) == self.store.activities

    def test_group_order_is_first_seen(self):
        acts = list(self.store.activities)
        grouped = group_by_date([acts[2], acts[0], acts[1]])
        assert list(grouped) == ["2024-01-11", "2024-01-10"]

    def test_filter_all(self):
        assert filter_by_date(self.store.activities, ALL_DATES) == list(self.store.activities)
        assert filter_by_date(self.store.activities, None) == list(self.store.activities)

    def test_filter_single_date(self):
        filtered = self.store.filtered("2024-01-11")
        assert [a.description for a in filtered] == ["X"]

    def test_filter_unknown_date(self):
        assert self.store.filtered("2023-01-01") == []

    def test_unique_dates(self):
        assert unique_dates(self.store.activities) == ["2024-01-10", "2024-01-11"]
        assert self.store.unique_dates() == ["2024-01-10", "2024-01-11"]

    def test_grouped_with_filter(self):
        assert list(self.store.grouped("2024-01-10")) == ["2024-01-10"]

    def test_sort_activities(self):
        shuffled = list(reversed(self.store.activities))
        assert sort_activities(shuffled) == list(self.store.activities)


class TestActivityDocuments:
    """Tests for loading persisted activities."""

    def test_round_trip_document(self):
        activity = Activity.create("2024-01-10", "09:00", "10:00", "Gym", activity_id="a1")
        assert Activity.from_dict(activity.to_dict()) == activity

    def test_missing_id_gets_fresh_one(self):
        docs = [{"date": "2024-01-10", "startTime": "09:00", "endTime": "10:00", "description": "Gym"}]

        loaded = activities_from_documents(docs, id_factory=lambda: "fresh")

        assert loaded[0].id == "fresh"

    def test_older_entry_layout(self):
        docs = [{"id": "x", "date": "2024-01-10", "start": "9:00", "end": "10:00", "activity": "Gym"}]

        loaded = activities_from_documents(docs)

        assert loaded[0].start_time == "09:00"
        assert loaded[0].description == "Gym"

    def test_invalid_entries_skipped(self):
        docs = [
            {"id": "ok", "date": "2024-01-10", "startTime": "09:00", "endTime": "10:00", "description": "Gym"},
            {"id": "bad", "date": "2024-01-10", "startTime": "10:00", "endTime": "09:00", "description": "Bad"},
            "not a dict",
        ]

        loaded = activities_from_documents(docs)

        assert [a.id for a in loaded] == ["ok"]

    def test_non_string_id_kept_as_string(self):
        docs = [{"id": 7, "date": "2024-01-10", "startTime": "09:00", "endTime": "10:00", "description": "Gym"}]

        loaded = activities_from_documents(docs, id_factory=lambda: "fresh")

        assert loaded[0].id == "7"
        assert loaded[0].to_dict()["id"] == "7"

    def test_blank_id_replaced(self):
        docs = [{"id": "  ", "date": "2024-01-10", "startTime": "09:00", "endTime": "10:00", "description": "Gym"}]

        loaded = activities_from_documents(docs, id_factory=lambda: "fresh")

        assert loaded[0].id == "fresh"

    def test_duplicate_ids_rekeyed(self):
        doc = {"id": "dup", "date": "2024-01-10", "startTime": "09:00", "endTime": "10:00", "description": "A"}
        other = dict(doc, startTime="11:00", endTime="12:00")

        loaded = activities_from_documents([doc, other], id_factory=lambda: "new")

        assert [a.id for a in loaded] == ["dup", "new"]
