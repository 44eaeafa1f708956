"""Tests for the advisor roster, advisor groups and scalar preferences."""

import json

import pytest
from pydantic import ValidationError

from spacesync.exceptions import AdvisorNotFoundError, DuplicateAdvisorError, DuplicateGroupError
from spacesync.kvstore import KeyValueStore
from spacesync.preferences import AdvisorGroups, AdvisorRoster, AppPreferences, parse_bool
from spacesync.scheduler import DebouncedPersistenceScheduler
from spacesync.sync import CrossContextSyncListener


@pytest.fixture
def scheduler(kv):
    scheduler = DebouncedPersistenceScheduler(kv, delay=10)
    yield scheduler
    scheduler.close()


@pytest.fixture
def roster(kv, scheduler, keys) -> AdvisorRoster:
    return AdvisorRoster(kv, scheduler, keys)


@pytest.fixture
def groups(kv, scheduler, keys) -> AdvisorGroups:
    return AdvisorGroups(kv, scheduler, keys)


@pytest.fixture
def preferences(kv, scheduler, keys) -> AppPreferences:
    return AppPreferences(kv, scheduler, keys)


class TestAdvisorRoster:
    """Tests for AdvisorRoster."""

    def test_add_and_persist(self, roster, scheduler, kv, keys):
        roster.add("Stoic", "Calm counsel")
        roster.add("Poet")
        scheduler.flush()

        stored = json.loads(kv.get_item(keys.advisors))
        assert [a["name"] for a in stored] == ["Stoic", "Poet"]
        assert stored[0]["description"] == "Calm counsel"
        assert stored[0]["active"] is True

    def test_duplicate_names_are_case_insensitive(self, roster):
        roster.add("Stoic")

        with pytest.raises(DuplicateAdvisorError):
            roster.add("stoic")

        assert len(roster) == 1

    def test_update(self, roster):
        advisor = roster.add("Stoic")

        updated = roster.update(advisor.id, description="Seneca", color="#336699")

        assert updated.id == advisor.id
        assert roster.find("STOIC").description == "Seneca"
        assert roster.find("stoic").color == "#336699"

    def test_rename_to_taken_name_is_rejected(self, roster):
        roster.add("Stoic")
        roster.add("Poet")

        with pytest.raises(DuplicateAdvisorError):
            roster.update("Poet", name="STOIC")

    def test_rename_changing_case_only(self, roster):
        roster.add("stoic")

        assert roster.update("stoic", name="Stoic").name == "Stoic"

    def test_remove(self, roster):
        roster.add("Stoic")

        assert roster.remove("stoic") is True
        assert roster.remove("stoic") is False
        assert roster.items == []

    def test_toggle_active(self, roster):
        roster.add("Stoic")
        roster.add("Poet")

        roster.toggle_active("Stoic")

        assert [a.name for a in roster.active] == ["Poet"]
        assert roster.toggle_active("Stoic").active is True

    def test_unknown_advisor(self, roster):
        with pytest.raises(AdvisorNotFoundError):
            roster.update("Nobody", active=False)

    def test_empty_roster_removes_key(self, roster, scheduler, kv, keys):
        roster.add("Stoic")
        scheduler.flush()

        roster.remove("Stoic")
        scheduler.flush()

        assert kv.get_item(keys.advisors) is None

    def test_loads_stored_roster_and_skips_invalid_entries(self, kv, scheduler, keys):
        kv.set_item(
            keys.advisors,
            json.dumps([{"name": "Stoic", "custom": 1}, {"name": ""}, {"description": "x"}]),
        )

        roster = AdvisorRoster(kv, scheduler, keys)

        assert [a.name for a in roster.items] == ["Stoic"]
        assert roster.snapshot()[0]["custom"] == 1

    def test_malformed_stored_roster_is_empty(self, kv, scheduler, keys):
        kv.set_item(keys.advisors, "{not json")

        assert len(AdvisorRoster(kv, scheduler, keys)) == 0

    def test_undecodable_stored_roster_is_empty(self, kv, scheduler, keys):
        kv.path_for(keys.advisors).write_bytes(b'[{"name": "Po\xe9t"}]')

        assert len(AdvisorRoster(kv, scheduler, keys)) == 0

    def test_hydrate_does_not_schedule(self, roster, scheduler):
        roster.hydrate([{"name": "Poet"}])

        assert [a.name for a in roster.items] == ["Poet"]
        assert scheduler.pending_count == 0


class TestAdvisorGroups:
    """Tests for AdvisorGroups."""

    def test_add_group_and_members(self, groups, scheduler, kv, keys):
        groups.add_group("Philosophers", "Old minds")
        groups.add_advisor("philosophers", "Stoic")
        groups.add_advisor("Philosophers", "stoic")
        scheduler.flush()

        stored = json.loads(kv.get_item(keys.advisor_groups))
        assert stored == [
            {"name": "Philosophers", "description": "Old minds", "advisors": ["Stoic"]}
        ]

    def test_duplicate_group(self, groups):
        groups.add_group("Philosophers")

        with pytest.raises(DuplicateGroupError):
            groups.add_group("PHILOSOPHERS")

    def test_remove_member_and_group(self, groups):
        groups.add_group("Philosophers")
        groups.add_advisor("Philosophers", "Stoic")

        assert groups.remove_advisor("Philosophers", "STOIC").advisors == []
        assert groups.remove_group("Philosophers") is True
        assert groups.remove_group("Philosophers") is False

    def test_unknown_group(self, groups):
        with pytest.raises(AdvisorNotFoundError, match="Group"):
            groups.add_advisor("Missing", "Stoic")


class TestAppPreferences:
    """Tests for scalar preferences."""

    def test_defaults(self, preferences):
        assert preferences.as_dict() == {
            "max_tokens": 2048,
            "reasoning_mode": False,
            "sidebar_collapsed": False,
            "auto_scroll": True,
            "paragraph_spacing": 1.0,
        }

    def test_loads_stored_values(self, kv, scheduler, keys):
        kv.set_item(keys.max_tokens, "4096")
        kv.set_item(keys.reasoning_mode, "true")
        kv.set_item(keys.paragraph_spacing, "1.5")

        preferences = AppPreferences(kv, scheduler, keys)

        assert preferences.get("max_tokens") == 4096
        assert preferences.get("reasoning_mode") is True
        assert preferences.get("paragraph_spacing") == 1.5

    def test_malformed_values_fall_back_to_defaults(self, kv, scheduler, keys):
        kv.set_item(keys.max_tokens, "lots")
        kv.set_item(keys.auto_scroll, "maybe")
        kv.set_item(keys.sidebar_collapsed, "true")

        preferences = AppPreferences(kv, scheduler, keys)

        assert preferences.get("max_tokens") == 2048
        assert preferences.get("auto_scroll") is True
        assert preferences.get("sidebar_collapsed") is True

    def test_undecodable_value_falls_back_to_default(self, kv, scheduler, keys):
        kv.path_for(keys.max_tokens).write_bytes(b"\xff4096")

        assert AppPreferences(kv, scheduler, keys).get("max_tokens") == 2048

    def test_set_persists_json(self, preferences, scheduler, kv, keys):
        preferences.set("reasoning_mode", True)
        preferences.set("max_tokens", 1024)
        scheduler.flush()

        assert kv.get_item(keys.reasoning_mode) == "true"
        assert kv.get_item(keys.max_tokens) == "1024"

    def test_set_rejects_invalid_value(self, preferences, scheduler):
        with pytest.raises(ValidationError):
            preferences.set("max_tokens", 0)

        assert preferences.get("max_tokens") == 2048
        assert scheduler.pending_count == 0

    def test_set_unknown_preference(self, preferences):
        with pytest.raises(KeyError):
            preferences.set("theme", "dark")

    def test_reset(self, preferences, scheduler, kv, keys):
        preferences.set("max_tokens", 1024)
        scheduler.flush()
        preferences.set("auto_scroll", False)

        preferences.reset()
        scheduler.flush()

        assert preferences.get("max_tokens") == 2048
        assert kv.get_item(keys.max_tokens) is None
        assert kv.get_item(keys.auto_scroll) is None

    def test_hydrate(self, preferences, scheduler):
        preferences.hydrate("max_tokens", 512)
        preferences.hydrate("max_tokens", -1)
        preferences.hydrate("auto_scroll", None)

        assert preferences.get("max_tokens") == 512
        assert preferences.get("auto_scroll") is True
        assert scheduler.pending_count == 0


class TestParseBool:
    """Tests for parse_bool."""

    def test_values(self):
        assert parse_bool("true") is True
        assert parse_bool(" False ") is False

    def test_rejects_other_strings(self):
        with pytest.raises(ValueError):
            parse_bool("1")


class TestCrossContext:
    """Two contexts sharing one store directory."""

    def test_roster_change_reaches_other_context_without_echo(self, store_dir, keys):
        store_a = KeyValueStore(store_dir)
        store_b = KeyValueStore(store_dir)
        scheduler_a = DebouncedPersistenceScheduler(store_a, delay=10)
        scheduler_b = DebouncedPersistenceScheduler(store_b, delay=10)
        roster_a = AdvisorRoster(store_a, scheduler_a, keys)
        roster_b = AdvisorRoster(store_b, scheduler_b, keys)
        listener_b = CrossContextSyncListener(store_b)
        roster_b.bind(listener_b)

        roster_a.add("Stoic")
        roster_a.add("Poet")
        scheduler_a.flush()
        listener_b.handle_change(keys.advisors)

        assert [a.name for a in roster_b.items] == ["Stoic", "Poet"]
        assert scheduler_b.pending_count == 0
        assert scheduler_b.writes == 0

    def test_preference_change_reaches_other_context(self, store_dir, keys):
        store_a = KeyValueStore(store_dir)
        store_b = KeyValueStore(store_dir)
        scheduler_a = DebouncedPersistenceScheduler(store_a, delay=10)
        scheduler_b = DebouncedPersistenceScheduler(store_b, delay=10)
        preferences_a = AppPreferences(store_a, scheduler_a, keys)
        preferences_b = AppPreferences(store_b, scheduler_b, keys)
        listener_b = CrossContextSyncListener(store_b)
        preferences_b.bind(listener_b)

        preferences_a.set("max_tokens", 4096)
        preferences_a.set("reasoning_mode", True)
        scheduler_a.flush()
        for key in (keys.max_tokens, keys.reasoning_mode):
            listener_b.handle_change(key)

        assert preferences_b.get("max_tokens") == 4096
        assert preferences_b.get("reasoning_mode") is True
        assert scheduler_b.pending_count == 0
