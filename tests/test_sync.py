"""Tests for cross-context change propagation."""

import json
import threading
from pathlib import Path

import pytest

from spacesync.kvstore import KeyValueStore
from spacesync.sync import CrossContextSyncListener


@pytest.fixture
def writer(store_dir: Path) -> KeyValueStore:
    """The store of another context sharing the same directory."""
    return KeyValueStore(store_dir)


@pytest.fixture
def listener(kv: KeyValueStore) -> CrossContextSyncListener:
    return CrossContextSyncListener(kv)


class TestHandleChange:
    """Tests for CrossContextSyncListener.handle_change."""

    def test_delivers_parsed_value_from_other_context(self, listener, writer):
        received = []
        listener.subscribe("space_advisors", received.append)

        writer.set_item("space_advisors", json.dumps([{"name": "Poet"}]))
        delivered = listener.handle_change("space_advisors")

        assert delivered == 1
        assert received == [[{"name": "Poet"}]]

    def test_own_writes_are_not_delivered(self, listener, kv):
        received = []
        listener.subscribe("space_advisors", received.append)

        kv.set_item("space_advisors", "[]")

        assert listener.handle_change("space_advisors") == 0
        assert received == []

    def test_same_value_is_delivered_once(self, listener, writer):
        received = []
        listener.subscribe("space_max_tokens", received.append)

        writer.set_item("space_max_tokens", "4096")
        listener.handle_change("space_max_tokens")
        listener.handle_change("space_max_tokens")

        assert received == [4096]

    def test_removal_delivers_none(self, listener, writer):
        writer.set_item("space_advisor_groups", "[]")
        received = []
        listener.subscribe("space_advisor_groups", received.append)

        writer.remove_item("space_advisor_groups")
        listener.handle_change("space_advisor_groups")

        assert received == [None]

    def test_unparseable_value_is_ignored(self, listener, writer, caplog):
        received = []
        listener.subscribe("space_advisors", received.append)

        writer.set_item("space_advisors", "{broken")
        delivered = listener.handle_change("space_advisors")

        assert delivered == 0
        assert received == []
        assert "unparseable" in caplog.text

    def test_undecodable_value_is_ignored(self, listener, writer, caplog):
        received = []
        listener.subscribe("space_advisors", received.append)

        writer.path_for("space_advisors").write_bytes(b"\xff\xfe[]")
        delivered = listener.handle_change("space_advisors")

        assert delivered == 0
        assert received == []
        assert "undecodable" in caplog.text

    def test_failing_subscriber_does_not_affect_others(self, listener, writer):
        received = []

        def broken(value):
            raise RuntimeError("subscriber bug")

        listener.subscribe("space_advisors", broken)
        listener.subscribe("space_advisors", received.append)

        writer.set_item("space_advisors", "[]")
        listener.handle_change("space_advisors")

        assert received == [[]]

    def test_unwatched_keys_are_ignored(self, listener, writer):
        writer.set_item("space_session_1", "{}")

        assert listener.handle_change("space_session_1") == 0

    def test_unsubscribe(self, listener, writer):
        received = []
        subscription = listener.subscribe("space_advisors", received.append)

        subscription.unsubscribe()
        writer.set_item("space_advisors", "[]")

        assert listener.handle_change("space_advisors") == 0
        assert listener.watched_keys == []

    def test_raw_values_without_parser(self, listener, writer):
        received = []
        listener.subscribe("space_current_session", received.append, parser=None)

        writer.set_item("space_current_session", "12")
        listener.handle_change("space_current_session")

        assert received == ["12"]


class TestObserver:
    """Tests with the watchdog observer running."""

    def test_change_from_other_context_arrives_without_manual_poll(self, kv, writer):
        arrived = threading.Event()
        received = []

        def on_change(value):
            received.append(value)
            arrived.set()

        listener = CrossContextSyncListener(kv, use_polling=True, poll_interval=0.1)
        listener.subscribe("space_advisors", on_change)

        with listener:
            assert listener.is_running
            writer.set_item("space_advisors", json.dumps([{"name": "Sage"}]))
            assert arrived.wait(timeout=5)

        assert received[-1] == [{"name": "Sage"}]
        assert not listener.is_running
