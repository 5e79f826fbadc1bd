from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from agenthub.exceptions import StorageIOError
from agenthub.models import Agent, CommandKind, PollConfig, QueuedCommand
from agenthub.store import AgentCollection, HubStore


@pytest.fixture
def store() -> Iterator[HubStore]:
    hub_store = HubStore()
    yield hub_store
    hub_store.close()


def test_log_keeps_insertion_order_and_filters(store: HubStore) -> None:
    gps = store.agent_data("A1").log(AgentCollection.GPS)
    gps.push({"latitude": 1.0, "tag": "a"})
    gps.push({"latitude": 2.0, "tag": "b"})
    gps.push({"latitude": 3.0, "tag": "a"})

    assert len(gps) == 3
    assert [d["latitude"] for d in gps.value()] == [1.0, 2.0, 3.0]
    assert [d["latitude"] for d in gps.filter({"tag": "a"})] == [1.0, 3.0]
    assert store.agent_data("A2").log(AgentCollection.GPS).value() == []


def test_returned_documents_are_copies(store: HubStore) -> None:
    clipboard = store.agent_data("A1").log(AgentCollection.CLIPBOARD)
    clipboard.push({"content": "x", "nested": {"n": 1}})

    found = clipboard.value()[0]
    found["nested"]["n"] = 99

    assert clipboard.value() == [{"content": "x", "nested": {"n": 1}}]


def test_push_new_skips_known_hashes(store: HubStore) -> None:
    sms = store.agent_data("A1").log(AgentCollection.SMS)
    assert sms.push_new([{"body": "a", "hash": "h1"}, {"body": "b", "hash": "h2"}, {"body": "a", "hash": "h1"}]) == 2
    assert sms.push_new([{"body": "b", "hash": "h2"}, {"body": "c", "hash": "h3"}]) == 1

    assert [d["body"] for d in sms.value()] == ["a", "b", "c"]
    assert store.agent_data("A1").log(AgentCollection.CALLS).push_new([{"hash": "h1"}]) == 1


def test_keyed_entries_are_unique_per_collection(store: HubStore) -> None:
    calls = store.agent_data("A1").log(AgentCollection.CALLS)
    calls.push({"n": 1}, key="k")

    with pytest.raises(StorageIOError):
        calls.push({"n": 2}, key="k")

    assert calls.value() == [{"n": 1}]


def test_upsert_inserts_then_patches(store: HubStore) -> None:
    wifi = store.agent_data("A1").log(AgentCollection.WIFI_LOG)

    assert wifi.upsert("home", {"SSID": "home", "firstSeen": 1, "lastSeen": 1}, {"lastSeen": 1}) is True
    assert wifi.upsert("home", {"SSID": "home", "firstSeen": 2, "lastSeen": 2}, {"lastSeen": 2}) is False

    assert wifi.value() == [{"SSID": "home", "firstSeen": 1, "lastSeen": 2}]


def test_snapshots_replace_wholesale(store: HubStore) -> None:
    data = store.agent_data("A1")
    apps = data.collection(AgentCollection.APPS)
    assert apps.value() == []

    data.snapshot(AgentCollection.APPS).replace([{"appName": "Maps"}, {"appName": "Mail"}])
    data.snapshot(AgentCollection.APPS).replace([{"appName": "Notes"}])

    assert apps.value() == [{"appName": "Notes"}]
    assert data.snapshot(AgentCollection.PERMISSIONS).value() == []


def test_command_queue_order_and_removal(store: HubStore) -> None:
    queue = store.agent_data("A1").command_queue
    enqueued = datetime(2026, 1, 1, tzinfo=UTC)
    queue.push(QueuedCommand(uid="u1", kind=CommandKind.WIFI, enqueued_at=enqueued))
    queue.push(QueuedCommand(uid="u2", kind=CommandKind.SMS, payload={"to": "+1", "sms": "hi"}))

    entries = queue.filter()
    assert [e["uid"] for e in entries] == ["u1", "u2"]
    assert entries[1]["payload"] == {"to": "+1", "sms": "hi"}
    restored = QueuedCommand.model_validate(entries[0])
    assert restored.kind is CommandKind.WIFI
    assert restored.enqueued_at == enqueued

    assert queue.remove("u1") is True
    assert queue.remove("u1") is False
    assert len(queue) == 1


def test_command_queue_holds_one_entry_per_kind(store: HubStore) -> None:
    queue = store.agent_data("A1").command_queue
    queue.push(QueuedCommand(uid="u1", kind=CommandKind.WIFI))

    with pytest.raises(StorageIOError) as excinfo:
        queue.push(QueuedCommand(uid="u2", kind=CommandKind.WIFI))

    assert excinfo.value.url == "sqlite://"
    assert [e["uid"] for e in queue.filter()] == ["u1"]
    store.agent_data("A2").command_queue.push(QueuedCommand(uid="u3", kind=CommandKind.WIFI))


def test_agent_records(store: HubStore) -> None:
    first = datetime(2026, 1, 1, tzinfo=UTC)
    store.save_agent(Agent(agent_id="B", first_seen=first, last_seen=first, is_online=True))
    store.save_agent(Agent(agent_id="A", first_seen=first, last_seen=first, is_online=True))
    later = datetime(2026, 1, 2, tzinfo=UTC)
    store.save_agent(Agent(agent_id="C", first_seen=later, is_online=True, dynamic_data={"model": "Pixel"}))

    assert [a.agent_id for a in store.list_agents()] == ["A", "B", "C"]
    agent = store.get_agent("C")
    assert agent is not None
    assert agent.dynamic_data == {"model": "Pixel"}
    assert agent.first_seen.tzinfo is not None
    assert store.get_agent("missing") is None

    assert store.mark_all_offline(keep=["A"]) == 2
    assert [a.agent_id for a in store.list_agents() if a.is_online] == ["A"]
    assert store.mark_all_offline() == 1


def test_remove_agent_keeps_history_unless_purged(store: HubStore) -> None:
    store.save_agent(Agent(agent_id="A1"))
    data = store.agent_data("A1")
    data.log(AgentCollection.SMS).push({"body": "x", "hash": "h"})
    data.snapshot(AgentCollection.APPS).replace([{"appName": "Maps"}])
    data.command_queue.push(QueuedCommand(uid="u1", kind=CommandKind.WIFI))

    assert store.remove_agent("A1") is True
    assert store.get_agent("A1") is None
    assert len(data.log(AgentCollection.SMS)) == 1
    assert len(data.command_queue) == 1

    store.save_agent(Agent(agent_id="A1"))
    assert store.remove_agent("A1", purge=True) is True
    assert data.log(AgentCollection.SMS).value() == []
    assert data.snapshot(AgentCollection.APPS).value() == []
    assert len(data.command_queue) == 0
    assert store.remove_agent("A1") is False


def test_database_file_survives_reopen(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'nested' / 'agenthub.db'}"
    store = HubStore(url)
    store.save_agent(Agent(agent_id="A1"))
    data = store.agent_data("A1")
    data.log(AgentCollection.SMS).push({"address": "+1", "body": "x", "hash": "h"})
    data.set_poll_config(PollConfig(update_frequency_seconds=60))
    store.close()

    assert (tmp_path / "nested" / "agenthub.db").exists()

    reopened = HubStore(url)
    try:
        agent = reopened.get_agent("A1")
        assert agent is not None
        assert agent.agent_id == "A1"
        assert reopened.agent_data("A1").poll_config().update_frequency_seconds == 60
        assert len(reopened.agent_data("A1").collection(AgentCollection.SMS)) == 1
    finally:
        reopened.close()


def test_unreachable_database_raises(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("")

    with pytest.raises(StorageIOError) as excinfo:
        HubStore(f"sqlite:///{blocker / 'agenthub.db'}")

    assert excinfo.value.url is not None
