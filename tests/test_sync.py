from types import SimpleNamespace

import pytest

from linkgrove.services.messages import MessageBus
from linkgrove.services.mutations import MutationEngine
from linkgrove.services.persistence import MemoryKeyValueStore
from linkgrove.services.sync import AppInstance, SyncOrchestrator
from linkgrove.services.tree import LINKS_KEY, TreeStore


def test_request_sync_without_capability_is_a_noop():
    orchestrator = SyncOrchestrator()

    assert orchestrator.available is False
    assert orchestrator.request_sync("links") is False


def test_request_sync_maps_topics_to_tags(sync_manager):
    orchestrator = SyncOrchestrator(sync_manager=sync_manager)

    assert orchestrator.request_sync("links") is True
    assert orchestrator.request_sync("groups") is True
    assert sync_manager.tags == ["sync-links", "sync-groups"]
    with pytest.raises(ValueError):
        orchestrator.request_sync("tags")


def test_registration_failure_is_swallowed():
    def explode(tag):
        raise RuntimeError("worker gone")

    orchestrator = SyncOrchestrator(sync_manager=SimpleNamespace(register_sync=explode))

    assert orchestrator.request_sync("groups") is False


def test_connectivity_transitions_notify_listeners():
    seen = []
    orchestrator = SyncOrchestrator()
    orchestrator.on_change(seen.append)

    assert orchestrator.set_online(False) is True
    assert orchestrator.set_online(False) is False
    assert orchestrator.set_online(True) is True
    assert seen == [False, True]
    assert orchestrator.status() == {"online": True, "sync_available": False}


def test_every_mutation_registers_its_topic(engine, sync_manager):
    group = engine.add_group({"name": "G"})
    link = engine.add_link({"title": "L", "url": "https://l.example"})
    engine.move_link(link.id, group.id)
    engine.edit_group(group.id, {"name": "G2"})
    engine.delete_link(link.id)

    assert sync_manager.tags == [
        "sync-groups",
        "sync-links",
        "sync-links",
        "sync-groups",
        "sync-links",
    ]


def test_app_instance_reloads_store_on_sync_message():
    adapter = MemoryKeyValueStore()
    store = TreeStore.load(adapter)
    engine = MutationEngine(store)
    bus = MessageBus()
    instance = AppInstance(bus, engine)

    adapter.write(
        LINKS_KEY,
        [{"id": "x", "title": "X", "url": "https://x.example", "createdAt": "2024-01-01T00:00:00Z"}],
    )
    assert store.links == {}

    delivered = bus.broadcast({"type": "SYNC_LINKS", "timestamp": 1})
    messages = instance.process_messages()

    assert delivered == 1
    assert [m["type"] for m in messages] == ["SYNC_LINKS"]
    assert list(store.links) == ["x"]
    assert instance.reloads == 1
    assert instance.last_messages["SYNC_LINKS"]["timestamp"] == 1


def test_daily_sync_is_recorded_without_reload():
    engine = MutationEngine(TreeStore.load(MemoryKeyValueStore()))
    bus = MessageBus()
    instance = AppInstance(bus, engine)

    bus.broadcast({"type": "DAILY_SYNC", "timestamp": 5})
    instance.process_messages()

    assert instance.reloads == 0
    assert "DAILY_SYNC" in instance.last_messages


def test_broadcast_without_clients_is_dropped():
    bus = MessageBus()
    assert bus.broadcast({"type": "SYNC_GROUPS", "timestamp": 1}) == 0


def test_apply_update_without_waiting_controller():
    engine = MutationEngine(TreeStore.load(MemoryKeyValueStore()))
    instance = AppInstance(MessageBus(), engine)

    assert instance.update_available is False
    assert instance.apply_update() is False


def test_attach_and_detach_sync_capability(sync_manager):
    orchestrator = SyncOrchestrator()
    orchestrator.attach(sync_manager)

    assert orchestrator.request_sync("links") is True

    orchestrator.detach()

    assert orchestrator.request_sync("links") is False
    assert sync_manager.tags == ["sync-links"]
