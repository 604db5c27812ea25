from __future__ import annotations

import logging
import threading
from typing import Callable

from linkgrove.services.messages import (
    MESSAGE_DAILY_SYNC,
    MESSAGE_SKIP_WAITING,
    MESSAGE_SYNC_GROUPS,
    MESSAGE_SYNC_LINKS,
    SYNC_TAG_GROUPS,
    SYNC_TAG_LINKS,
    ClientChannel,
    MessageBus,
)

logger = logging.getLogger(__name__)

SYNC_TOPIC_LINKS = "links"
SYNC_TOPIC_GROUPS = "groups"

SYNC_TOPIC_TAGS = {
    SYNC_TOPIC_LINKS: SYNC_TAG_LINKS,
    SYNC_TOPIC_GROUPS: SYNC_TAG_GROUPS,
}


class SyncOrchestrator:
    """Connectivity flag plus background-sync registration for mutation topics."""

    def __init__(self, sync_manager=None, online: bool = True):
        self._lock = threading.Lock()
        self._online = online
        self._sync_manager = sync_manager
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    @property
    def available(self) -> bool:
        manager = self._sync_manager
        if manager is None:
            return False
        return bool(getattr(manager, "sync_available", True))

    def attach(self, sync_manager) -> None:
        self._sync_manager = sync_manager

    def detach(self) -> None:
        self._sync_manager = None

    def on_change(self, callback: Callable[[bool], None]) -> None:
        self._listeners.append(callback)

    def set_online(self, online: bool) -> bool:
        online = bool(online)
        with self._lock:
            changed = online != self._online
            self._online = online
        if not changed:
            return False
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for callback in list(self._listeners):
            try:
                callback(online)
            except Exception as exc:
                logger.warning("Connectivity listener failed: %s", exc)
        return True

    def request_sync(self, topic: str) -> bool:
        tag = SYNC_TOPIC_TAGS.get(topic)
        if tag is None:
            raise ValueError(f"unknown sync topic: {topic}")
        if not self.available:
            logger.debug("Background sync unavailable; skipping %s", tag)
            return False
        try:
            self._sync_manager.register_sync(tag)
        except Exception as exc:
            logger.warning("Background sync registration failed for %s: %s", tag, exc)
            return False
        logger.debug("Background sync registered: %s", tag)
        return True

    def status(self) -> dict:
        return {"online": self.online, "sync_available": self.available}


class AppInstance:
    """Application-side end of the message bus.

    Sync messages from the controller are only a cue: the instance reloads its
    tree from persisted state through the engine and remembers what it saw.
    """

    def __init__(self, bus: MessageBus, engine, client_id: str | None = None):
        self.bus = bus
        self.engine = engine
        self.channel: ClientChannel = bus.connect(client_id)
        self.last_messages: dict[str, dict] = {}
        self.reloads = 0

    def process_messages(self) -> list[dict]:
        messages = self.channel.drain()
        reload_needed = False
        for message in messages:
            message_type = message.get("type")
            if message_type in {MESSAGE_SYNC_LINKS, MESSAGE_SYNC_GROUPS}:
                reload_needed = True
            elif message_type == MESSAGE_DAILY_SYNC:
                logger.info("Daily sync cue received")
            else:
                logger.debug("Ignoring message %r", message_type)
                continue
            self.last_messages[message_type] = message
        if reload_needed:
            self.engine.reload()
            self.reloads += 1
        return messages

    @property
    def update_available(self) -> bool:
        return self.bus.waiting is not None

    def apply_update(self, timeout: float = 10.0) -> bool:
        future = self.bus.post_to_waiting({"type": MESSAGE_SKIP_WAITING})
        if future is None:
            return False
        future.result(timeout=timeout)
        self.engine.reload()
        self.reloads += 1
        return True

    def close(self) -> None:
        self.bus.disconnect(self.channel)
