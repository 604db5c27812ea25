from __future__ import annotations

import logging
import queue
import threading
import time
import uuid

logger = logging.getLogger(__name__)

MESSAGE_SYNC_LINKS = "SYNC_LINKS"
MESSAGE_SYNC_GROUPS = "SYNC_GROUPS"
MESSAGE_DAILY_SYNC = "DAILY_SYNC"
MESSAGE_SKIP_WAITING = "SKIP_WAITING"

SYNC_TAG_LINKS = "sync-links"
SYNC_TAG_GROUPS = "sync-groups"
SYNC_TAG_DAILY = "daily-sync"

SYNC_TAG_MESSAGES = {
    SYNC_TAG_LINKS: MESSAGE_SYNC_LINKS,
    SYNC_TAG_GROUPS: MESSAGE_SYNC_GROUPS,
    SYNC_TAG_DAILY: MESSAGE_DAILY_SYNC,
}


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def sync_message(tag: str) -> dict | None:
    message_type = SYNC_TAG_MESSAGES.get(tag)
    if message_type is None:
        return None
    return {"type": message_type, "timestamp": timestamp_ms()}


class ClientChannel:
    """Inbox of one connected application instance."""

    def __init__(self, client_id: str | None = None):
        self.id = client_id or str(uuid.uuid4())
        self._queue: queue.Queue[dict] = queue.Queue()

    def post(self, message: dict) -> None:
        self._queue.put(dict(message))

    def drain(self) -> list[dict]:
        messages = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages

    def get(self, timeout: float | None = None) -> dict | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


class MessageBus:
    """Connects application instances with the active cache controller.

    Only message payloads cross this boundary; the controller never sees
    application state and instances never touch the controller's caches.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._clients: dict[str, ClientChannel] = {}
        self.controller = None
        self.waiting = None

    def connect(self, client_id: str | None = None) -> ClientChannel:
        channel = ClientChannel(client_id)
        with self._lock:
            self._clients[channel.id] = channel
        return channel

    def disconnect(self, channel: ClientChannel) -> None:
        with self._lock:
            self._clients.pop(channel.id, None)

    def clients(self) -> list[ClientChannel]:
        with self._lock:
            return list(self._clients.values())

    def broadcast(self, message: dict) -> int:
        delivered = 0
        for channel in self.clients():
            channel.post(message)
            delivered += 1
        if not delivered:
            logger.debug("No clients connected for %s", message.get("type"))
        return delivered

    def claim(self, controller) -> None:
        with self._lock:
            previous = self.controller
            self.controller = controller
            if self.waiting is controller:
                self.waiting = None
        if previous is not None and previous is not controller:
            previous.retire()
        logger.info("Controller %s now controls %d client(s)", controller.version, len(self.clients()))

    def set_waiting(self, controller) -> None:
        with self._lock:
            self.waiting = controller

    def post_to_waiting(self, message: dict):
        waiting = self.waiting
        if waiting is None:
            return None
        return waiting.post_message(message)
