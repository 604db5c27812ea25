from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from urllib.parse import urldefrag, urljoin, urlparse

import httpx

from linkgrove.services.messages import (
    MESSAGE_SKIP_WAITING,
    SYNC_TAG_DAILY,
    MessageBus,
    sync_message,
)

logger = logging.getLogger(__name__)

DESTINATION_DOCUMENT = "document"
DESTINATION_STYLE = "style"
DESTINATION_SCRIPT = "script"
DESTINATION_IMAGE = "image"

CACHE_FIRST_DESTINATIONS = {DESTINATION_STYLE, DESTINATION_SCRIPT, DESTINATION_IMAGE}

STATE_PARSED = "parsed"
STATE_INSTALLING = "installing"
STATE_INSTALLED = "installed"
STATE_ACTIVATING = "activating"
STATE_ACTIVATED = "activated"
STATE_REDUNDANT = "redundant"

_EXTENSION_DESTINATIONS = {
    ".css": DESTINATION_STYLE,
    ".js": DESTINATION_SCRIPT,
    ".mjs": DESTINATION_SCRIPT,
    ".ts": DESTINATION_SCRIPT,
    ".tsx": DESTINATION_SCRIPT,
    ".png": DESTINATION_IMAGE,
    ".jpg": DESTINATION_IMAGE,
    ".jpeg": DESTINATION_IMAGE,
    ".gif": DESTINATION_IMAGE,
    ".webp": DESTINATION_IMAGE,
    ".svg": DESTINATION_IMAGE,
    ".ico": DESTINATION_IMAGE,
    ".html": DESTINATION_DOCUMENT,
    "": DESTINATION_DOCUMENT,
}


class OfflineFetchError(Exception):
    """Network failed and no cached copy could stand in for it."""


class InstallError(Exception):
    pass


def guess_destination(path: str, header: str | None = None) -> str:
    if header and header not in {"empty", "unknown"}:
        return header
    suffix = PurePosixPath(urlparse(path).path).suffix.lower()
    return _EXTENSION_DESTINATIONS.get(suffix, "")


@dataclass
class ResourceRequest:
    url: str
    method: str = "GET"
    destination: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    @property
    def key(self) -> str:
        return urldefrag(self.url)[0]


@dataclass
class CachedResponse:
    url: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> CachedResponse:
        return cls(
            url=str(response.request.url) if response.request else "",
            status_code=response.status_code,
            headers={
                key: value
                for key, value in response.headers.items()
                if key.lower() not in {"content-encoding", "content-length", "transfer-encoding"}
            },
            content=response.content,
        )


class CacheStorage:
    """Named caches of responses keyed by URL, shared across controller versions."""

    def __init__(self):
        self._lock = threading.Lock()
        self._caches: dict[str, dict[str, CachedResponse]] = {}

    def open(self, name: str) -> None:
        with self._lock:
            self._caches.setdefault(name, {})

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._caches)

    def delete(self, name: str) -> bool:
        with self._lock:
            return self._caches.pop(name, None) is not None

    def put(self, name: str, key: str, response: CachedResponse) -> None:
        with self._lock:
            self._caches.setdefault(name, {})[key] = response

    def match(self, key: str, names: list[str] | None = None) -> CachedResponse | None:
        with self._lock:
            for name in names if names is not None else list(self._caches):
                cached = self._caches.get(name, {}).get(key)
                if cached is not None:
                    return cached
        return None

    def entries(self, name: str) -> list[str]:
        with self._lock:
            return list(self._caches.get(name, {}))


class OfflineCacheController:
    """Caching proxy and background-sync runner for the application shell.

    Runs its own asyncio loop in a daemon thread. Public methods are safe to
    call from any thread and hand work to the loop; the caches are only read
    and written by coroutines running there.
    """

    def __init__(
        self,
        origin: str,
        version: str,
        shell_assets: list[str],
        *,
        prefix: str = "linkgrove",
        storage: CacheStorage | None = None,
        bus: MessageBus | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
        allowed_hosts: list[str] | tuple[str, ...] = ("google.com",),
        skip_waiting: bool = True,
        online: bool = True,
    ):
        self.origin = origin.rstrip("/")
        self.version = version
        self.shell_assets = list(shell_assets)
        self.cache_name = f"{prefix}-v{version}"
        self.static_cache_name = f"{prefix}-static-v{version}"
        self.dynamic_cache_name = f"{prefix}-dynamic-v{version}"
        self.storage = storage or CacheStorage()
        self.bus = bus or MessageBus()
        self.allowed_hosts = [host.lower() for host in allowed_hosts]
        self.skip_waiting = skip_waiting
        self.state = STATE_PARSED

        self._origin_parts = self._url_origin(self.origin)
        self._transport = transport
        self._timeout = timeout
        self._online = online
        self._pending_syncs: set[str] = set()
        self._flush_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._client: httpx.AsyncClient | None = None
        self._ready = threading.Event()
        self._stopping = False

    @staticmethod
    def _url_origin(url: str) -> tuple[str, str]:
        parsed = urlparse(url)
        return parsed.scheme.lower(), parsed.netloc.lower()

    @property
    def cache_names(self) -> set[str]:
        return {self.cache_name, self.static_cache_name, self.dynamic_cache_name}

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    @property
    def sync_available(self) -> bool:
        return self.running and self.state != STATE_REDUNDANT

    def resolve(self, path: str) -> str:
        return urljoin(f"{self.origin}/", path.lstrip("/"))

    def start(self) -> OfflineCacheController:
        if self._thread is not None:
            return self
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name=f"offline-cache-{self.version}",
        )
        self._thread.start()
        self._ready.wait(timeout=5)
        return self

    def _run_loop(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        self._client = httpx.AsyncClient(
            transport=self._transport,
            timeout=self._timeout,
            follow_redirects=True,
        )
        loop.call_soon(self._ready.set)
        try:
            loop.run_forever()
        finally:
            pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(self._client.aclose())
            loop.close()

    def stop(self, wait: bool = True) -> None:
        loop = self._loop
        if loop is None:
            return
        if not self._stopping:
            self._stopping = True
            loop.call_soon_threadsafe(loop.stop)
        if wait and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)

    def retire(self) -> None:
        self.state = STATE_REDUNDANT
        logger.info("Controller %s retired", self.version)
        self.stop(wait=False)

    def _submit(self, func, *args) -> Future:
        if not self.running:
            raise RuntimeError("offline cache controller is not running")
        return asyncio.run_coroutine_threadsafe(func(*args), self._loop)

    def _spawn(self, coro) -> None:
        task = self._loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def should_intercept(self, request: ResourceRequest) -> bool:
        if request.method.upper() != "GET":
            return False
        if self._url_origin(request.url) == self._origin_parts:
            return True
        host = (urlparse(request.url).hostname or "").lower()
        return any(
            host == allowed or host.endswith(f".{allowed}")
            for allowed in self.allowed_hosts
        )

    def handle(self, request: ResourceRequest) -> Future:
        return self._submit(self.respond, request)

    async def respond(self, request: ResourceRequest) -> CachedResponse:
        if not self.should_intercept(request):
            return await self._fetch(request)
        if request.destination in CACHE_FIRST_DESTINATIONS:
            return await self.cache_first(request)
        return await self.network_first(request)

    async def _fetch(self, request: ResourceRequest) -> CachedResponse:
        if not self._online:
            raise OfflineFetchError(f"offline: {request.url}")
        try:
            response = await self._client.request(
                request.method,
                request.url,
                headers=request.headers or None,
                content=request.body,
            )
        except httpx.HTTPError as exc:
            raise OfflineFetchError(f"{request.url}: {exc}") from exc
        return CachedResponse.from_httpx(response)

    async def network_first(self, request: ResourceRequest) -> CachedResponse:
        try:
            response = await self._fetch(request)
            if response.ok:
                self.storage.put(self.dynamic_cache_name, request.key, response)
                return response
            failure = OfflineFetchError(
                f"{request.url} answered {response.status_code}"
            )
        except OfflineFetchError as exc:
            failure = exc

        logger.info("Network failed for %s, trying cache", request.url)
        cached = self.storage.match(
            request.key, [self.dynamic_cache_name, self.static_cache_name]
        )
        if cached is not None:
            return cached
        if request.destination == DESTINATION_DOCUMENT:
            shell = self.storage.match(self.resolve("/"), [self.static_cache_name])
            if shell is not None:
                return shell
        raise failure

    async def cache_first(self, request: ResourceRequest) -> CachedResponse:
        cached = self.storage.match(request.key, [self.static_cache_name])
        if cached is not None:
            self._spawn(self._refresh_static(request))
            return cached

        response = await self._fetch(request)
        if response.ok:
            self.storage.put(self.static_cache_name, request.key, response)
        return response

    async def _refresh_static(self, request: ResourceRequest) -> None:
        try:
            response = await self._fetch(request)
        except Exception as exc:
            logger.debug("Background refresh of %s failed: %s", request.url, exc)
            return
        if response.ok:
            self.storage.put(self.static_cache_name, request.key, response)

    def install(self) -> Future:
        return self._submit(self._install)

    async def _install(self) -> str:
        self.state = STATE_INSTALLING
        logger.info("Installing controller %s", self.version)
        urls = [self.resolve(path) for path in self.shell_assets]
        try:
            responses = await asyncio.gather(
                *(self._fetch(ResourceRequest(url)) for url in urls)
            )
            failed = [url for url, response in zip(urls, responses) if not response.ok]
            if failed:
                raise InstallError(f"shell assets unavailable: {', '.join(failed)}")
        except (OfflineFetchError, InstallError) as exc:
            self.state = STATE_REDUNDANT
            logger.error("Controller %s failed to install: %s", self.version, exc)
            raise InstallError(str(exc)) from exc

        self.storage.open(self.static_cache_name)
        for url, response in zip(urls, responses):
            self.storage.put(self.static_cache_name, urldefrag(url)[0], response)
        self.state = STATE_INSTALLED
        logger.info("Cached %d shell assets", len(urls))

        if self.skip_waiting:
            await self._activate()
        else:
            self.bus.set_waiting(self)
        return self.state

    def activate(self) -> Future:
        return self._submit(self._activate)

    async def _activate(self) -> list[str]:
        self.state = STATE_ACTIVATING
        deleted = []
        for name in self.storage.keys():
            if name not in self.cache_names:
                logger.info("Deleting old cache %s", name)
                self.storage.delete(name)
                deleted.append(name)
        self.bus.claim(self)
        self.state = STATE_ACTIVATED
        return deleted

    def post_message(self, message: dict) -> Future | None:
        if message.get("type") == MESSAGE_SKIP_WAITING:
            return self._submit(self._skip_waiting)
        logger.debug("Controller ignoring message %r", message.get("type"))
        return None

    async def _skip_waiting(self) -> str:
        if self.state == STATE_INSTALLED:
            await self._activate()
        return self.state

    def register_sync(self, tag: str) -> None:
        if not self.running:
            raise RuntimeError("offline cache controller is not running")
        self._loop.call_soon_threadsafe(self._register_sync, tag)

    def _register_sync(self, tag: str) -> None:
        self._pending_syncs.add(tag)
        if self._online:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = self._loop.create_task(self._flush_syncs())

    async def _flush_syncs(self) -> None:
        while self._pending_syncs and self._online:
            tag = self._pending_syncs.pop()
            await self.on_sync_trigger(tag)

    def set_online(self, online: bool) -> None:
        if not self.running:
            self._online = online
            return
        self._loop.call_soon_threadsafe(self._set_online, online)

    def _set_online(self, online: bool) -> None:
        self._online = online
        if online and self._pending_syncs:
            self._schedule_flush()

    def periodic_sync(self, tag: str = SYNC_TAG_DAILY) -> Future:
        return self._submit(self.on_sync_trigger, tag)

    async def on_sync_trigger(self, tag: str) -> int:
        message = sync_message(tag)
        if message is None:
            logger.warning("Unknown background sync tag %s", tag)
            return 0
        logger.info("Background sync triggered: %s", tag)
        return self.bus.broadcast(message)

    def pending_syncs(self) -> Future:
        return self._submit(self._pending_snapshot)

    async def _pending_snapshot(self) -> list[str]:
        return sorted(self._pending_syncs)

    def status(self) -> dict:
        return {
            "version": self.version,
            "state": self.state,
            "running": self.running,
            "caches": sorted(self.storage.keys()),
        }
