from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from linkgrove import create_app
from linkgrove.config import TestConfig
from linkgrove.extensions import db, get_runtime
from linkgrove.services.mutations import MutationEngine
from linkgrove.services.persistence import MemoryKeyValueStore
from linkgrove.services.sync import SyncOrchestrator
from linkgrove.services.tree import TreeStore


class RecordingSyncManager:
    sync_available = True

    def __init__(self):
        self.tags = []

    def register_sync(self, tag):
        self.tags.append(tag)


class FailingKeyValueStore(MemoryKeyValueStore):
    def __init__(self):
        super().__init__()
        self.fail = False
        self.fail_keys = set()

    def write(self, key, value):
        if self.fail or key in self.fail_keys:
            raise OSError("disk full")
        super().write(key, value)


def _sequential_ids(prefix="id"):
    counter = count(1)
    return lambda: f"{prefix}-{next(counter)}"


def _ticking_clock():
    start = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    counter = count()
    return lambda: start + timedelta(seconds=next(counter))


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
        get_runtime(app).engine.reload()
    yield app
    get_runtime(app).controller.stop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def adapter():
    return FailingKeyValueStore()


@pytest.fixture
def sync_manager():
    return RecordingSyncManager()


@pytest.fixture
def store(adapter):
    return TreeStore.load(adapter)


@pytest.fixture
def engine(store, sync_manager):
    return MutationEngine(
        store,
        orchestrator=SyncOrchestrator(sync_manager=sync_manager),
        id_factory=_sequential_ids(),
        clock=_ticking_clock(),
    )
