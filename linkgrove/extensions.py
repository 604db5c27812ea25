from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from flask import Flask, current_app
from flask_sqlalchemy import SQLAlchemy

if TYPE_CHECKING:
    from linkgrove.services.mutations import MutationEngine
    from linkgrove.services.offline_cache import OfflineCacheController
    from linkgrove.services.sync import AppInstance, SyncOrchestrator
    from linkgrove.services.tree import TreeStore


db = SQLAlchemy()


@dataclass
class Runtime:
    store: TreeStore
    engine: MutationEngine
    orchestrator: SyncOrchestrator
    controller: OfflineCacheController
    instance: AppInstance


def get_runtime(app: Flask | None = None) -> Runtime:
    return (app or current_app).extensions["linkgrove"]
