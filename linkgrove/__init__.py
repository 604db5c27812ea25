from flask import Flask

from linkgrove.api import api_bp
from linkgrove.config import Config
from linkgrove.extensions import Runtime, db
from linkgrove.jobs.scheduler import start_scheduler
from linkgrove.services.messages import MessageBus
from linkgrove.services.mutations import MutationEngine
from linkgrove.services.offline_cache import OfflineCacheController
from linkgrove.services.persistence import SqlKeyValueStore
from linkgrove.services.sync import AppInstance, SyncOrchestrator
from linkgrove.services.tree import TreeStore
from linkgrove.web import web_bp


def _build_controller(app: Flask, bus: MessageBus) -> OfflineCacheController:
    return OfflineCacheController(
        origin=app.config["SHELL_ORIGIN"],
        version=app.config["CACHE_VERSION"],
        shell_assets=app.config["SHELL_ASSETS"],
        prefix=app.config["CACHE_PREFIX"],
        bus=bus,
        transport=app.config.get("CACHE_TRANSPORT"),
        timeout=app.config["CACHE_FETCH_TIMEOUT"],
        allowed_hosts=app.config["CACHE_ALLOWED_HOSTS"],
        skip_waiting=app.config["CACHE_SKIP_WAITING"],
    )


def _log_install_result(app: Flask, future) -> None:
    exc = future.exception()
    if exc is not None:
        app.logger.warning("Offline cache install failed: %s", exc)
    else:
        app.logger.info("Offline cache controller %s", future.result())


def create_app(config_object=Config):
    app = Flask(__name__, static_folder=None)
    app.config.from_object(config_object)

    db.init_app(app)

    app.register_blueprint(api_bp)
    app.register_blueprint(web_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized LinkGrove database.")

    with app.app_context():
        db.create_all()
        store = TreeStore.load(
            SqlKeyValueStore(),
            links_key=app.config["LINKS_STORAGE_KEY"],
            groups_key=app.config["GROUPS_STORAGE_KEY"],
        )

    bus = MessageBus()
    controller = _build_controller(app, bus).start()
    orchestrator = SyncOrchestrator(sync_manager=controller)
    orchestrator.on_change(controller.set_online)
    engine = MutationEngine(store, orchestrator=orchestrator)
    instance = AppInstance(bus, engine)
    app.extensions["linkgrove"] = Runtime(
        store=store,
        engine=engine,
        orchestrator=orchestrator,
        controller=controller,
        instance=instance,
    )

    if app.config["CACHE_INSTALL_ON_START"]:
        controller.install().add_done_callback(
            lambda future: _log_install_result(app, future)
        )

    start_scheduler(app)
    return app
