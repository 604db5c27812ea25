import os

from apscheduler.schedulers.background import BackgroundScheduler

from linkgrove.extensions import get_runtime
from linkgrove.services.messages import SYNC_TAG_DAILY


scheduler = BackgroundScheduler()


def run_daily_sync(app):
    controller = get_runtime(app).controller
    if not controller.sync_available:
        app.logger.info("Skipping daily sync: offline cache controller not running")
        return 0
    delivered = controller.periodic_sync(SYNC_TAG_DAILY).result(timeout=30)
    app.logger.info("Daily sync delivered to %s client(s)", delivered)
    return delivered


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["PERIODIC_SYNC_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_daily_sync,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="daily_sync",
            replace_existing=True,
        )
        scheduler.start()
