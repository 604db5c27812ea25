import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_SHELL_ASSETS = [
    "/",
    "/index.html",
    "/assets/app.js",
    "/assets/app.css",
    "/favicon.svg",
    "/apple-touch-icon.png",
    "/site.webmanifest",
]


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'linkgrove.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    PERIODIC_SYNC_INTERVAL_MINUTES = int(
        os.environ.get("PERIODIC_SYNC_INTERVAL_MINUTES", "1440")
    )

    LINKS_STORAGE_KEY = os.environ.get("LINKS_STORAGE_KEY", "linktree-links")
    GROUPS_STORAGE_KEY = os.environ.get("GROUPS_STORAGE_KEY", "linktree-groups")

    CACHE_PREFIX = os.environ.get("CACHE_PREFIX", "linkgrove")
    CACHE_VERSION = os.environ.get("CACHE_VERSION", "1.2.0")
    SHELL_ORIGIN = os.environ.get("SHELL_ORIGIN", "http://127.0.0.1:5173")
    SHELL_ASSETS = _csv(os.environ.get("SHELL_ASSETS", "")) or DEFAULT_SHELL_ASSETS
    CACHE_FETCH_TIMEOUT = float(os.environ.get("CACHE_FETCH_TIMEOUT", "10"))
    CACHE_ALLOWED_HOSTS = _csv(os.environ.get("CACHE_ALLOWED_HOSTS", "google.com"))
    CACHE_INSTALL_ON_START = os.environ.get("CACHE_INSTALL_ON_START", "1") == "1"
    CACHE_SKIP_WAITING = os.environ.get("CACHE_SKIP_WAITING", "1") == "1"
    SHELL_PROXY_TIMEOUT = float(os.environ.get("SHELL_PROXY_TIMEOUT", "15"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    CACHE_INSTALL_ON_START = False
    SHELL_ORIGIN = "http://shell.test"
