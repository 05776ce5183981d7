# backend/medpos/config.py
from __future__ import annotations
import os
from dataclasses import dataclass


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/medpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///medpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Listing limits for the session and sale endpoints
    SESSION_LIST_LIMIT = int(os.environ.get("SESSION_LIST_LIMIT", "100"))
    SALES_PAGE_SIZE = int(os.environ.get("SALES_PAGE_SIZE", "50"))

    # Retry policy for lock/optimistic-version conflicts in service transactions
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    DB_RETRY_BACKOFF = 0.01


@dataclass(frozen=True)
class ClientConfig:
    """
    Settings for the till-side client (offline queue + HTTP transport).

    The client runs on the device, outside any Flask app, so it reads its
    settings straight from the environment.
    """
    server_url: str = "http://127.0.0.1:5000"
    queue_url: str = "sqlite:///medpos-queue.sqlite3"
    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 300.0
    request_timeout: float = 10.0
    probe_timeout: float = 4.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            server_url=os.environ.get("MEDPOS_SERVER_URL", cls.server_url),
            queue_url=os.environ.get("MEDPOS_QUEUE_URL", cls.queue_url),
            max_attempts=int(os.environ.get("MEDPOS_SYNC_MAX_ATTEMPTS", cls.max_attempts)),
            backoff_base=float(os.environ.get("MEDPOS_SYNC_BACKOFF_BASE", cls.backoff_base)),
            backoff_max=float(os.environ.get("MEDPOS_SYNC_BACKOFF_MAX", cls.backoff_max)),
            request_timeout=float(os.environ.get("MEDPOS_REQUEST_TIMEOUT", cls.request_timeout)),
            probe_timeout=float(os.environ.get("MEDPOS_PROBE_TIMEOUT", cls.probe_timeout)),
        )
