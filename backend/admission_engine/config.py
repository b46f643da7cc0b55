# backend/admission_engine/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/admission.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///admission.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Currency used when an organization has none configured
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "BRL")

    # Retry policy for lock/optimistic-version conflicts
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = float(os.environ.get("RETRY_BACKOFF_BASE", "0.1"))

    # Serialize credit admission per customer (row lock on the customer).
    # Off by default: concurrent admissions may transiently exceed a limit.
    SERIALIZE_CREDIT_ADMISSION = _env_bool("SERIALIZE_CREDIT_ADMISSION", False)
