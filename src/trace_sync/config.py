# src/trace_sync/config.py

"""Centralized settings loaded from environment variables (+ .env via python-dotenv).

Design goals:
- One Settings object for the whole app.
- Nothing is required at import time: a missing application config blob is
  only reported when startup asks for it (Settings.require_app_config).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigurationError

ENV_PREFIX = "TRACE"

DEFAULT_APP_ID = "default-app-id"
DEFAULT_NAMESPACE = "artifacts"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Real environment wins over .env.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_opt(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def parse_app_config(raw: str | None) -> tuple[dict[str, Any] | None, str | None]:
    """
    Parse the application configuration blob.

    Returns (config, problem). Exactly one of them is None.
    """
    if raw is None or raw.strip() == "":
        return None, "Application configuration is missing (set TRACE_APP_CONFIG)."
    try:
        val = json.loads(raw)
    except ValueError as e:
        return None, f"Application configuration is not valid JSON: {e}"
    if not isinstance(val, dict):
        return None, "Application configuration must be a JSON object."
    return val, None


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- Deployment parameters ----
    app_config: dict[str, Any] | None
    app_config_problem: str | None
    initial_auth_token: str | None
    app_id: str
    namespace: str

    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    store_path: Path

    # ---- Authorization policy ----
    enforce_ownership: bool
    restrict_toggle: bool

    # ---- Change feed ----
    feed_poll_seconds: float
    feed_reconnect_attempts: int

    def require_app_config(self) -> dict[str, Any]:
        if self.app_config is None:
            raise ConfigurationError(self.app_config_problem or "Application configuration is missing.")
        return self.app_config

    @staticmethod
    def from_env() -> "Settings":
        app_config, problem = parse_app_config(os.getenv(_k("APP_CONFIG")))
        blob = app_config or {}

        app_id = (_env(_k("APP_ID"), DEFAULT_APP_ID) or DEFAULT_APP_ID).strip() or DEFAULT_APP_ID
        namespace = str(blob.get("namespace") or DEFAULT_NAMESPACE).strip("/ ") or DEFAULT_NAMESPACE

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/trace"))
        store_default = data_dir / "tasks.sqlite3"
        if blob.get("storePath"):
            store_default = Path(str(blob["storePath"])).expanduser()
        store_path = _env_path(_k("STORE_PATH"), store_default)

        return Settings(
            app_config=app_config,
            app_config_problem=problem,
            initial_auth_token=_env_opt(_k("INITIAL_AUTH_TOKEN")),
            app_id=app_id,
            namespace=namespace,
            app_name=_env(_k("APP_NAME"), "trace-sync"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            data_dir=data_dir,
            store_path=store_path,
            enforce_ownership=_env_bool(_k("ENFORCE_OWNERSHIP"), True),
            restrict_toggle=_env_bool(_k("RESTRICT_TOGGLE"), False),
            feed_poll_seconds=_env_float(_k("FEED_POLL_SECONDS"), 1.0),
            feed_reconnect_attempts=max(0, _env_int(_k("FEED_RECONNECT_ATTEMPTS"), 1)),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
