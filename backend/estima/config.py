"""
Adapter and runtime configuration — single source of truth for store
locations, remote credentials, debounce and timeout windows.

Values come from the process environment; a ``.env`` file in the working
directory is loaded first (existing environment variables win).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from dotenv import load_dotenv

logger = logging.getLogger("estima.config")

T = TypeVar("T")

# ── Local store ───────────────────────────────────────────────────────────────
DEFAULT_DB_URL: str = "sqlite+aiosqlite:///./var/estima.sqlite3"

# Bump whenever the bundled catalog changes shape; an older local store has its
# materials and categories cleared and reseeded on the next open.
SCHEMA_VERSION: int = 2

# ── Remote store ──────────────────────────────────────────────────────────────
DEFAULT_PROJECTS_TABLE: str = "projects"
DEFAULT_REMOTE_TIMEOUT_S: float = 10.0

# ── Persistence timing ────────────────────────────────────────────────────────
DEFAULT_SAVE_DEBOUNCE_MS: int = 500
DEFAULT_SAVE_TIMEOUT_S: float = 15.0


def _env_number(env: Mapping[str, str], name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.warning(f"Invalid value for {name}={raw!r} — using default {default}")
        return default
    if value < 0:
        logger.warning(f"Negative value for {name}={raw!r} — using default {default}")
        return default
    return value


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    db_url: str = DEFAULT_DB_URL
    schema_version: int = SCHEMA_VERSION
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    projects_table: str = DEFAULT_PROJECTS_TABLE
    remote_timeout_s: float = DEFAULT_REMOTE_TIMEOUT_S
    save_debounce_ms: int = DEFAULT_SAVE_DEBOUNCE_MS
    save_timeout_s: float = DEFAULT_SAVE_TIMEOUT_S
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def remote_enabled(self) -> bool:
        """Remote persistence needs both the project URL and the anon key."""
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def save_debounce_s(self) -> float:
        return self.save_debounce_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        """
        Build settings from ``environ`` (defaults to ``os.environ``).

        Missing remote credentials are not an error: the application runs
        local-only and logs the fact once.
        """
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        settings = cls(
            db_url=_env_str(environ, "ESTIMA_DB_URL") or DEFAULT_DB_URL,
            schema_version=_env_number(environ, "ESTIMA_SCHEMA_VERSION", SCHEMA_VERSION, int),
            supabase_url=_env_str(environ, "SUPABASE_URL"),
            supabase_anon_key=_env_str(environ, "SUPABASE_ANON_KEY"),
            projects_table=_env_str(environ, "SUPABASE_PROJECTS_TABLE") or DEFAULT_PROJECTS_TABLE,
            remote_timeout_s=_env_number(environ, "REMOTE_TIMEOUT_S", DEFAULT_REMOTE_TIMEOUT_S, float),
            save_debounce_ms=_env_number(environ, "SAVE_DEBOUNCE_MS", DEFAULT_SAVE_DEBOUNCE_MS, int),
            save_timeout_s=_env_number(environ, "SAVE_TIMEOUT_S", DEFAULT_SAVE_TIMEOUT_S, float),
            log_level=(_env_str(environ, "LOG_LEVEL") or "INFO").upper(),
            log_json=(_env_str(environ, "LOG_FORMAT") or "json").lower() != "text",
        )
        if not settings.remote_enabled:
            logger.info("SUPABASE_URL / SUPABASE_ANON_KEY not set — remote projects disabled (local only)")
        return settings
