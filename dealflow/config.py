from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_RED_FLAG_TRIGGERS = ("metric_inconsistency", "team_departure", "runway_concern")


def _resolve_home() -> Path:
    override = os.getenv("DEALFLOW_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent.resolve()


def _resolve_db_path() -> Path:
    override = os.getenv("DEALFLOW_DB_PATH", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return _resolve_home() / "data" / "dealflow.db"


def _resolve_red_flag_triggers() -> frozenset[str]:
    raw = os.getenv("DEALFLOW_RED_FLAG_TRIGGERS")
    if raw is None:
        return frozenset(DEFAULT_RED_FLAG_TRIGGERS)
    return frozenset(part.strip().lower() for part in raw.split(",") if part.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


class Settings(BaseModel):
    home: Path = Field(default_factory=_resolve_home)
    database_path: Path = Field(default_factory=_resolve_db_path)

    # Labels that raise a red_flag alert when carried by the triggering event,
    # matched against the event's signal_type first and its category second.
    red_flag_triggers: frozenset[str] = Field(default_factory=_resolve_red_flag_triggers)

    history_max_days: int = Field(default_factory=lambda: _env_int("DEALFLOW_HISTORY_MAX_DAYS", 365))
    events_page_limit: int = Field(default_factory=lambda: _env_int("DEALFLOW_EVENTS_PAGE_LIMIT", 50))

    def ensure_directories(self) -> None:
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
