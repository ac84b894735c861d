from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


def _resolve_home() -> Path:
    override = os.getenv("BOARDROOM_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _resolve_database_path() -> Path:
    override = os.getenv("BOARDROOM_DB", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return _resolve_home() / "data" / "boardroom.db"


class Settings(BaseModel):
    home: Path = Field(default_factory=_resolve_home)
    database_path: Path = Field(default_factory=_resolve_database_path)

    llm_provider: str = Field(default_factory=lambda: os.getenv("LLM_PROVIDER", "anthropic"))
    llm_model: str = Field(default_factory=lambda: os.getenv("LLM_MODEL", ""))
    llm_max_retries: int = 3
    llm_backoff_seconds: float = 1.0
    llm_timeout_seconds: float = 60.0
    llm_max_tokens: int = 2048

    provider_failure_threshold: int = 3
    recent_report_warning_days: int = 30
    trigger_approaching_days: int = 30
    bet_duration_days: int = 90
    annual_trigger_days: int = 365

    @property
    def data_dir(self) -> Path:
        return self.database_path.parent

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)


def load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


def build_settings(config_path: str | Path | None = None) -> Settings:
    """Environment defaults overlaid by the YAML file at *config_path* (if any)."""
    if config_path is None:
        config_path = os.getenv("BOARDROOM_CONFIG", "").strip() or None
    overrides = load_yaml(Path(config_path).expanduser()) if config_path else {}
    known = {k: v for k, v in overrides.items() if k in Settings.model_fields}
    return Settings(**known)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = build_settings()
    settings.ensure_directories()
    return settings
