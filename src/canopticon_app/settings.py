#!filepath: src/canopticon_app/settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.project_paths import ProjectPaths

logger = get_logger(__name__)


class SettingsError(RuntimeError):
    """Failed to load or validate settings."""


class PathsConfig(BaseModel):
    """Filesystem paths, relative to the project root."""

    db: str = "data/canopticon.db"
    sources: str = "configs/sources.yaml"
    prompts_dir: str = ""

    model_config = {"extra": "allow"}


class AutomationConfig(BaseModel):
    """Defaults for one automation cycle.

    Attributes:
        significance_threshold: Minimum score for automatic approval.
        enable_auto_publish: Publish drafts right after synthesis.
        batch_size: Max items per stage per cycle.
    """

    significance_threshold: int = Field(default=65, ge=0, le=100)
    enable_auto_publish: bool = True
    batch_size: int = Field(default=10, ge=1, le=100)

    model_config = {"extra": "forbid"}


class IngestionConfig(BaseModel):
    timeout_seconds: float = Field(default=8.0, gt=0)
    min_body_chars: int = Field(default=100, ge=0)
    max_age_hours: int = Field(default=72, ge=1)
    max_items_per_source: int = Field(default=50, ge=1)
    user_agent: str = "canopticon-ingest/1.0"

    model_config = {"extra": "forbid"}


class ClusteringConfig(BaseModel):
    """Similarity thresholds for event clustering."""

    headline_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    entity_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    min_shared_entities: int = Field(default=2, ge=1)
    window_hours: int = Field(default=24, ge=0)
    max_cluster_size: int = Field(default=10, ge=1)

    model_config = {"extra": "forbid"}


class TriageConfig(BaseModel):
    """Automatic triage tuning.

    Attributes:
        reject_below: Scored signals under this value are rejected after the grace window.
        grace_minutes: Minimum signal age before automatic rejection.
        stall_minutes: Processing signals untouched this long can be rescued.
    """

    reject_below: int = Field(default=40, ge=0, le=100)
    grace_minutes: int = Field(default=60, ge=0)
    stall_minutes: int = Field(default=30, ge=1)

    model_config = {"extra": "forbid"}


class LlmConfig(BaseModel):
    """OpenAI compatible chat endpoint."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    scoring_model: str = "gpt-4o-mini"
    synthesis_model: str = "gpt-4o"
    timeout_seconds: int = Field(default=30, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: Optional[int] = None

    model_config = {"extra": "forbid"}


class ResearchConfig(BaseModel):
    """Optional background research fed into synthesis."""

    enabled: bool = False
    base_url: str = "https://news.google.com/rss/search?q="
    max_queries: int = Field(default=3, ge=0, le=10)

    model_config = {"extra": "forbid"}


class SynthesisConfig(BaseModel):
    min_words: int = Field(default=350, ge=50)
    max_words: int = Field(default=550, ge=50)
    excerpt_chars: int = Field(default=2000, ge=200)

    model_config = {"extra": "forbid"}


class LogsConfig(BaseModel):
    retention_days: int = Field(default=30, ge=1)
    health_window: int = Field(default=100, ge=1)
    unhealthy_errors: int = Field(default=5, ge=0)

    model_config = {"extra": "forbid"}


class AppConfig(BaseModel):
    """Main application config."""

    paths: PathsConfig = PathsConfig()
    automation: AutomationConfig = AutomationConfig()
    ingestion: IngestionConfig = IngestionConfig()
    clustering: ClusteringConfig = ClusteringConfig()
    triage: TriageConfig = TriageConfig()
    llm: LlmConfig = LlmConfig()
    research: ResearchConfig = ResearchConfig()
    synthesis: SynthesisConfig = SynthesisConfig()
    logs: LogsConfig = LogsConfig()
    app_env: str = "production"

    model_config = {"extra": "forbid"}


@dataclass(frozen=True, slots=True)
class Settings:
    """Unified settings.

    Attributes:
        config: Validated app config.
        paths: Project paths.
    """

    config: AppConfig
    paths: ProjectPaths

    @property
    def config_dir(self) -> Path:
        return self.paths.configs_dir

    @property
    def db_path(self) -> Path:
        return self.paths.resolve_relative(self.config.paths.db)

    @property
    def sources_path(self) -> Path:
        return self.paths.resolve_relative(self.config.paths.sources)

    @property
    def prompts_dir(self) -> Optional[Path]:
        raw = str(self.config.paths.prompts_dir or "").strip()
        return self.paths.resolve_relative(raw) if raw else None


def load_app_config(paths: Optional[ProjectPaths] = None) -> AppConfig:
    """Load, merge and validate the app config.

    `configs/default.yaml` is overlaid by `configs/config.<APP_ENV>.yaml`, then
    secrets and paths from the environment win.

    Args:
        paths: Resolved paths.

    Returns:
        AppConfig: Validated config.

    Raises:
        SettingsError: On invalid YAML or failed validation.
    """
    load_dotenv(override=False)

    resolved_paths = paths or ProjectPaths.discover()
    env_name = str(os.getenv("APP_ENV", "production") or "production").strip()

    default_path = resolved_paths.config_file().resolve()
    profile_path = resolved_paths.config_file(env_name).resolve()

    base = _read_yaml_mapping(default_path)
    overlay = _read_yaml_mapping(profile_path)

    merged = _deep_merge(base, overlay)
    merged["app_env"] = env_name
    _override_from_env(merged)

    try:
        model = AppConfig.model_validate(merged)
    except ValidationError as e:
        raise SettingsError(f"Config validation failed: {e}") from e

    logger.debug(
        f"Loaded app config, env={env_name}, default_exists={default_path.exists()}, profile_exists={profile_path.exists()}"
    )
    return model


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings."""
    paths = ProjectPaths.discover()
    return Settings(config=load_app_config(paths), paths=paths)


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


def _read_yaml_mapping(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf8"))
    except (OSError, yaml.YAMLError) as e:
        raise SettingsError(f"Invalid YAML at {path}: {e}") from e

    if raw is None:
        return {}

    if not isinstance(raw, dict):
        raise SettingsError(f"Top level YAML must be a mapping at {path}")

    return raw


def _deep_merge(a: Mapping[str, Any], b: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {k: v for k, v in a.items()}
    for k, v in b.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _section(merged: Dict[str, Any], key: str) -> Dict[str, Any]:
    sec = merged.get(key) if isinstance(merged.get(key), dict) else {}
    merged[key] = sec
    return sec


def _override_from_env(merged: Dict[str, Any]) -> None:
    db_path = str(os.getenv("CANOPTICON_DB_PATH", "") or "").strip()
    if db_path:
        _section(merged, "paths")["db"] = db_path

    api_key = str(os.getenv("LLM_API_KEY", "") or "").strip()
    base_url = str(os.getenv("LLM_BASE_URL", "") or "").strip()
    if api_key:
        _section(merged, "llm")["api_key"] = api_key
    if base_url:
        _section(merged, "llm")["base_url"] = base_url
