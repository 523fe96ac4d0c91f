"""
Settings loaded from a YAML file with environment overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_GENRES: List[str] = [
    "main",
    # Main genres
    "action", "adventure", "comedy", "contemporary", "drama", "fantasy",
    "historical", "horror", "mystery", "psychological", "romance",
    "satire", "sci-fi", "short-story", "tragedy",
    # Tags
    "anti-hero_lead", "artificial_intelligence", "attractive_lead", "cyberpunk",
    "dungeon", "dystopia", "female_lead", "first_contact", "gamelit",
    "gender_bender", "genetically_engineered", "grimdark", "harem",
    "high_fantasy", "litrpg", "loop", "low_fantasy", "male_lead",
    "martial_arts", "multiple_lead", "mythos", "non-human_lead",
    "post_apocalyptic", "progression", "reader_interactive", "reincarnation",
    "ruling_class", "school_life", "sci_fi", "secret_identity",
    "slice_of_life", "soft_sci-fi", "space_opera", "sports",
    "steampunk", "strong_lead", "summoned_hero", "super_heroes",
    "supernatural", "technologically_engineered", "time_travel",
    "urban_fantasy", "villainous_lead", "virtual_reality",
    "war_and_military", "wuxia", "xianxia", "one_shot",
]


class DatabaseSettings(BaseModel):
    path: str


class ScrapingSettings(BaseModel):
    base_url: str = "https://www.royalroad.com"
    user_agent: str = "rankwatch/0.1 (+https://github.com/rankwatch/rankwatch)"
    fiction_path: str = "/fiction/{id}"
    rising_stars_path: str = "/fictions/rising-stars"
    genre_path: str = "/fictions/rising-stars/{genre}"
    request_delay_ms: int = 1000
    request_timeout_ms: int = 30000
    cooldown_ms: int = 5000
    slice_pause_ms: int = 2000


class BatchSettings(BaseModel):
    fiction_history: int = 10
    rising_stars: int = 10


class LimitSettings(BaseModel):
    fictions_per_run: int = 50


class FreshnessSettings(BaseModel):
    fiction_history_hours: float = 24
    rising_stars_minutes: float = 15
    failed_retry_minutes: float = 60


class BudgetSettings(BaseModel):
    max_execution_ms: int = 300000
    buffer_ms: int = 30000


class ScheduleSettings(BaseModel):
    fiction_history: str = "0 3 * * *"
    rising_stars: str = "*/15 * * * *"
    timezone: str = "UTC"


class Settings(BaseModel):
    database: DatabaseSettings
    scraping: ScrapingSettings = Field(default_factory=ScrapingSettings)
    batches: BatchSettings = Field(default_factory=BatchSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)
    freshness: FreshnessSettings = Field(default_factory=FreshnessSettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    genres: List[str] = Field(default_factory=lambda: list(DEFAULT_GENRES))
    log_level: str = "INFO"


# env var -> (section, key, type)
_ENV_OVERRIDES = {
    "RANKWATCH_DB_PATH": ("database", "path", str),
    "REQUEST_DELAY": ("scraping", "request_delay_ms", int),
    "REQUEST_TIMEOUT": ("scraping", "request_timeout_ms", int),
    "BATCH_SIZE": ("batches", "fiction_history", int),
    "MAX_EXECUTION_MS": ("budget", "max_execution_ms", int),
    "LOG_LEVEL": (None, "log_level", str),
}


def _apply_env(raw: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    for var, (section, key, cast) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value in (None, ""):
            continue
        try:
            typed = cast(value)
        except ValueError as e:
            raise ConfigurationError(f"{var} must be {cast.__name__}, got {value!r}") from e
        if section is None:
            raw[key] = typed
        else:
            raw.setdefault(section, {})
            raw[section][key] = typed
    return raw


def load_settings(
    path: Optional[str] = "config.yaml",
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from ``path`` (optional) and apply environment overrides.

    Raises:
        ConfigurationError: when the file is unreadable, the database path is
            missing, or a value has the wrong type.
    """
    env = os.environ if env is None else env
    raw: Dict[str, Any] = {}

    if path:
        config_path = Path(path)
        if config_path.exists():
            try:
                with config_path.open() as f:
                    raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
            if not isinstance(raw, dict):
                raise ConfigurationError(f"{path} must contain a mapping at the top level")
        else:
            logger.warning(f"Config file not found: {path}, using environment only")

    raw = _apply_env(raw, env)

    if not (raw.get("database") or {}).get("path"):
        raise ConfigurationError("database.path (or RANKWATCH_DB_PATH) is required")

    try:
        return Settings.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
