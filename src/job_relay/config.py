from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from job_relay.classifier import ClassifierOptions, PatternRules, build_pattern_rules

MODULE_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CURSOR_PATH = MODULE_ROOT / "data" / "cursors.json"

RUN_REQUIRED_ENVS = (
    "JOB_API_URL",
    "FEED_TARGETS",
)

_TRUTHY = {"1", "true", "yes", "y", "on"}


class PatternOverrides(BaseModel):
    """Per-category replacements for the built-in classifier patterns."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    strong: list[str] | None = None
    weak: list[str] | None = None
    non_job_strong: list[str] | None = Field(default=None, alias="nonJobStrong")
    non_job_weak: list[str] | None = Field(default=None, alias="nonJobWeak")

    def as_mapping(self) -> dict[str, list[str]]:
        data = self.model_dump(by_alias=True, exclude_none=True)
        return {category: list(patterns) for category, patterns in data.items()}


class Settings(BaseModel):
    job_api_url: str = ""
    targets: list[str] = Field(default_factory=list)
    limit: int = Field(default=50, ge=1)
    poll_interval_ms: int = Field(default=3_600_000, ge=1_000)
    max_age_hours: float = Field(default=0.0, ge=0.0)
    run_once: bool = False
    patterns_path: Path | None = None
    min_words: int = Field(default=6, ge=0)
    language_gate: bool = True
    strong_threshold: int = 1
    weak_only_threshold: int = 3
    cursor_backend: Literal["json", "sqlite"] = "json"
    cursor_path: Path = Field(default=DEFAULT_CURSOR_PATH)
    request_timeout_seconds: float = Field(default=20.0, gt=0.0)
    user_agent: str = "job-relay/0.1"
    facebook_access_token: str = ""
    facebook_api_version: str = "v18.0"
    telegram_api_id: int = Field(default=0, ge=0)
    telegram_api_hash: str = ""
    telegram_session: str = ""
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("job_api_url")
    @classmethod
    def _validate_api_url(cls, value: str) -> str:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("JOB_API_URL must be an http(s) URL")
        return value

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    def classifier_options(self) -> ClassifierOptions:
        return ClassifierOptions(
            min_words=self.min_words,
            language_gate=self.language_gate,
            strong_threshold=self.strong_threshold,
            weak_only_threshold=self.weak_only_threshold,
        )


def _env_value(environ: Mapping[str, str], key: str) -> str:
    return environ.get(key, "").strip()


def _env_bool(raw: str, default: bool) -> bool:
    if not raw:
        return default
    return raw.lower() in _TRUTHY


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def missing_envs(required: Sequence[str], environ: Mapping[str, str] | None = None) -> list[str]:
    source = os.environ if environ is None else environ
    return [key for key in required if not _env_value(source, key)]


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    source = os.environ if environ is None else environ
    payload = {
        "job_api_url": _env_value(source, "JOB_API_URL"),
        "targets": parse_csv(_env_value(source, "FEED_TARGETS")),
        "limit": _env_value(source, "FEED_LIMIT") or "50",
        "poll_interval_ms": _env_value(source, "POLL_INTERVAL_MS") or "3600000",
        "max_age_hours": _env_value(source, "MAX_AGE_HOURS") or "0",
        "run_once": _env_bool(_env_value(source, "RUN_ONCE"), False),
        "patterns_path": _env_value(source, "PATTERNS_PATH") or None,
        "min_words": _env_value(source, "MIN_WORDS") or "6",
        "language_gate": _env_bool(_env_value(source, "LANGUAGE_GATE"), True),
        "strong_threshold": _env_value(source, "STRONG_THRESHOLD") or "1",
        "weak_only_threshold": _env_value(source, "WEAK_ONLY_THRESHOLD") or "3",
        "cursor_backend": (_env_value(source, "CURSOR_BACKEND") or "json").lower(),
        "cursor_path": Path(_env_value(source, "CURSOR_PATH") or DEFAULT_CURSOR_PATH),
        "request_timeout_seconds": _env_value(source, "REQUEST_TIMEOUT_SECONDS") or "20",
        "user_agent": _env_value(source, "USER_AGENT") or "job-relay/0.1",
        "facebook_access_token": _env_value(source, "FACEBOOK_ACCESS_TOKEN"),
        "facebook_api_version": _env_value(source, "FACEBOOK_API_VERSION") or "v18.0",
        "telegram_api_id": _env_value(source, "TELEGRAM_API_ID") or "0",
        "telegram_api_hash": _env_value(source, "TELEGRAM_API_HASH"),
        "telegram_session": _env_value(source, "TELEGRAM_SESSION"),
        "log_level": (_env_value(source, "LOG_LEVEL") or "INFO").upper(),
    }
    try:
        return Settings(**payload)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def assert_required_envs(required: Sequence[str], environ: Mapping[str, str] | None = None) -> None:
    missing = missing_envs(required, environ)
    if missing:
        keys = ", ".join(missing)
        raise ValueError(f"Missing required environment variables: {keys}")


def load_pattern_overrides(path: Path | None) -> PatternOverrides:
    if path is None:
        return PatternOverrides()
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ValueError(f"cannot read pattern overrides from {path}: {exc}") from exc
    try:
        return PatternOverrides.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def load_pattern_rules(settings: Settings) -> PatternRules:
    return build_pattern_rules(load_pattern_overrides(settings.patterns_path).as_mapping())


def mask_secret(value: str, visible_prefix: int = 3, visible_suffix: int = 2) -> str:
    if not value:
        return ""
    if len(value) <= visible_prefix + visible_suffix:
        return "*" * len(value)
    hidden = "*" * (len(value) - visible_prefix - visible_suffix)
    return f"{value[:visible_prefix]}{hidden}{value[-visible_suffix:]}"
