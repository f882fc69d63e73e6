from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Mapping, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

MODULE_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_JOBS_DB_PATH = MODULE_ROOT / "data" / "jobs.sqlite"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

RUN_REQUIRED_ENVS = ("WEBHOOK_URL",)
REMOTE_REQUIRED_ENVS = ("WEBHOOK_URL", "SCRAPE_ENDPOINT_URL")


class Settings(BaseModel):
    webhook_url: str = ""
    scrape_endpoint_url: str = ""
    scrape_mode: Literal["local", "remote"] = "local"
    keywords_csv: str | None = None
    extra_keywords_csv: str | None = None
    experience_levels_csv: str | None = None
    use_experience_levels: bool = False
    location: str = "Jaipur"
    geo_id: str = "101716408"
    category: str = ""
    source_name: str = "linkedin_overnight"
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    scrape_timeout_seconds: float = Field(default=180.0, gt=0.0)
    webhook_timeout_seconds: float = Field(default=5.0, gt=0.0)
    run_budget_seconds: float | None = Field(default=None, gt=0.0)
    delay_min_seconds: float = Field(default=10.0, ge=0.0)
    delay_max_seconds: float = Field(default=20.0, ge=0.0)
    progress_every: int = Field(default=5, ge=1)
    batch_size: int = Field(default=5, ge=1)
    max_jobs_per_keyword: int = Field(default=30, ge=1)
    retry_attempts: int = Field(default=3, ge=1)
    user_agent: str = DEFAULT_USER_AGENT
    jobs_db_path: Path = Field(default=DEFAULT_JOBS_DB_PATH)
    interval_hours: float = Field(default=6.0, ge=1.0)
    max_keywords_per_minute: float = Field(default=4.0, gt=0.0)
    log_level: str = "INFO"

    @field_validator("webhook_url")
    @classmethod
    def _validate_webhook_url(cls, value: str) -> str:
        if value and not value.startswith("https://"):
            raise ValueError("WEBHOOK_URL must use https://")
        return value

    @field_validator("scrape_endpoint_url")
    @classmethod
    def _validate_endpoint_url(cls, value: str) -> str:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("SCRAPE_ENDPOINT_URL must be an http(s) URL")
        return value

    @model_validator(mode="after")
    def _validate_delay_window(self) -> "Settings":
        if self.delay_min_seconds > self.delay_max_seconds:
            raise ValueError("DELAY_MIN_SECONDS must not exceed DELAY_MAX_SECONDS")
        return self


def _env_value(environ: Mapping[str, str], key: str) -> str:
    return environ.get(key, "").strip()


def _env_bool(environ: Mapping[str, str], key: str) -> bool:
    return _env_value(environ, key).casefold() in {"1", "true", "yes", "on"}


def missing_envs(required: Sequence[str], environ: Mapping[str, str] | None = None) -> list[str]:
    source = os.environ if environ is None else environ
    return [key for key in required if not _env_value(source, key)]


def required_envs_for(settings: Settings) -> tuple[str, ...]:
    if settings.scrape_mode == "remote":
        return REMOTE_REQUIRED_ENVS
    return RUN_REQUIRED_ENVS


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    source = os.environ if environ is None else environ
    run_budget = _env_value(source, "RUN_BUDGET_SECONDS")
    payload = {
        "webhook_url": _env_value(source, "WEBHOOK_URL"),
        "scrape_endpoint_url": _env_value(source, "SCRAPE_ENDPOINT_URL"),
        "scrape_mode": _env_value(source, "SCRAPE_MODE") or "local",
        "keywords_csv": _env_value(source, "KEYWORDS_CSV") or None,
        "extra_keywords_csv": _env_value(source, "EXTRA_KEYWORDS_CSV") or None,
        "experience_levels_csv": _env_value(source, "EXPERIENCE_LEVELS_CSV") or None,
        "use_experience_levels": _env_bool(source, "USE_EXPERIENCE_LEVELS"),
        "location": _env_value(source, "LOCATION") or "Jaipur",
        "geo_id": _env_value(source, "GEO_ID") or "101716408",
        "category": _env_value(source, "CATEGORY"),
        "source_name": _env_value(source, "SOURCE_NAME") or "linkedin_overnight",
        "request_timeout_seconds": float(_env_value(source, "REQUEST_TIMEOUT_SECONDS") or "30"),
        "scrape_timeout_seconds": float(_env_value(source, "SCRAPE_TIMEOUT_SECONDS") or "180"),
        "webhook_timeout_seconds": float(_env_value(source, "WEBHOOK_TIMEOUT_SECONDS") or "5"),
        "run_budget_seconds": float(run_budget) if run_budget else None,
        "delay_min_seconds": float(_env_value(source, "DELAY_MIN_SECONDS") or "10"),
        "delay_max_seconds": float(_env_value(source, "DELAY_MAX_SECONDS") or "20"),
        "progress_every": int(_env_value(source, "PROGRESS_EVERY") or "5"),
        "batch_size": int(_env_value(source, "BATCH_SIZE") or "5"),
        "max_jobs_per_keyword": int(_env_value(source, "MAX_JOBS_PER_KEYWORD") or "30"),
        "retry_attempts": int(_env_value(source, "RETRY_ATTEMPTS") or "3"),
        "user_agent": _env_value(source, "USER_AGENT") or DEFAULT_USER_AGENT,
        "jobs_db_path": Path(_env_value(source, "JOBS_DB_PATH") or DEFAULT_JOBS_DB_PATH),
        "interval_hours": float(_env_value(source, "INTERVAL_HOURS") or "6"),
        "max_keywords_per_minute": float(_env_value(source, "MAX_KEYWORDS_PER_MINUTE") or "4"),
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


def mask_secret(value: str, visible_prefix: int = 3, visible_suffix: int = 2) -> str:
    if not value:
        return ""
    if len(value) <= visible_prefix + visible_suffix:
        return "*" * len(value)
    hidden = "*" * (len(value) - visible_prefix - visible_suffix)
    return f"{value[:visible_prefix]}{hidden}{value[-visible_suffix:]}"
