from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from research_pipeline.core.stall import StallThresholds

CONFIG_DIR = Path(__file__).resolve().parent / "conf"
DEFAULT_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def _load_config_file(path: Path | None = None) -> dict[str, Any]:
    path = path or Path(os.getenv("RESEARCH_CONFIG_FILE") or CONFIG_DIR / "research.yaml")
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp)
    return data if isinstance(data, dict) else {}


def _section(config: dict[str, Any], name: str) -> dict[str, Any]:
    value = config.get(name)
    return value if isinstance(value, dict) else {}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(slots=True)
class Settings:
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    log_level: str = "INFO"
    engine_url: str | None = None
    engine_token: str | None = None
    engine_timeout: float = 30.0
    callback_secret: str | None = None
    stale_threshold_seconds: float = 300.0
    discovery_timeout_seconds: float = 480.0
    extraction_timeout_seconds: float = 900.0
    max_recovery_retries: int = 3

    @property
    def thresholds(self) -> StallThresholds:
        return StallThresholds.from_seconds(
            self.stale_threshold_seconds,
            self.discovery_timeout_seconds,
            self.extraction_timeout_seconds,
        )


def load_settings(config_path: Path | None = None) -> Settings:
    """Read settings from the YAML defaults, then the process environment."""

    config = _load_config_file(config_path)
    stall = _section(config, "stall")
    recovery = _section(config, "recovery")
    engine = _section(config, "engine")
    defaults = Settings()

    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]

    return Settings(
        cors_origins=origins or list(DEFAULT_ORIGINS),
        log_level=os.getenv("LOG_LEVEL") or "INFO",
        engine_url=os.getenv("RESEARCH_ENGINE_URL") or None,
        engine_token=os.getenv("RESEARCH_ENGINE_TOKEN") or None,
        engine_timeout=_float_env(
            "RESEARCH_ENGINE_TIMEOUT", engine.get("timeout_seconds", defaults.engine_timeout)
        ),
        callback_secret=os.getenv("RESEARCH_CALLBACK_SECRET") or None,
        stale_threshold_seconds=_float_env(
            "RESEARCH_STALE_THRESHOLD_SECONDS",
            stall.get("stale_threshold_seconds", defaults.stale_threshold_seconds),
        ),
        discovery_timeout_seconds=_float_env(
            "RESEARCH_DISCOVERY_TIMEOUT_SECONDS",
            stall.get("discovery_timeout_seconds", defaults.discovery_timeout_seconds),
        ),
        extraction_timeout_seconds=_float_env(
            "RESEARCH_EXTRACTION_TIMEOUT_SECONDS",
            stall.get("extraction_timeout_seconds", defaults.extraction_timeout_seconds),
        ),
        max_recovery_retries=int(
            _float_env("RESEARCH_MAX_RECOVERY_RETRIES", recovery.get("max_retries", defaults.max_recovery_retries))
        ),
    )
