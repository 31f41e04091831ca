"""Configuration loading — merges settings.toml and .env."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"

# Units of each currency per 1 USD. Static; only used for risk display.
DEFAULT_RATES: dict[str, float] = {
    "USD": 1.0,
    "EUR": 0.85,
    "GBP": 0.73,
    "AUD": 1.52,
    "NZD": 1.64,
    "CAD": 1.35,
    "CHF": 0.88,
    "JPY": 150.0,
}


@dataclass
class StorageConfig:
    db_path: str = ""


@dataclass
class FxConfig:
    rates: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_RATES))


@dataclass
class Config:
    log_level: str = "INFO"
    json_logs: bool = False
    default_currency: str = "USD"
    storage: StorageConfig = field(default_factory=StorageConfig)
    fx: FxConfig = field(default_factory=FxConfig)

    @property
    def db_path(self) -> str:
        return self.storage.db_path


def load_config(config_dir: Path | None = None) -> Config:
    """Load configuration from settings.toml and environment variables."""
    config_dir = config_dir or CONFIG_DIR
    load_dotenv(PROJECT_ROOT / ".env")

    config = Config()
    config.storage.db_path = str(PROJECT_ROOT / "data" / "tradelog.db")

    settings_path = config_dir / "settings.toml"
    if settings_path.exists():
        with open(settings_path, "rb") as f:
            settings = tomllib.load(f)

        general = settings.get("general", {})
        config.log_level = general.get("log_level", config.log_level)
        config.json_logs = bool(general.get("json_logs", config.json_logs))
        config.default_currency = general.get("default_currency", config.default_currency).upper()

        storage = settings.get("storage", {})
        config.storage.db_path = storage.get("db_path", config.storage.db_path)

        fx = settings.get("fx", {})
        for code, rate in fx.get("rates", {}).items():
            config.fx.rates[code.upper()] = rate

    # Environment overrides
    config.storage.db_path = os.getenv("TRADELOG_DB_PATH", config.storage.db_path)
    config.log_level = os.getenv("TRADELOG_LOG_LEVEL", config.log_level)
    json_env = os.getenv("JSON_LOGS")
    if json_env is not None:
        config.json_logs = json_env.strip().lower() in ("1", "true", "yes")

    _validate_config(config)

    return config


def _validate_config(config: Config) -> None:
    """Validate config values are within sane ranges."""
    errors = []

    if config.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(f"log_level must be a standard level name, got '{config.log_level}'")
    if not config.storage.db_path:
        errors.append("storage.db_path must not be empty")
    if config.fx.rates.get("USD") != 1.0:
        errors.append("fx.rates must anchor USD at 1.0")
    for code, rate in config.fx.rates.items():
        if len(code) != 3 or not code.isalpha():
            errors.append(f"fx.rates key must be a 3-letter currency code, got '{code}'")
        if not isinstance(rate, (int, float)) or rate <= 0:
            errors.append(f"fx.rates.{code} must be > 0, got {rate}")
    if len(config.default_currency) != 3 or not config.default_currency.isalpha():
        errors.append(f"default_currency must be a 3-letter code, got '{config.default_currency}'")

    if errors:
        raise ValueError("Config validation failed:\n  " + "\n  ".join(errors))
