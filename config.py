"""
Configuration management for the tender crawl monitor.
"""

import os
import threading
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path
import json
import logging

from jsonschema import validate, ValidationError as SchemaValidationError

from tender_monitor.concurrent.models import WorkerPoolConfig
from tender_monitor.utils.errors import ConfigurationError, ValidationError


@dataclass
class DatabaseConfig:
    """Database configuration settings."""
    # Database type: "postgresql" or "sqlite"
    db_type: str = "sqlite"

    # PostgreSQL settings (when db_type="postgresql")
    host: str = "localhost"
    port: int = 5432
    database: str = "tender_monitor"
    username: str = "postgres"
    password: str = ""
    pool_size: int = 10

    # SQLite settings (when db_type="sqlite")
    sqlite_path: str = "data/tender_monitor.db"


@dataclass
class BrowserConfig:
    """Browser automation settings."""
    headless: bool = True
    navigation_timeout_ms: int = 30000
    element_timeout_ms: int = 10000
    detail_timeout_ms: int = 20000
    captcha_reload_wait_ms: int = 1200
    submission_delay_ms: int = 600
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    viewport_width: int = 1366
    viewport_height: int = 768


@dataclass
class SessionConfig:
    """Crawl session registry settings."""
    flush_interval: float = 5.0
    max_retained_sessions: int = 1000
    cleanup_interval: float = 3600.0
    heartbeat_interval: float = 5.0


@dataclass
class ProviderConfig:
    """Default listing URLs per portal."""
    eprocure_url: str = "https://eprocure.gov.in/eprocure/app?page=FrontEndTendersByOrganisation&service=page"
    etender_url: str = "https://etenders.gov.in/eprocure/app?page=FrontEndTendersByOrganisation&service=page"
    cppp_url: str = "https://eprocure.gov.in/cppp/resultoftendersnew/cpppdata"
    # Upper bound for crawling one organisation on a worker
    organization_timeout: float = 3600.0


@dataclass
class SystemConfig:
    """Main system configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    worker_pool: WorkerPoolConfig = field(default_factory=WorkerPoolConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/tender_monitor.log"


# Configuration schema for validation
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "database": {
            "type": "object",
            "properties": {
                "db_type": {"type": "string", "enum": ["postgresql", "sqlite"]},
                "sqlite_path": {"type": "string", "minLength": 1},
                "host": {"type": "string", "minLength": 1},
                "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                "database": {"type": "string", "minLength": 1},
                "username": {"type": "string", "minLength": 1},
                "password": {"type": "string"},
                "pool_size": {"type": "integer", "minimum": 1, "maximum": 1000}
            },
            "required": ["db_type"],
            "additionalProperties": False
        },
        "browser": {
            "type": "object",
            "properties": {
                "headless": {"type": "boolean"},
                "navigation_timeout_ms": {"type": "integer", "minimum": 1000, "maximum": 300000},
                "element_timeout_ms": {"type": "integer", "minimum": 100, "maximum": 300000},
                "detail_timeout_ms": {"type": "integer", "minimum": 100, "maximum": 300000},
                "captcha_reload_wait_ms": {"type": "integer", "minimum": 0, "maximum": 60000},
                "submission_delay_ms": {"type": "integer", "minimum": 0, "maximum": 60000},
                "user_agent": {"type": "string", "minLength": 10},
                "viewport_width": {"type": "integer", "minimum": 320, "maximum": 7680},
                "viewport_height": {"type": "integer", "minimum": 240, "maximum": 4320}
            },
            "additionalProperties": False
        },
        "worker_pool": {
            "type": "object",
            "properties": {
                "max_concurrent": {"type": "integer", "minimum": 1, "maximum": 256},
                "task_timeout": {"type": "number", "exclusiveMinimum": 0},
                "retry_attempts": {"type": "integer", "minimum": 0, "maximum": 10},
                "retry_delay": {"type": "number", "minimum": 0, "maximum": 60.0},
                "batch_delay": {"type": "number", "minimum": 0, "maximum": 60.0}
            },
            "additionalProperties": False
        },
        "sessions": {
            "type": "object",
            "properties": {
                "flush_interval": {"type": "number", "exclusiveMinimum": 0, "maximum": 3600},
                "max_retained_sessions": {"type": "integer", "minimum": 1},
                "cleanup_interval": {"type": "number", "exclusiveMinimum": 0},
                "heartbeat_interval": {"type": "number", "exclusiveMinimum": 0, "maximum": 3600}
            },
            "additionalProperties": False
        },
        "providers": {
            "type": "object",
            "properties": {
                "eprocure_url": {"type": "string", "minLength": 1},
                "etender_url": {"type": "string", "minLength": 1},
                "cppp_url": {"type": "string", "minLength": 1},
                "organization_timeout": {"type": "number", "exclusiveMinimum": 0}
            },
            "additionalProperties": False
        },
        "log_level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        },
        "log_file": {"type": ["string", "null"]}
    },
    "additionalProperties": False
}


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Configuration manager with schema validation and change detection."""

    def __init__(self, config_path: str = "config.json"):
        self.config_path = Path(config_path)
        self._config: Optional[SystemConfig] = None
        self._last_modified: Optional[float] = None
        self._lock = threading.RLock()

    def validate_config(self, config_data: Dict[str, Any]) -> None:
        """Validate configuration data against schema."""
        try:
            validate(instance=config_data, schema=CONFIG_SCHEMA)
        except SchemaValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed: {e.message}",
                {"path": list(e.absolute_path)}
            )

    def load_config(self) -> SystemConfig:
        """Load configuration from file or environment variables."""
        with self._lock:
            if self.config_path.exists():
                current_modified = self.config_path.stat().st_mtime
                if self._config is None or current_modified != self._last_modified:
                    self._load_from_file()
                    self._last_modified = current_modified
            elif self._config is None:
                self._load_from_env()

            return self._config or SystemConfig()

    def _load_from_file(self) -> None:
        """Load configuration from JSON file with validation."""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to read config file {self.config_path}",
                {"error": str(e)}
            )

        self.validate_config(config_data)
        self._config = self._dict_to_config(config_data)
        self._override_with_env_vars(self._config)

        logging.info(f"Configuration loaded and validated from {self.config_path}")

    def _override_with_env_vars(self, config: SystemConfig) -> None:
        """Override secrets and deployment settings with environment variables."""
        if os.getenv("DB_TYPE"):
            config.database.db_type = os.getenv("DB_TYPE")
        if os.getenv("DB_HOST"):
            config.database.host = os.getenv("DB_HOST")
        if os.getenv("DB_PASSWORD"):
            config.database.password = os.getenv("DB_PASSWORD")
        if os.getenv("SQLITE_PATH"):
            config.database.sqlite_path = os.getenv("SQLITE_PATH")

    def _load_from_env(self) -> None:
        """Load configuration from environment variables."""
        config = SystemConfig()

        config.database.db_type = os.getenv("DB_TYPE", config.database.db_type)
        config.database.host = os.getenv("DB_HOST", config.database.host)
        config.database.port = int(os.getenv("DB_PORT", str(config.database.port)))
        config.database.database = os.getenv("DB_NAME", config.database.database)
        config.database.username = os.getenv("DB_USER", config.database.username)
        config.database.password = os.getenv("DB_PASSWORD", config.database.password)
        config.database.sqlite_path = os.getenv("SQLITE_PATH", config.database.sqlite_path)

        if os.getenv("BROWSER_HEADLESS"):
            config.browser.headless = _env_flag(os.getenv("BROWSER_HEADLESS"))

        if os.getenv("MAX_CONCURRENT"):
            config.worker_pool = self._build_section(
                WorkerPoolConfig,
                {**asdict(config.worker_pool), "max_concurrent": int(os.getenv("MAX_CONCURRENT"))}
            )

        config.log_level = os.getenv("LOG_LEVEL", config.log_level).upper()

        self._config = config
        logging.info("Configuration loaded from environment variables")

    @staticmethod
    def _build_section(section_cls, data: Dict[str, Any]):
        try:
            return section_cls(**data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid {section_cls.__name__}: {e.message}",
                e.details
            )

    def _dict_to_config(self, data: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig object."""
        config = SystemConfig()

        if "database" in data:
            config.database = DatabaseConfig(**data["database"])
        if "browser" in data:
            config.browser = BrowserConfig(**data["browser"])
        if "worker_pool" in data:
            config.worker_pool = self._build_section(WorkerPoolConfig, data["worker_pool"])
        if "sessions" in data:
            config.sessions = SessionConfig(**data["sessions"])
        if "providers" in data:
            config.providers = ProviderConfig(**data["providers"])

        config.log_level = data.get("log_level", config.log_level)
        config.log_file = data.get("log_file", config.log_file)

        return config

    def reload_if_changed(self) -> bool:
        """Check if config file has changed and reload if necessary."""
        with self._lock:
            if not self.config_path.exists():
                return False

            current_modified = self.config_path.stat().st_mtime
            if current_modified != self._last_modified:
                self.load_config()
                return True
            return False

    def export_config(self) -> Dict[str, Any]:
        """Export current configuration as dictionary."""
        with self._lock:
            if not self._config:
                return {}

            return {
                "database": asdict(self._config.database),
                "browser": asdict(self._config.browser),
                "worker_pool": asdict(self._config.worker_pool),
                "sessions": asdict(self._config.sessions),
                "providers": asdict(self._config.providers),
                "log_level": self._config.log_level,
                "log_file": self._config.log_file
            }

    def save_config(self, config_path: Optional[str] = None) -> None:
        """Save current configuration to file."""
        with self._lock:
            if not self._config:
                raise ConfigurationError("No configuration loaded to save")

            save_path = Path(config_path) if config_path else self.config_path
            config_dict = self.export_config()

            # Validate before saving
            self.validate_config(config_dict)

            with open(save_path, 'w', encoding='utf-8') as f:
                json.dump(config_dict, f, indent=2, ensure_ascii=False)

            logging.info(f"Configuration saved to {save_path}")
