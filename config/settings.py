#!/usr/bin/env python3
"""
Project configuration.
All settings in one place, loaded from the environment and validated.
"""
import os
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, asdict, field
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from mcx.sources.headers import MCX_DISCOVERY_URL, MCX_OPTION_CHAIN_URL, DEFAULT_USER_AGENT

# Load environment variables
load_dotenv()


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


@dataclass
class SchedulerConfig:
    """When discovery and the OI cycle run."""
    daily_discovery_cron: str = "0 8 * * *"
    timezone: str = "Asia/Kolkata"
    fetch_interval_seconds: int = 60
    discover_on_startup: bool = True


@dataclass
class SourceConfig:
    """Upstream MCX endpoints."""
    discovery_url: str = MCX_DISCOVERY_URL
    option_chain_url: str = MCX_OPTION_CHAIN_URL
    user_agent: str = DEFAULT_USER_AGENT
    http_timeout_seconds: float = 30.0


@dataclass
class DatabaseConfig:
    """Database configuration."""
    path: str = ""  # defaults to <data_dir>/oi_tracker.db


@dataclass
class WebConfig:
    """Read API configuration."""
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    run_tracker: bool = True

    @property
    def url(self) -> str:
        """Base URL of the API."""
        return f"http://{self.host}:{self.port}"


@dataclass
class Settings:
    """
    Main settings object.
    Groups every component configuration.
    """

    # General
    project_name: str = "MCX OI Tracker"
    version: str = "1.0.0"
    environment: str = "development"  # development, testing, production
    log_level: LogLevel = LogLevel.INFO
    debug: bool = False

    # Paths
    project_root: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    data_dir: str = os.path.join(project_root, "data")
    logs_dir: str = os.path.join(project_root, "logs")

    # Components
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    web: WebConfig = field(default_factory=WebConfig)

    def __post_init__(self):
        """Runs after the dataclass fields are set."""
        self._load_from_env()

        if not self.database.path:
            self.database.path = os.path.join(self.data_dir, "oi_tracker.db")

        self._validate()
        self._create_directories()

    def _load_from_env(self):
        """Load settings from environment variables."""

        # General
        self.environment = os.getenv("ENVIRONMENT", self.environment)
        self.debug = _env_bool("DEBUG", self.debug)

        log_level_str = os.getenv("LOG_LEVEL", self.log_level.value)
        self.log_level = LogLevel(log_level_str.upper())

        self.data_dir = os.getenv("DATA_DIR", self.data_dir)
        self.logs_dir = os.getenv("LOGS_DIR", self.logs_dir)

        # Scheduler
        self.scheduler.daily_discovery_cron = os.getenv(
            "DISCOVERY_CRON", self.scheduler.daily_discovery_cron
        )
        self.scheduler.timezone = os.getenv("TRACKER_TIMEZONE", self.scheduler.timezone)
        self.scheduler.fetch_interval_seconds = int(
            os.getenv("FETCH_INTERVAL_SECONDS", self.scheduler.fetch_interval_seconds)
        )
        self.scheduler.discover_on_startup = _env_bool(
            "DISCOVER_ON_STARTUP", self.scheduler.discover_on_startup
        )

        # MCX
        self.source.discovery_url = os.getenv("MCX_DISCOVERY_URL", self.source.discovery_url)
        self.source.option_chain_url = os.getenv("MCX_OPTION_CHAIN_URL", self.source.option_chain_url)
        self.source.http_timeout_seconds = float(
            os.getenv("HTTP_TIMEOUT_SECONDS", self.source.http_timeout_seconds)
        )

        # Database
        self.database.path = os.getenv("DB_PATH", self.database.path)

        # Web
        self.web.host = os.getenv("WEB_HOST", self.web.host)
        self.web.port = int(os.getenv("WEB_PORT", self.web.port))
        origins = os.getenv("CORS_ORIGINS")
        if origins:
            self.web.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]
        self.web.run_tracker = _env_bool("WEB_RUN_TRACKER", self.web.run_tracker)

    def _create_directories(self):
        """Create the directories the tracker writes to."""
        directories = [
            self.data_dir,
            self.logs_dir,
            os.path.dirname(os.path.abspath(self.database.path)),
        ]

        for directory in directories:
            os.makedirs(directory, exist_ok=True)

    def _validate(self):
        """Validate settings."""
        errors = []

        try:
            ZoneInfo(self.scheduler.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"Unknown timezone: {self.scheduler.timezone}")

        try:
            CronTrigger.from_crontab(self.scheduler.daily_discovery_cron)
        except ValueError as e:
            errors.append(f"Invalid discovery cron '{self.scheduler.daily_discovery_cron}': {e}")

        if self.scheduler.fetch_interval_seconds <= 0:
            errors.append("FETCH_INTERVAL_SECONDS must be positive")

        if self.source.http_timeout_seconds <= 0:
            errors.append("HTTP_TIMEOUT_SECONDS must be positive")

        if not 0 < self.web.port < 65536:
            errors.append(f"WEB_PORT out of range: {self.web.port}")

        if errors:
            error_msg = "\n".join([f"  • {error}" for error in errors])
            raise ValueError(f"Configuration errors:\n{error_msg}")

    @property
    def tzinfo(self) -> ZoneInfo:
        """Timezone every schedule and day key is computed in."""
        return ZoneInfo(self.scheduler.timezone)

    def to_dict(self) -> Dict[str, Any]:
        """Settings as a plain dict."""
        data = asdict(self)
        data['log_level'] = self.log_level.value
        return data

    def print_summary(self):
        """Print a summary of the settings."""
        print("\n" + "="*60)
        print(f"⚙️  CONFIGURATION: {self.project_name} v{self.version}")
        print("="*60)

        print(f"\n📋 GENERAL:")
        print(f"   Environment: {self.environment}")
        print(f"   Logging: {self.log_level.value}")
        print(f"   Debug: {self.debug}")

        print(f"\n⏱️  SCHEDULE:")
        print(f"   Discovery: '{self.scheduler.daily_discovery_cron}' ({self.scheduler.timezone})")
        print(f"   OI cycle: every {self.scheduler.fetch_interval_seconds} sec")
        print(f"   Discover on startup: {self.scheduler.discover_on_startup}")

        print(f"\n🏦 MCX:")
        print(f"   Expiries: {self.source.discovery_url}")
        print(f"   Option chain: {self.source.option_chain_url}")
        print(f"   Timeout: {self.source.http_timeout_seconds} sec")

        print(f"\n🌐 WEB:")
        print(f"   URL: {self.web.url}")
        print(f"   Tracker in web process: {self.web.run_tracker}")

        print(f"\n📁 PATHS:")
        print(f"   Data: {self.data_dir}")
        print(f"   Logs: {self.logs_dir}")
        print(f"   DB: {self.database.path}")

        print("="*60)


# Global settings instance, built on first use
settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings
