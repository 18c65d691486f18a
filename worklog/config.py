"""
Worklog - Configuration Management

Handles loading the tracker connection settings from the JSON config file
and environment variables. The config is stored in ~/.config/worklog/config.json
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from worklog.exceptions import ConfigError


# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "worklog"
CONFIG_FILE = CONFIG_DIR / "config.json"
DEFAULT_DB_PATH = CONFIG_DIR / "worklog.db"
DEFAULT_LOG_DIR = Path.home() / ".worklog" / "logs"

AUTH_SCHEMES = ("basic", "bearer")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class WorklogConfig:
    """Main configuration container for worklog."""

    tracker_url: str = ""
    user: str = ""
    token: str = ""
    auth: str = "basic"
    api_path: str = "rest/api/latest"
    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    # Used when the tracker's time tracking configuration is unavailable
    working_hours_per_day: float = 7.5
    working_days_per_week: float = 5.0
    request_timeout: float = 30.0
    max_concurrency: int = 10
    # JSONL request and sync logs
    log_dir: Path = field(default_factory=lambda: DEFAULT_LOG_DIR)
    log_level: str = "INFO"
    log_max_size_mb: float = 10.0
    log_backup_count: int = 5

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path).expanduser()
        self.log_dir = Path(self.log_dir).expanduser()
        self.log_level = self.log_level.upper()
        self.tracker_url = self.tracker_url.rstrip("/")

    @property
    def api_base_url(self) -> str:
        """Base URL all REST calls are made relative to."""
        return f"{self.tracker_url}/{self.api_path.strip('/')}"

    def validate(self) -> None:
        """
        Check the settings needed before any network or database activity.

        Raises:
            ConfigError: If a required setting is missing or malformed
        """
        if not self.tracker_url:
            raise ConfigError(
                "Tracker URL is not configured",
                {"hint": "Set WORKLOG_TRACKER_URL or 'tracker_url' in config.json"},
            )
        if not self.tracker_url.startswith(("http://", "https://")):
            raise ConfigError(
                "Tracker URL must start with http:// or https://",
                {"tracker_url": self.tracker_url},
            )
        if self.auth not in AUTH_SCHEMES:
            raise ConfigError(
                f"Unknown auth scheme '{self.auth}'",
                {"valid": list(AUTH_SCHEMES)},
            )
        if not self.token:
            raise ConfigError(
                "Tracker API token is not configured",
                {"hint": "Export WORKLOG_TOKEN=your-token-here"},
            )
        if self.auth == "basic" and not self.user:
            raise ConfigError(
                "Basic auth needs a user name",
                {"hint": "Set WORKLOG_USER or 'user' in config.json"},
            )
        if self.max_concurrency < 1:
            raise ConfigError(
                "max_concurrency must be at least 1",
                {"max_concurrency": self.max_concurrency},
            )
        if self.working_hours_per_day <= 0 or self.working_days_per_week <= 0:
            raise ConfigError(
                "Working hours and days must be positive",
                {
                    "working_hours_per_day": self.working_hours_per_day,
                    "working_days_per_week": self.working_days_per_week,
                },
            )
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(
                f"Unknown log level '{self.log_level}'",
                {"valid": list(LOG_LEVELS)},
            )
        if self.log_max_size_mb <= 0 or self.log_backup_count < 0:
            raise ConfigError(
                "Log rotation needs a positive size and a non-negative backup count",
                {
                    "log_max_size_mb": self.log_max_size_mb,
                    "log_backup_count": self.log_backup_count,
                },
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "tracker_url": self.tracker_url,
            "user": self.user,
            "token": self.token,
            "auth": self.auth,
            "api_path": self.api_path,
            "db_path": str(self.db_path),
            "working_hours_per_day": self.working_hours_per_day,
            "working_days_per_week": self.working_days_per_week,
            "request_timeout": self.request_timeout,
            "max_concurrency": self.max_concurrency,
            "log_dir": str(self.log_dir),
            "log_level": self.log_level,
            "log_max_size_mb": self.log_max_size_mb,
            "log_backup_count": self.log_backup_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorklogConfig":
        """Create WorklogConfig from dictionary."""
        return cls(
            tracker_url=data.get("tracker_url", ""),
            user=data.get("user", ""),
            token=data.get("token", ""),
            auth=data.get("auth", "basic"),
            api_path=data.get("api_path", "rest/api/latest"),
            db_path=Path(data.get("db_path", DEFAULT_DB_PATH)),
            working_hours_per_day=float(data.get("working_hours_per_day", 7.5)),
            working_days_per_week=float(data.get("working_days_per_week", 5.0)),
            request_timeout=float(data.get("request_timeout", 30.0)),
            max_concurrency=int(data.get("max_concurrency", 10)),
            log_dir=Path(data.get("log_dir", DEFAULT_LOG_DIR)),
            log_level=data.get("log_level", "INFO"),
            log_max_size_mb=float(data.get("log_max_size_mb", 10.0)),
            log_backup_count=int(data.get("log_backup_count", 5)),
        )


def load_config(path: Path | None = None) -> WorklogConfig:
    """
    Load configuration from file and environment.

    Environment variables take precedence over the file.

    Args:
        path: Config file to read, defaults to ~/.config/worklog/config.json

    Returns:
        WorklogConfig with all settings loaded

    Raises:
        ConfigError: If the config file is unreadable
    """
    config_file = path or CONFIG_FILE
    data: dict[str, Any] = {}

    if config_file.exists():
        try:
            with open(config_file) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(
                f"Invalid JSON in {config_file}",
                {"error": str(e)},
            )

    try:
        config = WorklogConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"Invalid value in {config_file}",
            {"error": str(e)},
        )

    if url := os.environ.get("WORKLOG_TRACKER_URL"):
        config.tracker_url = url.rstrip("/")
    if user := os.environ.get("WORKLOG_USER"):
        config.user = user
    if token := os.environ.get("WORKLOG_TOKEN"):
        config.token = token
    if db_path := os.environ.get("WORKLOG_DB_PATH"):
        config.db_path = Path(db_path).expanduser()
    if log_dir := os.environ.get("WORKLOG_LOG_DIR"):
        config.log_dir = Path(log_dir).expanduser()
    if log_level := os.environ.get("WORKLOG_LOG_LEVEL"):
        config.log_level = log_level.upper()
    if max_size := os.environ.get("WORKLOG_LOG_MAX_SIZE_MB"):
        try:
            config.log_max_size_mb = float(max_size)
        except ValueError:
            raise ConfigError(
                "WORKLOG_LOG_MAX_SIZE_MB must be a number",
                {"value": max_size},
            )

    return config


def save_config(config: WorklogConfig, path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: WorklogConfig to save
        path: Destination file, defaults to ~/.config/worklog/config.json
    """
    config_file = path or CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
