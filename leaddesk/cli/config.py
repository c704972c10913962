"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./leaddesk.yaml (working directory)
3. ~/.leaddesk/config.yaml (user home)

Environment variables override YAML: LEADDESK_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, field_validator, model_validator

from leaddesk.sync.engine import SyncSettings

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line (``logging.format: json``)."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class PollingConfig(BaseModel):
    """Poll cadences and inactivity windows, in seconds."""

    message_interval_seconds: float = 15.0
    message_idle_timeout_seconds: float = 300.0
    contact_interval_seconds: float = 60.0
    contact_idle_timeout_seconds: float = 600.0
    echo_threshold_ms: int = 2000

    @model_validator(mode="after")
    def positive_intervals(self) -> "PollingConfig":
        """Reject non-positive cadences."""
        for name in (
            "message_interval_seconds",
            "message_idle_timeout_seconds",
            "contact_interval_seconds",
            "contact_idle_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.echo_threshold_ms < 0:
            raise ValueError("echo_threshold_ms must not be negative")
        return self


class ApiConfig(BaseModel):
    """Backend endpoints and credentials.

    Each endpoint is a full URL; an unset endpoint makes the matching
    backend call fail with a configuration error instead of raising.
    """

    recent_leads_url: str = ""
    next_conversations_url: str = ""
    conversation_url: str = ""
    recent_messages_url: str = ""
    conversation_mode_url: str = ""
    send_message_url: str = ""
    access_token: str = ""
    timeout_seconds: float = 30.0


class DisplayConfig(BaseModel):
    """Rendering options for message labels and previews."""

    timezone: str = "America/Mexico_City"
    preview_max_length: int = 50


class LoggingConfig(BaseModel):
    """Root logger configuration for CLI runs."""

    level: str = "info"
    format: Literal["text", "json"] = "text"

    @field_validator("level")
    @classmethod
    def known_level(cls, value: str) -> str:
        if value.upper() not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class LeadDeskConfig(BaseModel):
    """Top-level configuration for the LeadDesk console."""

    polling: PollingConfig = PollingConfig()
    api: ApiConfig = ApiConfig()
    display: DisplayConfig = DisplayConfig()
    logging: LoggingConfig = LoggingConfig()

    def to_sync_settings(self) -> SyncSettings:
        """Project the engine-facing subset of the config."""
        return SyncSettings(
            message_interval=self.polling.message_interval_seconds,
            message_idle_timeout=self.polling.message_idle_timeout_seconds,
            contact_interval=self.polling.contact_interval_seconds,
            contact_idle_timeout=self.polling.contact_idle_timeout_seconds,
            echo_threshold_ms=self.polling.echo_threshold_ms,
            timezone=self.display.timezone,
            preview_max_length=self.display.preview_max_length,
        )


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "leaddesk.yaml",
        Path.cwd() / "leaddesk.yml",
        Path.home() / ".leaddesk" / "config.yaml",
        Path.home() / ".leaddesk" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply LEADDESK_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix, e.g.
    ``LEADDESK_POLLING_MESSAGE_INTERVAL_SECONDS`` maps to section
    ``polling``, field ``message_interval_seconds``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    prefix = "LEADDESK_"
    known_sections = sorted(
        LeadDeskConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if data.get(matched_section) is None:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            # Strings are coerced by pydantic during validation
            data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> LeadDeskConfig:
    """Load LeadDesk configuration from YAML file with env var resolution.

    Every field has a usable default, so a missing file yields the
    defaults (still subject to LEADDESK_ overrides).

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.leaddesk/).

    Returns:
        Parsed and validated LeadDeskConfig.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
        pydantic.ValidationError: If the merged config is invalid.
    """
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found; using defaults")

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return LeadDeskConfig(**data)


def configure_logging(config: LoggingConfig) -> None:
    """Configure the root logger for a CLI run (stderr, rich keeps stdout)."""
    handler = logging.StreamHandler(sys.stderr)
    if config.format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    logging.basicConfig(level=config.level.upper(), handlers=[handler], force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
