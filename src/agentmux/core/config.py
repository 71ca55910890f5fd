"""agentmux configuration: Pydantic model, load, and save."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from agentmux.core.constants import (
    BUFFER_HIGH_WATER_BYTES,
    BUFFER_LOW_WATER_BYTES,
    CAPTURE_LINES,
    CONFIG_FILENAME,
    DB_FILENAME,
    DEFAULT_COLS,
    DEFAULT_COMMAND,
    DEFAULT_ROWS,
    DETECTOR_WINDOW_LINES,
    HISTORY_FLUSH_INTERVAL_MS,
    IDLE_THRESHOLD_MS,
    IDLE_TIMER_MS,
    MAX_SESSIONS_PER_OWNER,
    STATE_TICK_MS,
    STATUS_LINE_PATTERN,
    TMUX_BINARY,
    TMUX_PREFIX,
    _default_data_dir,
)
from agentmux.core.exceptions import ConfigError, ConfigNotFoundError


def agentmux_dir() -> Path:
    """
    Return the agentmux data directory, creating it if needed.

    macOS : ~/Library/Application Support/agentmux
    Linux : ~/.config/agentmux  (or $XDG_CONFIG_HOME/agentmux)
    Other : ~/.agentmux
    """
    d = _default_data_dir()
    d.mkdir(mode=0o700, parents=True, exist_ok=True)
    return d


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class SessionsConfig(BaseModel):
    max_per_owner: int = MAX_SESSIONS_PER_OWNER
    default_command: str = DEFAULT_COMMAND
    extra_args: list[str] = Field(default_factory=list)
    default_cols: int = DEFAULT_COLS
    default_rows: int = DEFAULT_ROWS

    @field_validator("max_per_owner")
    @classmethod
    def validate_max(cls, v: int) -> int:
        if not (1 <= v <= 500):
            raise ValueError("max_per_owner must be between 1 and 500")
        return v

    @field_validator("default_command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("default_command must not be empty")
        return v

    @field_validator("extra_args", mode="before")
    @classmethod
    def parse_extra_args(cls, v: Any) -> Any:
        """Accept both a list and a whitespace-separated string."""
        if isinstance(v, str):
            return v.split()
        return v


class BufferConfig(BaseModel):
    high_water_bytes: int = BUFFER_HIGH_WATER_BYTES
    low_water_bytes: int = BUFFER_LOW_WATER_BYTES

    @model_validator(mode="after")
    def low_below_high(self) -> BufferConfig:
        if not (0 < self.low_water_bytes < self.high_water_bytes):
            raise ValueError("buffer watermarks must satisfy 0 < low_water_bytes < high_water_bytes")
        return self


class DetectionConfig(BaseModel):
    idle_timer_ms: int = IDLE_TIMER_MS
    idle_threshold_ms: int = IDLE_THRESHOLD_MS
    tick_interval_ms: int = STATE_TICK_MS
    window_lines: int = DETECTOR_WINDOW_LINES

    @field_validator("idle_timer_ms", "idle_threshold_ms", "tick_interval_ms")
    @classmethod
    def validate_positive_ms(cls, v: int) -> int:
        if not (10 <= v <= 600_000):
            raise ValueError("detection intervals must be between 10 and 600000 ms")
        return v

    @field_validator("window_lines")
    @classmethod
    def validate_window(cls, v: int) -> int:
        if not (5 <= v <= 10_000):
            raise ValueError("window_lines must be between 5 and 10000")
        return v


class MultiplexerConfig(BaseModel):
    enabled: bool = True
    binary: str = TMUX_BINARY
    prefix: str = TMUX_PREFIX
    capture_lines: int = CAPTURE_LINES
    status_line_pattern: str = STATUS_LINE_PATTERN

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        # tmux treats ':' and '.' as target separators
        if not re.fullmatch(r"[A-Za-z0-9_\-]+", v):
            raise ValueError("multiplexer prefix may only contain letters, digits, '_' and '-'")
        return v

    @field_validator("status_line_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"status_line_pattern is not a valid regex: {exc}") from exc
        return v

    @field_validator("capture_lines")
    @classmethod
    def validate_capture_lines(cls, v: int) -> int:
        if not (1 <= v <= 100_000):
            raise ValueError("capture_lines must be between 1 and 100000")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" | "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v


class DatabaseConfig(BaseModel):
    path: str = ""  # empty → use default
    history_enabled: bool = True
    flush_interval_ms: int = HISTORY_FLUSH_INTERVAL_MS


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class AgentMuxConfig(BaseModel):
    """Root agentmux configuration model."""

    config_version: int = 1
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    buffer: BufferConfig = Field(default_factory=BufferConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    multiplexer: MultiplexerConfig = Field(default_factory=MultiplexerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    _config_path: Path | None = None

    @property
    def db_path(self) -> Path:
        if self.database.path:
            return Path(self.database.path).expanduser()
        return agentmux_dir() / DB_FILENAME


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def _config_file_path() -> Path:
    if env_path := os.environ.get("AGENTMUX_CONFIG"):
        return Path(env_path)
    return _default_data_dir() / CONFIG_FILENAME


def load_config(path: Path | str | None = None) -> AgentMuxConfig:
    """
    Load AgentMuxConfig from a TOML file, overlaid with environment variables.

    Priority (highest to lowest):
      1. Environment variables (AGENTMUX_*)
      2. Config file
      3. Built-in defaults

    An explicitly named *path* (argument or ``$AGENTMUX_CONFIG``) must exist;
    a missing file at the default location just means "use defaults".
    """
    import tomllib

    explicit = path is not None or bool(os.environ.get("AGENTMUX_CONFIG"))
    cfg_path = Path(path) if path is not None else _config_file_path()

    data: dict[str, Any] = {}
    if cfg_path.exists():
        try:
            with open(cfg_path, "rb") as f:
                data = tomllib.load(f)
        except Exception as exc:
            raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc
    elif explicit:
        raise ConfigNotFoundError(f"Config file not found: {cfg_path}")

    _apply_env_overrides(data)

    try:
        config = AgentMuxConfig.model_validate(data)
    except Exception as exc:
        raise ConfigError(f"Invalid config at {cfg_path}: {exc}") from exc

    config._config_path = cfg_path
    return config


_FALSY = {"0", "false", "no", "off"}


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay AGENTMUX_* environment variables onto parsed TOML."""
    env = os.environ.get

    if level := env("AGENTMUX_LOG_LEVEL", ""):
        data.setdefault("logging", {})["level"] = level
    if db := env("AGENTMUX_DB_PATH", ""):
        data.setdefault("database", {})["path"] = db
    if max_sessions := env("AGENTMUX_MAX_SESSIONS", ""):
        try:
            data.setdefault("sessions", {})["max_per_owner"] = int(max_sessions)
        except ValueError as exc:
            raise ConfigError(f"AGENTMUX_MAX_SESSIONS must be an integer: {max_sessions!r}") from exc
    if command := env("AGENTMUX_COMMAND", ""):
        data.setdefault("sessions", {})["default_command"] = command
    if mux := env("AGENTMUX_MULTIPLEXER", ""):
        data.setdefault("multiplexer", {})["enabled"] = mux.strip().lower() not in _FALSY
    if prefix := env("AGENTMUX_TMUX_PREFIX", ""):
        data.setdefault("multiplexer", {})["prefix"] = prefix


def save_config(config_data: dict[str, Any], path: Path | None = None) -> Path:
    """Write config dict to TOML file with secure permissions (0600)."""
    import tomli_w

    cfg_path = path or _config_file_path()
    cfg_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    config_data.setdefault("config_version", 1)

    # Write atomically
    tmp_path = cfg_path.with_suffix(".tmp")
    try:
        with open(tmp_path, "wb") as f:
            tomli_w.dump(config_data, f)
        tmp_path.rename(cfg_path)
    except Exception as exc:
        tmp_path.unlink(missing_ok=True)
        raise ConfigError(f"Cannot write config to {cfg_path}: {exc}") from exc

    cfg_path.chmod(0o600)
    return cfg_path
