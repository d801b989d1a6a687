"""Configuration loading and validation module.

Settings come from environment variables, optionally layered over a YAML
file named by CONFIG_FILE. Provides a typed Config dataclass consumed by all
other modules.
"""

import logging
import math
import os
import re
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass
class VtsConfig:
    """Scrape target configuration."""
    url: str


@dataclass
class ScrapeConfig:
    """Polling behavior configuration."""
    interval_seconds: float
    timeout_seconds: float = 10.0


@dataclass
class MetricsConfig:
    """Exporter HTTP listener configuration."""
    port: int = 8080
    addr: str = "0.0.0.0"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: int = logging.INFO


@dataclass
class Config:
    """Root configuration dataclass."""
    vts: VtsConfig
    scrape: ScrapeConfig
    metrics: MetricsConfig
    logging: LoggingConfig


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_TERM = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

# Largest duration Go accepts (2562047h47m16.854775807s), capped by what
# Event.wait() can take on this platform
MAX_DURATION_SECONDS = min((2 ** 63 - 1) / 1e9, threading.TIMEOUT_MAX)


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string into seconds.

    Accepts a sequence of decimal numbers, each with a unit suffix,
    optionally preceded by a sign, e.g. "300ms", "1.5h" or "2h45m".
    The bare string "0" is also accepted.

    Args:
        value: Duration string

    Returns:
        Duration in seconds

    Raises:
        ConfigError: If the string is not a valid duration

    Example:
        >>> parse_duration("1m30s")
        90.0
    """
    if not isinstance(value, str):
        raise ConfigError(f"Invalid duration {value!r}: must be a string")

    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        if text[0] == "-":
            sign = -1.0
        text = text[1:]

    if text == "0":
        return 0.0
    if not text:
        raise ConfigError(f"Invalid duration {value!r}")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_TERM.match(text, pos)
        if match is None:
            raise ConfigError(f"Invalid duration {value!r}")
        number, unit = match.groups()
        total += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    if total > MAX_DURATION_SECONDS:
        raise ConfigError(f"Invalid duration {value!r}: out of range")

    return sign * total


def _get_nested(data: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: The dictionary to search
        path: Dot-separated path to the value (e.g., "scrape.duration")
        default: Value returned when any part of the path is missing

    Returns:
        The value at the path, or default if missing

    Raises:
        ConfigError: If an intermediate value is not a mapping
    """
    current: Any = data
    for key in path.split("."):
        if current is None:
            return default
        if not isinstance(current, dict):
            raise ConfigError(f"Configuration path '{path}' is not a valid nested structure")
        if key not in current:
            return default
        current = current[key]
    return current


def _load_file(path: str) -> dict:
    """Load the optional YAML configuration file.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML dictionary
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")
    return data


def _setting(
    environ: Mapping[str, str], file_data: dict, env_name: str, path: str
) -> Optional[Any]:
    """Resolve one setting; the environment wins over the file."""
    value = environ.get(env_name)
    if value is not None and value != "":
        return value
    return _get_nested(file_data, path)


def _parse_positive_duration(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            seconds = float(value)
        except OverflowError:
            raise ConfigError(f"{field_name} is out of range, got {value!r}")
    else:
        try:
            seconds = parse_duration(value)
        except ConfigError as e:
            raise ConfigError(f"{field_name}: {e}")
    if not math.isfinite(seconds) or seconds > MAX_DURATION_SECONDS:
        raise ConfigError(f"{field_name} is out of range, got {value!r}")
    if seconds <= 0:
        raise ConfigError(f"{field_name} must be > 0, got {value!r}")
    return seconds


def _parse_port(value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"METRICS_PORT must be an integer, got {value!r}")
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"METRICS_PORT must be an integer, got {value!r}")
    if not 1 <= port <= 65535:
        raise ConfigError(f"METRICS_PORT must be between 1 and 65535, got {port}")
    return port


def _parse_log_level(value: Any) -> int:
    level = logging.getLevelName(str(value).upper())
    if not isinstance(level, int):
        raise ConfigError(f"LOG_LEVEL is not a valid logging level: {value!r}")
    return level


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load and validate configuration from the environment.

    Args:
        environ: Mapping to read variables from (default: os.environ)

    Returns:
        Config: Validated configuration object

    Raises:
        ConfigError: If a required setting is missing or a value is invalid
    """
    if environ is None:
        environ = os.environ

    config_file = environ.get("CONFIG_FILE")
    file_data = _load_file(config_file) if config_file else {}

    # Scrape target
    url = _setting(environ, file_data, "VTS_URL", "vts.url")
    if url is None:
        raise ConfigError("Missing required configuration field: VTS_URL")
    if not isinstance(url, str) or not url.strip():
        raise ConfigError(f"VTS_URL must be a non-empty string, got {url!r}")

    # Scrape schedule
    duration = _setting(environ, file_data, "SCRAPE_DURATION", "scrape.duration")
    if duration is None:
        raise ConfigError("Missing required configuration field: SCRAPE_DURATION")
    interval_seconds = _parse_positive_duration(duration, "SCRAPE_DURATION")

    timeout = _setting(environ, file_data, "SCRAPE_TIMEOUT", "scrape.timeout")
    timeout_seconds = (
        _parse_positive_duration(timeout, "SCRAPE_TIMEOUT") if timeout is not None else 10.0
    )

    # Exporter listener
    port = _setting(environ, file_data, "METRICS_PORT", "metrics.port")
    addr = _setting(environ, file_data, "METRICS_ADDR", "metrics.addr")
    if addr is not None and not isinstance(addr, str):
        raise ConfigError(f"METRICS_ADDR must be a string, got {type(addr).__name__}")

    level = _setting(environ, file_data, "LOG_LEVEL", "logging.level")

    return Config(
        vts=VtsConfig(url=url.strip()),
        scrape=ScrapeConfig(
            interval_seconds=interval_seconds,
            timeout_seconds=timeout_seconds,
        ),
        metrics=MetricsConfig(
            port=_parse_port(port) if port is not None else 8080,
            addr=addr if addr is not None else "0.0.0.0",
        ),
        logging=LoggingConfig(
            level=_parse_log_level(level) if level is not None else logging.INFO,
        ),
    )
