# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration for mail-lro.

Settings are grouped in nested dataclasses and built once at process start
by :func:`load_config`; components receive the pieces they need explicitly.

Priority: config file > environment variables > defaults. The connection
string and the sender address have no default: a run without them stops
before any network call.

Example:
    Configuration file format (mail-lro.ini)::

        [provider]
        connection_string = endpoint=https://my-acs.communication.azure.com/;accesskey=...
        sender_address = DoNotReply@example.azurecomm.net

        [polling]
        interval = 0.5
        timeout = 120
        wait_timeout = 60
        shutdown_grace = 5

        [probe]
        burst_size = 35

    Loading it::

        config = load_config("mail-lro.ini")
        config.provider.endpoint      # "https://my-acs.communication.azure.com"
        config.polling.interval       # 0.5
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from .errors import ConfigurationError
from .logger import get_logger

logger = get_logger("config")

CONNECTION_STRING_ENV = "ACS_CONNECTION_STRING"
SENDER_ADDRESS_ENV = "ACS_SENDER_ADDRESS"
CONNECTION_STRING_EXAMPLE = "endpoint=https://<resource-name>.communication.azure.com/;accesskey=<access-key>"
SENDER_ADDRESS_EXAMPLE = "DoNotReply@xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx.azurecomm.net"
DEFAULT_API_VERSION = "2023-03-31"
DEFAULT_LOG_LEVEL = "WARNING"

# Lower bounds of numeric settings; out-of-range values fall back to the default.
POSITIVE_SETTINGS = frozenset({"request_timeout", "burst_size", "limit_per_minute"})
NON_NEGATIVE_SETTINGS = frozenset({"interval", "timeout", "wait_timeout", "shutdown_grace"})


@dataclass
class ProviderConfig:
    """Connection to the mail transport provider."""

    endpoint: str
    """Resource endpoint, without trailing slash."""

    access_key: str
    """Base64 access key used to sign requests."""

    sender_address: str
    """Verified sender address used for every message."""

    api_version: str = DEFAULT_API_VERSION
    """REST API version sent as the ``api-version`` query parameter."""

    request_timeout: float = 30.0
    """Per-request timeout in seconds."""


@dataclass
class PollingConfig:
    """Timing of status polling."""

    interval: float = 0.5
    """Seconds between two status reads."""

    timeout: float = 120.0
    """Seconds before a poll gives up waiting for a terminal status."""

    wait_timeout: float = 60.0
    """Upper bound for a caller waiting on a reactive subscription."""

    shutdown_grace: float = 5.0
    """Seconds a stopping subscription may take before it is cancelled."""


@dataclass
class ProbeConfig:
    """Rate-limit probe settings."""

    burst_size: int = 35
    """Number of submissions issued in one burst."""

    limit_per_minute: int = 30
    """Expected provider ceiling, shown in the probe banner."""


@dataclass
class AppConfig:
    """Main configuration container.

    Example:
        config = AppConfig(
            provider=ProviderConfig("https://acs.example", "a2V5", "no-reply@example.com"),
            polling=PollingConfig(interval=0.1),
        )
    """

    provider: ProviderConfig
    polling: PollingConfig = field(default_factory=PollingConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    log_level: str = DEFAULT_LOG_LEVEL


def parse_connection_string(connection_string: str) -> tuple[str, str]:
    """Split an ``endpoint=...;accesskey=...`` connection string.

    Keys are case-insensitive and may appear in any order.

    Returns:
        Tuple of (endpoint without trailing slash, access key).

    Raises:
        ConfigurationError: If either part is missing.
    """
    parts: dict[str, str] = {}
    for segment in connection_string.split(";"):
        if not segment.strip():
            continue
        key, sep, value = segment.partition("=")
        if not sep:
            raise ConfigurationError(
                f"Malformed connection string segment: {segment.strip()!r}",
                setting=CONNECTION_STRING_ENV,
                example=CONNECTION_STRING_EXAMPLE,
            )
        parts[key.strip().lower()] = value.strip()
    endpoint = parts.get("endpoint", "").rstrip("/")
    access_key = parts.get("accesskey", "")
    if not endpoint or not access_key:
        raise ConfigurationError(
            "Connection string must contain both endpoint and accesskey",
            setting=CONNECTION_STRING_ENV,
            example=CONNECTION_STRING_EXAMPLE,
        )
    if not endpoint.startswith(("https://", "http://")):
        endpoint = f"https://{endpoint}"
    return endpoint, access_key


def _checked(key: str, value: Any) -> Any:
    """Return ``value`` or raise ValueError if it is below the bound of ``key``."""
    if key in POSITIVE_SETTINGS and value <= 0:
        raise ValueError(f"{key} must be > 0, got {value}")
    if key in NON_NEGATIVE_SETTINGS and value < 0:
        raise ValueError(f"{key} must be >= 0, got {value}")
    return value


def _require(value: str | None, setting: str, example: str) -> str:
    if value is None or not value.strip():
        raise ConfigurationError(
            f"Environment variable {setting} is not set",
            setting=setting,
            example=example,
        )
    return value.strip()


def load_config(config_path: str | None = None, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Load configuration from config file, environment and defaults.

    Environment variables:
        ACS_CONNECTION_STRING: Provider connection string (required)
        ACS_SENDER_ADDRESS: Verified sender address (required)
        ACS_API_VERSION: REST API version
        ACS_REQUEST_TIMEOUT: Per-request timeout in seconds
        ACS_POLL_INTERVAL: Seconds between status reads
        ACS_POLL_TIMEOUT: Seconds before polling gives up
        ACS_WAIT_TIMEOUT: Upper bound for reactive waits
        ACS_SHUTDOWN_GRACE: Grace period for stopping a subscription
        ACS_PROBE_BURST_SIZE: Submissions per probe burst
        ACS_PROBE_LIMIT_PER_MINUTE: Expected provider ceiling
        ACS_LOG_LEVEL: Logging level

    Args:
        config_path: Optional path to an INI file.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        AppConfig with parsed settings.

    Raises:
        ConfigurationError: If the connection string or sender is missing.
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}

    env_mapping: dict[str, tuple[str, Callable[[str], Any], Any]] = {
        "connection_string": (CONNECTION_STRING_ENV, str, None),
        "sender_address": (SENDER_ADDRESS_ENV, str, None),
        "api_version": ("ACS_API_VERSION", str, DEFAULT_API_VERSION),
        "request_timeout": ("ACS_REQUEST_TIMEOUT", float, 30.0),
        "interval": ("ACS_POLL_INTERVAL", float, 0.5),
        "timeout": ("ACS_POLL_TIMEOUT", float, 120.0),
        "wait_timeout": ("ACS_WAIT_TIMEOUT", float, 60.0),
        "shutdown_grace": ("ACS_SHUTDOWN_GRACE", float, 5.0),
        "burst_size": ("ACS_PROBE_BURST_SIZE", int, 35),
        "limit_per_minute": ("ACS_PROBE_LIMIT_PER_MINUTE", int, 30),
        "log_level": ("ACS_LOG_LEVEL", str, DEFAULT_LOG_LEVEL),
    }

    for key, (env_var, type_fn, default) in env_mapping.items():
        env_value = env.get(env_var)
        if env_value is not None:
            try:
                values[key] = _checked(key, type_fn(env_value))
            except (ValueError, TypeError):
                logger.warning(f"Invalid value for {env_var}, using default")
                values[key] = default
        else:
            values[key] = default

    if config_path and Path(config_path).exists():
        parser = configparser.ConfigParser(interpolation=None)
        parser.read(config_path)

        def get_str(section: str, key: str, default: str | None) -> str | None:
            value = parser.get(section, key, fallback=None)
            return value.strip() if value and value.strip() else default

        def get_number(section: str, key: str, type_fn: Callable[[str], Any], default: Any) -> Any:
            value = parser.get(section, key, fallback=None)
            if value is None:
                return default
            try:
                return _checked(key, type_fn(value))
            except ValueError:
                logger.warning(f"Invalid value for [{section}] {key}, using default")
                return default

        values["connection_string"] = get_str("provider", "connection_string", values["connection_string"])
        values["sender_address"] = get_str("provider", "sender_address", values["sender_address"])
        values["api_version"] = get_str("provider", "api_version", values["api_version"])
        values["request_timeout"] = get_number("provider", "request_timeout", float, values["request_timeout"])
        values["interval"] = get_number("polling", "interval", float, values["interval"])
        values["timeout"] = get_number("polling", "timeout", float, values["timeout"])
        values["wait_timeout"] = get_number("polling", "wait_timeout", float, values["wait_timeout"])
        values["shutdown_grace"] = get_number("polling", "shutdown_grace", float, values["shutdown_grace"])
        values["burst_size"] = get_number("probe", "burst_size", int, values["burst_size"])
        values["limit_per_minute"] = get_number("probe", "limit_per_minute", int, values["limit_per_minute"])
        values["log_level"] = get_str("logging", "level", values["log_level"])
    elif config_path:
        logger.warning("Config file %s not found, using environment only", config_path)

    connection_string = _require(values["connection_string"], CONNECTION_STRING_ENV, CONNECTION_STRING_EXAMPLE)
    sender_address = _require(values["sender_address"], SENDER_ADDRESS_ENV, SENDER_ADDRESS_EXAMPLE)
    endpoint, access_key = parse_connection_string(connection_string)

    return AppConfig(
        provider=ProviderConfig(
            endpoint=endpoint,
            access_key=access_key,
            sender_address=sender_address,
            api_version=values["api_version"],
            request_timeout=values["request_timeout"],
        ),
        polling=PollingConfig(
            interval=values["interval"],
            timeout=values["timeout"],
            wait_timeout=values["wait_timeout"],
            shutdown_grace=values["shutdown_grace"],
        ),
        probe=ProbeConfig(
            burst_size=values["burst_size"],
            limit_per_minute=values["limit_per_minute"],
        ),
        log_level=values["log_level"],
    )


__all__ = [
    "AppConfig",
    "PollingConfig",
    "ProbeConfig",
    "ProviderConfig",
    "load_config",
    "parse_connection_string",
]
