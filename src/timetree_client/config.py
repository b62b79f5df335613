"""Client configuration loading and validation.

Configuration comes either from a ``timetree.toml`` file (``[timetree]``
table, with ``${VAR_NAME}`` references resolved from the environment) or
straight from environment variables. Nothing is persisted.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_BASE_URL = "https://timetreeapp.com/api/v1"
DEFAULT_WEB_URL = "https://timetreeapp.com/"
DEFAULT_HEADERS: dict[str, str] = {
    "Content-Type": "application/json",
    "X-Timetreea": "web/2.1.0/en",
}

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_VALID_LOG_FORMATS = ("text", "json")

# Pattern matching ${VAR_NAME}
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when client configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [timetree.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class RateLimitConfig:
    """Client-side throttling from the [timetree.rate_limit] section."""

    max_requests_per_second: float = 10.0
    timeout_seconds: float = 60.0
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0


@dataclass
class ClientConfig:
    """Parsed configuration for one TimeTree account."""

    email: str
    password: str = field(repr=False)
    base_url: str = DEFAULT_BASE_URL
    web_url: str = DEFAULT_WEB_URL
    headers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HEADERS))
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        if not self.email or not self.email.strip():
            raise ConfigError("TimeTree email is required")
        local, _, domain = self.email.strip().partition("@")
        if not local or "." not in domain:
            raise ConfigError(f"TimeTree email must be an email address, got {self.email!r}")
        if not self.password:
            raise ConfigError("TimeTree password is required")
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        if not self.web_url.startswith(("http://", "https://")):
            raise ConfigError(f"web_url must be an http(s) URL, got {self.web_url!r}")

        limits = self.rate_limit
        if limits.max_requests_per_second <= 0:
            raise ConfigError("rate_limit.max_requests_per_second must be positive")
        if limits.timeout_seconds <= 0:
            raise ConfigError("rate_limit.timeout_seconds must be positive")
        if limits.max_attempts < 0:
            raise ConfigError("rate_limit.max_attempts must be zero or more")
        if limits.backoff_base_seconds < 0:
            raise ConfigError("rate_limit.backoff_base_seconds must be zero or more")

        if self.logging.level.upper() not in _VALID_LOG_LEVELS:
            raise ConfigError(
                f"Invalid logging level: {self.logging.level}. Must be one of {_VALID_LOG_LEVELS}"
            )
        if self.logging.format not in _VALID_LOG_FORMATS:
            raise ConfigError(
                f"Invalid logging format: {self.logging.format}. Must be one of {_VALID_LOG_FORMATS}"
            )


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")

    return result


def _coerce_float(section: str, key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from exc


def _parse_rate_limit(raw: Any) -> RateLimitConfig:
    if raw is None:
        return RateLimitConfig()
    if not isinstance(raw, dict):
        raise ConfigError("[timetree.rate_limit] must be a table")

    defaults = RateLimitConfig()
    max_attempts = raw.get("max_attempts", defaults.max_attempts)
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int):
        raise ConfigError(f"rate_limit.max_attempts must be an integer, got {max_attempts!r}")

    return RateLimitConfig(
        max_requests_per_second=_coerce_float(
            "rate_limit",
            "max_requests_per_second",
            raw.get("max_requests_per_second", defaults.max_requests_per_second),
        ),
        timeout_seconds=_coerce_float(
            "rate_limit", "timeout_seconds", raw.get("timeout_seconds", defaults.timeout_seconds)
        ),
        max_attempts=max_attempts,
        backoff_base_seconds=_coerce_float(
            "rate_limit",
            "backoff_base_seconds",
            raw.get("backoff_base_seconds", defaults.backoff_base_seconds),
        ),
    )


def _parse_headers(raw: Any) -> dict[str, str]:
    if raw is None:
        return dict(DEFAULT_HEADERS)
    if not isinstance(raw, dict):
        raise ConfigError("[timetree.headers] must be a table")
    for key, value in raw.items():
        if not isinstance(value, str):
            raise ConfigError(f"headers.{key} must be a string, got {value!r}")
    return {**DEFAULT_HEADERS, **raw}


def _parse_logging(raw: Any) -> LoggingConfig:
    if raw is None:
        return LoggingConfig()
    if not isinstance(raw, dict):
        raise ConfigError("[timetree.logging] must be a table")
    return LoggingConfig(
        level=str(raw.get("level", "INFO")).upper(),
        format=str(raw.get("format", "text")),
        log_file=raw.get("log_file"),
    )


def load_config(path: Path | str) -> ClientConfig:
    """Load and validate a ``timetree.toml`` file."""
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open("rb") as fh:
            raw = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Malformed TOML in {config_path}: {exc}") from exc

    section = raw.get("timetree")
    if not isinstance(section, dict):
        raise ConfigError(f"Missing [timetree] table in {config_path}")

    section = resolve_env_vars(section)

    config = ClientConfig(
        email=str(section.get("email", "")).strip(),
        password=str(section.get("password", "")),
        base_url=str(section.get("base_url", DEFAULT_BASE_URL)),
        web_url=str(section.get("web_url", DEFAULT_WEB_URL)),
        headers=_parse_headers(section.get("headers")),
        rate_limit=_parse_rate_limit(section.get("rate_limit")),
        logging=_parse_logging(section.get("logging")),
    )
    config.validate()
    return config


def config_from_env(environ: dict[str, str] | None = None) -> ClientConfig:
    """Build configuration from ``TIMETREE_*`` and ``LOG_*`` variables."""
    env = os.environ if environ is None else environ

    email = env.get("TIMETREE_EMAIL", "").strip()
    password = env.get("TIMETREE_PASSWORD", "")
    if not email or not password:
        raise ConfigError("TIMETREE_EMAIL and TIMETREE_PASSWORD must be set")

    defaults = RateLimitConfig()
    config = ClientConfig(
        email=email,
        password=password,
        base_url=env.get("TIMETREE_BASE_URL", DEFAULT_BASE_URL),
        web_url=env.get("TIMETREE_WEB_URL", DEFAULT_WEB_URL),
        rate_limit=RateLimitConfig(
            max_requests_per_second=_coerce_float(
                "env",
                "TIMETREE_MAX_RPS",
                env.get("TIMETREE_MAX_RPS", defaults.max_requests_per_second),
            ),
            timeout_seconds=_coerce_float(
                "env",
                "TIMETREE_TIMEOUT_SECONDS",
                env.get("TIMETREE_TIMEOUT_SECONDS", defaults.timeout_seconds),
            ),
        ),
        logging=LoggingConfig(
            level=env.get("LOG_LEVEL", "INFO").upper(),
            format=env.get("LOG_FORMAT", "text"),
        ),
    )
    config.validate()
    return config
