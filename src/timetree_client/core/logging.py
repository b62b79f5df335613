"""Structured logging for the TimeTree client.

Uses structlog's ProcessorFormatter to transparently upgrade all existing
``logging.getLogger(__name__)`` call sites. Zero changes needed at call sites.

Two output formats:
- ``text``: Colored, human-readable console output (dev default)
- ``json``: Machine-parseable JSON lines

Passwords, session cookies and CSRF tokens are masked in every record before
it is rendered.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from timetree_client.config import LoggingConfig

MASK = "***MASKED***"

_SENSITIVE_KEYS = frozenset({"password", "_session_id", "x-csrf-token", "csrf_token", "cookie"})

_SENSITIVE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"""(?i)(["']?password["']?\s*[:=]\s*)(["'])(?:(?!\2).)*\2"""), rf"\1\2{MASK}\2"),
    (re.compile(r"(?i)(_session_id=)[^;,\s]+"), rf"\1{MASK}"),
    (re.compile(r"""(?i)(["']?x-csrf-token["']?\s*[:=]\s*["']?)[^\s,;"'}]+"""), rf"\1{MASK}"),
)

# Noisy third-party loggers, kept at WARNING on the console
_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
)


def mask_sensitive_values(text: str) -> str:
    """Mask passwords, session cookie values and CSRF tokens inside *text*."""
    masked = text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        masked = pattern.sub(replacement, masked)
    return masked


def _redact_value(key: str, value: Any) -> Any:
    if key.lower() in _SENSITIVE_KEYS:
        return MASK
    if isinstance(value, str):
        return mask_sensitive_values(value)
    if isinstance(value, dict):
        return {k: _redact_value(str(k), v) for k, v in value.items()}
    return value


def redact_sensitive(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Structlog processor masking credentials anywhere in the event dict."""
    return {key: _redact_value(key, value) for key, value in event_dict.items()}


def _build_processors(
    time_fmt: str,
) -> list[structlog.types.Processor]:
    """Build the pre-chain processor list with the given timestamp format."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        structlog.stdlib.ExtraAdder(),
        redact_sensitive,
    ]


def _make_file_handler(path: Path, processors: list) -> logging.FileHandler:
    """Create a JSON file handler at *path*."""
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=processors,
    )
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(formatter)
    handler.setLevel(logging.DEBUG)
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: Path | str | None = None,
) -> None:
    """Configure structured logging for the process.

    Parameters
    ----------
    level:
        Root log level (e.g. "DEBUG", "INFO", "WARNING").
    fmt:
        Output format: ``"text"`` for colored console, ``"json"`` for JSON lines.
    log_file:
        Optional path of an additional JSON-lines log file.
    """
    if fmt == "json":
        console_processors = _build_processors(time_fmt="iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        console_processors = _build_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=console_processors,
    )

    # Console output goes to stderr; stdout may carry a protocol stream
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(_make_file_handler(log_path, _build_processors(time_fmt="iso")))

    # Configure structlog itself (for direct structlog.get_logger() usage)
    structlog.configure(
        processors=[
            *console_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_logging_from(config: LoggingConfig) -> None:
    """Apply a ``[timetree.logging]`` section, e.g. ``configure_logging_from(cfg.logging)``."""
    configure_logging(level=config.level, fmt=config.format, log_file=config.log_file)
