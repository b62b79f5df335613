"""Resilient access layer for the TimeTree calendar web API."""

from timetree_client.client import TimeTreeClient
from timetree_client.config import ClientConfig, ConfigError, config_from_env, load_config
from timetree_client.core.context import AccessContext
from timetree_client.core.logging import configure_logging_from
from timetree_client.errors import (
    AuthenticationFailure,
    CsrfMissingFailure,
    InvalidCalendarFailure,
    RecordNotFoundFailure,
    RequestFailure,
    ResponseValidationFailure,
    ThrottledFailure,
    TimeTreeError,
    TransportFailure,
)
from timetree_client.models import Calendar, Event, EventCreate, EventUpdate
from timetree_client.outcome import Failure, FailureKind, Success, attempt

__all__ = [
    "AccessContext",
    "AuthenticationFailure",
    "Calendar",
    "ClientConfig",
    "ConfigError",
    "CsrfMissingFailure",
    "Event",
    "EventCreate",
    "EventUpdate",
    "Failure",
    "FailureKind",
    "InvalidCalendarFailure",
    "RecordNotFoundFailure",
    "RequestFailure",
    "ResponseValidationFailure",
    "Success",
    "ThrottledFailure",
    "TimeTreeClient",
    "TimeTreeError",
    "TransportFailure",
    "attempt",
    "config_from_env",
    "configure_logging_from",
    "load_config",
]
