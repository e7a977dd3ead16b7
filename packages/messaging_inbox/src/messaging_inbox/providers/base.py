"""
Provider Base

Shared error type and helpers for channel provider adapters.
"""

import logging
import math
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

# Prefix of ids synthesized locally; genuine provider ids never carry it
LOCAL_ID_PREFIX = "local-"

# Seconds values above this (year 5138) are milliseconds sent in the wrong unit
MAX_EPOCH_SECONDS = 10**11


class ProviderError(Exception):
    """
    Error from a channel provider (non-2xx response, transport error or timeout).

    Carries the provider's HTTP status and response body when one was received.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.retryable = retryable


class ProviderConfigError(ValueError):
    """Channel account is missing configuration needed to reach the provider."""


@dataclass
class SendResult:
    """
    Outcome of a send accepted by the provider.
    """

    message_id: str
    media_url: str | None = None
    media_requires_fetch: bool = False
    raw_response: dict[str, Any] = field(default_factory=dict)


def synthesize_message_id(kind: str = "msg") -> str:
    """Build a local message id that cannot collide with a provider id."""
    return f"{LOCAL_ID_PREFIX}{kind}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def is_local_message_id(message_id: str | None) -> bool:
    """Check whether an id was synthesized locally."""
    return bool(message_id) and message_id.startswith(LOCAL_ID_PREFIX)


def _epoch_number(value: Any) -> float | None:
    """Read a positive epoch number from an int, float, numeric string or protobuf Long."""
    if isinstance(value, dict):
        # protobuf Long serialized by some gateways: {"low": ..., "high": ...}
        value = value.get("low")
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _to_datetime(seconds: float | None, raw: Any) -> datetime:
    if seconds is not None:
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            pass
    if raw not in (None, "", 0):
        logger.warning("Unparseable provider timestamp, using receipt time", extra={"raw_timestamp": repr(raw)})
    return datetime.now(timezone.utc)


def from_epoch_seconds(value: Any) -> datetime:
    """
    Convert provider seconds-since-epoch to an aware UTC datetime.

    Absent or unparseable values fall back to now. Values too large to be
    seconds are read as milliseconds.
    """
    seconds = _epoch_number(value)
    if seconds is not None and seconds > MAX_EPOCH_SECONDS:
        seconds /= 1000
    return _to_datetime(seconds, value)


def from_epoch_millis(value: Any) -> datetime:
    """Convert provider milliseconds-since-epoch to an aware UTC datetime, now if absent or unparseable."""
    millis = _epoch_number(value)
    return _to_datetime(None if millis is None else millis / 1000, value)


def response_body(response) -> Any:
    """Decode an httpx response body as JSON, falling back to text."""
    try:
        return response.json()
    except ValueError:
        return response.text
