"""
Failure classification for sync runs

Upstream aggregators rarely send a usable Retry-After, so rate limits are
recognised from error text. The signatures live in one table, extendable per
provider, instead of being scattered over the adapters.
"""

import asyncio
import enum
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple, Union

import httpx

from backend.app.models import Connection
from .exceptions import RateLimitError, TransientProviderError

RATE_LIMIT_BACKOFF = timedelta(hours=24)
RATE_LIMIT_HINT_PREFIX = "Rate limit actief. Probeer opnieuw na "

BASE_RATE_LIMIT_SIGNATURES: Tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "429",
)

PROVIDER_RATE_LIMIT_SIGNATURES: Dict[str, Tuple[str, ...]] = {
    "enable_banking": ("aspsp_rate_limit_exceeded",),
    "bitvavo": ("ratelimitexception",),
}


class FailureKind(str, enum.Enum):
    RATE_LIMIT = "RATE_LIMIT"
    TRANSIENT = "TRANSIENT"
    FATAL = "FATAL"


def _signatures(provider_id: Optional[str]) -> Tuple[str, ...]:
    if provider_id is None:
        extras = tuple(s for values in PROVIDER_RATE_LIMIT_SIGNATURES.values() for s in values)
    else:
        extras = PROVIDER_RATE_LIMIT_SIGNATURES.get(provider_id, ())
    return BASE_RATE_LIMIT_SIGNATURES + extras


def is_rate_limit_message(message: Optional[str], provider_id: Optional[str] = None) -> bool:
    if not message or not message.strip():
        return False
    lowered = message.lower()
    return any(signature in lowered for signature in _signatures(provider_id))


def classify_failure(error: Union[BaseException, str, None], provider_id: Optional[str] = None) -> FailureKind:
    """
    Map a sync error (or stored error text) to RATE_LIMIT, TRANSIENT or FATAL.

    Args:
        error: Exception raised by an adapter, or an error message
        provider_id: Adapter id, selects provider-specific rate limit signatures

    Returns:
        FailureKind
    """
    if error is None:
        return FailureKind.FATAL
    if isinstance(error, str):
        return FailureKind.RATE_LIMIT if is_rate_limit_message(error, provider_id) else FailureKind.FATAL

    if isinstance(error, RateLimitError):
        return FailureKind.RATE_LIMIT
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code == 429:
            return FailureKind.RATE_LIMIT
        if is_rate_limit_message(error.response.text, provider_id):
            return FailureKind.RATE_LIMIT
        if error.response.status_code >= 500:
            return FailureKind.TRANSIENT
        return FailureKind.FATAL
    if is_rate_limit_message(str(error), provider_id):
        return FailureKind.RATE_LIMIT
    if isinstance(error, (TransientProviderError, httpx.TimeoutException, httpx.TransportError,
                          asyncio.TimeoutError, TimeoutError)):
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


def backoff_anchor(connection: Connection) -> Optional[datetime]:
    return connection.last_sync_completed_at or connection.last_synced_at or connection.updated_at


def retry_after(connection: Connection) -> Optional[datetime]:
    """Earliest moment a rate-limited connection may be synced again."""
    anchor = backoff_anchor(connection)
    if anchor is None:
        return None
    return anchor + RATE_LIMIT_BACKOFF


def rate_limit_hint(retry_at: datetime) -> str:
    return RATE_LIMIT_HINT_PREFIX + retry_at.strftime("%Y-%m-%dT%H:%M:%SZ")
