"""Exceptions raised while synchronizing a connection."""


class SyncError(Exception):
    """Base class for sync failures."""


class ProviderConfigurationError(SyncError):
    """Connection config is missing credentials or cannot be read."""


class RateLimitError(SyncError):
    """Upstream refused the request because of rate limiting."""


class TransientProviderError(SyncError):
    """Temporary upstream problem; the next scheduled run may succeed."""


class UnknownProviderError(SyncError):
    """No adapter is registered under the connection's provider id."""
