"""
Error taxonomy for collection failures.

Configuration errors are permanent and are never retried automatically.
Backend and data-shape errors are soft: the sequence stays a gap and is
picked up again on the next reconciliation pass.
"""
from typing import Optional


class CaracolError(Exception):
    """Base class for all application errors."""


class NotFoundError(CaracolError):
    """A requested record does not exist."""


class ConflictError(CaracolError):
    """A collected value already exists with a different value."""

    def __init__(self, query_id: int, seq: int, existing: float, value: float):
        self.query_id = query_id
        self.seq = seq
        self.existing = existing
        self.value = value
        super().__init__(
            f"query {query_id} seq {seq} already holds {existing!r}, refusing to write {value!r}"
        )


# Configuration errors

class ConfigurationError(CaracolError):
    """Invalid or unsupported configuration; fatal to the attempt."""


class InvalidIntervalError(ConfigurationError, ValueError):
    """Unsupported query interval."""

    def __init__(self, interval):
        self.interval = interval
        super().__init__(f"unsupported query interval: {interval!r}")


class UnsupportedBackendError(ConfigurationError):
    """No backend handles the requested api type and query type."""

    def __init__(self, api_type, query_type):
        self.api_type = api_type
        self.query_type = query_type
        super().__init__(f"unsupported backend: api type {api_type!r} with query type {query_type!r}")


class UnsupportedAuthTypeError(ConfigurationError):
    """Unknown provider auth type."""

    def __init__(self, auth_type):
        self.auth_type = auth_type
        super().__init__(f"unsupported auth type: {auth_type!r}")


class MalformedQueryError(ConfigurationError):
    """Query text could not be understood by the backend querier."""


class MissingSecretError(CaracolError):
    """A provider secret could not be resolved."""

    def __init__(self, name: str, provider_id: Optional[int] = None):
        self.name = name
        self.provider_id = provider_id
        super().__init__(f"missing environment variable: {name!r}")


# Soft errors

class BackendError(CaracolError):
    """Transient failure talking to a query backend."""


class DataShapeError(CaracolError):
    """The backend answered but not with exactly one usable point."""


class NoDataPointError(DataShapeError):
    """No returned point closes the requested window."""


class AmbiguousDataPointError(DataShapeError):
    """More than one returned point closes the requested window."""
