"""Error taxonomy for api-client.

Validation errors (InvalidBaseURL, InvalidPath, InvalidArguments) are
programmer errors and are raised synchronously at the offending call. They
also subclass TypeError. TransportError is only ever delivered through the
completion path of a request.
"""


class ApiClientError(Exception):
    """Base class for api-client errors."""


class InvalidBaseURL(ApiClientError, TypeError):
    """Raised when the base URL has a bad scheme or carries a query/fragment."""


class InvalidPath(ApiClientError, TypeError):
    """Raised when a call path is not a string starting with '/'."""


class InvalidArguments(ApiClientError, TypeError):
    """Raised when a verb call receives arguments it cannot consume."""


class TransportError(ApiClientError):
    """Raised when a request fails (connection error, timeout, etc.)."""


class ConfigError(ApiClientError):
    """Raised when client options or option files are invalid."""
