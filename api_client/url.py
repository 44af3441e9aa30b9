"""URL handling - base URL validation and redirect-target derivation."""

from __future__ import annotations

from urllib.parse import urljoin, urlsplit, urlunsplit

from api_client.errors import InvalidBaseURL
from api_client.models import Endpoint

ALLOWED_SCHEMES = ("http", "https")


def parse_base_url(base_url: str) -> Endpoint:
    """Validate and normalize a client base URL.

    Rejects anything that is not an absolute http(s) URL without a query
    string or fragment. A non-root path loses exactly one trailing '/'.

    Raises:
        InvalidBaseURL: If the URL is malformed or not allowed.
    """
    if not isinstance(base_url, str):
        raise InvalidBaseURL(f"Invalid base URL: expected str, got {type(base_url).__name__}")

    try:
        parts = urlsplit(base_url.strip())
        port = parts.port
    except ValueError as e:
        raise InvalidBaseURL(f"Invalid base URL '{base_url}': {e}") from e

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidBaseURL(f"Invalid base URL '{base_url}': scheme must be http or https")
    if not parts.hostname:
        raise InvalidBaseURL(f"Invalid base URL '{base_url}': missing host")
    if parts.query or parts.fragment:
        raise InvalidBaseURL(f"Invalid base URL '{base_url}': query and fragment are not allowed")

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    return Endpoint(
        scheme=parts.scheme.lower(),
        host=parts.hostname,
        port=port,
        base_path=path,
    )


def join_path(base_path: str, path: str) -> str:
    """Concatenate the base path and a call path without doubling the root '/'."""
    if base_path == "/":
        return base_path + path[1:]
    return base_path + path


def derive_redirection(location: str, request_url: str, call_path: str) -> str:
    """Derive the base URL a redirect points at.

    The location is resolved against the request URL, its query and fragment
    are cleared, and the rightmost occurrence of the call path (with anything
    after it) is stripped from its path. When the call path does not occur,
    the resolved path is kept unchanged. Never raises; unrelated locations
    give a best-effort result.
    """
    try:
        parts = urlsplit(urljoin(request_url, location.strip()))
    except ValueError:
        return location

    path = parts.path
    # The call path without its query part is what appears in the location
    suffix = call_path.split("?", 1)[0]
    if suffix and suffix != "/":
        index = path.rfind(suffix)
        if index >= 0:
            path = path[:index]
    elif suffix == "/" and path.endswith("/"):
        path = path[:-1]

    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))
