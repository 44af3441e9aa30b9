"""Request Builder - Turns one verb call into a RequestDescriptor.

Merges the client configuration with per-call options. Header merge order
is: default headers, then the body content-type, then the auth header, then
per-call headers. Each step may overwrite keys set by an earlier one.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import urlencode

from pydantic import ValidationError

from api_client.errors import InvalidArguments, InvalidPath
from api_client.models import (
    HTTP_METHODS,
    ClientConfig,
    CredentialsAuth,
    FormBody,
    JsonBody,
    RequestDescriptor,
    RequestOptions,
    TextBody,
)
from api_client.url import join_path

logger = logging.getLogger(__name__)

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_FORM = "application/x-www-form-urlencoded"
CONTENT_TYPE_TEXT = "text/plain"


def coerce_request_options(options: RequestOptions | Mapping[str, Any] | None) -> RequestOptions:
    """Validate per-call options. Raises InvalidArguments on bad input."""
    if options is None:
        return RequestOptions()
    if isinstance(options, RequestOptions):
        return options
    if not isinstance(options, Mapping):
        raise InvalidArguments(f"Invalid arguments: options must be a mapping, got {type(options).__name__}")
    try:
        return RequestOptions.model_validate(dict(options))
    except ValidationError as e:
        raise InvalidArguments(f"Invalid arguments: {e}") from e


def split_call_args(
    args: tuple[Any, ...],
    options: RequestOptions | Mapping[str, Any] | None = None,
    callback: Callable[..., Any] | None = None,
) -> tuple[RequestOptions, Callable[..., Any] | None]:
    """Split a verb call's positional tail into options and completion callback.

    The tail holds at most one options object followed by at most one
    callable. One trailing None placeholder is dropped first, and a None in
    the options slot stands for "no options". Keyword forms are accepted as
    long as they do not repeat a positional argument.

    Raises:
        InvalidArguments: If arguments remain after extraction or are repeated.
    """
    rest = list(args)
    if rest and rest[-1] is None:
        rest.pop()

    if rest and (rest[0] is None or isinstance(rest[0], (RequestOptions, Mapping))):
        if options is not None:
            raise InvalidArguments("Invalid arguments: options given twice")
        options = rest.pop(0)

    if rest and callable(rest[0]):
        if callback is not None:
            raise InvalidArguments("Invalid arguments: callback given twice")
        callback = rest.pop(0)

    if rest:
        raise InvalidArguments(
            f"Invalid arguments: {len(rest)} unexpected positional argument(s)"
        )
    if callback is not None and not callable(callback):
        raise InvalidArguments("Invalid arguments: callback must be callable")

    return coerce_request_options(options), callback


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_pairs(data: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Flatten a mapping into (key, value) pairs in insertion order.

    List and tuple values become repeated keys; None values are skipped.
    """
    pairs: list[tuple[str, str]] = []
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((str(key), _render_value(item)) for item in value if item is not None)
        else:
            pairs.append((str(key), _render_value(value)))
    return pairs


def encode_body(body: JsonBody | FormBody | TextBody | None) -> tuple[str | None, str]:
    """Encode a body variant. Returns (content_type, text); (None, "") when absent."""
    if body is None:
        return None, ""
    if isinstance(body, JsonBody):
        try:
            return CONTENT_TYPE_JSON, json.dumps(body.value, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise InvalidArguments(f"Invalid arguments: body is not JSON serializable: {e}") from e
    if isinstance(body, FormBody):
        return CONTENT_TYPE_FORM, urlencode(encode_pairs(body.fields))
    return CONTENT_TYPE_TEXT, body.text


def build_url(config: ClientConfig, path: str, query: Mapping[str, Any]) -> str:
    """Join the endpoint with a call path and append the encoded query.

    A query already present in the call path is kept ahead of the extra
    parameters. Fragments are dropped.
    """
    path = path.split("#", 1)[0]
    path_part, _, existing_query = path.partition("?")

    url = config.endpoint.origin + join_path(config.endpoint.base_path, path_part)

    query_parts = [part for part in (existing_query, urlencode(encode_pairs(query))) if part]
    if query_parts:
        url += "?" + "&".join(query_parts)
    return url


def build_request(
    config: ClientConfig,
    method: str,
    path: str,
    options: RequestOptions | None = None,
) -> RequestDescriptor:
    """Build the transport-ready descriptor for one call.

    A per-call auth replaces the client's default auth entirely.

    Raises:
        InvalidPath: If path is not a string starting with '/'.
        InvalidArguments: If the method is unknown or the body cannot be encoded.
    """
    if not isinstance(path, str) or not path.startswith("/"):
        raise InvalidPath(f"Invalid path: {path!r} (must be a string starting with '/')")

    method = method.upper()
    if method not in HTTP_METHODS:
        raise InvalidArguments(f"Invalid arguments: unsupported method {method!r}")

    options = options or RequestOptions()

    headers = dict(config.default_headers)

    content_type, body = encode_body(options.body)
    if content_type is not None:
        headers["content-type"] = content_type

    auth = options.auth if options.auth is not None else config.auth
    credentials: tuple[str, str] | None = None
    if auth is not None:
        auth_header = auth.header()
        if auth_header is not None:
            headers["authorization"] = auth_header
        if isinstance(auth, CredentialsAuth):
            credentials = (auth.user, auth.password)

    headers.update(options.headers)

    descriptor = RequestDescriptor(
        method=method,
        url=build_url(config, path, options.query),
        path=path,
        headers=headers,
        credentials=credentials,
        body=body,
    )
    logger.debug("Built %s %s (auth=%s)", descriptor.method, descriptor.url, auth.kind if auth else "none")
    return descriptor
