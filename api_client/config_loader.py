"""Config Loader - Resolves client options into an immutable ClientConfig.

Handles validating option bags, mapping the resolved configuration onto
httpx transport and client keyword arguments (TLS, keep-alive pool, timeout), and
loading option files from YAML with environment variable substitution.
"""

from __future__ import annotations

import os
import re
import socket
import ssl
from pathlib import Path
from typing import Any, Mapping

import httpx
import yaml
from pydantic import ValidationError

from api_client.errors import ConfigError
from api_client.models import (
    DEFAULT_HEADERS,
    ClientConfig,
    ClientOptions,
    Endpoint,
    PoolPolicy,
    TlsOptions,
    resolve_auth,
)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def coerce_client_options(options: ClientOptions | Mapping[str, Any] | None) -> ClientOptions:
    """Validate a plain mapping into ClientOptions. Raises ConfigError on bad input."""
    if options is None:
        return ClientOptions()
    if isinstance(options, ClientOptions):
        return options
    if not isinstance(options, Mapping):
        raise ConfigError(f"Client options must be a mapping, got {type(options).__name__}")
    try:
        return ClientOptions.model_validate(dict(options))
    except ValidationError as e:
        raise ConfigError(f"Invalid client options: {e}") from e


def build_client_config(
    endpoint: Endpoint,
    options: ClientOptions | Mapping[str, Any] | None = None,
) -> ClientConfig:
    """Resolve options into the client's immutable configuration.

    Auth priority is token > basic > user+password. Falsy timeout and
    keep-alive values leave the defaults in place.
    """
    opts = coerce_client_options(options)

    headers = dict(DEFAULT_HEADERS)
    headers.update(opts.headers)

    auth = resolve_auth(opts.token, opts.basic, opts.user, opts.password)

    try:
        pool: PoolPolicy | None = None
        if opts.keep_alive_msecs:
            pool = PoolPolicy(
                keep_alive_msecs=opts.keep_alive_msecs,
                max_sockets=opts.max_sockets or 1,
            )

        return ClientConfig(
            endpoint=endpoint,
            default_headers=headers,
            auth=auth,
            tls=TlsOptions(reject_unauthorized=opts.reject_unauthorized, ca=opts.ca),
            pool=pool,
            timeout_ms=opts.timeout or None,
            record_redirects=opts.record_redirects,
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid client options: {e}") from e


def _build_verify(tls: TlsOptions) -> bool | ssl.SSLContext:
    """Map TLS options onto httpx's verify argument.

    reject_unauthorized=False disables verification even when a CA is given.
    A ca value naming an existing file is loaded as a CA bundle; anything
    else is treated as PEM data.
    """
    if tls.reject_unauthorized is False:
        return False
    if tls.ca is None:
        return True
    try:
        if os.path.isfile(tls.ca):
            return ssl.create_default_context(cafile=tls.ca)
        return ssl.create_default_context(cadata=tls.ca)
    except (ssl.SSLError, ValueError) as e:
        raise ConfigError(f"Invalid CA data: {e}") from e


def build_socket_options(pool: PoolPolicy | None) -> list[tuple[int, int, int]]:
    """TCP keep-alive socket options for pooled connections.

    keep_alive_msecs is the idle delay before the first keep-alive probe,
    rounded to whole seconds (at least 1). Platforms without TCP_KEEPIDLE
    only get SO_KEEPALIVE.
    """
    if pool is None:
        return []
    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    keep_idle = getattr(socket, "TCP_KEEPIDLE", None)
    if keep_idle is not None:
        options.append((socket.IPPROTO_TCP, keep_idle, max(1, round(pool.keep_alive_msecs / 1000))))
    return options


def build_transport_kwargs(config: ClientConfig) -> dict[str, Any]:
    """Build kwargs for httpx.AsyncHTTPTransport from the resolved configuration.

    Without a keep-alive policy no idle connections are kept, so every
    request opens its own connection. With one, up to max_sockets
    connections stay pooled with the httpx default idle expiry and TCP
    keep-alive enabled on their sockets.
    """
    if config.pool is not None:
        limits = httpx.Limits(
            max_connections=config.pool.max_sockets,
            max_keepalive_connections=config.pool.max_sockets,
        )
    else:
        limits = httpx.Limits(max_keepalive_connections=0)

    return {
        "verify": _build_verify(config.tls),
        "limits": limits,
        "socket_options": build_socket_options(config.pool),
    }


def build_client_kwargs(config: ClientConfig) -> dict[str, Any]:
    """Build kwargs for httpx.AsyncClient: timeout and redirect policy."""
    timeout = httpx.Timeout(config.timeout_ms / 1000) if config.timeout_ms else httpx.Timeout(None)
    return {
        "timeout": timeout,
        "follow_redirects": False,
    }


def load_client_file(config_path: Path) -> tuple[str | None, ClientOptions]:
    """Load a YAML option file with ${ENV_VAR} substitution.

    The optional top-level base_url key is returned separately; every other
    key is validated as ClientOptions.
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    base_url = raw_config.pop("base_url", None)
    if base_url is not None and not isinstance(base_url, str):
        raise ConfigError("base_url must be a string")

    return base_url, coerce_client_options(raw_config)


def load_client_options(config_path: Path) -> ClientOptions:
    """Load ClientOptions from YAML, ignoring any base_url key."""
    _, options = load_client_file(config_path)
    return options


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable not set: {var_name}")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
