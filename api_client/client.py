"""Client - Sends requests to the bound endpoint and shapes the responses.

Every verb method builds a RequestDescriptor synchronously (so validation
errors raise at the call site) and then either returns an awaitable or,
when a completion callback is supplied, schedules the request on the
running event loop and delivers the result to the callback.

Usage:
    async with create_client("https://api.example.com/v1", token="abc") as client:
        response = await client.get("/widgets", {"query": {"page": 2}})

Or with a completion callback:
    client.post("/widgets", {"json": {"name": "w"}}, on_done)
    # on_done(None, response) on success, on_done(error, None) on failure
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from api_client.config_loader import build_client_config, build_client_kwargs, build_transport_kwargs
from api_client.errors import InvalidArguments, TransportError
from api_client.models import ClientConfig, ClientOptions, RequestDescriptor, RequestOptions, Response
from api_client.request_builder import build_request, split_call_args
from api_client.url import derive_redirection, parse_base_url

logger = logging.getLogger(__name__)

Callback = Callable[[Exception | None, Response | None], Any]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


def _is_empty(value: Any) -> bool:
    """Falsy scalars and None. Empty lists and objects are kept."""
    if value is None or value is False or value == "":
        return True
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0


def parse_body(text: str) -> Any:
    """Decode a response body, falling back to the raw text.

    Decoding is attempted whatever the content-type says. A falsy result
    becomes an empty dict so callers can read fields without a None check.
    """
    try:
        body: Any = json.loads(text.strip(), parse_constant=_reject_constant)
    except ValueError:
        # Not JSON; keep the body as text
        body = text

    if _is_empty(body):
        return {}
    return body


def shape_response(
    http_response: httpx.Response,
    descriptor: RequestDescriptor,
    record_redirects: bool = False,
) -> Response:
    """Convert an httpx Response into a Response."""
    headers = {key.lower(): value for key, value in http_response.headers.items()}

    redirection: str | None = None
    location = headers.get("location")
    if record_redirects and location:
        redirection = derive_redirection(location, descriptor.url, descriptor.path)

    return Response(
        code=http_response.status_code,
        message=http_response.reason_phrase,
        headers=headers,
        body=parse_body(http_response.text),
        redirection=redirection,
    )


class ApiClient:
    """HTTP client bound to one base URL.

    The underlying httpx.AsyncClient (and its connection pool) is created
    here and released by destroy(). Use create_client() rather than
    constructing this directly.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Resolved client configuration.
            transport: Optional httpx transport (e.g. httpx.MockTransport).
        """
        self._config = config
        self._pending: set[asyncio.Task[None]] = set()

        transport_kwargs = build_transport_kwargs(config)
        if transport is None:
            transport = httpx.AsyncHTTPTransport(**transport_kwargs)
        self._http = httpx.AsyncClient(transport=transport, **build_client_kwargs(config))

    def __repr__(self) -> str:
        return f"ApiClient({self.base_url!r})"

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.destroy()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def base_url(self) -> str:
        return self._config.endpoint.url

    @property
    def is_destroyed(self) -> bool:
        return self._http.is_closed

    async def destroy(self) -> None:
        """Release pooled connections. Requests still in flight may fail."""
        if not self._http.is_closed:
            await self._http.aclose()
            logger.debug("Destroyed client for %s", self.base_url)

    # -------------------------------------------------------------------------
    # Verb methods
    # -------------------------------------------------------------------------

    def get(
        self,
        path: str,
        *args: Any,
        options: RequestOptions | Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Awaitable[Response] | None:
        return self.request("GET", path, *args, options=options, callback=callback)

    def post(
        self,
        path: str,
        *args: Any,
        options: RequestOptions | Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Awaitable[Response] | None:
        return self.request("POST", path, *args, options=options, callback=callback)

    def put(
        self,
        path: str,
        *args: Any,
        options: RequestOptions | Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Awaitable[Response] | None:
        return self.request("PUT", path, *args, options=options, callback=callback)

    def patch(
        self,
        path: str,
        *args: Any,
        options: RequestOptions | Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Awaitable[Response] | None:
        return self.request("PATCH", path, *args, options=options, callback=callback)

    def delete(
        self,
        path: str,
        *args: Any,
        options: RequestOptions | Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Awaitable[Response] | None:
        return self.request("DELETE", path, *args, options=options, callback=callback)

    def options(
        self,
        path: str,
        *args: Any,
        options: RequestOptions | Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Awaitable[Response] | None:
        return self.request("OPTIONS", path, *args, options=options, callback=callback)

    def head(
        self,
        path: str,
        *args: Any,
        options: RequestOptions | Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Awaitable[Response] | None:
        return self.request("HEAD", path, *args, options=options, callback=callback)

    def request(
        self,
        method: str,
        path: str,
        *args: Any,
        options: RequestOptions | Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> Awaitable[Response] | None:
        """Build a request and pick its delivery path.

        Args:
            method: HTTP verb.
            path: Call path, must start with '/'.
            *args: Optional options object, then optional callback.
            options: Per-call options (keyword form).
            callback: Completion callback (keyword form).

        Returns:
            An awaitable resolving to the Response when no callback is given,
            otherwise None.

        Raises:
            InvalidPath: If path is not a string starting with '/'.
            InvalidArguments: If the arguments cannot be consumed.
        """
        request_options, callback = split_call_args(args, options, callback)
        descriptor = build_request(self._config, method, path, request_options)

        if callback is None:
            return self.send(descriptor)

        self._schedule(descriptor, callback)
        return None

    # -------------------------------------------------------------------------
    # Transport and completion
    # -------------------------------------------------------------------------

    async def send(self, descriptor: RequestDescriptor) -> Response:
        """Send one descriptor and shape the response.

        Raises:
            TransportError: On connection failure, timeout or any other
                transport fault, including use after destroy().
        """
        if self._http.is_closed:
            raise TransportError(f"{descriptor.method} {descriptor.url} failed: client has been destroyed")

        logger.debug("Sending %s %s", descriptor.method, descriptor.url)

        try:
            http_response = await self._http.request(
                method=descriptor.method,
                url=descriptor.url,
                headers=descriptor.headers,
                content=descriptor.body.encode("utf-8") if descriptor.body else None,
                auth=descriptor.credentials,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"{descriptor.method} {descriptor.url} request timeout: {e}") from e
        except httpx.ConnectError as e:
            raise TransportError(f"{descriptor.method} {descriptor.url} connection error: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"{descriptor.method} {descriptor.url} request error: {e}") from e
        except UnicodeEncodeError as e:
            # Non-ASCII in header names or values cannot go on the wire
            raise TransportError(
                f"{descriptor.method} {descriptor.url} encoding error: non-ASCII character "
                f"{e.object[e.start:e.end]!r} in request headers"
            ) from e
        except (httpx.InvalidURL, httpx.HTTPError, RuntimeError) as e:
            # Malformed URLs and a client closed by destroy() mid-call
            raise TransportError(f"{descriptor.method} {descriptor.url} failed: {e}") from e

        logger.debug(
            "%s %s -> %d %s",
            descriptor.method,
            descriptor.url,
            http_response.status_code,
            http_response.reason_phrase,
        )
        return shape_response(http_response, descriptor, self._config.record_redirects)

    def _schedule(self, descriptor: RequestDescriptor, callback: Callback) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise InvalidArguments(
                "Invalid arguments: a completion callback requires a running event loop"
            ) from e

        task = loop.create_task(self._deliver(descriptor, callback))
        # Keep a reference so the task is not collected mid-flight
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, descriptor: RequestDescriptor, callback: Callback) -> None:
        try:
            response = await self.send(descriptor)
        except Exception as e:
            logger.debug("Delivering error to callback: %s", e)
            await self._invoke(callback, e, None)
            return
        await self._invoke(callback, None, response)

    @staticmethod
    async def _invoke(callback: Callback, error: Exception | None, response: Response | None) -> None:
        try:
            result = callback(error, response)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("Completion callback raised", exc_info=True)


def create_client(
    base_url: str,
    options: ClientOptions | Mapping[str, Any] | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs: Any,
) -> ApiClient:
    """Create a client bound to base_url.

    Options may be passed as a ClientOptions, a mapping, keyword arguments,
    or a mix (keywords win).

    Raises:
        InvalidBaseURL: If base_url is not an http(s) URL without query or fragment.
        ConfigError: If the options are invalid.
    """
    endpoint = parse_base_url(base_url)

    if kwargs:
        if isinstance(options, ClientOptions):
            merged = options.model_dump(exclude_unset=True)
        else:
            merged = dict(options or {})
        merged.update(kwargs)
        options = merged

    config = build_client_config(endpoint, options)
    logger.debug("Created client for %s", config.endpoint.url)
    return ApiClient(config, transport=transport)
