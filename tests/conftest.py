"""Pytest configuration and fixtures for api-client tests.

This file provides:
- RequestRecorder: httpx.MockTransport handler that records requests
- PortReservation: Race-free port allocation for the test server
- MockServer: Subprocess management for the local test API server
- Fixtures: Shared test infrastructure (recorder, clients, server)
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Generator

import httpx
import pytest
import pytest_asyncio

from api_client.client import ApiClient, create_client
from api_client.config_loader import build_client_config
from api_client.models import ClientConfig
from api_client.url import parse_base_url

# Project root for subprocess cwd
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"

DEFAULT_BASE_URL = "http://api.test/v1"


def make_config(base_url: str = DEFAULT_BASE_URL, **options: Any) -> ClientConfig:
    """Build a ClientConfig the same way create_client does.

    Prefer this over constructing ClientConfig directly - it runs URL
    normalization and option resolution.
    """
    return build_client_config(parse_base_url(base_url), options)


class RequestRecorder:
    """Records requests sent through an httpx.MockTransport.

    Usage:
        recorder = RequestRecorder()
        recorder.responder = lambda request: httpx.Response(200, text="ok")
        client = create_client(url, transport=recorder.transport())
    """

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, json={"ok": True}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "no request was recorded"
        return self.requests[-1]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def make_client(recorder: RequestRecorder, base_url: str = DEFAULT_BASE_URL, **options: Any) -> ApiClient:
    """Create a client whose transport is the recorder."""
    return create_client(base_url, options, transport=recorder.transport())


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    The socket stays bound until release() is called just before the server
    starts, so no other process can take the port in between.
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages the test API server subprocess for integration tests.

    Runs tests/integration/mock_server.py as a subprocess.
    """

    def __init__(self, port: int | PortReservation) -> None:
        if isinstance(port, PortReservation):
            self._reservation = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the server subprocess with graceful shutdown.

        Uses SIGTERM first, then SIGKILL after 5s if process doesn't exit.
        """
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                self._process.wait(timeout=5)
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture
def recorder() -> RequestRecorder:
    """Recorder answering every request with 200 {"ok": true}."""
    return RequestRecorder()


@pytest_asyncio.fixture
async def client(recorder: RequestRecorder) -> AsyncGenerator[ApiClient, None]:
    """Client bound to DEFAULT_BASE_URL sending through the recorder."""
    api = make_client(recorder)
    yield api
    await api.destroy()


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Start the test API server once per session."""
    with MockServer(PortReservation()) as server:
        yield server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
