"""
mockexpect Mock Server

FastAPI-based HTTP server that answers requests from registered
expectations.

Features:
- One registration method per HTTP verb (server.get('/users') ...)
- Literal (method, path) routing into a single dispatch entry point
- Query, body and header assertions with structural diffs
- Delayed and computed responses
- Completion signals for synchronizing tests with request delivery
"""

from __future__ import annotations  # Enable forward references for type hints

import asyncio
import logging
import socket
from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import uvicorn
import yaml
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from ..common import content_type_of, parse_body, parse_nested_query
from .diff import get_renderer
from .errors import BodyParseError, MatchFailure
from .expectation import Expectation
from .matcher import MockRequest, check_expectation
from .registry import RouteRegistry, SUPPORTED_METHODS
from .reply import ReplyScheduler

Middleware = Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]


@dataclass
class MockConfig:
    """Configuration for mock server behavior."""

    # Server options
    host: str = "127.0.0.1"
    port: int = 0  # 0 picks a free port
    log_level: str = "info"
    access_log: bool = False

    # Expectations
    wait_timeout_ms: int = 2000  # Default timeout for CompletionSignal.wait

    # Failure behavior
    match_failure_status: int = 500
    unmatched_status: int = 404
    diff_renderer: Any = "plain"  # plain, ansi or a callable

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MockConfig':
        """Create config from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'MockConfig':
        """Load config from a YAML file."""
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})


class MockServer:
    """
    HTTP server stubbing endpoints from registered expectations.

    Every request is routed into one dispatch entry point which looks up the
    oldest expectation registered for its exact method and path.

    Example:
        server = await create_mock_server()

        signal = server.get('/users').query({'active': True}).reply(200, {'ok': True})
        # ... exercise the code under test against server.url_for('/users')
        await signal.wait_for()

        server.clean()
        await server.close()

    The app can also be driven in-process without listening:

        server = MockServer()
        client = TestClient(server.app)
    """

    def __init__(
        self,
        config: Optional[MockConfig] = None,
        middlewares: Optional[Sequence[Middleware]] = None
    ):
        """
        Initialize mock server.

        Args:
            config: Optional MockConfig for server behavior
            middlewares: Ordered HTTP middleware functions; the first one
                sees the request first
        """
        self.config = config or MockConfig()
        self.middlewares = list(middlewares or [])
        self.registry = RouteRegistry()
        self.failures: List[MatchFailure] = []
        self.port: Optional[int] = None

        self.logger = logging.getLogger("mockexpect.mock")
        self.logger.setLevel(getattr(logging, self.config.log_level.upper()))

        self.renderer = get_renderer(self.config.diff_renderer)
        self.scheduler = ReplyScheduler(self.registry, self.logger)

        self._uvicorn: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None

        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application routing everything into dispatch."""
        app = FastAPI(
            title="mockexpect",
            docs_url=None,
            redoc_url=None,
            openapi_url=None
        )

        # Starlette wraps later middleware around earlier ones
        for middleware in reversed(self.middlewares):
            app.middleware("http")(middleware)

        @app.exception_handler(MatchFailure)
        async def match_failure_handler(request: Request, exc: MatchFailure):
            return self._on_match_failure(request, exc)

        @app.exception_handler(BodyParseError)
        async def body_parse_handler(request: Request, exc: BodyParseError):
            self.logger.warning(f"Bad body for {request.method} {request.url.path}: {exc}")
            return PlainTextResponse(str(exc), status_code=400)

        @app.api_route("/{path:path}", methods=list(SUPPORTED_METHODS))
        async def mock_request(request: Request, path: str):
            """Handle incoming requests from registered expectations."""
            return await self._handle_request(request)

        return app

    # Registration

    def expect(self, method: str, path: str) -> Expectation:
        """
        Start an expectation for a method and literal path.

        Args:
            method: HTTP method (one of SUPPORTED_METHODS, any case)
            path: Literal request path

        Returns:
            Expectation builder; call reply() to register it
        """
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(
                f"Unsupported method '{method}'. Supported: {', '.join(SUPPORTED_METHODS)}"
            )
        return Expectation(self.registry, method, path, wait_timeout_ms=self.config.wait_timeout_ms)

    def get(self, path: str) -> Expectation:
        return self.expect('GET', path)

    def post(self, path: str) -> Expectation:
        return self.expect('POST', path)

    def put(self, path: str) -> Expectation:
        return self.expect('PUT', path)

    def patch(self, path: str) -> Expectation:
        return self.expect('PATCH', path)

    def delete(self, path: str) -> Expectation:
        return self.expect('DELETE', path)

    def head(self, path: str) -> Expectation:
        return self.expect('HEAD', path)

    def options(self, path: str) -> Expectation:
        return self.expect('OPTIONS', path)

    def trace(self, path: str) -> Expectation:
        return self.expect('TRACE', path)

    def clean(self):
        """Discard every registered expectation and recorded failure."""
        self.logger.debug(f"Cleaning {len(self.registry)} pending expectations")
        self.registry.clear()
        self.failures.clear()

    def pending(self) -> List[Expectation]:
        """Expectations still registered, oldest first."""
        return self.registry.pending()

    def check_failures(self):
        """
        Re-raise the first match failure recorded since the last clean().

        Raises:
            MatchFailure: If any request failed its expectation
        """
        if self.failures:
            raise self.failures[0]

    # Dispatch

    async def _read_request(self, request: Request) -> MockRequest:
        """Snapshot a request, parsing query and body."""
        headers = {k.lower(): v for k, v in request.headers.items()}
        raw = await request.body()
        body, text = parse_body(content_type_of(headers), raw)

        return MockRequest(
            method=request.method,
            path=request.url.path,
            query=parse_nested_query(request.url.query),
            headers=headers,
            body=body,
            text=text,
            raw_body=raw
        )

    async def _handle_request(self, request: Request) -> Response:
        """
        Handle incoming request and answer from the matching expectation.

        Args:
            request: FastAPI Request object

        Returns:
            Response built by the reply scheduler, or the unmatched response
        """
        incoming = await self._read_request(request)
        self.logger.debug(f"Incoming: {incoming.method} {incoming.path}")

        # From here to the scheduler's first await nothing yields to the loop
        expectation = self.registry.first(incoming.method, incoming.path)
        if expectation is None:
            self.logger.warning(f"No expectation for {incoming.method} {incoming.path}")
            return PlainTextResponse(
                f"Cannot {incoming.method} {incoming.path}",
                status_code=self.config.unmatched_status
            )

        check_expectation(expectation, incoming)
        return await self.scheduler.reply(expectation, incoming)

    def _on_match_failure(self, request: Request, exc: MatchFailure) -> Response:
        self.failures.append(exc)
        self.logger.error(
            f"{request.method} {request.url.path} failed its expectation: {exc.render(self.renderer)}"
        )
        return PlainTextResponse(str(exc), status_code=self.config.match_failure_status)

    # Lifecycle

    @property
    def is_listening(self) -> bool:
        return self._uvicorn is not None and self._uvicorn.started

    def url_for(self, path: str) -> str:
        """Absolute URL of path on the listening server."""
        if self.port is None:
            raise RuntimeError("Server is not listening; call listen() first")
        if not path.startswith('/'):
            path = '/' + path
        return f"http://{self.config.host}:{self.port}{path}"

    async def listen(self, port: Optional[int] = None) -> 'MockServer':
        """
        Start serving on the running event loop.

        Args:
            port: Port to bind to (overrides config; 0 picks a free port)

        Returns:
            The server itself, once it accepts connections
        """
        if self._serve_task is not None:
            raise RuntimeError("Server is already listening")

        actual_port = self.config.port if port is None else port
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.config.host, actual_port))

            server_config = uvicorn.Config(
                self.app,
                log_level=self.config.log_level,
                access_log=self.config.access_log,
                log_config=None,
                lifespan="off"
            )
            self._uvicorn = uvicorn.Server(server_config)
            self._serve_task = asyncio.create_task(self._uvicorn.serve(sockets=[sock]))

            while not self._uvicorn.started:
                if self._serve_task.done():
                    # Surface startup errors
                    self._serve_task.result()
                    raise RuntimeError("Mock server stopped during startup")
                await asyncio.sleep(0.01)
        except BaseException:
            self.logger.error(f"Mock server failed to start on {self.config.host}:{actual_port}")
            if self._serve_task is not None and not self._serve_task.done():
                self._serve_task.cancel()
            self._serve_task = None
            self._uvicorn = None
            sock.close()
            raise

        self.port = sock.getsockname()[1]
        self.logger.info(f"Mock server listening on http://{self.config.host}:{self.port}")
        return self

    async def close(self):
        """Stop serving and wait for the server to shut down."""
        if self._serve_task is None:
            return
        self._uvicorn.should_exit = True
        try:
            await self._serve_task
        finally:
            self._serve_task = None
            self._uvicorn = None
            self.logger.info(f"Mock server on port {self.port} closed")
            self.port = None

    async def __aenter__(self) -> 'MockServer':
        if self._serve_task is None:
            await self.listen()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


async def create_mock_server(
    port: Optional[int] = None,
    middlewares: Optional[Sequence[Middleware]] = None,
    config: Optional[MockConfig] = None
) -> MockServer:
    """
    Create a mock server and start listening.

    Args:
        port: Port to bind to (default: config.port, a free port)
        middlewares: Ordered HTTP middleware functions
        config: Optional MockConfig

    Returns:
        Listening MockServer

    Example:
        server = await create_mock_server(middlewares=[add_request_id])
        server.get('/health').persist().reply(200, 'ok')
    """
    server = MockServer(config=config, middlewares=middlewares)
    return await server.listen(port)
