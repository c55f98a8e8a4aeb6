"""HTTP component lifecycle.

    Stopped --start()--> Running --stop()--> Stopped

start() on a running component and stop() on a stopped one are logged
no-ops. Both are serialized, so callers never observe a half-started
component: either start() returns with handler (and, unless no_listen,
listener) in place, or it raises and nothing was kept.

Example:
    >>> component = HttpComponent(operations, get_settings(), dependencies={"db": db})
    >>> with component:
    ...     ...  # serving on settings.http.host:port
"""

from __future__ import annotations

import socket
import threading
import time
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

import uvicorn

from gatehouse.foundation.config import GatehouseSettings, get_settings
from gatehouse.foundation.errors import ServerBindFailure
from gatehouse.gateway.asgi import create_app
from gatehouse.gateway.pipeline import Pipeline, default_stages
from gatehouse.gateway.routing import Executor, Operation, Router
from gatehouse.gateway.security import oauth2_security
from gatehouse.gateway.tokeninfo import TokenResolver
from gatehouse.runtime.observability import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from starlette.applications import Starlette

    from gatehouse.foundation.config import HttpSettings
    from gatehouse.runtime.middleware import Middleware

log = get_logger("gatehouse.server")

_STARTUP_TIMEOUT = 10.0


@runtime_checkable
class Listener(Protocol):
    """A bound, serving socket. close() must be safe to call more than once."""

    def close(self) -> None: ...


ListenerFactory = Callable[["Starlette", "HttpSettings"], Listener]


class UvicornListener:
    """Serve an ASGI app with uvicorn on a background thread.

    The socket is bound here, synchronously, so bind errors surface from the
    constructor as ServerBindFailure instead of dying inside the thread.
    """

    __slots__ = ("host", "port", "graceful_timeout", "_socket", "_server", "_thread", "_closed", "_lock")

    def __init__(self, app: Starlette, settings: HttpSettings) -> None:
        self.host = settings.host
        self.graceful_timeout = settings.graceful_timeout
        self._socket = _bind(settings.host, settings.port)
        self.port = self._socket.getsockname()[1]
        self._closed = False
        self._lock = threading.Lock()

        config = uvicorn.Config(
            app,
            lifespan="on",
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=int(max(1, round(settings.graceful_timeout))),
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": [self._socket]},
            name=f"gatehouse-http-{self.port}",
            daemon=True,
        )
        self._thread.start()
        self._wait_started()

    def _wait_started(self) -> None:
        deadline = time.monotonic() + _STARTUP_TIMEOUT
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self.close()
                raise ServerBindFailure(self.host, self.port, "listener did not start")
            time.sleep(0.01)

    @property
    def address(self) -> tuple[str, int]:
        return self.host, self.port

    def close(self) -> None:
        """Drain within graceful_timeout, then release the socket (once)."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._server.should_exit = True
        self._thread.join(timeout=self.graceful_timeout + 1.0)
        if self._thread.is_alive():
            log.warning("HTTP listener did not drain in time", port=self.port)
            self._server.force_exit = True
            self._thread.join(timeout=1.0)
        self._socket.close()


def _bind(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(socket.SOMAXCONN)
    except OSError as e:
        sock.close()
        raise ServerBindFailure(host, port, e.strerror or str(e)) from e
    return sock


class HttpComponent:
    """The API server: pipeline, ASGI app and (optionally) a bound listener.

    Args:
        operations: Operations the router serves
        settings: Configuration (default: get_settings())
        dependencies: Objects handed to operation handlers that declare them
        metrics, tracer, audit_log: Optional collaborator stages
        resolver: Token resolver to use instead of one built from settings
        listener_factory: Creates the listener (default: UvicornListener)
    """

    def __init__(
        self,
        operations: Sequence[Operation],
        settings: GatehouseSettings | None = None,
        *,
        dependencies: Mapping[str, object] | None = None,
        metrics: Middleware | None = None,
        tracer: Middleware | None = None,
        audit_log: Middleware | None = None,
        resolver: TokenResolver | None = None,
        listener_factory: ListenerFactory = UvicornListener,
    ) -> None:
        self.operations = list(operations)
        self.settings = settings or get_settings()
        self.dependencies = dict(dependencies or {})
        self.metrics, self.tracer, self.audit_log = metrics, tracer, audit_log
        self._resolver = resolver
        self._listener_factory = listener_factory
        self._lock = threading.RLock()
        self._handler: Pipeline | None = None
        self._app: Starlette | None = None
        self._listener: Listener | None = None

    # ─────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._handler is not None

    @property
    def handler(self) -> Pipeline | None:
        """The composed pipeline while running."""
        return self._handler

    @property
    def app(self) -> Starlette | None:
        """The ASGI app while running (mount it yourself in no_listen mode)."""
        return self._app

    @property
    def listener(self) -> Listener | None:
        return self._listener

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    def start(self) -> HttpComponent:
        """Build the pipeline and, unless no_listen, bind the listener.

        Raises:
            ServerBindFailure: The listener could not bind; the component stays stopped
            ValueError: An operation declares a dependency that was not supplied
        """
        with self._lock:
            if self._handler is not None:
                log.debug("Skipping start of HTTP; already running.")
                return self

            http = self.settings.http
            log.info("Starting HTTP daemon", operations=len(self.operations), no_listen=http.no_listen)
            executor = Executor(self.dependencies)
            executor.check(self.operations)

            resolver = self._resolver
            if resolver is None and http.tokeninfo_url:
                resolver = TokenResolver.from_settings(self.settings)
            pipeline = Pipeline(
                default_stages(
                    self.settings,
                    oauth2_security(self.settings, resolver),
                    Router(self.operations),
                    metrics=self.metrics,
                    tracer=self.tracer,
                    audit_log=self.audit_log,
                ),
                executor,
            )
            app = create_app(pipeline, on_shutdown=[resolver.aclose] if resolver is not None else ())

            listener = None if http.no_listen else self._listener_factory(app, http)
            self._handler, self._app, self._listener = pipeline, app, listener
            log.info("HTTP daemon started", stages=" → ".join(pipeline.names))
            return self

    def stop(self) -> HttpComponent:
        """Release the listener (if bound) and drop the handler."""
        with self._lock:
            if self._handler is None:
                log.debug("Skipping stop of HTTP; not running.")
                return self

            log.info("Stopping HTTP daemon.")
            listener = self._listener
            self._handler, self._app, self._listener = None, None, None
            if listener is not None:
                listener.close()
            return self

    def __enter__(self) -> HttpComponent:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()
