"""Process entry point: bind, serve with uvicorn, drain on shutdown."""

import logging
import socket

import uvicorn

from dispatch_pipeline.core.pipeline import Pipeline
from dispatch_pipeline.exceptions import PortInUseError
from dispatch_pipeline.starlette.app import create_app

logger = logging.getLogger(__name__)


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listening socket up front so a taken port fails at startup.

    Raises:
        PortInUseError: If the address cannot be bound.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        raise PortInUseError(f"Cannot listen on {host}:{port}: {exc.strerror or exc}") from exc
    sock.set_inheritable(True)
    return sock


def build_server(
    pipeline: Pipeline,
    *,
    host: str,
    port: int,
    drain_timeout: float,
    log_level: str,
) -> uvicorn.Server:
    """Create a uvicorn server for the pipeline without starting it."""
    config = uvicorn.Config(
        create_app(pipeline),
        host=host,
        port=port,
        lifespan="on",
        log_level=log_level,
        timeout_graceful_shutdown=drain_timeout,
    )
    return uvicorn.Server(config)


def serve(
    pipeline: Pipeline,
    *,
    host: str,
    port: int,
    drain_timeout: float,
    log_level: str,
) -> None:
    """Serve the pipeline until SIGINT/SIGTERM.

    On a stop signal uvicorn stops accepting connections and waits up to
    ``drain_timeout`` seconds for in-flight requests before returning.

    Raises:
        PortInUseError: If the port is already bound.
    """
    sock = bind_socket(host, port)
    server = build_server(
        pipeline,
        host=host,
        port=port,
        drain_timeout=drain_timeout,
        log_level=log_level,
    )

    logger.info(
        "Server starting",
        extra={"host": host, "port": sock.getsockname()[1], "drain_timeout": drain_timeout},
    )
    try:
        server.run(sockets=[sock])
    finally:
        sock.close()
    logger.info("Server stopped", extra={"host": host, "port": port})
