"""Control API application and server binding."""
import contextlib
import logging
import socket
from typing import Iterable, Tuple

import uvicorn
from fastapi import FastAPI

from . import __version__
from .routers import control_router

logger = logging.getLogger(__name__)


class ServerBindError(RuntimeError):
    """None of the configured control API addresses could be bound."""


class ControlServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the daemon."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def create_app(daemon) -> FastAPI:
    """Create the control API application for a daemon."""
    app = FastAPI(
        title="alertd",
        description="Alerting daemon control API",
        version=__version__,
    )
    app.state.daemon = daemon
    app.include_router(control_router)
    return app


def parse_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` or ``[v6host]:port``."""
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        if not rest.startswith(":"):
            raise ValueError(f"invalid address: {address}")
        return host, int(rest[1:])
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"invalid address: {address}")
    return host, int(port)


def bind_first(addresses: Iterable[str]) -> Tuple[socket.socket, str]:
    """Bind the first address that can be bound.

    Raises:
        ServerBindError: If no address could be bound
    """
    errors = []
    for address in addresses:
        try:
            host, port = parse_address(address)
            family = socket.AF_INET6 if ":" in host else socket.AF_INET
            sock = socket.socket(family, socket.SOCK_STREAM)
        except (ValueError, OSError) as e:
            errors.append(f"{address}: {e}")
            continue
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            logger.debug(f"Cannot bind {address}: {e}")
            errors.append(f"{address}: {e}")
            continue
        sock.set_inheritable(True)
        return sock, address
    raise ServerBindError("could not bind control API: " + "; ".join(errors or ["no addresses configured"]))


def create_server(app: FastAPI) -> ControlServer:
    config = uvicorn.Config(app, log_level="warning", lifespan="off")
    return ControlServer(config)
