"""Process startup: bind with port fallback and run the HTTP app under uvicorn."""
from __future__ import annotations

import errno
import socket

import structlog
import uvicorn

from .config import AppConfig
from .api.main import create_app

logger = structlog.get_logger(__name__)


def bind_with_fallback(host: str, port: int, attempts: int) -> socket.socket:
    """Bind a listening socket on ``port`` or the next free one.

    Only "address in use" moves on to the next port; any other bind error is
    raised as is. Raises ``OSError`` once ``attempts`` ports were tried.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    last_port = min(port + attempts - 1, 65535)
    for candidate in range(port, last_port + 1):
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.bind((host, candidate))
        except OSError as exc:
            sock.close()
            if exc.errno != errno.EADDRINUSE:
                raise
            logger.warning("server.port_busy", port=candidate, next=candidate + 1)
            continue
        sock.listen(128)
        return sock
    raise OSError(errno.EADDRINUSE, f"No free port between {port} and {last_port} on {host}")


def run_server(config: AppConfig) -> None:
    app = create_app(config)
    sock = bind_with_fallback(config.server.host, config.server.port, config.server.port_attempts)
    host, port = sock.getsockname()[:2]
    if config.uses_default_secret():
        logger.warning("auth.default_secret", hint="set AIZEN_ADMIN_SECRET outside development")
    logger.info("server.start", url=f"http://{host}:{port}", store=str(config.store.path))
    server = uvicorn.Server(uvicorn.Config(app, log_config=None, log_level=config.logging.level.lower()))
    server.run(sockets=[sock])


__all__ = ["bind_with_fallback", "run_server"]
