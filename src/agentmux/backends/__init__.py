"""
Session backends and startup selection.

``select_backend()`` probes tmux once. If multiplexing is disabled or tmux
is unusable the engine runs on plain PTYs: a capability downgrade, logged as
``multiplexer_unavailable``, never a startup failure.
"""

from __future__ import annotations

import structlog

from agentmux.backends.base import BackendRegistry, SessionBackend
from agentmux.backends.plain import PlainBackend
from agentmux.backends.tmux import TmuxBackend
from agentmux.core.config import MultiplexerConfig
from agentmux.core.exceptions import MultiplexerUnavailableError
from agentmux.os.tmux import TmuxClient

logger = structlog.get_logger()


async def select_backend(config: MultiplexerConfig) -> SessionBackend:
    if not config.enabled:
        logger.info("multiplexer_disabled")
        return PlainBackend()

    client = TmuxClient(config.binary, config.status_line_pattern)
    try:
        version = await client.probe()
    except MultiplexerUnavailableError as exc:
        logger.warning("multiplexer_unavailable", binary=config.binary, error=str(exc))
        return PlainBackend()

    logger.info("multiplexer_enabled", binary=config.binary, version=version, prefix=config.prefix)
    return TmuxBackend(client, prefix=config.prefix, capture_lines=config.capture_lines)


__all__ = [
    "BackendRegistry",
    "PlainBackend",
    "SessionBackend",
    "TmuxBackend",
    "select_backend",
]
