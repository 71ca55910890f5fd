"""
Engine manager.

The EngineManager wires the session engine together for one process
lifetime:
  - Opens the history database (if enabled)
  - Probes tmux and selects the session backend
  - Builds the event bus and the session registry
  - Recovers tmux sessions left by a previous run
  - Runs the state ticker and the history flush loop
  - Shuts everything down in reverse order

Lifecycle::

    engine = EngineManager(config)
    registry = await engine.start()
    ...
    await engine.stop()
"""

from __future__ import annotations

import sqlite3

import structlog

from agentmux.backends import select_backend
from agentmux.backends.base import SessionBackend
from agentmux.core.config import AgentMuxConfig
from agentmux.core.events import EventBus
from agentmux.core.session.registry import SessionRegistry
from agentmux.core.store.database import Database
from agentmux.core.store.history import BufferedHistoryWriter

logger = structlog.get_logger()


class EngineManager:
    """Top-level orchestrator for the session engine."""

    def __init__(self, config: AgentMuxConfig, *, backend: SessionBackend | None = None) -> None:
        self._config = config
        self._backend = backend
        self._db: Database | None = None
        self._history: BufferedHistoryWriter | None = None
        self._registry: SessionRegistry | None = None
        self._events = EventBus()
        self._running = False

    @property
    def registry(self) -> SessionRegistry:
        if self._registry is None:
            raise RuntimeError("Engine not started. Call start() first.")
        return self._registry

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def history(self) -> BufferedHistoryWriter | None:
        return self._history

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> SessionRegistry:
        """Start all subsystems and return the ready registry."""
        if self._registry is not None:
            return self._registry

        self._init_history()
        if self._backend is None:
            self._backend = await select_backend(self._config.multiplexer)

        self._registry = SessionRegistry(
            self._backend,
            config=self._config,
            events=self._events,
            history=self._history,
        )
        recovered = await self._registry.recover()
        self._registry.start_ticker()
        if self._history is not None:
            self._history.start()

        self._running = True
        logger.info(
            "engine_started",
            backend=self._backend.name,
            persistent=self._backend.persistent,
            recovered=len(recovered),
            history=self._history is not None,
        )
        return self._registry

    async def stop(self) -> None:
        """Shut down the registry, flush history, close the database."""
        if not self._running:
            return
        self._running = False
        if self._registry is not None:
            await self._registry.shutdown()
        if self._history is not None:
            try:
                await self._history.stop()
            except Exception as exc:  # noqa: BLE001
                logger.error("history_write_failed", operation="final_flush", error=str(exc))
        if self._db is not None:
            self._db.close()
            self._db = None
        logger.info("engine_stopped")

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def _init_history(self) -> None:
        if not self._config.database.history_enabled:
            return
        db_path = self._config.db_path
        db = Database(db_path)
        try:
            db.connect()
        except (OSError, RuntimeError, sqlite3.Error) as exc:
            # History is best-effort; the engine runs without it
            logger.error("history_unavailable", path=str(db_path), error=str(exc))
            return
        self._db = db
        self._history = BufferedHistoryWriter(db, self._config.database.flush_interval_ms / 1000)
        logger.debug("database_connected", path=str(db_path))
