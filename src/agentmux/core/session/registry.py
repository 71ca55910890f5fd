"""
Session registry.

The SessionRegistry owns every live session: the mapping of session id to
{handle, buffer, detector, metadata}. It is the single source of truth for
session state in memory; history is written to the HistoryStore as a
best-effort side effect.

Invariants:
  - At most one live handle per session. A handle's callbacks are ignored
    once it is no longer the session's current handle.
  - Per-user session count never exceeds ``max_per_owner``; the count is
    changed only together with the session map, under the map lock.
  - A create that fails leaves nothing behind: no map entry, no count.
  - destroy() is idempotent. It closes the detector (cancelling the idle
    timer) and detaches callbacks before the handle is killed.

Data path (synchronous, per chunk, in arrival order):
  handle output → sanitize_if_needed → buffer.append → detector.feed
                → SessionData event → history.append_line (queued)

Nothing on the data path performs I/O or awaits; tmux invocations happen
only from lifecycle calls (create, reattach, destroy, recover).
"""

from __future__ import annotations

import asyncio
import os
from collections import Counter
from collections.abc import Callable, Coroutine, Mapping, Sequence
from typing import Any, TypeVar

import structlog

from agentmux.backends.base import SessionBackend
from agentmux.core.config import AgentMuxConfig
from agentmux.core.constants import SESSION_ENV_VAR, TERM_NAME
from agentmux.core.events import (
    EventBus,
    SessionCreated,
    SessionData,
    SessionDestroyed,
    SessionDetached,
    SessionExit,
    SessionStateChanged,
)
from agentmux.core.exceptions import (
    ReattachFailedError,
    SessionNotFoundError,
    SessionQuotaExceededError,
    WriteToDeadSessionError,
)
from agentmux.core.output.buffer import OutputBuffer
from agentmux.core.output.sanitize import sanitize_if_needed
from agentmux.core.session.models import OwnerKey, Session, SessionInfo, new_session_id, short_id
from agentmux.core.state.detector import StateDetector
from agentmux.core.state.models import SessionState
from agentmux.core.store.history import KIND_INPUT, KIND_OUTPUT, HistoryStore
from agentmux.os.tty.base import BaseTTY

logger = structlog.get_logger()

T = TypeVar("T")


class SessionRegistry:
    """
    Live session map plus lifecycle operations.

    All public methods must be called from the event loop thread.

    Usage::

        registry = SessionRegistry(backend, config=config, events=bus, history=writer)
        session = await registry.create(OwnerKey("alice", "/src/app"), "/src/app")
        await registry.write(session.session_id, b"hello\\r")
        await registry.destroy(session.session_id)
    """

    def __init__(
        self,
        backend: SessionBackend,
        *,
        config: AgentMuxConfig | None = None,
        events: EventBus | None = None,
        history: HistoryStore | None = None,
    ) -> None:
        self._config = config or AgentMuxConfig()
        self._backend = backend
        self._events = events or EventBus()
        self._history = history
        self._sessions: dict[str, Session] = {}
        self._owner_counts: Counter[str] = Counter()
        self._worktrees: dict[OwnerKey, str] = {}
        self._lock = asyncio.Lock()
        self._ticker: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def backend(self) -> SessionBackend:
        return self._backend

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def max_per_owner(self) -> int:
        return self._config.sessions.max_per_owner

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Session:
        """Return the session; raise SessionNotFoundError if not found."""
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"Session not found: {session_id!r}", session_id) from None

    def get_or_none(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def all_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def list_by_owner(self, owner: OwnerKey) -> list[Session]:
        """Sessions of ``owner.user``; narrowed to one worktree when the key names one."""
        return [
            s
            for s in self._sessions.values()
            if s.owner.user == owner.user
            and (owner.worktree is None or s.owner.worktree == owner.worktree)
        ]

    def list_info(self, owner: OwnerKey | None = None) -> list[SessionInfo]:
        """Listing snapshots, oldest session first."""
        sessions = self.all_sessions() if owner is None else self.list_by_owner(owner)
        return [s.info() for s in sorted(sessions, key=lambda s: s.created_at)]

    def count_for(self, user: str) -> int:
        return self._owner_counts[user]

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(
        self,
        owner: OwnerKey,
        working_directory: str,
        command: str | None = None,
        *,
        cols: int | None = None,
        rows: int | None = None,
        args: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Session:
        """
        Start a session for *owner* in *working_directory*.

        If *owner* names a worktree that already has a session, that session
        is returned unchanged (reattached first if it has no handle).

        Raises SessionQuotaExceededError, WorkingDirectoryInvalidError,
        ExecutableNotFoundError or SpawnFailedError.
        """
        sessions_cfg = self._config.sessions
        command = command or sessions_cfg.default_command
        cols = cols or sessions_cfg.default_cols
        rows = rows or sessions_cfg.default_rows
        launch_args = list(sessions_cfg.extra_args) if args is None else list(args)

        async with self._lock:
            existing = self._sessions.get(self._worktrees.get(owner, ""))
            if existing is None:
                if self._owner_counts[owner.user] >= self.max_per_owner:
                    raise SessionQuotaExceededError(
                        f"user {owner.user!r} already has {self.max_per_owner} sessions"
                    )

                session_id = new_session_id()
                child_env = {**(env or {}), SESSION_ENV_VAR: session_id, "TERM": TERM_NAME}
                handle = await self._backend.launch(
                    session_id, command, launch_args, working_directory, cols, rows, child_env
                )
                cwd = os.path.abspath(os.path.expanduser(working_directory))
                session = self._new_session(session_id, owner, cwd, command, cols, rows)
                self._register(session)
                self._attach(session, handle)
                logger.info(
                    "session_created",
                    session_id=session.short_id(),
                    user=owner.user,
                    cwd=session.working_directory,
                    backend=self._backend.name,
                    pid=session.pid,
                )
                self._record_create(session)
                self._events.publish(
                    SessionCreated(session_id, owner.user, owner.worktree, session.working_directory)
                )
                return session

        if existing.handle is None and self._backend.persistent:
            await self._ensure_handle(existing)
        return existing

    async def reattach(
        self, session_id: str, cols: int | None = None, rows: int | None = None
    ) -> BaseTTY:
        """
        Return a live handle for *session_id*, attaching one if it has none.

        A session recovered after restart has an empty buffer; it is seeded
        from the multiplexer's captured pane before the new attachment starts
        producing output.
        """
        session = self.get(session_id)
        if cols and rows and (cols, rows) != (session.cols, session.rows):
            session.cols, session.rows = cols, rows
            if session.handle is not None:
                await self._backend.resize(session_id, session.handle, cols, rows)
        return await self._ensure_handle(session)

    async def write(self, session_id: str, data: bytes | str) -> None:
        """Send input to the session, reattaching first if it has no handle."""
        session = self.get(session_id)
        handle = await self._ensure_handle(session)
        payload = data.encode("utf-8") if isinstance(data, str) else data
        await handle.write(payload)
        session.touch()
        self._record_line(session_id, payload.decode("utf-8", errors="replace"), KIND_INPUT)

    async def resize(self, session_id: str, cols: int, rows: int) -> None:
        if cols <= 0 or rows <= 0:
            raise ValueError("cols and rows must be positive")
        session = self.get(session_id)
        session.cols, session.rows = cols, rows
        await self._backend.resize(session_id, session.handle, cols, rows)

    async def destroy(self, session_id: str) -> bool:
        """
        Stop and forget a session. Returns False if it was already gone.

        Calling destroy twice, or on an id that was never registered, is a
        no-op rather than an error.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        return await self._destroy(session)

    async def get_buffer(self, session_id: str) -> str:
        """
        Buffered output for *session_id*.

        Falls back to the multiplexer's captured pane when the in-memory
        buffer is empty, e.g. for a recovered session nobody has attached to.
        """
        session = self.get(session_id)
        if session.buffer.size:
            return session.buffer.read().decode("utf-8", errors="replace")
        if self._backend.persistent:
            return await self._backend.capture(session_id, self._config.multiplexer.capture_lines)
        return ""

    # ------------------------------------------------------------------
    # Startup recovery / shutdown
    # ------------------------------------------------------------------

    async def recover(self) -> list[Session]:
        """
        Rebuild sessions that outlived the previous engine process.

        For every history record still marked active whose multiplexer
        session exists, register a Session with no handle; the handle is
        attached lazily on first write or reattach. Records whose process
        is gone are closed as lost.
        """
        if self._history is None:
            return []
        history = self._history
        records = self._guarded(history.list_active, "list_active") or []
        live = set(await self._backend.list_sessions()) if self._backend.persistent else set()

        recovered: list[Session] = []
        async with self._lock:
            for record in records:
                if record.session_id in self._sessions:
                    continue
                if record.session_id not in live:
                    self._guarded(lambda r=record: history.record_lost(r.session_id), "record_lost")
                    logger.info("session_lost", session_id=short_id(record.session_id))
                    continue
                owner = OwnerKey(record.user, record.worktree)
                if self._owner_counts[owner.user] >= self.max_per_owner:
                    logger.warning(
                        "session_recovery_skipped",
                        session_id=short_id(record.session_id),
                        user=owner.user,
                        reason="quota",
                    )
                    continue
                session = self._new_session(
                    record.session_id,
                    owner,
                    record.working_directory,
                    record.command,
                    self._config.sessions.default_cols,
                    self._config.sessions.default_rows,
                )
                self._register(session)
                recovered.append(session)
                logger.info("session_recovered", session_id=session.short_id(), user=owner.user)
        return recovered

    def start_ticker(self) -> None:
        """Start the periodic wall-clock idle check."""
        if self._ticker is None:
            self._ticker = asyncio.get_running_loop().create_task(self._tick_loop(), name="state_ticker")

    async def _tick_loop(self) -> None:
        interval = self._config.detection.tick_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self.tick()

    def tick(self) -> None:
        for session in list(self._sessions.values()):
            session.detector.tick()

    async def shutdown(self) -> None:
        """
        Stop the ticker and release every session.

        Persistent sessions are detached: the local attachment ends, the
        multiplexer session and its active history record stay for the next
        start. Plain sessions are destroyed.
        """
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None

        for session in list(self._sessions.values()):
            if self._backend.persistent:
                await self._detach_for_shutdown(session)
            else:
                await self._destroy(session)

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _detach_for_shutdown(self, session: Session) -> None:
        async with self._lock:
            if session.destroyed:
                return
            session.destroyed = True
            self._unregister(session)
        handle, session.handle = session.handle, None
        session.detector.close()
        if handle is not None:
            handle.detach_callbacks()
        try:
            await self._backend.detach(session.session_id, handle)
        except Exception as exc:  # noqa: BLE001
            logger.debug("kill_failed", session_id=session.short_id(), error=str(exc))
        logger.info("session_detached", session_id=session.short_id(), reason="shutdown")

    # ------------------------------------------------------------------
    # Internals: construction and map bookkeeping
    # ------------------------------------------------------------------

    def _new_session(
        self,
        session_id: str,
        owner: OwnerKey,
        working_directory: str,
        command: str,
        cols: int,
        rows: int,
    ) -> Session:
        detection = self._config.detection
        detector = StateDetector(
            session_id,
            on_change=lambda old, new: self._on_state_change(session_id, old, new),
            idle_timer_s=detection.idle_timer_ms / 1000,
            idle_threshold_s=detection.idle_threshold_ms / 1000,
            window_lines=detection.window_lines,
        )
        buffer = OutputBuffer(
            high_water=self._config.buffer.high_water_bytes,
            low_water=self._config.buffer.low_water_bytes,
        )
        return Session(
            session_id=session_id,
            owner=owner,
            working_directory=working_directory,
            command=command,
            buffer=buffer,
            detector=detector,
            backend=self._backend.name,
            cols=cols,
            rows=rows,
        )

    def _register(self, session: Session) -> None:
        """Insert into the map and count it. Caller holds the map lock."""
        self._sessions[session.session_id] = session
        self._owner_counts[session.owner.user] += 1
        if session.owner.worktree is not None:
            self._worktrees[session.owner] = session.session_id

    def _unregister(self, session: Session) -> None:
        """Remove from the map and uncount it. Caller holds the map lock."""
        if self._sessions.pop(session.session_id, None) is None:
            return
        user = session.owner.user
        self._owner_counts[user] -= 1
        if self._owner_counts[user] <= 0:
            del self._owner_counts[user]
        if self._worktrees.get(session.owner) == session.session_id:
            del self._worktrees[session.owner]

    def _attach(self, session: Session, handle: BaseTTY) -> None:
        session.handle = handle
        handle.register_output_callback(lambda chunk: self._on_data(session, handle, chunk))
        handle.register_exit_callback(lambda code: self._on_exit(session, handle, code))

    async def _ensure_handle(self, session: Session) -> BaseTTY:
        handle = session.handle
        if handle is not None and handle.is_alive():
            return handle
        if not self._backend.persistent:
            if handle is not None:
                raise WriteToDeadSessionError("process is not running", session.session_id)
            raise WriteToDeadSessionError("session has no process", session.session_id)

        async with session.lock:
            current = session.handle
            if current is not None:
                if current.is_alive():
                    return current
                # Attach client ended before its exit callback ran
                session.handle = None
                current.detach_callbacks()
            if session.destroyed:
                raise SessionNotFoundError(
                    f"Session not found: {session.session_id!r}", session.session_id
                )
            if not session.buffer.size:
                captured = await self._backend.capture(
                    session.session_id, self._config.multiplexer.capture_lines
                )
                if captured:
                    session.buffer.append(captured.encode("utf-8"))
            try:
                handle = await self._backend.reattach(session.session_id, session.cols, session.rows)
            except ReattachFailedError:
                if not await self._backend.is_alive(session.session_id):
                    await self._destroy(session)
                raise
            self._attach(session, handle)

        logger.info("session_reattached", session_id=session.short_id(), pid=session.pid)
        return handle

    async def _destroy(self, session: Session, exit_code: int | None = None, exited: bool = False) -> bool:
        async with self._lock:
            if session.destroyed:
                return False
            session.destroyed = True
            self._unregister(session)

        handle, session.handle = session.handle, None
        session.detector.close()
        if handle is not None:
            handle.detach_callbacks()
        try:
            await self._backend.terminate(session.session_id, handle)
        except Exception as exc:  # noqa: BLE001
            logger.debug("kill_failed", session_id=session.short_id(), error=str(exc))

        session.exit_code = exit_code
        if exited:
            self._events.publish(SessionExit(session.session_id, exit_code))
        self._guarded(
            lambda: self._history.record_close(session.session_id, exit_code) if self._history else None,
            "record_close",
        )
        self._events.publish(SessionDestroyed(session.session_id))
        self._events.unsubscribe_session(session.session_id)
        logger.info(
            "session_destroyed",
            session_id=session.short_id(),
            exit_code=exit_code,
            reason="exited" if exited else "destroyed",
        )
        return True

    # ------------------------------------------------------------------
    # Internals: handle callbacks
    # ------------------------------------------------------------------

    def _on_data(self, session: Session, handle: BaseTTY, chunk: str) -> None:
        if session.destroyed or session.handle is not handle:
            return
        chunk = sanitize_if_needed(chunk)
        if not chunk:
            return
        session.touch()
        trimmed = session.buffer.append(chunk.encode("utf-8"))
        if trimmed:
            logger.debug(
                "buffer_trimmed",
                session_id=session.short_id(),
                trimmed_bytes=trimmed,
                size=session.buffer.size,
            )
        session.detector.feed(chunk)
        self._events.publish(SessionData(session.session_id, chunk))
        self._record_line(session.session_id, chunk, KIND_OUTPUT)

    def _on_exit(self, session: Session, handle: BaseTTY, code: int | None) -> None:
        if session.destroyed or session.handle is not handle:
            return
        if self._backend.persistent:
            self._spawn_task(self._on_attachment_exit(session, handle, code))
        else:
            self._spawn_task(self._destroy(session, code, exited=True))

    async def _on_attachment_exit(self, session: Session, handle: BaseTTY, code: int | None) -> None:
        """
        A tmux attach client ended. If the tmux session is still there we
        were only detached (another viewer took over, or the client died);
        keep the session without a handle. Otherwise the process exited.
        """
        try:
            alive = await self._backend.is_alive(session.session_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("multiplexer_probe_failed", session_id=session.short_id(), error=str(exc))
            alive = False
        if session.destroyed or session.handle is not handle:
            return
        if not alive:
            await self._destroy(session, code, exited=True)
            return
        session.handle = None
        handle.detach_callbacks()
        logger.info("session_detached", session_id=session.short_id(), reason="attachment_exit")
        self._events.publish(SessionDetached(session.session_id))

    def _on_state_change(self, session_id: str, old: SessionState, new: SessionState) -> None:
        logger.debug("session_state_changed", session_id=short_id(session_id), old=old, new=new)
        self._events.publish(SessionStateChanged(session_id, new, old))

    def _spawn_task(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Internals: history (best effort)
    # ------------------------------------------------------------------

    def _record_create(self, session: Session) -> None:
        if self._history is None:
            return
        history = self._history
        self._guarded(
            lambda: history.record_create(
                session.session_id,
                session.owner.user,
                session.owner.worktree,
                session.working_directory,
                session.command,
                self._backend.name,
            ),
            "record_create",
        )

    def _record_line(self, session_id: str, content: str, kind: str) -> None:
        if self._history is None:
            return
        history = self._history
        self._guarded(lambda: history.append_line(session_id, content, kind), "append_line")

    def _guarded(self, fn: Callable[[], T], operation: str) -> T | None:
        try:
            return fn()
        except Exception as exc:  # noqa: BLE001
            logger.error("history_write_failed", operation=operation, error=str(exc))
            return None
