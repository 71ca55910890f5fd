"""
SessionBackend — how a session's process is started, found and stopped.

Two implementations, chosen once at startup by ``select_backend()``:

  plain  direct PTY child; dies with the engine
  tmux   detached tmux session with a PTY attachment; survives engine
         restarts and client disconnects

The registry is agnostic to which one is active: it only ever holds the
BaseTTY handle a backend returns.

Backend registry:
  Use @BackendRegistry.register("name") to register a backend class.
  Retrieve with: BackendRegistry.get("name")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from agentmux.core.exceptions import ReattachFailedError
from agentmux.os.tty.base import BaseTTY


class SessionBackend(ABC):
    """Abstract session process backend."""

    #: Short identifier used in config, logs and history records
    name: str = ""

    #: True if sessions outlive the engine process
    persistent: bool = False

    @abstractmethod
    async def launch(
        self,
        session_id: str,
        command: str,
        args: Sequence[str],
        working_directory: str,
        cols: int,
        rows: int,
        env: Mapping[str, str],
    ) -> BaseTTY:
        """
        Start the session's process and return a started handle.

        Raises WorkingDirectoryInvalidError, ExecutableNotFoundError or
        SpawnFailedError, leaving nothing running.
        """

    async def reattach(self, session_id: str, cols: int, rows: int) -> BaseTTY:
        """Return a new handle for a session that has none."""
        raise ReattachFailedError(f"{self.name} sessions cannot be reattached", session_id)

    @abstractmethod
    async def terminate(self, session_id: str, handle: BaseTTY | None) -> None:
        """Stop the session for good. Must not raise if it is already gone."""

    async def detach(self, session_id: str, handle: BaseTTY | None) -> None:
        """Release the local handle at engine shutdown."""
        await self.terminate(session_id, handle)

    async def resize(self, session_id: str, handle: BaseTTY | None, cols: int, rows: int) -> None:
        if handle is not None:
            handle.resize(cols, rows)

    async def capture(self, session_id: str, max_lines: int) -> str:
        """Screen history kept outside the engine, or "" if there is none."""
        return ""

    async def is_alive(self, session_id: str) -> bool:
        """True if the session still runs outside any local handle."""
        return False

    async def list_sessions(self) -> list[str]:
        """Session ids of every session this backend can still find."""
        return []

    def healthcheck(self) -> dict[str, Any]:
        return {"status": "ok", "backend": self.name, "persistent": self.persistent}


class _BackendRegistryMeta(type):
    """Metaclass that maintains the backend registry."""

    _registry: dict[str, type[SessionBackend]] = {}


class BackendRegistry(metaclass=_BackendRegistryMeta):
    """Global registry of available session backends."""

    @classmethod
    def register(cls, name: str) -> Any:
        """Decorator: @BackendRegistry.register("tmux")"""

        def decorator(backend_cls: type[SessionBackend]) -> type[SessionBackend]:
            backend_cls.name = name
            cls._registry[name] = backend_cls
            return backend_cls

        return decorator

    @classmethod
    def get(cls, name: str) -> type[SessionBackend]:
        if name not in cls._registry:
            available = ", ".join(sorted(cls._registry.keys())) or "(none)"
            raise KeyError(f"Unknown backend: {name!r}. Available: {available}")
        return cls._registry[name]

    @classmethod
    def list_all(cls) -> dict[str, type[SessionBackend]]:
        return dict(cls._registry)
