"""
Abstract PTY handle interface.

A handle owns one child process attached to a pseudo-terminal. It exposes
``write`` / ``resize`` / ``kill`` and two observer lists:

  output callbacks   called with each decoded output chunk (str), in the
                     order the child produced it, synchronously on the loop
  exit callbacks     called once with the child's exit code (None if unknown)

Concrete implementations:
  PosixTTY — ptyprocess + loop.add_reader (macOS, Linux)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from agentmux.core.constants import DEFAULT_COLS, DEFAULT_ROWS, KILL_GRACE_S, READ_CHUNK_BYTES

OutputCallback = Callable[[str], None]
ExitCallback = Callable[[int | None], None]


@dataclass
class PTYConfig:
    """Configuration for a PTY handle."""

    command: list[str]  # argv to exec
    env: dict[str, str] = field(default_factory=dict)
    cwd: str = ""
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS
    read_chunk_bytes: int = READ_CHUNK_BYTES
    kill_grace_s: float = KILL_GRACE_S  # SIGHUP → SIGKILL escalation


class BaseTTY(ABC):
    """
    Abstract PTY handle.

    Subclasses wrap a concrete PTY implementation and deliver output and
    exit notifications through the registered callbacks.
    """

    def __init__(self, config: PTYConfig, session_id: str = "") -> None:
        self.config = config
        self.session_id = session_id
        self._output_callbacks: list[OutputCallback] = []
        self._exit_callbacks: list[ExitCallback] = []
        self._exit_code: int | None = None
        self._exited = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    async def start(self) -> None:
        """Spawn the child process and begin delivering output."""

    @abstractmethod
    def kill(self) -> None:
        """Terminate the child. Safe to call on an already-dead process."""

    @abstractmethod
    def is_alive(self) -> bool:
        """Return True if the child process is still running."""

    @abstractmethod
    def pid(self) -> int:
        """Return the PID of the child process, or -1 before start."""

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def exited(self) -> bool:
        return self._exited

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write *data* to the child's stdin.

        Raises WriteToDeadSessionError if the child is no longer running.
        """

    @abstractmethod
    def resize(self, cols: int, rows: int) -> None:
        """Set the terminal window size."""

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def register_output_callback(self, cb: OutputCallback) -> None:
        """Register a callback to be called with each output chunk."""
        self._output_callbacks.append(cb)

    def register_exit_callback(self, cb: ExitCallback) -> None:
        """Register a callback to be called once when the child exits."""
        self._exit_callbacks.append(cb)

    def detach_callbacks(self) -> None:
        """Drop every registered callback; later output and exit are discarded."""
        self._output_callbacks.clear()
        self._exit_callbacks.clear()

    def _notify_output(self, chunk: str) -> None:
        for cb in list(self._output_callbacks):
            cb(chunk)

    def _notify_exit(self, code: int | None) -> None:
        if self._exited:
            return
        self._exited = True
        self._exit_code = code
        for cb in list(self._exit_callbacks):
            cb(code)
