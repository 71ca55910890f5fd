"""
POSIX PTY handle using ptyprocess.

ptyprocess handles fork+exec and PTY allocation. The master fd is switched
to non-blocking mode and watched with ``loop.add_reader``: each readable
event performs one ``os.read`` and hands the decoded text to the output
callbacks synchronously, so per-session ordering is exactly the child's
write order. The child is reaped off-loop once the master reports EOF.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import signal

import ptyprocess
import structlog

from agentmux.core.exceptions import WriteToDeadSessionError
from agentmux.os.tty.base import BaseTTY, PTYConfig

logger = structlog.get_logger()


class PosixTTY(BaseTTY):
    """PTY handle for macOS and Linux."""

    def __init__(self, config: PTYConfig, session_id: str = "") -> None:
        super().__init__(config, session_id)
        self._proc: ptyprocess.PtyProcess | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._fd = -1
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._eof = False
        self._reap_task: asyncio.Task[None] | None = None
        self._kill_timer: asyncio.TimerHandle | None = None

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        env = {**os.environ, **self.config.env}
        self._proc = ptyprocess.PtyProcess.spawn(
            self.config.command,
            dimensions=(self.config.rows, self.config.cols),
            env=env,
            cwd=self.config.cwd or None,
        )
        self._fd = self._proc.fd
        os.set_blocking(self._fd, False)
        self._loop.add_reader(self._fd, self._on_readable)

    def is_alive(self) -> bool:
        return self._proc is not None and not self._eof and not self._exited

    def pid(self) -> int:
        if self._proc is None:
            return -1
        return self._proc.pid

    # ------------------------------------------------------------------
    # Output path
    # ------------------------------------------------------------------

    def _on_readable(self) -> None:
        try:
            data = os.read(self._fd, self.config.read_chunk_bytes)
        except BlockingIOError:
            return
        except OSError:
            # Linux reports EIO on the master once the slave side is closed
            data = b""

        if not data:
            self._on_eof()
            return

        text = self._decoder.decode(data)
        if text:
            self._notify_output(text)

    def _on_eof(self) -> None:
        if self._eof:
            return
        self._eof = True
        assert self._loop is not None
        self._loop.remove_reader(self._fd)
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._notify_output(tail)
        self._reap_task = self._loop.create_task(self._reap(), name=f"reap_{self.session_id}")

    async def _reap(self) -> None:
        assert self._loop is not None
        code = await self._loop.run_in_executor(None, self._wait)
        if self._kill_timer is not None:
            self._kill_timer.cancel()
            self._kill_timer = None
        try:
            self._proc.fileobj.close()  # type: ignore[union-attr]
        except OSError:
            pass
        logger.debug("pty_exited", session_id=self.session_id, exit_code=code)
        self._notify_exit(code)

    def _wait(self) -> int | None:
        """Blocking waitpid — run in executor."""
        proc = self._proc
        if proc is None:
            return None
        try:
            proc.wait()
        except ptyprocess.PtyProcessError:
            return None
        if proc.signalstatus is not None:
            return 128 + proc.signalstatus
        return proc.exitstatus

    # ------------------------------------------------------------------
    # Input path
    # ------------------------------------------------------------------

    async def write(self, data: bytes) -> None:
        if not self.is_alive():
            raise WriteToDeadSessionError("process is not running", self.session_id)
        view = memoryview(data)
        while view:
            try:
                n = os.write(self._fd, view)
            except BlockingIOError:
                await asyncio.sleep(0.01)
                continue
            except OSError as exc:
                raise WriteToDeadSessionError(f"write failed: {exc}", self.session_id) from exc
            view = view[n:]

    def resize(self, cols: int, rows: int) -> None:
        self.config.cols = cols
        self.config.rows = rows
        if not self.is_alive():
            return
        try:
            self._proc.setwinsize(rows, cols)  # type: ignore[union-attr]
        except OSError:
            pass

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def kill(self) -> None:
        """Send SIGHUP, escalating to SIGKILL after the grace period."""
        if self._proc is None or self._exited:
            return
        self._signal(signal.SIGHUP)
        if self._loop is not None and self._kill_timer is None:
            self._kill_timer = self._loop.call_later(self.config.kill_grace_s, self._force_kill)

    def _force_kill(self) -> None:
        self._kill_timer = None
        if not self._exited:
            self._signal(signal.SIGKILL)

    def _signal(self, sig: int) -> None:
        try:
            os.kill(self._proc.pid, sig)  # type: ignore[union-attr]
        except OSError as exc:
            logger.debug("kill_failed", session_id=self.session_id, signal=sig, error=str(exc))
