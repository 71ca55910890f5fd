"""agentmux exception hierarchy.

Every session-level failure has its own class and a stable ``code`` so that
calling layers (transport, CLI) can render distinct messages without
matching on message text.
"""

from __future__ import annotations

from collections.abc import Sequence


class AgentMuxError(Exception):
    """Base exception for all agentmux errors."""


class ConfigError(AgentMuxError):
    """Raised when the configuration is invalid or cannot be read."""


class ConfigNotFoundError(ConfigError):
    """Raised when an explicitly named configuration file does not exist."""


class MultiplexerCommandError(AgentMuxError):
    """A tmux invocation exited non-zero or could not be started."""

    def __init__(self, argv: Sequence[str], returncode: int | None, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr or f"exit code {returncode}"
        super().__init__(f"{' '.join(self.argv[:2])} failed: {detail}")


# ---------------------------------------------------------------------------
# Session taxonomy
# ---------------------------------------------------------------------------


class SessionError(AgentMuxError):
    """Base for session engine errors."""

    code = "session_error"

    def __init__(self, message: str, session_id: str = "") -> None:
        super().__init__(message)
        self.session_id = session_id


class WorkingDirectoryInvalidError(SessionError):
    """The working directory is missing or not readable/executable."""

    code = "working_directory_invalid"


class ExecutableNotFoundError(SessionError):
    """The command's executable could not be resolved on the search path."""

    code = "executable_not_found"


class SessionQuotaExceededError(SessionError):
    """The owner already holds the maximum number of sessions."""

    code = "session_quota_exceeded"


class SessionNotFoundError(SessionError):
    """Raised when a session_id is not in the registry."""

    code = "session_not_found"


class SpawnFailedError(SessionError):
    """The process (or multiplexer session) could not be started."""

    code = "spawn_failed"


class MultiplexerUnavailableError(SessionError):
    """tmux is not installed or not usable. A capability downgrade, not fatal."""

    code = "multiplexer_unavailable"


class ReattachFailedError(SessionError):
    """A persisted multiplexer session could not be attached."""

    code = "reattach_failed"


class WriteToDeadSessionError(SessionError):
    """Input was sent to a session whose process is no longer running."""

    code = "write_to_dead_session"
