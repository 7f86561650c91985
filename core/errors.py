"""
ClipCraft — Error Taxonomy
Every failure the edit/export pipeline can surface, classified so the
orchestrator knows what to retry and the UI knows what to show.
"""


class ClipCraftError(Exception):
    """Base class for all pipeline errors."""

    kind = "error"
    retryable = False


class InitializationFailedError(ClipCraftError):
    """Raised when the render engine could not start (missing binary, asset fetch failure)."""

    kind = "initialization_failed"
    retryable = True


class InvalidInputError(ClipCraftError, ValueError):
    """Raised when an edit or export request is malformed. Never retried."""

    kind = "invalid_input"


class EngineExecutionFailedError(ClipCraftError):
    """Raised when the engine ran the command but reported an internal error."""

    kind = "engine_execution_failed"
    retryable = True

    def __init__(self, message: str, stderr: str = "", returncode: int | None = None):
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class RenderTimeoutError(ClipCraftError):
    """Raised when a render exceeds its wall-clock deadline."""

    kind = "timed_out"
    retryable = True

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout


class EmptyOutputError(ClipCraftError):
    """Raised when the engine completed but produced a zero-byte result."""

    kind = "empty_output"


class RenderCancelledError(ClipCraftError):
    """Raised when the caller cancels an in-flight export."""

    kind = "cancelled"


class EngineBusyError(ClipCraftError):
    """Raised when a job arrives while another holds the engine and the policy is 'reject'."""

    kind = "engine_busy"


class RenderFailedError(ClipCraftError):
    """Terminal, user-visible failure after retries were exhausted."""

    kind = "render_failed"

    def __init__(self, message: str, cause: BaseException | None = None, attempts: int = 0):
        super().__init__(message)
        self.cause = cause
        self.attempts = attempts

    @property
    def cause_kind(self) -> str:
        return getattr(self.cause, "kind", "error")


class ResourceCleanupWarning(UserWarning):
    """Non-fatal: a staged or intermediate file could not be removed."""

    kind = "resource_cleanup"

    def __init__(self, name: str, reason: str = ""):
        super().__init__(f"Could not remove '{name}': {reason}" if reason else f"Could not remove '{name}'")
        self.name = name
        self.reason = reason
