class RelayError(Exception):
    """Base class for every failure the relay reports to its callers."""


class ConfigError(RelayError):
    """Raised when the record store connection is not configured."""

    def __init__(self, missing: list[str] | None = None) -> None:
        self.missing = missing or []
        detail = f" (missing: {', '.join(self.missing)})" if self.missing else ""
        super().__init__(f"Record store is not configured{detail}.")


class UpstreamError(RelayError):
    """Raised when the record store or generation API returns a non-success response."""

    def __init__(self, status_code: int, raw_message: str, *, source: str = "upstream") -> None:
        super().__init__(f"{source} error {status_code}: {raw_message}")
        self.status_code = status_code
        self.raw_message = raw_message
        self.source = source


class AuthError(UpstreamError):
    """Raised when the record store refuses to issue an access token."""

    def __init__(self, status_code: int, raw_message: str) -> None:
        super().__init__(status_code, raw_message, source="auth")


class GenerationRejectedError(UpstreamError):
    """Raised when the generation API answers every request shape with an HTTP error."""

    def __init__(self, status_code: int, raw_message: str) -> None:
        super().__init__(status_code, raw_message, source="generation")


class TaskNotFoundError(RelayError):
    """Raised when a task identifier does not exist in the record store."""
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id '{task_id}' was not found.")
        self.task_id = task_id


class TaskValidationError(RelayError):
    """Raised when a task cannot be generated because its input is unusable."""

    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(f"Task '{task_id}' is invalid: {reason}")
        self.task_id = task_id
        self.reason = reason


class GenerationError(RelayError):
    """Raised when the generation API fails to produce a result."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExtractionError(GenerationError):
    """Raised when no result URL could be recovered from a finished response."""

    def __init__(self, tail: str) -> None:
        super().__init__(f"No result URL found in generation response. Tail: {tail}")
        self.tail = tail


class BusyError(RelayError):
    """Raised when a generation run is requested while another one is in flight."""

    def __init__(self, requested: str, holder: str | None) -> None:
        super().__init__(f"Cannot start '{requested}': '{holder}' is still running.")
        self.requested = requested
        self.holder = holder
