"""Core exception types for pijul-fetch."""
from typing import Optional, Sequence


class PijulFetchError(Exception):
    """Base exception for all pijul-fetch errors."""
    pass


class SchemeValidationError(PijulFetchError):
    """Raised when input attributes or URLs fail schema validation."""

    def __init__(self, message: str, attribute: Optional[str] = None):
        super().__init__(message)
        self.attribute = attribute


class UnsupportedInputError(PijulFetchError):
    """Raised when no registered scheme recognizes an input."""
    pass


class ExecError(PijulFetchError):
    """Raised when the pijul program exits with a non-zero status."""

    def __init__(
        self,
        program: str,
        args: Sequence[str],
        status: Optional[int],
        stderr: str = "",
    ):
        self.program = program
        self.args_list = list(args)
        self.status = status
        self.stderr = stderr
        if status is None:
            detail = "could not be started"
        else:
            detail = f"exited with status {status}"
        message = f"program '{program}' {detail}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


class ProbeError(PijulFetchError):
    """Raised when repository status cannot be read from a clone."""
    pass


class RevisionMismatchError(PijulFetchError):
    """Raised when a cloned repository does not match the requested pin."""

    field = "revision"

    def __init__(self, requested: str, actual: str):
        self.requested = requested
        self.actual = actual
        super().__init__(
            f"{self.field} mismatch: requested {requested}, got {actual}"
        )


class ChannelMismatchError(RevisionMismatchError):
    """Raised when the probed channel differs from the requested one."""

    field = "channel"


class StateMismatchError(RevisionMismatchError):
    """Raised when the probed state differs from the requested one."""

    field = "state"


class AttributeConflictError(PijulFetchError):
    """Raised when merging attributes that disagree on a key."""

    def __init__(self, key: str, existing, incoming):
        self.key = key
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"while merging attrs: value mismatch for {key} "
            f"({existing!r} != {incoming!r})"
        )


class NarHashMismatchError(PijulFetchError):
    """Raised when fetched content does not match the pinned narHash."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"NAR hash mismatch: expected {expected}, got {actual}")


class CacheError(PijulFetchError):
    """Raised when the fetch cache cannot be read or written."""
    pass


class StoreError(PijulFetchError):
    """Raised when content store operations fail."""
    pass
