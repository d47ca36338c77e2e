"""
Exception hierarchy for Dojo.
"""


class DojoError(Exception):
    """Base exception for all Dojo errors."""
    code = "error"
    retryable = False


class NotFoundError(DojoError):
    """Raised when an enrollment or session does not exist or is not the caller's."""
    code = "not_found"


class ConflictError(DojoError):
    """Raised when a version-conditioned write loses a race."""
    code = "conflict"
    retryable = True


class ConcurrentModificationError(ConflictError):
    """Raised when a promotion's belt update loses a race and was rolled back."""
    code = "concurrent_modification"


class MaxBeltReachedError(DojoError):
    """Raised when promoting an enrollment that already holds the terminal belt."""
    code = "max_belt_reached"


class SessionBusyError(DojoError):
    """Raised when a session already has a turn in flight."""
    code = "session_busy"
    retryable = True


class InvalidStateError(DojoError):
    """Raised when an operation is not allowed in the current state."""
    code = "invalid_state"


class StoreError(DojoError):
    """Raised when the persistence layer fails."""
    code = "store_error"
