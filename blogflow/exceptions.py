"""
Custom exception classes for the blogflow content workflow.

Every workflow error carries a stable ``code`` string.  The HTTP layer
puts the code in the response envelope and maps it to a status code, so
callers can branch on ``code`` without parsing messages.

Validation errors are returned to the caller and never retried.  Only
``StorageUnavailableError`` is treated as transient by the publishing
sweep.

Hierarchy:
    Exception
    +-- BlogflowError (base for all workflow errors, has ``code``)
    |   +-- NoChangeError
    |   +-- VersionNotFoundError
    |   +-- NoCommonAncestorError
    |   +-- ManualResolutionRequiredError
    |   +-- EditConflictError
    |   +-- InvalidScheduleError
    |   +-- IncompletePostError
    |   +-- AlreadyProcessedError
    |   +-- QueueItemNotFoundError
    |   +-- PostNotFoundError
    |   +-- SessionNotFoundError
    |   +-- EditLockedError
    |   +-- UnauthorizedError
    |   +-- PermissionDeniedError
    +-- ValidationError (ValueError, BlogflowError)
    +-- DatabaseError
    |   +-- StorageUnavailableError (BlogflowError)
    |   +-- VersionNumberTakenError
    +-- ConfigurationError
    +-- NotificationError
    +-- RetryExhaustedError
"""

from typing import Any, Dict, List, Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class BlogflowError(Exception):
    """Base exception for all content workflow errors.

    Attributes:
        code: Stable machine-readable error code used in API responses.
    """

    code: str = "Error"


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(BlogflowError, ValueError):
    """Raised when input validation fails."""

    code = "ValidationError"


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class StorageUnavailableError(DatabaseError, BlogflowError):
    """Raised on transient network or database failures.

    The publishing sweep re-queues items that fail with this error until
    their ``max_attempts`` is exhausted.
    """

    code = "StorageUnavailable"


class VersionNumberTakenError(DatabaseError):
    """Raised when another writer already inserted the same version number.

    Attributes:
        post_id: Post whose version sequence was contended.
        version_number: The number that was already taken.
    """

    def __init__(self, post_id: str, version_number: int):
        self.post_id = post_id
        self.version_number = version_number
        super().__init__(
            f"Version {version_number} of post {post_id} already exists"
        )


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class NotificationError(Exception):
    """Raised when the subscriber notification service rejects a request."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# VERSIONING EXCEPTIONS
# =============================================================================


class NoChangeError(BlogflowError):
    """Raised when a new version would not differ from the latest one."""

    code = "NoChange"


class VersionNotFoundError(BlogflowError):
    """Raised when a version does not exist or belongs to another post."""

    code = "VersionNotFound"


class NoCommonAncestorError(BlogflowError):
    """Raised when two versions share no ancestor via ``parent_version_id``.

    An automatic merge is impossible; the editor must merge the full
    content manually.
    """

    code = "NoCommonAncestor"


class ManualResolutionRequiredError(BlogflowError):
    """Raised when a manual merge is committed without a choice per conflict.

    Attributes:
        choices: ``{field: {"local": ..., "remote": ...}}`` for the
            editor UI to present.
    """

    code = "ManualResolutionRequired"

    def __init__(self, message: str, choices: Dict[str, Dict[str, Any]]):
        self.choices = choices
        super().__init__(message)


class EditConflictError(BlogflowError):
    """Raised when a concurrent edit overlaps another editor's changes.

    Attributes:
        conflicts: Serialized conflicts (``Conflict.to_dict()``).
        remote_version_id: The latest persisted version the edit
            diverged from.
    """

    code = "EditConflict"

    def __init__(
        self,
        message: str,
        conflicts: List[Dict[str, Any]],
        remote_version_id: Optional[str] = None,
    ):
        self.conflicts = conflicts
        self.remote_version_id = remote_version_id
        super().__init__(message)


# =============================================================================
# PUBLISHING EXCEPTIONS
# =============================================================================


class InvalidScheduleError(BlogflowError):
    """Raised when a post is scheduled for a time that is not in the future."""

    code = "InvalidSchedule"


class IncompletePostError(BlogflowError):
    """Raised when a post lacks a title or content at publish time."""

    code = "IncompletePost"


class AlreadyProcessedError(BlogflowError):
    """Raised when cancelling a queue item that is no longer pending."""

    code = "AlreadyProcessed"


class QueueItemNotFoundError(BlogflowError):
    """Raised when a publishing queue item does not exist."""

    code = "QueueItemNotFound"


class PostNotFoundError(BlogflowError):
    """Raised when a post does not exist."""

    code = "PostNotFound"


# =============================================================================
# COLLABORATION EXCEPTIONS
# =============================================================================


class SessionNotFoundError(BlogflowError):
    """Raised when a session does not exist or has expired."""

    code = "SessionNotFound"


class EditLockedError(BlogflowError):
    """Raised when another editor holds the post's edit lock.

    Attributes:
        session_id: The active session the caller may join instead.
    """

    code = "EditLocked"

    def __init__(self, message: str, session_id: str):
        self.session_id = session_id
        super().__init__(message)


# =============================================================================
# ACCESS EXCEPTIONS
# =============================================================================


class UnauthorizedError(BlogflowError):
    """Raised when a request carries no valid identity."""

    code = "Unauthorized"


class PermissionDeniedError(BlogflowError):
    """Raised when the caller's role is below the required role."""

    code = "PermissionDenied"


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "BlogflowError",
    # Core
    "ValidationError",
    "DatabaseError",
    "StorageUnavailableError",
    "VersionNumberTakenError",
    "ConfigurationError",
    "NotificationError",
    "RetryExhaustedError",
    # Versioning
    "NoChangeError",
    "VersionNotFoundError",
    "NoCommonAncestorError",
    "ManualResolutionRequiredError",
    "EditConflictError",
    # Publishing
    "InvalidScheduleError",
    "IncompletePostError",
    "AlreadyProcessedError",
    "QueueItemNotFoundError",
    "PostNotFoundError",
    # Collaboration
    "SessionNotFoundError",
    "EditLockedError",
    # Access
    "UnauthorizedError",
    "PermissionDeniedError",
]
