"""
GBP Post Worker Errors
======================
Centralized error handling for the publish pipeline.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Standardized error codes for logs and the failure response."""
    # Generic
    UNKNOWN = "UNKNOWN"
    INTERNAL = "INTERNAL"
    TIMEOUT = "TIMEOUT"

    # Trigger
    PRECONDITION_FAILED = "PRECONDITION_FAILED"

    # Auth
    CREDENTIAL_NOT_FOUND = "CREDENTIAL_NOT_FOUND"
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"

    # Posts
    POST_NOT_FOUND = "POST_NOT_FOUND"
    POST_INELIGIBLE = "POST_INELIGIBLE"
    INVALID_POST_PAYLOAD = "INVALID_POST_PAYLOAD"

    # Platform
    PUBLISH_API_ERROR = "PUBLISH_API_ERROR"

    # Storage
    PRESIGN_FAILED = "PRESIGN_FAILED"
    BLOB_CLEANUP_FAILED = "BLOB_CLEANUP_FAILED"
    BLOB_STORE_FAILED = "BLOB_STORE_FAILED"
    MEDIA_FETCH_FAILED = "MEDIA_FETCH_FAILED"

    # Database
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"
    DB_ERROR = "DB_ERROR"

    # Notification
    NOTIFICATION_SKIPPED = "NOTIFICATION_SKIPPED"

    # Network
    NETWORK_ERROR = "NETWORK_ERROR"


class StageError(Exception):
    """
    Error raised during stage processing.

    Attributes:
        code: Standardized error code
        message: Human-readable error message
        details: Optional additional context
        retryable: Advisory flag for the invoker; nothing retries internally
        stage: Which stage raised the error
    """

    code = ErrorCode.UNKNOWN
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[dict] = None,
        retryable: Optional[bool] = None,
        stage: str = "unknown"
    ):
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.message = message
        self.details = details or {}
        self.stage = stage
        super().__init__(f"[{self.code.value}] {message}")

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "error_code": self.code.value,
            "error_message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "stage": self.stage,
        }


class PreconditionFailed(StageError):
    code = ErrorCode.PRECONDITION_FAILED


class CredentialNotFound(StageError):
    code = ErrorCode.CREDENTIAL_NOT_FOUND


class TokenExchangeFailed(StageError):
    code = ErrorCode.TOKEN_EXCHANGE_FAILED
    retryable = True


class PostNotFound(StageError):
    code = ErrorCode.POST_NOT_FOUND


class InvalidPostPayload(StageError):
    code = ErrorCode.INVALID_POST_PAYLOAD


class PresignFailed(StageError):
    code = ErrorCode.PRESIGN_FAILED
    retryable = True


class PublishApiError(StageError):
    """
    The create call failed or returned a non-2xx status.

    Never retryable from our side: the platform does not deduplicate creates,
    so a blind retry can publish the same post twice.
    """

    code = ErrorCode.PUBLISH_API_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        upstream_message: Optional[str] = None,
        **kwargs
    ):
        self.status_code = status_code
        self.upstream_message = upstream_message
        details = kwargs.pop("details", None) or {}
        details.setdefault("status_code", status_code)
        details.setdefault("upstream_message", upstream_message)
        super().__init__(message, details=details, **kwargs)


class ReconciliationFailed(StageError):
    code = ErrorCode.RECONCILIATION_FAILED
    retryable = True


class BlobCleanupFailed(StageError):
    code = ErrorCode.BLOB_CLEANUP_FAILED
    retryable = True


class BlobStoreFailed(StageError):
    code = ErrorCode.BLOB_STORE_FAILED
    retryable = True


class MediaFetchFailed(StageError):
    code = ErrorCode.MEDIA_FETCH_FAILED
    retryable = True


class SkipStage(Exception):
    """
    Raised when the remaining work should be skipped (not an error).

    Examples:
    - Post already published / not in SCHEDULED state
    - No user to notify
    """

    def __init__(self, reason: str, stage: str = "unknown"):
        self.reason = reason
        self.stage = stage
        super().__init__(f"Stage skipped: {reason}")


class PostIneligible(SkipStage):
    """The post is not in SCHEDULED state; nothing to publish."""

    def __init__(self, post_id: str, state: Optional[str]):
        self.post_id = post_id
        self.state = state
        super().__init__(
            f"Post {post_id} is not eligible for publishing (state={state})",
            stage="validating",
        )


class NotificationSkipped(SkipStage):
    def __init__(self, reason: str):
        super().__init__(reason, stage="notify")


def error_from_exception(e: Exception, stage: str = "unknown") -> StageError:
    """Convert a generic exception to a StageError."""
    if isinstance(e, StageError):
        return e

    error_msg = str(e) or e.__class__.__name__

    if "timeout" in error_msg.lower() or "timed out" in error_msg.lower():
        return StageError(error_msg, code=ErrorCode.TIMEOUT, retryable=True, stage=stage)
    if "connection" in error_msg.lower() or "network" in error_msg.lower():
        return StageError(error_msg, code=ErrorCode.NETWORK_ERROR, retryable=True, stage=stage)

    return StageError(error_msg, code=ErrorCode.UNKNOWN, stage=stage)
