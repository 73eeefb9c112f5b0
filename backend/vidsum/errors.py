"""
Error taxonomy for the summarization pipeline.

``PipelineError`` subclasses are the stable outcome codes a job can end
with. ``GenerationError`` subclasses are what generation backends raise;
adapters translate vendor errors into them once so callers can branch on
type alone.
"""

from typing import Optional


class PipelineError(Exception):
    """A job ended in a known failure state."""

    code = "internal-error"
    http_status = 500
    retryable = False
    default_message = "Something went wrong. Please try again!"

    def __init__(
        self,
        message: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        self.message = message or self.default_message
        if retryable is not None:
            self.retryable = retryable
        super().__init__(f"[{self.code}] {self.message}")

    def as_dict(self) -> dict:
        return {
            "detail": self.code.upper().replace("-", "_"),
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
        }


class Unauthorized(PipelineError):
    code = "unauthorized"
    http_status = 401
    default_message = "Unauthorized"


class InsufficientFunds(PipelineError):
    code = "insufficient-funds"
    http_status = 400
    default_message = (
        "You don't have sufficient coins for summary. "
        "Please add your coins."
    )


class InvalidUrl(PipelineError):
    code = "invalid-url"
    http_status = 422
    default_message = "Please provide a valid YouTube video URL."


class NoTranscript(PipelineError):
    code = "no-transcript"
    http_status = 404
    default_message = (
        "No Transcript available for this video. Please try another video"
    )


class JobConflict(PipelineError):
    """The job id is already taken by another requester or another URL."""

    code = "job-conflict"
    http_status = 409
    default_message = (
        "This summary id belongs to a different video or account."
    )


class InvalidInput(PipelineError):
    """Chunking was asked to do something degenerate; a configuration bug."""

    code = "invalid-input"
    http_status = 500


class CommitError(PipelineError):
    code = "commit-error"
    http_status = 503
    retryable = True
    default_message = "Could not save the summary. Please try again."


class JobCancelled(PipelineError):
    code = "cancelled"
    http_status = 499
    retryable = True
    default_message = "The summary job was cancelled."


class GenerationFailed(PipelineError):
    """Summary generation failed after whatever fallback applied."""

    REASON_CONTENT_POLICY = "content-policy"
    REASON_BACKEND_ERROR = "backend-error"
    REASON_TIMEOUT = "timeout"

    _by_reason = {
        REASON_CONTENT_POLICY: (
            "content-policy",
            422,
            False,
            "Unable to process content due to content restrictions. "
            "Retrying this video will not help.",
        ),
        REASON_BACKEND_ERROR: (
            "generation-error",
            502,
            True,
            "The summary service failed. Please try again!",
        ),
        REASON_TIMEOUT: (
            "timeout",
            504,
            True,
            "The summary took too long to generate. Please try again!",
        ),
    }

    def __init__(self, reason: str, message: Optional[str] = None):
        if reason not in self._by_reason:
            reason = self.REASON_BACKEND_ERROR
        code, status, retryable, default = self._by_reason[reason]
        self.reason = reason
        self.code = code
        self.http_status = status
        self.default_message = default
        super().__init__(message, retryable=retryable)


class GenerationError(Exception):
    """Base for classified generation backend failures."""


class ContentSafetyRejected(GenerationError):
    pass


class GenerationTimeout(GenerationError):
    pass


class BackendError(GenerationError):
    pass


class LedgerError(Exception):
    """A persistence collaborator could not complete a write or read."""
