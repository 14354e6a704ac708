"""Error taxonomy for Comment Lens."""


class CommentLensError(Exception):
    """Base exception for all Comment Lens errors."""
    pass


class ValidationError(CommentLensError):
    """Raised when analysis prerequisites are not met."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class ExternalServiceError(CommentLensError):
    """Raised when a model call fails or returns unusable output."""
    pass


class QualityBelowThreshold(CommentLensError):
    """Raised when a generated summary fails the quality rubric."""

    def __init__(self, score: float, issues: list[str]):
        super().__init__(
            f"Summary quality {score:.2f} below threshold: {'; '.join(issues) or 'no issues'}"
        )
        self.score = score
        self.issues = issues


class NotFoundError(CommentLensError):
    """Raised for an unknown job, post or result id."""
    pass


class ConcurrencyLimitReached(CommentLensError):
    """Informational: no free slot, the job stays pending."""
    pass


class JobCancelled(CommentLensError):
    """Raised inside a pipeline whose job was cancelled while it ran."""
    pass
