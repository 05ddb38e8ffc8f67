"""Domain errors raised by the run pipeline and mapped to HTTP codes by the API."""

from __future__ import annotations


class RunPipelineError(Exception):
    code = "RUN_PIPELINE_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RateLimited(RunPipelineError):
    code = "RATE_LIMITED"


class InvalidToken(RunPipelineError):
    code = "INVALID_TOKEN"


class TokenForbidden(RunPipelineError):
    code = "FORBIDDEN"


class TokenUsed(RunPipelineError):
    code = "TOKEN_USED"


class TokenExpired(RunPipelineError):
    code = "TOKEN_EXPIRED"


class InvalidRun(RunPipelineError):
    code = "INVALID_RUN"

    def __init__(self, message: str, reason: str | None):
        self.reason = reason
        super().__init__(message)


class UserNotFoundError(Exception):
    """Raised when the authenticated identity has no user row."""


class DisplayNameTaken(Exception):
    """Raised when another user already holds a display name (case-insensitive)."""
