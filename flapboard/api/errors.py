from __future__ import annotations

from typing import Any

from flapboard.services.errors import InvalidRun, RateLimited, RunPipelineError


class APIError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


PIPELINE_STATUS_CODES: dict[str, int] = {
    "RATE_LIMITED": 429,
    "INVALID_TOKEN": 400,
    "FORBIDDEN": 403,
    "TOKEN_USED": 400,
    "TOKEN_EXPIRED": 400,
    "INVALID_RUN": 400,
}


def unauthorized() -> APIError:
    return APIError(code="UNAUTHORIZED", message="Not authenticated", status_code=401)


def from_pipeline_error(exc: RunPipelineError) -> APIError:
    details: dict[str, Any] | None = None
    if isinstance(exc, RateLimited):
        details = {"retryable": True}
    elif isinstance(exc, InvalidRun):
        # The token is already spent; the client must start a new run.
        details = {"reason": exc.reason, "resubmittable": False}
    return APIError(
        code=exc.code,
        message=exc.message,
        status_code=PIPELINE_STATUS_CODES.get(exc.code, 400),
        details=details,
    )
