"""
Tagged error kinds raised by the pipeline and it defines:
- A stable machine code per failure (``code``)
- The HTTP status the API layer maps it to (``status_code``)
- A user-safe message (never prompts, keys or tracebacks)

Main purpose:
Let callers tell failures apart without string matching.
"""

import re

_CREDENTIAL_RE = re.compile(r"[A-Za-z0-9+/=_-]{20,}")
EXCERPT_LIMIT = 200


def redact_excerpt(text: str, limit: int | None = EXCERPT_LIMIT) -> str:
    """Mask credential-looking runs, then cut to ``limit`` characters (``None`` keeps it all)."""
    redacted = _CREDENTIAL_RE.sub("[REDACTED]", text or "")
    return redacted if limit is None else redacted[:limit]


class StudyPlanError(RuntimeError):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class PlanValidationError(StudyPlanError):
    code = "validation_error"
    status_code = 400


class NotFound(StudyPlanError):
    code = "not_found"
    status_code = 404


class UnknownSubject(StudyPlanError):
    code = "unknown_subject"
    status_code = 400


class OwnershipViolation(StudyPlanError):
    code = "ownership_violation"
    status_code = 403


class LLMError(StudyPlanError):
    code = "upstream_error"
    status_code = 502


class UpstreamUnavailable(LLMError):
    code = "upstream_unavailable"
    status_code = 502


class UpstreamRejected(UpstreamUnavailable):
    """Permanent provider failure (4xx other than 429, malformed envelope)."""

    code = "upstream_rejected"


class UpstreamTimeout(LLMError):
    code = "upstream_timeout"
    status_code = 504


class ParseError(LLMError):
    code = "parse_error"
    status_code = 422

    def __init__(self, reason: str, text: str = ""):
        # reasons quote LLM output, so they get the same masking as the excerpt
        reason = redact_excerpt(reason, limit=None)
        super().__init__(reason)
        self.reason = reason
        self.excerpt = redact_excerpt(text)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "excerpt": self.excerpt}


class Truncated(LLMError):
    code = "truncated"
    status_code = 422

    def __init__(self, finish_reason: str | None):
        super().__init__(f"LLM stopped before finishing (finish_reason={finish_reason})")
        self.finish_reason = finish_reason


class StorageError(StudyPlanError):
    code = "storage_error"
    status_code = 503


class Cancelled(StudyPlanError):
    code = "cancelled"
    status_code = 499
