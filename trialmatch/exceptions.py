"""
Typed workflow errors

Every error the engine raises on bad input or an illegal operation is one of
these, so routers can render a specific message instead of a generic 500.
"""

from typing import Optional


class TrialEngineError(Exception):
    """Base class for recoverable engine errors"""

    code = "TrialEngineError"
    status_code = 400

    def __init__(self, detail: str, *, context: Optional[dict] = None):
        super().__init__(detail)
        self.detail = detail
        self.context = context or {}

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.detail}
        if self.context:
            body["context"] = self.context
        return body


class NotFound(TrialEngineError):
    code = "NotFound"
    status_code = 404


class InvalidTransition(TrialEngineError):
    """Operation is not legal in the record's current status"""

    code = "InvalidTransition"
    status_code = 409


class AlreadyAssigned(TrialEngineError):
    """Another tutor already won the session"""

    code = "AlreadyAssigned"
    status_code = 409


class ValidationError(TrialEngineError):
    code = "ValidationError"
    status_code = 422


class ExternalServiceFailure(TrialEngineError):
    """An external provider (sentiment scorer, travel time) could not be reached"""

    code = "ExternalServiceFailure"
    status_code = 502
