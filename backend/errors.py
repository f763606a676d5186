from __future__ import annotations
from typing import Any, Optional


class AppError(Exception):
    # Base class for failures that map to a structured HTTP error.
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        err = {"message": self.message}
        if self.details is not None:
            err["details"] = self.details
        return {"error": err}


class NotFound(AppError):
    # Missing questionnaire, question or link.
    status_code = 404


class Conflict(AppError):
    # Mutating a COMPLETED questionnaire, or a double submit.
    status_code = 409


class ValidationError(AppError):
    # Bad input, malformed file-url list, unanswered required questions.
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class InternalError(AppError):
    # Storage or database failure.
    status_code = 500
