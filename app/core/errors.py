# app/core/errors.py
from __future__ import annotations

from datetime import datetime


class TokenServiceError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class Forbidden(TokenServiceError):
    status_code = 403
    code = "forbidden"


class SubjectNotFound(TokenServiceError):
    status_code = 404
    code = "subject_not_found"


class TokenNotFound(TokenServiceError):
    status_code = 404
    code = "token_not_found"


class SubjectNotEligible(TokenServiceError):
    status_code = 409
    code = "subject_not_eligible"


class InvalidRequest(TokenServiceError):
    code = "invalid_request"


class TokenCollision(TokenServiceError):
    status_code = 500
    code = "token_collision"


class OutOfWindow(TokenServiceError):
    code = "out_of_window"

    def __init__(self, message: str, *, too_early: bool, available_at: datetime | None = None):
        super().__init__(message)
        self.too_early = too_early
        self.available_at = available_at

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["too_early"] = self.too_early
        out["available_at"] = self.available_at.isoformat() if self.available_at else None
        return out


class ActionError(Exception):
    """Fallo de negocio de un handler de acción; el token no se consume."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
