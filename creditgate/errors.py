# creditgate/errors.py
from __future__ import annotations


class CreditError(Exception):
    """Base class for every accounting failure the core reports to callers."""

    code = "CREDIT_ERROR"
    http_status = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        body = {"ok": False, "error": self.code, "message": self.message}
        body.update(self.details)
        return body


# -------------------------
# Business failures (surfaced to end users)
# -------------------------
class InsufficientCredits(CreditError):
    code = "INSUFFICIENT_CREDITS"
    http_status = 402


class DailyCapExceeded(CreditError):
    code = "DAILY_CAP_EXCEEDED"
    http_status = 429


# -------------------------
# Caller errors
# -------------------------
class UnknownRequest(CreditError):
    code = "UNKNOWN_REQUEST"
    http_status = 404


class InvalidFinalizeStatus(CreditError):
    code = "INVALID_FINALIZE_STATUS"
    http_status = 409


class DuplicateRequest(CreditError):
    code = "DUPLICATE_REQUEST"
    http_status = 409


# -------------------------
# Input validation
# -------------------------
class InvalidAmount(CreditError):
    code = "INVALID_AMOUNT"


class InvalidAction(CreditError):
    code = "INVALID_ACTION"


class InvalidDisposition(CreditError):
    code = "INVALID_DISPOSITION"


class SelfReferral(CreditError):
    code = "SELF_REFERRAL"
