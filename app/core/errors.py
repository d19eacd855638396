"""
Checkmark error taxonomy.

Every rejection raised by the session and assignment flows is one of these,
so a caller (or a retrying webhook sender) can tell "try again later" from
"never try again" without parsing messages.

Response format:
{
    "error": "You already have a pending verification.",
    "code": "ALREADY_PENDING",
    "retryable": false
}

Usage:
    from app.core.errors import AlreadyUsed, checkmark_error_handler

    app.add_exception_handler(CheckmarkError, checkmark_error_handler)

    raise AlreadyUsed()
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

log = logging.getLogger(__name__)


class CheckmarkError(Exception):
    """Base error with a structured response."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error."
    retryable: bool = False

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }


# Client errors

class ValidationError(CheckmarkError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request."


class InvalidSessionId(ValidationError):
    code = "INVALID_SESSION_ID"
    message = "Invalid session ID."


class InvalidPayload(ValidationError):
    code = "INVALID_PAYLOAD"
    message = "Invalid body."


class PaymentRequired(ValidationError):
    status_code = 402
    code = "PAYMENT_REQUIRED"
    message = "Verification hasn't been paid for."


class ConflictError(CheckmarkError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflict."


class AlreadyUsed(ConflictError):
    code = "ALREADY_USED"
    message = "Verification already used."


class AlreadyPending(ConflictError):
    code = "ALREADY_PENDING"
    message = "You already have a pending verification."


class AlreadyCheckmarked(ConflictError):
    code = "ALREADY_CHECKMARKED"
    message = "You already have a checkmark."


class AlreadyAssigned(ConflictError):
    code = "ALREADY_ASSIGNED"
    message = "Checkmark already assigned for this identity."


class WalletAlreadyCheckmarked(ConflictError):
    code = "WALLET_ALREADY_CHECKMARKED"
    message = "Wallet already has a checkmark assigned."


class NotPending(ConflictError):
    code = "NOT_PENDING"
    message = "Verification is not pending."


class BannedError(CheckmarkError):
    status_code = 403
    code = "BANNED"
    message = "Checkmark banned for this identity."


class Banned(BannedError):
    pass


# Invariant breaches. These should page an operator.

class NotFoundError(CheckmarkError):
    status_code = 500
    code = "NOT_FOUND"
    message = "Not found."


class NoCurrentSession(NotFoundError):
    code = "NO_CURRENT_SESSION"
    message = "No current session found."


class NoWalletForSession(NotFoundError):
    code = "NO_WALLET_FOR_SESSION"
    message = "No wallet found for pending session."


class PendingSessionNotFound(NotFoundError):
    code = "PENDING_SESSION_NOT_FOUND"
    message = "No wallet address found for pending session."


# Upstream failures, safe to retry the whole request

class UpstreamError(CheckmarkError):
    status_code = 502
    code = "UPSTREAM_ERROR"
    message = "Upstream service failed."
    retryable = True


class ProviderUnavailable(UpstreamError):
    code = "PROVIDER_UNAVAILABLE"
    message = "Verification provider unavailable."


class UnexpectedState(UpstreamError):
    code = "UNEXPECTED_STATE"
    message = "Unexpected session status."


class LedgerError(UpstreamError):
    code = "LEDGER_ERROR"
    message = "Checkmark ledger request failed."


# Webhook outcomes where nothing was done

class NoActionTaken(CheckmarkError):
    code = "NO_ACTION"


class StillPending(NoActionTaken):
    status_code = 412
    code = "STILL_PENDING"
    message = "Session is still pending."
    retryable = True


class FailedNotDuplicate(NoActionTaken):
    status_code = 422
    code = "FAILED_NOT_DUPLICATE"
    message = "Session failed for non-duplicate reason."


class UnknownSession(NoActionTaken):
    status_code = 404
    code = "UNKNOWN_SESSION"
    message = "Session not found."


async def checkmark_error_handler(request: Request, exc: CheckmarkError) -> JSONResponse:
    """FastAPI exception handler for CheckmarkError."""
    if isinstance(exc, NotFoundError):
        log.error(
            "checkmark.invariant_breach code=%s path=%s: %s",
            exc.code, request.url.path, exc.message,
        )
    elif exc.status_code >= 500:
        log.error("checkmark.upstream code=%s path=%s: %s", exc.code, request.url.path, exc.message)
    else:
        log.warning("checkmark.rejected code=%s path=%s: %s", exc.code, request.url.path, exc.message)

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
