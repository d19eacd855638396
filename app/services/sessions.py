"""
Verification session flows: creation, status projection and provider
updates (webhook deliveries).
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from app.core.errors import (
    AlreadyAssigned,
    AlreadyCheckmarked,
    AlreadyPending,
    AlreadyUsed,
    FailedNotDuplicate,
    InvalidSessionId,
    NotPending,
    PaymentRequired,
    StillPending,
    UnknownSession,
    WalletAlreadyCheckmarked,
)
from app.providers.base import SessionState, SessionStatus, VerificationProvider
from app.services.checkmark import CheckmarkLedger, attempt_to_assign_checkmark, reconcile_assignment
from app.services.payment import PaymentGate
from app.services.session_keys import SessionKeySpace, redact

log = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error."


class Status(str, Enum):
    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    CHECKMARKED = "checkmarked"
    FAILED = "failed"


@dataclass
class StatusResult:
    status: Status
    errors: List[str] = field(default_factory=list)


async def create_session(
    keys: SessionKeySpace,
    ledger: CheckmarkLedger,
    payment: PaymentGate,
    provider: VerificationProvider,
    wallet_address: str,
    session_id: str,
) -> None:
    """
    Record a new pending verification for a wallet.

    Gates run in order and the first failure aborts. The session ID is burned
    before anything after the payment check, so no later failure can make it
    reusable.
    """
    if not isinstance(session_id, str) or not session_id.strip():
        raise InvalidSessionId()

    if await keys.session_seen(session_id):
        raise AlreadyUsed()

    if not await payment.is_paid(session_id):
        raise PaymentRequired()

    # A concurrent request for the same session may have passed the check
    # above; only one of them gets to burn it.
    if not await keys.mark_session_seen(session_id):
        raise AlreadyUsed()

    # A failed attempt does not block a retry with a new session.
    stale_session_id = await keys.get_pending_session_for_wallet(wallet_address)
    if stale_session_id:
        stale_state = await provider.get_session_state(stale_session_id)
        if not stale_state.is_failed:
            raise AlreadyPending("You are already waiting for verification.")

    if await ledger.wallet_has_checkmark(wallet_address):
        raise AlreadyCheckmarked()

    if await ledger.session_has_checkmark(session_id):
        raise AlreadyAssigned("This verification is already assigned to a checkmark.")

    state = await provider.get_session_state(session_id)
    if not state.is_pending:
        raise NotPending()

    if stale_session_id:
        await keys.retire_stale_pending_session(wallet_address, stale_session_id)

    await keys.store_pending_session(wallet_address, session_id)
    log.info("session.created session=%s wallet=%s", redact(session_id), wallet_address)


async def get_status(
    keys: SessionKeySpace,
    ledger: CheckmarkLedger,
    provider: VerificationProvider,
    wallet_address: str,
) -> StatusResult:
    """
    Where a wallet stands. Reads only.

    A duplicate-only failure costs a few more reads to tell whether the
    webhook can still re-assign the identity's checkmark.
    """
    if await ledger.wallet_has_checkmark(wallet_address):
        return StatusResult(Status.CHECKMARKED)

    pending_session_id = await keys.get_pending_session_for_wallet(wallet_address)
    if not pending_session_id:
        return StatusResult(Status.NONE)

    state = await provider.get_session_state(pending_session_id)
    if state.status is SessionStatus.PENDING:
        return StatusResult(Status.PENDING)

    if state.status is SessionStatus.FAILED:
        # A duplicate-only failure is waiting on the webhook to re-assign,
        # unless re-assignment can no longer happen.
        if not state.failed_only_due_to_duplicate or not await _can_reassign(keys, ledger, state):
            return StatusResult(Status.FAILED, errors=state.reasons or [UNKNOWN_ERROR])

    # Succeeded (or re-assignable), but the webhook has not assigned the
    # checkmark and cleared the pending session yet.
    return StatusResult(Status.PROCESSING)


async def _can_reassign(keys: SessionKeySpace, ledger: CheckmarkLedger, state: SessionState) -> bool:
    """Whether the identity's checkmark is free to move to a new wallet."""
    initial_session_id = state.initially_successful_session_id
    if not initial_session_id:
        return False

    current_session_id = await keys.get_current_session(initial_session_id)
    if not current_session_id:
        return False

    if await ledger.session_is_banned(initial_session_id):
        return False

    return not await ledger.session_has_checkmark(current_session_id)


async def _assign(
    keys: SessionKeySpace,
    ledger: CheckmarkLedger,
    initial_session_id: str,
    pending_session_id: str,
) -> str:
    try:
        return await attempt_to_assign_checkmark(keys, ledger, initial_session_id, pending_session_id)
    except AlreadyAssigned:
        await reconcile_assignment(keys, ledger, initial_session_id, pending_session_id)
        raise
    except WalletAlreadyCheckmarked as e:
        # The ledger may hold this very assignment from a delivery that died
        # before its bookkeeping.
        if await reconcile_assignment(keys, ledger, initial_session_id, pending_session_id):
            raise AlreadyAssigned() from e
        raise


async def handle_session_update(
    keys: SessionKeySpace,
    ledger: CheckmarkLedger,
    provider: VerificationProvider,
    pending_session_id: str,
) -> str:
    """
    React to a provider notification for a pending session.

    Assigns a checkmark on success, or on a failure caused only by the
    identity matching an earlier verified session (a wallet change). Returns
    the wallet that received the checkmark; every no-op raises.
    """
    if not await keys.get_wallet_for_pending_session(pending_session_id):
        # Redelivery after a completed assignment.
        if await ledger.session_has_checkmark(pending_session_id):
            raise AlreadyAssigned()
        raise UnknownSession(f"Session {redact(pending_session_id)} not found.")

    state: SessionState = await provider.get_session_state(pending_session_id)

    if state.status is SessionStatus.PENDING:
        raise StillPending()

    if state.status is SessionStatus.FAILED:
        # Any other failure stays pending so the wallet can see why.
        if not state.failed_only_due_to_duplicate:
            raise FailedNotDuplicate()
        if not state.initially_successful_session_id:
            raise FailedNotDuplicate("No initially verified session ID found.")

        return await _assign(keys, ledger, state.initially_successful_session_id, pending_session_id)

    # Succeeded: first verification of this identity. A current session for
    # it means this notification was already handled.
    if await keys.get_current_session(pending_session_id):
        await reconcile_assignment(keys, ledger, pending_session_id, pending_session_id)
        raise AlreadyAssigned(f"Current session already exists for session {redact(pending_session_id)}.")

    return await _assign(keys, ledger, pending_session_id, pending_session_id)
