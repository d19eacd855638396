"""
Checkmark verification endpoints

This module provides endpoints for:
- Attaching a paid verification session to the authenticated wallet
- Checking where a wallet stands in the checkmark flow
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.providers import VerificationProvider
from app.schemas.verification import CreateSessionRequest, CreateSessionResponse, StatusResponse
from app.services.checkmark import CheckmarkLedger
from app.services.payment import PaymentGate
from app.services.session_keys import SessionKeySpace
from app.services.sessions import Status, create_session, get_status
from app.utils.deps import (
    get_checkmark_ledger,
    get_payment_gate,
    get_session_keys,
    get_verification_provider,
    get_wallet_address,
)
from app.utils.rate_limiter import rate_limit

log = logging.getLogger(__name__)

router = APIRouter(tags=["verification"])


@router.post("/create", response_model=CreateSessionResponse)
@rate_limit(key_prefix="ratelimit:create")
async def create_verification_session(
    request: Request,
    body: CreateSessionRequest,
    wallet_address: str = Depends(get_wallet_address),
    keys: SessionKeySpace = Depends(get_session_keys),
    ledger: CheckmarkLedger = Depends(get_checkmark_ledger),
    payment: PaymentGate = Depends(get_payment_gate),
    provider: VerificationProvider = Depends(get_verification_provider),
):
    """
    Attach a paid verification session to the current wallet.

    The session ID is consumed by this call whatever the outcome; retry with
    a new session.
    """
    await create_session(keys, ledger, payment, provider, wallet_address, body.session_id)
    return CreateSessionResponse()


@router.get("/status/{address}", response_model=StatusResponse, response_model_exclude_none=True)
async def get_verification_status(
    address: str,
    wallet_address: str = Depends(get_wallet_address),
    keys: SessionKeySpace = Depends(get_session_keys),
    ledger: CheckmarkLedger = Depends(get_checkmark_ledger),
    provider: VerificationProvider = Depends(get_verification_provider),
):
    """
    Get the checkmark status of the current wallet.

    Polls the verification provider for the pending session, if any.
    """
    if address != wallet_address:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Wallet does not match credentials")

    result = await get_status(keys, ledger, provider, wallet_address)
    return StatusResponse(
        status=result.status,
        errors=result.errors if result.status is Status.FAILED else None,
    )
