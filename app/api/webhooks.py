import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.providers import VerificationProvider
from app.schemas.verification import WebhookResponse
from app.services.checkmark import CheckmarkLedger
from app.services.session_keys import SessionKeySpace, redact
from app.services.sessions import handle_session_update
from app.utils.deps import get_checkmark_ledger, get_session_keys, get_verification_provider

log = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhook", response_model=WebhookResponse)
@router.post("/webhook/{secret}", response_model=WebhookResponse, include_in_schema=False)
async def verification_webhook(
    request: Request,
    keys: SessionKeySpace = Depends(get_session_keys),
    ledger: CheckmarkLedger = Depends(get_checkmark_ledger),
    provider: VerificationProvider = Depends(get_verification_provider),
):
    """
    Verification provider webhook.
    - Authenticates the delivery the provider's way.
    - 200 when a checkmark was assigned.
    - 412 while the session is still pending (the sender should retry).
    - 404/409/422 when there is nothing to do, ever.
    """
    client_ip = request.client.host if request.client else "-"
    log.info("webhook.receive start provider=%s ip=%s", provider.id, client_ip)

    if not await provider.is_webhook_authenticated(request):
        log.warning("webhook.unauthenticated provider=%s ip=%s", provider.id, client_ip)
        raise HTTPException(status_code=401, detail="Webhook not authenticated.")

    session_id = await provider.get_session_id_from_webhook(request)
    log.info("webhook.verified session=%s", redact(session_id))

    wallet_address = await handle_session_update(keys, ledger, provider, session_id)
    log.info("webhook.assigned session=%s wallet=%s", redact(session_id), wallet_address)
    return WebhookResponse()
