"""
Synaps Identity Verification Provider

Talks to the Synaps individual onboarding API and reduces its session and
step vocabulary to a SessionState:

- PENDING   -> pending
- VERIFIED  -> succeeded
- CANCELLED -> failed, once every step is VALIDATED or REJECTED; pending until then

Webhooks are authenticated by a shared secret in the webhook URL path.

Documentation: https://docs.synaps.io/
"""
import hmac
import logging
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request

from app.core.config import settings
from app.core.errors import InvalidPayload, ProviderUnavailable, UnexpectedState
from app.providers.base import SessionState, VerificationProvider

log = logging.getLogger(__name__)

VALIDATED = "VALIDATED"
REJECTED = "REJECTED"
SETTLED_STATES = {VALIDATED, REJECTED}

LIVENESS_REJECTED_REASON = "Failed to verify liveness."
DUPLICATE_REASON = "Identity already verified."
FACEMATCH_REASON = "Face does not appear to match ID submitted."


def _identity_checks(step: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    verification = step.get("verification") or {}
    return {
        name: verification.get(name) or {}
        for name in ("document", "duplicate", "facematch")
    }


def _step_states(step: Dict[str, Any]) -> List[Optional[str]]:
    if step.get("type") == "LIVENESS":
        return [(step.get("verification") or {}).get("state")]
    if step.get("type") == "IDENTITY":
        return [check.get("state") for check in _identity_checks(step).values() if check]
    return []


def _step_reason(step: Dict[str, Any]) -> Optional[str]:
    if step.get("type") == "LIVENESS":
        if (step.get("verification") or {}).get("state") == REJECTED:
            return LIVENESS_REJECTED_REASON
        return None

    if step.get("type") == "IDENTITY":
        checks = _identity_checks(step)
        if checks["document"].get("state") == REJECTED:
            rejection = checks["document"].get("rejection") or {}
            return rejection.get("user_reason") or "Document rejected."
        if checks["duplicate"].get("state") == REJECTED:
            return DUPLICATE_REASON
        if checks["facematch"].get("state") == REJECTED:
            return FACEMATCH_REASON
    return None


def _failed_only_due_to_duplicate(steps: List[Dict[str, Any]]) -> bool:
    identity_steps = [s for s in steps if s.get("type") == "IDENTITY"]
    if not identity_steps:
        return False

    def passes(step: Dict[str, Any]) -> bool:
        if step.get("type") == "LIVENESS":
            return (step.get("verification") or {}).get("state") == VALIDATED
        if step.get("type") == "IDENTITY":
            checks = _identity_checks(step)
            return (
                checks["duplicate"].get("state") == REJECTED
                and checks["document"].get("state") == VALIDATED
                and checks["facematch"].get("state") == VALIDATED
            )
        return False

    return all(passes(step) for step in steps)


def parse_onboarding_details(details: Dict[str, Any]) -> SessionState:
    """Reduce a Synaps onboarding-details payload to a SessionState."""
    status = (details.get("session") or {}).get("status")

    if status == "PENDING":
        return SessionState.pending()

    if status == "VERIFIED":
        return SessionState.succeeded()

    if status == "CANCELLED":
        steps = list((details.get("steps") or {}).values())

        # A cancellation is not final until every step is VALIDATED or REJECTED.
        if any(state not in SETTLED_STATES for step in steps for state in _step_states(step)):
            return SessionState.pending()

        reasons = [reason for reason in (_step_reason(step) for step in steps) if reason]

        initial_session_id = None
        for step in steps:
            if step.get("type") == "IDENTITY":
                initial_session_id = _identity_checks(step)["duplicate"].get("session_id")
                break

        return SessionState.failed(
            reasons=reasons,
            failed_only_due_to_duplicate=_failed_only_due_to_duplicate(steps),
            initially_successful_session_id=initial_session_id,
        )

    raise UnexpectedState(f"Unexpected session status: {status}")


class SynapsProvider(VerificationProvider):
    id = "synaps"

    def __init__(self):
        self.base_url = settings.SYNAPS_BASE_URL.rstrip("/")
        self.client_id = settings.SYNAPS_CLIENT_ID
        self.api_key = settings.SYNAPS_API_KEY
        self.webhook_secret = settings.SYNAPS_WEBHOOK_SECRET
        self.timeout = settings.HTTP_TIMEOUT

    def _get_headers(self, session_id: str) -> Dict[str, str]:
        if not self.client_id or not self.api_key:
            raise ValueError("SYNAPS_CLIENT_ID and SYNAPS_API_KEY must be configured")

        return {
            "Session-Id": session_id,
            "Client-Id": self.client_id,
            "Api-Key": self.api_key,
        }

    async def is_webhook_authenticated(self, request: Request) -> bool:
        secret = request.path_params.get("secret")
        if not secret or not self.webhook_secret:
            return False
        return hmac.compare_digest(secret, self.webhook_secret)

    async def get_session_id_from_webhook(self, request: Request) -> str:
        try:
            body = await request.json()
        except ValueError:
            raise InvalidPayload()

        session_id = body.get("session_id") if isinstance(body, dict) else None
        if not isinstance(session_id, str) or not session_id:
            raise InvalidPayload()
        return session_id

    async def get_onboarding_details(self, session_id: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/onboarding/details",
                    headers=self._get_headers(session_id),
                )
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                log.error(f"Synaps API error: {e.response.status_code} - {e.response.text}")
                raise ProviderUnavailable(
                    f"Synaps error: {e.response.status_code} {e.response.reason_phrase}".strip()
                )
            except httpx.HTTPError as e:
                log.error(f"Failed to fetch Synaps onboarding details: {str(e)}")
                raise ProviderUnavailable(f"Synaps error: {str(e)}")

    async def get_session_state(self, session_id: str) -> SessionState:
        return parse_onboarding_details(await self.get_onboarding_details(session_id))
