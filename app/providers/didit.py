"""
Didit Identity Verification Provider

This provider handles the Didit v3 API for:
- Polling a session decision
- Authenticating webhook notifications (X-Signature-V2 / X-Signature-Simple)

Didit statuses reduce to a SessionState:

- Not Started, In Progress, In Review -> pending
- Approved                            -> succeeded
- Declined                            -> failed, once every feature has settled
- Expired, Abandoned, KYC Expired     -> failed

Documentation: https://docs.didit.me/
"""
import hashlib
import hmac
import json
import logging
from time import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

import httpx
from fastapi import Request

from app.core.config import settings
from app.core.errors import InvalidPayload, ProviderUnavailable, UnexpectedState
from app.providers.base import SessionState, VerificationProvider

log = logging.getLogger(__name__)

PENDING_STATUSES = {"Not Started", "In Progress", "In Review"}
EXPIRED_STATUSES = {"Expired", "Abandoned", "KYC Expired"}
SETTLED_FEATURE_STATUSES = {"Approved", "Declined"}

DUPLICATE_RISKS = {"POSSIBLE_DUPLICATED_USER", "DUPLICATED_USER"}

# Decision keys holding one feature result (or a list of them)
FEATURES = ("id_verification", "liveness", "face_match")

FEATURE_REASONS = {
    "id_verification": "Document could not be verified.",
    "liveness": "Failed to verify liveness.",
    "face_match": "Face does not appear to match ID submitted.",
}
DUPLICATE_REASON = "Identity already verified."
EXPIRED_REASON = "Verification expired before it was completed."


def _features(decision: Dict[str, Any]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    for name in FEATURES:
        value = decision.get(name)
        if isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    yield name, item
        elif isinstance(value, dict):
            yield name, value


def _error_warnings(feature: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        w for w in (feature.get("warnings") or [])
        if isinstance(w, dict) and w.get("log_type", "error") == "error"
    ]


def _duplicate_session_id(feature: Dict[str, Any]) -> Optional[str]:
    for warning in feature.get("warnings") or []:
        if isinstance(warning, dict) and warning.get("risk") in DUPLICATE_RISKS:
            data = warning.get("additional_data") or {}
            session_id = data.get("duplicated_session_id") or data.get("session_id")
            if session_id:
                return session_id
    return None


def parse_decision(decision: Dict[str, Any]) -> SessionState:
    """Reduce a Didit v3 decision payload to a SessionState."""
    status = decision.get("status")

    if status in PENDING_STATUSES:
        return SessionState.pending()

    if status == "Approved":
        return SessionState.succeeded()

    if status in EXPIRED_STATUSES:
        return SessionState.failed(reasons=[EXPIRED_REASON])

    if status == "Declined":
        features = list(_features(decision))

        # Same policy as other providers: not final until every check settled.
        if any(f.get("status") not in SETTLED_FEATURE_STATUSES for _, f in features):
            return SessionState.pending()

        reasons: List[str] = []
        duplicate_only = False
        initial_session_id = None
        declined = [(name, f) for name, f in features if f.get("status") == "Declined"]

        for name, feature in declined:
            warnings = _error_warnings(feature)
            risks = {w.get("risk") for w in warnings}
            if risks and risks <= DUPLICATE_RISKS:
                reasons.append(DUPLICATE_REASON)
            elif warnings:
                reasons.extend(
                    w.get("short_description") or FEATURE_REASONS[name] for w in warnings
                )
            else:
                reasons.append(FEATURE_REASONS[name])

        if len(declined) == 1 and declined[0][0] == "id_verification":
            feature = declined[0][1]
            risks = {w.get("risk") for w in _error_warnings(feature)}
            duplicate_only = bool(risks) and risks <= DUPLICATE_RISKS
            initial_session_id = _duplicate_session_id(feature)

        return SessionState.failed(
            reasons=reasons,
            failed_only_due_to_duplicate=duplicate_only,
            initially_successful_session_id=initial_session_id,
        )

    raise UnexpectedState(f"Unexpected session status: {status}")


def shorten_floats(data: Any) -> Any:
    """Process floats to match server-side behavior."""
    if isinstance(data, dict):
        return {key: shorten_floats(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [shorten_floats(item) for item in data]
    elif isinstance(data, float):
        if data.is_integer():
            return int(data)
    return data


def _timestamp_fresh(timestamp_header: str, tolerance: int) -> bool:
    try:
        timestamp = int(timestamp_header)
    except (ValueError, TypeError) as e:
        log.error(f"Invalid timestamp format: {timestamp_header} - {e}")
        return False

    time_diff = abs(int(time()) - timestamp)
    if time_diff > tolerance:
        log.warning(f"Timestamp too old/new: diff={time_diff}s (max {tolerance}s)")
        return False
    return True


def sign_v2(body: Dict[str, Any], secret_key: str) -> str:
    """X-Signature-V2: HMAC over the canonical JSON encoding of the body."""
    encoded_data = json.dumps(
        shorten_floats(body),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hmac.new(secret_key.encode("utf-8"), encoded_data.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_simple(body: Dict[str, Any], secret_key: str) -> str:
    """X-Signature-Simple: HMAC over the core fields only."""
    canonical_string = ":".join([
        str(body.get("timestamp", "")),
        str(body.get("session_id", "")),
        str(body.get("status", "")),
        str(body.get("webhook_type", "")),
    ])
    return hmac.new(secret_key.encode("utf-8"), canonical_string.encode("utf-8"), hashlib.sha256).hexdigest()


class DiditProvider(VerificationProvider):
    """
    Didit Identity Verification API v3.
    Uses simple API key authentication via x-api-key header.
    """

    id = "didit"

    def __init__(self):
        self.base_url = settings.DIDIT_BASE_URL.rstrip("/")
        self.api_key = settings.DIDIT_API_KEY
        self.webhook_secret = settings.DIDIT_WEBHOOK_SECRET
        self.tolerance = settings.DIDIT_WEBHOOK_TOLERANCE_SECONDS
        self.timeout = settings.HTTP_TIMEOUT

    def _get_headers(self) -> Dict[str, str]:
        """Generate authentication headers for Didit v3 API requests."""
        if not self.api_key:
            raise ValueError("DIDIT_API_KEY is not configured")

        return {
            "x-api-key": self.api_key,
            "Accept": "application/json",
        }

    async def _json_body(self, request: Request) -> Dict[str, Any]:
        try:
            body = await request.json()
        except ValueError:
            raise InvalidPayload("Invalid JSON payload")
        if not isinstance(body, dict):
            raise InvalidPayload()
        return body

    async def is_webhook_authenticated(self, request: Request) -> bool:
        if not self.webhook_secret:
            log.error("DIDIT_WEBHOOK_SECRET is not configured")
            return False

        timestamp = request.headers.get("x-timestamp")
        signature_v2 = request.headers.get("x-signature-v2")
        signature_simple = request.headers.get("x-signature-simple")
        if not timestamp or not (signature_v2 or signature_simple):
            log.warning("Didit webhook missing signature or timestamp header")
            return False

        if not _timestamp_fresh(timestamp, self.tolerance):
            return False

        try:
            body = await self._json_body(request)
        except InvalidPayload:
            return False

        # X-Signature-V2 first, X-Signature-Simple as fallback
        if signature_v2:
            return hmac.compare_digest(signature_v2, sign_v2(body, self.webhook_secret))
        return hmac.compare_digest(signature_simple, sign_simple(body, self.webhook_secret))

    async def get_session_id_from_webhook(self, request: Request) -> str:
        body = await self._json_body(request)
        session_id = body.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise InvalidPayload()
        return session_id

    async def get_decision(self, session_id: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/session/{session_id}/decision/",
                    headers=self._get_headers(),
                )
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                log.error(f"Didit v3 API error: {e.response.status_code} - {e.response.text}")
                raise ProviderUnavailable(f"Didit error: {e.response.status_code}")
            except httpx.HTTPError as e:
                log.error(f"Failed to get Didit v3 session decision: {str(e)}")
                raise ProviderUnavailable(f"Didit error: {str(e)}")

    async def get_session_state(self, session_id: str) -> SessionState:
        return parse_decision(await self.get_decision(session_id))
