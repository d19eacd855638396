import logging
from typing import Any, Dict

from app.core.config import settings
from app.services.chain import query_contract
from app.services.session_keys import hash_session_id, redact

log = logging.getLogger(__name__)


def _total_matches(total: Dict[str, Any]) -> bool:
    denom = total.get("denom") or {}
    return (
        settings.PAYMENT_DENOM_TYPE in denom
        and denom[settings.PAYMENT_DENOM_TYPE] == settings.PAYMENT_DENOM
        and str(total.get("amount")) == settings.PAYMENT_AMOUNT
    )


class PaymentGate:
    """Answers whether a session was paid for on the receipt contract."""

    def __init__(self, contract_address: str | None = None):
        self.contract_address = contract_address or settings.PAYMENT_CONTRACT_ADDRESS

    async def is_paid(self, session_id: str) -> bool:
        data = await query_contract(
            self.contract_address,
            {"list_totals_paid_to_id": {"id": hash_session_id(session_id)}},
        )
        paid = any(_total_matches(total) for total in data.get("totals") or [])
        log.debug("payment.checked session=%s paid=%s", redact(session_id), paid)
        return paid
