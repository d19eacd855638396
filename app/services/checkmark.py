"""
Checkmark ledger access and the assignment algorithm.

The ledger is the only store with an enforced uniqueness constraint, so it is
ground truth. The KV bookkeeping (current-session pointer, pending pair) is
only ever advanced after the ledger has confirmed an assignment.
"""
import logging
from typing import Optional

from app.core.config import settings
from app.core.errors import (
    AlreadyAssigned,
    Banned,
    NoCurrentSession,
    NoWalletForSession,
    PendingSessionNotFound,
    WalletAlreadyCheckmarked,
)
from app.services.chain import execute_contract, query_contract
from app.services.session_keys import SessionKeySpace, hash_session_id, redact

log = logging.getLogger(__name__)


class CheckmarkLedger:
    """Query/execute contract of the on-chain checkmark registry."""

    def __init__(self, contract_address: Optional[str] = None):
        self.contract_address = contract_address or settings.CHECKMARK_CONTRACT_ADDRESS

    async def get_checkmark(self, address: str) -> Optional[str]:
        data = await query_contract(self.contract_address, {"get_checkmark": {"address": address}})
        return data.get("checkmark_id")

    async def get_address(self, checkmark_id: str) -> Optional[str]:
        data = await query_contract(self.contract_address, {"get_address": {"checkmark_id": checkmark_id}})
        return data.get("address")

    async def checkmark_banned(self, checkmark_id: str) -> bool:
        data = await query_contract(self.contract_address, {"checkmark_banned": {"checkmark_id": checkmark_id}})
        return bool(data.get("banned"))

    async def assign(self, checkmark_id: str, address: str) -> None:
        tx_hash = await execute_contract(
            self.contract_address,
            {"assign": {"checkmark_id": checkmark_id, "address": address}},
        )
        log.info("ledger.assign tx=%s", tx_hash)

    # Session-keyed helpers

    async def wallet_has_checkmark(self, wallet_address: str) -> bool:
        return bool(await self.get_checkmark(wallet_address))

    async def session_has_checkmark(self, session_id: str) -> bool:
        return bool(await self.get_address(hash_session_id(session_id)))

    async def session_is_banned(self, session_id: str) -> bool:
        return await self.checkmark_banned(hash_session_id(session_id))


async def attempt_to_assign_checkmark(
    keys: SessionKeySpace,
    ledger: CheckmarkLedger,
    initial_session_id: str,
    pending_session_id: str,
) -> str:
    """
    Assign a checkmark for the pending session of an identity whose first
    successful session is initial_session_id. Returns the wallet address.

    Makes sure that:
      - the identity is not banned;
      - the session currently backing the identity holds no checkmark;
      - the wallet behind the pending session holds no checkmark.

    Nothing is written before the ledger confirms the assignment.
    """
    first_time = initial_session_id == pending_session_id
    if first_time:
        current_session_id = pending_session_id
    else:
        current_session_id = await keys.get_current_session(initial_session_id)
    if not current_session_id:
        raise NoCurrentSession()

    if await ledger.session_is_banned(initial_session_id):
        raise Banned()

    # The user verified again while still holding a checkmark.
    if await ledger.session_has_checkmark(current_session_id):
        raise AlreadyAssigned()

    wallet_address = await keys.get_wallet_for_pending_session(pending_session_id)
    if not wallet_address:
        raise NoWalletForSession()

    if await ledger.wallet_has_checkmark(wallet_address):
        raise WalletAlreadyCheckmarked()

    await ledger.assign(hash_session_id(pending_session_id), wallet_address)
    log.info(
        "checkmark.assigned initial=%s pending=%s first_time=%s",
        redact(initial_session_id), redact(pending_session_id), first_time,
    )

    await keys.set_current_session(initial_session_id, pending_session_id)
    await keys.clear_pending_session(pending_session_id)
    return wallet_address


async def reconcile_assignment(
    keys: SessionKeySpace,
    ledger: CheckmarkLedger,
    initial_session_id: str,
    pending_session_id: str,
) -> bool:
    """
    Finish the bookkeeping of an assignment the ledger already confirmed.

    Covers a request that died between the ledger assign and the pointer
    advance or pending-pair cleanup. Returns True when anything was redone.
    Never touches the ledger.
    """
    wallet_address = await keys.get_wallet_for_pending_session(pending_session_id)
    if not wallet_address:
        return False

    assigned_to = await ledger.get_address(hash_session_id(pending_session_id))
    if assigned_to != wallet_address:
        return False

    await keys.set_current_session(initial_session_id, pending_session_id)
    try:
        await keys.clear_pending_session(pending_session_id)
    except PendingSessionNotFound:
        # A concurrent delivery got here first.
        pass
    log.warning(
        "checkmark.reconciled initial=%s pending=%s",
        redact(initial_session_id), redact(pending_session_id),
    )
    return True
