"""
Session key space.

Four namespaces over the session store:

    WALLET_FOR:<sessionId>                 wallet that owns a pending session
    PENDING_SESSION_FOR:<walletAddress>    pending session owned by a wallet
    SESSION_SEEN:<sessionId>               presence marker, session consumed
    CURRENT_SESSION_FOR:<initialSessionId> session backing the identity's checkmark

The store has no multi-key transactions. Every claim (the seen marker and
each pending key) is a SET NX, so of two concurrent writers only one wins.
The two pending keys are written one after the other and are kept as
inverses on a best-effort basis; readers must tolerate seeing one without
the other.
"""
import hashlib
import logging
from typing import Optional

import redis.asyncio as redis

from app.core.errors import AlreadyPending, PendingSessionNotFound

log = logging.getLogger(__name__)

SEEN_MARKER = "1"


def wallet_for_pending_session_key(pending_session_id: str) -> str:
    return f"WALLET_FOR:{pending_session_id}"


def pending_session_for_wallet_key(wallet_address: str) -> str:
    return f"PENDING_SESSION_FOR:{wallet_address}"


def seen_session_key(session_id: str) -> str:
    return f"SESSION_SEEN:{session_id}"


def current_session_for_initial_session_key(initial_session_id: str) -> str:
    """
    Maps an initial session ID to the session currently (or most recently)
    backing its checkmark. Equal to the initial session on first success;
    advanced to the newest grant on every re-assignment.
    """
    return f"CURRENT_SESSION_FOR:{initial_session_id}"


def hash_session_id(session_id: str) -> str:
    """Checkmark ID for a session. The ledger never sees raw session IDs."""
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


def redact(session_id: Optional[str]) -> str:
    if not session_id:
        return "-"
    if len(session_id) <= 6:
        return "***"
    return f"{session_id[:3]}…{session_id[-2:]}"


class SessionKeySpace:
    """Reads and writes the checkmark session mappings in the KV store."""

    def __init__(self, kv: redis.Redis):
        self.kv = kv

    async def session_seen(self, session_id: str) -> bool:
        return bool(await self.kv.get(seen_session_key(session_id)))

    async def mark_session_seen(self, session_id: str) -> bool:
        """Burn a session ID. False when another request burned it first."""
        return bool(await self.kv.set(seen_session_key(session_id), SEEN_MARKER, nx=True))

    async def get_wallet_for_pending_session(self, pending_session_id: str) -> Optional[str]:
        return await self.kv.get(wallet_for_pending_session_key(pending_session_id))

    async def get_pending_session_for_wallet(self, wallet_address: str) -> Optional[str]:
        return await self.kv.get(pending_session_for_wallet_key(wallet_address))

    async def get_current_session(self, initial_session_id: str) -> Optional[str]:
        return await self.kv.get(current_session_for_initial_session_key(initial_session_id))

    async def set_current_session(self, initial_session_id: str, session_id: str) -> None:
        await self.kv.set(current_session_for_initial_session_key(initial_session_id), session_id)

    async def store_pending_session(self, wallet_address: str, pending_session_id: str) -> None:
        session_key = pending_session_for_wallet_key(wallet_address)
        wallet_key = wallet_for_pending_session_key(pending_session_id)

        # Both directions are checked before either is written, and each write
        # only lands if the key is still free. Multiple tabs or a replayed
        # session can reach here concurrently.
        if await self.kv.get(session_key):
            raise AlreadyPending()

        if await self.kv.get(wallet_key):
            raise AlreadyPending("This pending verification is already attached to a wallet.")

        if not await self.kv.set(session_key, pending_session_id, nx=True):
            raise AlreadyPending()

        if not await self.kv.set(wallet_key, wallet_address, nx=True):
            # Lost the race for the session; release the wallet side.
            await self.kv.delete(session_key)
            raise AlreadyPending("This pending verification is already attached to a wallet.")

        log.info("session.pending.stored session=%s", redact(pending_session_id))

    async def clear_pending_session(self, pending_session_id: str) -> None:
        wallet_key = wallet_for_pending_session_key(pending_session_id)
        wallet_address = await self.kv.get(wallet_key)
        if not wallet_address:
            raise PendingSessionNotFound()

        await self.kv.delete(pending_session_for_wallet_key(wallet_address))
        await self.kv.delete(wallet_key)
        log.info("session.pending.cleared session=%s", redact(pending_session_id))

    async def retire_stale_pending_session(self, wallet_address: str, pending_session_id: str) -> None:
        """
        Drop a pending pair that no longer blocks the wallet. Either direction
        may already be missing.
        """
        await self.kv.delete(pending_session_for_wallet_key(wallet_address))
        if await self.kv.get(wallet_for_pending_session_key(pending_session_id)) == wallet_address:
            await self.kv.delete(wallet_for_pending_session_key(pending_session_id))
        log.info("session.pending.retired session=%s", redact(pending_session_id))
