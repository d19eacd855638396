"""Test configuration and fixtures."""

import asyncio
import os
import sys
from typing import Dict, List, Optional, Set, Tuple

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Settings are read at import time; set them BEFORE app.core.config is imported.
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["PROVIDER_ID"] = "synaps"
os.environ["SYNAPS_CLIENT_ID"] = "client"
os.environ["SYNAPS_API_KEY"] = "api-key"
os.environ["SYNAPS_WEBHOOK_SECRET"] = "webhook-secret"
os.environ["DIDIT_API_KEY"] = "didit-key"
os.environ["DIDIT_WEBHOOK_SECRET"] = "didit-secret"
os.environ["CHAIN_BECH32_PREFIX"] = "juno"
os.environ["CHECKMARK_CONTRACT_ADDRESS"] = "juno1checkmark"
os.environ["PAYMENT_CONTRACT_ADDRESS"] = "juno1payment"
os.environ["PAYMENT_AMOUNT"] = "1000000"
os.environ["PAYMENT_DENOM"] = "ujuno"

from fastapi import Request

from app.core.errors import InvalidPayload, LedgerError
from app.providers.base import SessionState, VerificationProvider
from app.services.checkmark import CheckmarkLedger
from app.services.payment import PaymentGate
from app.services.session_keys import SessionKeySpace

WALLET_1 = "juno1" + "q" * 38
WALLET_2 = "juno1" + "p" * 38
WALLET_3 = "juno1" + "z" * 38

TEST_WEBHOOK_HEADER = "x-test-webhook-secret"


class InMemoryKV:
    """The get/set/delete subset of redis.asyncio.Redis, in a dict."""

    def __init__(self):
        self.data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, nx: bool = False) -> Optional[bool]:
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.data.pop(key, None) is not None)


class YieldingKV(InMemoryKV):
    """Hands control back to the event loop before every call, like a network round trip."""

    async def get(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key: str, value: str, nx: bool = False) -> Optional[bool]:
        await asyncio.sleep(0)
        return await super().set(key, value, nx=nx)

    async def delete(self, *keys: str) -> int:
        await asyncio.sleep(0)
        return await super().delete(*keys)


class FakeLedger(CheckmarkLedger):
    """Checkmark contract held in memory, with the contract's own uniqueness rules."""

    def __init__(self):
        super().__init__(contract_address="juno1checkmark")
        self.address_for: Dict[str, str] = {}
        self.banned: Set[str] = set()
        self.assign_calls: List[Tuple[str, str]] = []
        self.fail_assign = False

    async def get_checkmark(self, address: str) -> Optional[str]:
        for checkmark_id, owner in self.address_for.items():
            if owner == address:
                return checkmark_id
        return None

    async def get_address(self, checkmark_id: str) -> Optional[str]:
        return self.address_for.get(checkmark_id)

    async def checkmark_banned(self, checkmark_id: str) -> bool:
        return checkmark_id in self.banned

    async def assign(self, checkmark_id: str, address: str) -> None:
        self.assign_calls.append((checkmark_id, address))
        if self.fail_assign:
            raise LedgerError("node unreachable")
        if checkmark_id in self.banned:
            raise LedgerError("checkmark_id is banned")
        if checkmark_id in self.address_for:
            raise LedgerError("checkmark_id already assigned")
        if await self.get_checkmark(address):
            raise LedgerError("address already has a checkmark")
        self.address_for[checkmark_id] = address

    def delete(self, address: str) -> None:
        """The wallet owner deleting their checkmark off-ledger."""
        self.address_for = {k: v for k, v in self.address_for.items() if v != address}


class FakePaymentGate(PaymentGate):
    def __init__(self):
        super().__init__(contract_address="juno1payment")
        self.paid: Set[str] = set()

    async def is_paid(self, session_id: str) -> bool:
        return session_id in self.paid


class FakeProvider(VerificationProvider):
    id = "fake"

    def __init__(self):
        self.states: Dict[str, SessionState] = {}
        self.polls: List[str] = []

    async def is_webhook_authenticated(self, request: Request) -> bool:
        return request.headers.get(TEST_WEBHOOK_HEADER) == "ok"

    async def get_session_id_from_webhook(self, request: Request) -> str:
        body = await request.json()
        if not isinstance(body, dict) or not body.get("session_id"):
            raise InvalidPayload()
        return body["session_id"]

    async def get_session_state(self, session_id: str) -> SessionState:
        self.polls.append(session_id)
        return self.states.get(session_id, SessionState.pending())


@pytest.fixture
def kv():
    return InMemoryKV()


@pytest.fixture
def keys(kv):
    return SessionKeySpace(kv)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def payment():
    return FakePaymentGate()


@pytest.fixture
def provider():
    return FakeProvider()
