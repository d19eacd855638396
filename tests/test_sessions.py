"""
Test session creation, status projection and provider updates.
"""

import asyncio

import pytest

from app.core.errors import (
    AlreadyAssigned,
    AlreadyCheckmarked,
    AlreadyPending,
    AlreadyUsed,
    Banned,
    FailedNotDuplicate,
    InvalidSessionId,
    NotPending,
    PaymentRequired,
    ProviderUnavailable,
    StillPending,
    UnknownSession,
    WalletAlreadyCheckmarked,
)
from app.providers.base import SessionState
from app.services.session_keys import (
    hash_session_id,
    pending_session_for_wallet_key,
    wallet_for_pending_session_key,
)
from app.services.sessions import Status, create_session, get_status, handle_session_update
from conftest import WALLET_1, WALLET_2, YieldingKV

DUPLICATE_OF_S1 = SessionState.failed(
    reasons=["Identity already verified."],
    failed_only_due_to_duplicate=True,
    initially_successful_session_id="s1",
)


@pytest.fixture
def create(keys, ledger, payment, provider):
    async def _create(wallet, session_id):
        return await create_session(keys, ledger, payment, provider, wallet, session_id)
    return _create


@pytest.fixture
def update(keys, ledger, provider):
    async def _update(session_id):
        return await handle_session_update(keys, ledger, provider, session_id)
    return _update


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_unpaid_session(self, create, keys):
        with pytest.raises(PaymentRequired):
            await create(WALLET_1, "s1")

        # Rejected before the burn
        assert not await keys.session_seen("s1")

    @pytest.mark.asyncio
    async def test_success_stores_pending_pair(self, create, keys, payment):
        payment.paid.add("s1")

        await create(WALLET_1, "s1")

        assert await keys.session_seen("s1")
        assert await keys.get_pending_session_for_wallet(WALLET_1) == "s1"
        assert await keys.get_wallet_for_pending_session("s1") == WALLET_1

    @pytest.mark.asyncio
    async def test_same_session_twice(self, create, payment):
        payment.paid.add("s1")
        await create(WALLET_1, "s1")

        with pytest.raises(AlreadyUsed):
            await create(WALLET_1, "s1")
        with pytest.raises(AlreadyUsed):
            await create(WALLET_2, "s1")

    @pytest.mark.asyncio
    async def test_second_session_while_pending(self, create, keys, payment):
        payment.paid.update({"s1", "s2"})
        await create(WALLET_1, "s1")

        with pytest.raises(AlreadyPending):
            await create(WALLET_1, "s2")

        # s2 is burned anyway
        assert await keys.session_seen("s2")
        assert await keys.get_pending_session_for_wallet(WALLET_1) == "s1"

    @pytest.mark.asyncio
    async def test_failed_pending_session_allows_retry(self, create, keys, payment, provider):
        payment.paid.update({"s1", "s2"})
        await create(WALLET_1, "s1")
        provider.states["s1"] = SessionState.failed(reasons=["Failed to verify liveness."])

        await create(WALLET_1, "s2")

        assert await keys.get_pending_session_for_wallet(WALLET_1) == "s2"
        assert await keys.get_wallet_for_pending_session("s1") is None

    @pytest.mark.asyncio
    async def test_succeeded_pending_session_blocks(self, create, payment, provider):
        payment.paid.update({"s1", "s2"})
        await create(WALLET_1, "s1")
        provider.states["s1"] = SessionState.succeeded()

        with pytest.raises(AlreadyPending):
            await create(WALLET_1, "s2")

    @pytest.mark.asyncio
    async def test_wallet_already_checkmarked(self, create, keys, ledger, payment):
        payment.paid.add("s2")
        ledger.address_for[hash_session_id("s1")] = WALLET_1

        with pytest.raises(AlreadyCheckmarked):
            await create(WALLET_1, "s2")

        assert await keys.session_seen("s2")
        assert await keys.get_pending_session_for_wallet(WALLET_1) is None

    @pytest.mark.asyncio
    async def test_session_already_assigned(self, create, ledger, payment):
        payment.paid.add("s1")
        ledger.address_for[hash_session_id("s1")] = WALLET_2

        with pytest.raises(AlreadyAssigned):
            await create(WALLET_1, "s1")

    @pytest.mark.asyncio
    async def test_session_not_pending_at_provider(self, create, keys, payment, provider):
        payment.paid.add("s1")
        provider.states["s1"] = SessionState.succeeded()

        with pytest.raises(NotPending):
            await create(WALLET_1, "s1")

        assert await keys.get_pending_session_for_wallet(WALLET_1) is None

    @pytest.mark.asyncio
    async def test_stale_pair_kept_when_new_session_rejected(self, create, keys, payment, provider):
        payment.paid.update({"s1", "s2"})
        await create(WALLET_1, "s1")
        provider.states["s1"] = SessionState.failed(reasons=["Document expired."])
        provider.states["s2"] = SessionState.succeeded()

        with pytest.raises(NotPending):
            await create(WALLET_1, "s2")

        assert await keys.get_pending_session_for_wallet(WALLET_1) == "s1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id", ["", "   "])
    async def test_missing_session_id(self, create, keys, session_id):
        with pytest.raises(InvalidSessionId):
            await create(WALLET_1, session_id)

    @pytest.mark.asyncio
    async def test_provider_failure_after_burn(self, create, keys, payment, provider):
        payment.paid.add("s1")

        async def unavailable(session_id):
            raise ProviderUnavailable()

        provider.get_session_state = unavailable

        with pytest.raises(ProviderUnavailable):
            await create(WALLET_1, "s1")

        assert await keys.session_seen("s1")


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_none(self, keys, ledger, provider):
        result = await get_status(keys, ledger, provider, WALLET_1)

        assert result.status is Status.NONE
        assert provider.polls == []

    @pytest.mark.asyncio
    async def test_checkmarked(self, keys, ledger, provider):
        ledger.address_for[hash_session_id("s1")] = WALLET_1

        result = await get_status(keys, ledger, provider, WALLET_1)

        assert result.status is Status.CHECKMARKED

    @pytest.mark.asyncio
    async def test_pending(self, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")

        result = await get_status(keys, ledger, provider, WALLET_1)

        assert result.status is Status.PENDING
        assert provider.polls == ["s1"]

    @pytest.mark.asyncio
    async def test_processing(self, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.succeeded()

        result = await get_status(keys, ledger, provider, WALLET_1)

        assert result.status is Status.PROCESSING

    @pytest.mark.asyncio
    async def test_failed_with_reasons(self, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.failed(reasons=["Failed to verify liveness."])

        result = await get_status(keys, ledger, provider, WALLET_1)

        assert result.status is Status.FAILED
        assert result.errors == ["Failed to verify liveness."]

    @pytest.mark.asyncio
    async def test_failed_without_reasons(self, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.failed(reasons=[])

        result = await get_status(keys, ledger, provider, WALLET_1)

        assert result.errors == ["Unknown error."]

    @pytest.mark.asyncio
    async def test_duplicate_failure_is_processing(self, keys, ledger, provider):
        await keys.set_current_session("s1", "s1")
        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = DUPLICATE_OF_S1

        result = await get_status(keys, ledger, provider, WALLET_2)

        assert result.status is Status.PROCESSING

    @pytest.mark.asyncio
    async def test_duplicate_of_live_checkmark_is_failed(self, keys, ledger, provider):
        await keys.set_current_session("s1", "s1")
        ledger.address_for[hash_session_id("s1")] = WALLET_1
        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = DUPLICATE_OF_S1

        result = await get_status(keys, ledger, provider, WALLET_2)

        assert result.status is Status.FAILED
        assert result.errors == ["Identity already verified."]

    @pytest.mark.asyncio
    async def test_duplicate_of_banned_identity_is_failed(self, keys, ledger, provider):
        await keys.set_current_session("s1", "s1")
        ledger.banned.add(hash_session_id("s1"))
        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = DUPLICATE_OF_S1

        result = await get_status(keys, ledger, provider, WALLET_2)

        assert result.status is Status.FAILED

    @pytest.mark.asyncio
    async def test_duplicate_of_unknown_identity_is_failed(self, keys, ledger, provider):
        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = DUPLICATE_OF_S1

        result = await get_status(keys, ledger, provider, WALLET_2)

        assert result.status is Status.FAILED

    @pytest.mark.asyncio
    async def test_reads_only(self, keys, kv, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.succeeded()
        before = dict(kv.data)

        await get_status(keys, ledger, provider, WALLET_1)

        assert kv.data == before
        assert ledger.assign_calls == []


class TestHandleSessionUpdate:
    @pytest.mark.asyncio
    async def test_success_assigns(self, update, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.succeeded()

        assert await update("s1") == WALLET_1
        assert ledger.address_for == {hash_session_id("s1"): WALLET_1}

    @pytest.mark.asyncio
    async def test_redelivery_after_success(self, update, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.succeeded()
        await update("s1")

        with pytest.raises(AlreadyAssigned):
            await update("s1")

        assert len(ledger.assign_calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_session(self, update):
        with pytest.raises(UnknownSession) as exc_info:
            await update("nope")

        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_still_pending(self, update, keys, ledger):
        await keys.store_pending_session(WALLET_1, "s1")

        with pytest.raises(StillPending) as exc_info:
            await update("s1")

        assert exc_info.value.retryable
        assert ledger.assign_calls == []

    @pytest.mark.asyncio
    async def test_failed_not_duplicate_keeps_pending(self, update, keys, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.failed(reasons=["Failed to verify liveness."])

        with pytest.raises(FailedNotDuplicate):
            await update("s1")

        assert await keys.get_pending_session_for_wallet(WALLET_1) == "s1"

    @pytest.mark.asyncio
    async def test_duplicate_without_initial_session(self, update, keys, provider):
        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = SessionState.failed(reasons=[], failed_only_due_to_duplicate=True)

        with pytest.raises(FailedNotDuplicate):
            await update("s2")

    @pytest.mark.asyncio
    async def test_duplicate_reassigns_to_new_wallet(self, update, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.succeeded()
        await update("s1")
        ledger.delete(WALLET_1)

        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = DUPLICATE_OF_S1

        assert await update("s2") == WALLET_2
        assert await keys.get_current_session("s1") == "s2"

    @pytest.mark.asyncio
    async def test_duplicate_of_banned_identity(self, update, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.succeeded()
        await update("s1")
        ledger.delete(WALLET_1)
        ledger.banned.add(hash_session_id("s1"))

        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = DUPLICATE_OF_S1

        with pytest.raises(Banned):
            await update("s2")

        assert ledger.address_for == {}

    @pytest.mark.asyncio
    async def test_redelivery_after_partial_failure_reconciles(self, update, keys, ledger, provider):
        """The ledger assigned but the request died before the KV cleanup."""
        await keys.store_pending_session(WALLET_1, "s1")
        provider.states["s1"] = SessionState.succeeded()
        ledger.address_for[hash_session_id("s1")] = WALLET_1

        with pytest.raises(AlreadyAssigned):
            await update("s1")

        assert await keys.get_current_session("s1") == "s1"
        assert await keys.get_pending_session_for_wallet(WALLET_1) is None
        assert ledger.assign_calls == []

    @pytest.mark.asyncio
    async def test_current_session_exists_for_succeeded(self, update, keys, ledger, provider):
        await keys.store_pending_session(WALLET_1, "s1")
        await keys.set_current_session("s1", "s1")
        provider.states["s1"] = SessionState.succeeded()

        with pytest.raises(AlreadyAssigned):
            await update("s1")

        assert ledger.assign_calls == []

    @pytest.mark.asyncio
    async def test_redelivery_after_partial_reassignment_reconciles(self, update, keys, ledger, provider):
        """The ledger moved the identity to the new wallet but the KV cleanup never ran."""
        await keys.set_current_session("s1", "s1")
        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = DUPLICATE_OF_S1
        ledger.address_for[hash_session_id("s2")] = WALLET_2

        with pytest.raises(AlreadyAssigned):
            await update("s2")

        assert await keys.get_current_session("s1") == "s2"
        assert await keys.get_pending_session_for_wallet(WALLET_2) is None
        assert ledger.assign_calls == []

    @pytest.mark.asyncio
    async def test_wallet_checkmarked_elsewhere_is_not_reconciled(self, update, keys, ledger, provider):
        await keys.set_current_session("s1", "s1")
        await keys.store_pending_session(WALLET_2, "s2")
        provider.states["s2"] = DUPLICATE_OF_S1
        ledger.address_for[hash_session_id("other")] = WALLET_2

        with pytest.raises(WalletAlreadyCheckmarked):
            await update("s2")

        assert await keys.get_current_session("s1") == "s1"
        assert await keys.get_pending_session_for_wallet(WALLET_2) == "s2"


class TestConcurrentCreates:
    @pytest.fixture
    def kv(self):
        return YieldingKV()

    @pytest.mark.asyncio
    async def test_one_pending_session_per_wallet(self, create, kv, payment):
        payment.paid.update({"s1", "s2"})

        results = await asyncio.gather(
            create(WALLET_1, "s1"),
            create(WALLET_1, "s2"),
            return_exceptions=True,
        )

        assert sum(1 for r in results if r is None) == 1
        assert sum(1 for r in results if isinstance(r, AlreadyPending)) == 1

        winner = "s1" if results[0] is None else "s2"
        loser = "s2" if winner == "s1" else "s1"
        assert kv.data[pending_session_for_wallet_key(WALLET_1)] == winner
        assert kv.data[wallet_for_pending_session_key(winner)] == WALLET_1
        assert wallet_for_pending_session_key(loser) not in kv.data

    @pytest.mark.asyncio
    async def test_one_wallet_per_session(self, create, kv, payment):
        payment.paid.add("s1")

        results = await asyncio.gather(
            create(WALLET_1, "s1"),
            create(WALLET_2, "s1"),
            return_exceptions=True,
        )

        assert sum(1 for r in results if r is None) == 1
        assert sum(1 for r in results if isinstance(r, AlreadyUsed)) == 1

        winner = WALLET_1 if results[0] is None else WALLET_2
        loser = WALLET_2 if winner == WALLET_1 else WALLET_1
        assert kv.data[wallet_for_pending_session_key("s1")] == winner
        assert pending_session_for_wallet_key(loser) not in kv.data
