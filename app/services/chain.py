"""
Chain clients.

Two process-scoped handles, each created on first use and kept for the life
of the process:

- an httpx client against the node's REST endpoint for smart queries
- a cosmpy ledger client plus the assigner wallet for signed executes

cosmpy is synchronous, so executes run in the default executor.
"""
import asyncio
import base64
import json
import logging
from functools import partial
from typing import Any, Dict, Optional, Tuple

import httpx
from cosmpy.aerial.client import LedgerClient, NetworkConfig
from cosmpy.aerial.contract import LedgerContract
from cosmpy.aerial.wallet import LocalWallet

from app.core.config import settings
from app.core.errors import LedgerError

log = logging.getLogger(__name__)

_query_client: Optional[httpx.AsyncClient] = None
_signing: Optional[Tuple[LedgerClient, LocalWallet]] = None


async def run_in_thread(func, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


def get_query_client() -> httpx.AsyncClient:
    global _query_client
    if _query_client is None:
        _query_client = httpx.AsyncClient(
            base_url=settings.CHAIN_REST_URL.rstrip("/"),
            timeout=settings.HTTP_TIMEOUT,
        )
        log.info(f"Chain query client initialized (rest={settings.CHAIN_REST_URL})")
    return _query_client


def _create_signing() -> Tuple[LedgerClient, LocalWallet]:
    if not settings.WALLET_MNEMONIC:
        raise ValueError("WALLET_MNEMONIC is not configured")

    cfg = NetworkConfig(
        chain_id=settings.CHAIN_ID,
        url=f"rest+{settings.CHAIN_REST_URL.rstrip('/')}",
        fee_minimum_gas_price=settings.GAS_PRICE,
        fee_denomination=settings.FEE_DENOM,
        staking_denomination=settings.FEE_DENOM,
    )
    wallet = LocalWallet.from_mnemonic(settings.WALLET_MNEMONIC, prefix=settings.CHAIN_BECH32_PREFIX)
    log.info(f"Chain signing client initialized (chain_id={settings.CHAIN_ID}, assigner={wallet.address()})")
    return LedgerClient(cfg), wallet


def get_signing() -> Tuple[LedgerClient, LocalWallet]:
    global _signing
    if _signing is None:
        _signing = _create_signing()
    return _signing


async def close_chain_clients():
    global _query_client, _signing
    if _query_client is not None:
        await _query_client.aclose()
        _query_client = None
    _signing = None


async def query_contract(contract_address: str, msg: Dict[str, Any]) -> Dict[str, Any]:
    encoded = base64.b64encode(json.dumps(msg, separators=(",", ":")).encode("utf-8")).decode("ascii")
    try:
        response = await get_query_client().get(
            f"/cosmwasm/wasm/v1/contract/{contract_address}/smart/{encoded}"
        )
        response.raise_for_status()
        return response.json().get("data") or {}

    except httpx.HTTPStatusError as e:
        log.error(f"Contract query error: {e.response.status_code} - {e.response.text}")
        raise LedgerError(f"Contract query failed: {e.response.status_code}")
    except httpx.HTTPError as e:
        log.error(f"Contract query failed: {str(e)}")
        raise LedgerError(f"Contract query failed: {str(e)}")


def _execute(contract_address: str, msg: Dict[str, Any]) -> str:
    client, wallet = get_signing()
    contract = LedgerContract(None, client, address=contract_address)
    tx = contract.execute(msg, wallet)
    tx.wait_to_complete()
    return tx.tx_hash


async def execute_contract(contract_address: str, msg: Dict[str, Any]) -> str:
    """Sign, broadcast and wait for an execute. Returns the tx hash."""
    try:
        return await run_in_thread(_execute, contract_address, msg)
    except ValueError:
        raise
    except Exception as e:
        log.error(f"Contract execute failed: {str(e)}", exc_info=True)
        raise LedgerError(f"Contract execute failed: {str(e)}")
