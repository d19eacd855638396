"""
Print the checkmark key-space entries for a wallet or a session.

Usage:
    python -m scripts.dump_checkmark_keys --wallet juno1...
    python -m scripts.dump_checkmark_keys --session <session id>

Options:
    --wallet  : Wallet address to look up
    --session : Session ID to look up (pending, seen and current-session keys)
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.services.session_keys import (
    SessionKeySpace,
    current_session_for_initial_session_key,
    hash_session_id,
    pending_session_for_wallet_key,
    seen_session_key,
    wallet_for_pending_session_key,
)
from app.utils.redis_pool import close_redis, get_redis


async def dump(wallet: str | None, session: str | None) -> int:
    keys = SessionKeySpace(await get_redis())
    try:
        if wallet:
            pending = await keys.get_pending_session_for_wallet(wallet)
            print(f"{pending_session_for_wallet_key(wallet)} = {pending or '-'}")
            if pending:
                session = session or pending

        if session:
            print(f"{wallet_for_pending_session_key(session)} = "
                  f"{await keys.get_wallet_for_pending_session(session) or '-'}")
            print(f"{seen_session_key(session)} = {'yes' if await keys.session_seen(session) else 'no'}")
            print(f"{current_session_for_initial_session_key(session)} = "
                  f"{await keys.get_current_session(session) or '-'}")
            print(f"checkmark_id = {hash_session_id(session)}")
    finally:
        await close_redis()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect checkmark session keys")
    parser.add_argument("--wallet", help="Wallet address")
    parser.add_argument("--session", help="Session ID")
    args = parser.parse_args()

    if not args.wallet and not args.session:
        parser.error("one of --wallet or --session is required")

    return asyncio.run(dump(args.wallet, args.session))


if __name__ == "__main__":
    sys.exit(main())
