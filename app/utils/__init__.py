"""
Utility functions and helpers.

- auth: Wallet access tokens
- deps: FastAPI dependencies (current wallet, key space, ledger, provider)
- rate_limiter: Per-wallet sliding-window limits
- redis_pool: Shared async Redis client
"""
