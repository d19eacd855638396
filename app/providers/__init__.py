"""
Verification provider registry.

The provider is chosen once per process from PROVIDER_ID.
"""
from functools import lru_cache
from typing import Callable, Dict

from app.core.config import settings
from app.providers.base import SessionState, SessionStatus, VerificationProvider
from app.providers.didit import DiditProvider
from app.providers.synaps import SynapsProvider

PROVIDERS: Dict[str, Callable[[], VerificationProvider]] = {
    SynapsProvider.id: SynapsProvider,
    DiditProvider.id: DiditProvider,
}


def load_provider(provider_id: str) -> VerificationProvider:
    try:
        loader = PROVIDERS[provider_id]
    except KeyError:
        raise ValueError(f"Unknown PROVIDER_ID: {provider_id}")
    return loader()


@lru_cache(maxsize=1)
def get_provider() -> VerificationProvider:
    return load_provider(settings.PROVIDER_ID)


__all__ = [
    "PROVIDERS",
    "SessionState",
    "SessionStatus",
    "VerificationProvider",
    "get_provider",
    "load_provider",
]
