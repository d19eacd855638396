"""Verification provider interface and the session state it reports."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from fastapi import Request


class SessionStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus
    reasons: list[str] = field(default_factory=list)
    failed_only_due_to_duplicate: bool = False
    initially_successful_session_id: Optional[str] = None

    @classmethod
    def pending(cls) -> "SessionState":
        return cls(SessionStatus.PENDING)

    @classmethod
    def succeeded(cls) -> "SessionState":
        return cls(SessionStatus.SUCCEEDED)

    @classmethod
    def failed(
        cls,
        reasons: list[str],
        failed_only_due_to_duplicate: bool = False,
        initially_successful_session_id: Optional[str] = None,
    ) -> "SessionState":
        return cls(
            SessionStatus.FAILED,
            reasons=list(reasons),
            failed_only_due_to_duplicate=failed_only_due_to_duplicate,
            initially_successful_session_id=initially_successful_session_id,
        )

    @property
    def is_pending(self) -> bool:
        return self.status is SessionStatus.PENDING

    @property
    def is_failed(self) -> bool:
        return self.status is SessionStatus.FAILED


class VerificationProvider(ABC):
    """
    A KYC vendor, reduced to what the checkmark flows need.

    Implementations absorb the vendor's step and rejection vocabulary and
    only ever hand back a SessionState.
    """

    id: str

    @abstractmethod
    async def is_webhook_authenticated(self, request: Request) -> bool:
        ...

    @abstractmethod
    async def get_session_id_from_webhook(self, request: Request) -> str:
        """Raises InvalidPayload when the body carries no usable session ID."""

    @abstractmethod
    async def get_session_state(self, session_id: str) -> SessionState:
        """Raises ProviderUnavailable or UnexpectedState."""
