import re

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.core.config import settings
from app.providers import VerificationProvider, get_provider
from app.services.checkmark import CheckmarkLedger
from app.services.payment import PaymentGate
from app.services.session_keys import SessionKeySpace
from app.utils.redis_pool import get_redis

# Tokens are minted by the nonce/signature service once it has verified a
# signed request from the wallet.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="nonce", auto_error=False)

BECH32_DATA = re.compile(r"^[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{38,90}$")


def is_wallet_address(value: str) -> bool:
    prefix = f"{settings.CHAIN_BECH32_PREFIX}1"
    return value.startswith(prefix) and bool(BECH32_DATA.match(value[len(prefix):]))


async def get_wallet_address(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
) -> str:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        wallet_address: str | None = payload.get("sub")
        if wallet_address is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    if not is_wallet_address(wallet_address):
        raise credentials_exception

    request.state.wallet_address = wallet_address
    return wallet_address


async def get_session_keys() -> SessionKeySpace:
    return SessionKeySpace(await get_redis())


def get_checkmark_ledger() -> CheckmarkLedger:
    return CheckmarkLedger()


def get_payment_gate() -> PaymentGate:
    return PaymentGate()


def get_verification_provider() -> VerificationProvider:
    return get_provider()
