from datetime import datetime, timedelta, timezone
from jose import jwt
from app.core.config import settings

def create_token(data: dict, secret: str, expires_delta: timedelta):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)


def create_wallet_token(wallet_address: str, expires_delta: timedelta | None = None) -> str:
    """Access token for a wallet whose signed request has been verified."""
    return create_token(
        {"sub": wallet_address},
        settings.SECRET_KEY,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
