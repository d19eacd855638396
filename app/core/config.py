from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    REDIS_URL: str = "redis://localhost:6379/0"

    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    CORS_ORIGINS: list[str] = ["*"]

    # Verification provider, selected once per process
    PROVIDER_ID: str = "synaps"
    HTTP_TIMEOUT: float = 30.0

    SYNAPS_BASE_URL: str = "https://individual-api.synaps.io/v3"
    SYNAPS_CLIENT_ID: str | None = None
    SYNAPS_API_KEY: str | None = None
    SYNAPS_WEBHOOK_SECRET: str | None = None

    DIDIT_BASE_URL: str = "https://verification.didit.me/v3"
    DIDIT_API_KEY: str | None = None
    DIDIT_WEBHOOK_SECRET: str | None = None
    DIDIT_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Chain
    CHAIN_ID: str = "juno-1"
    CHAIN_REST_URL: str = "https://rest.juno.strange.love"
    CHAIN_BECH32_PREFIX: str = "juno"
    GAS_PRICE: float = 0.0025
    FEE_DENOM: str = "ujuno"
    WALLET_MNEMONIC: str | None = None

    CHECKMARK_CONTRACT_ADDRESS: str = ""
    PAYMENT_CONTRACT_ADDRESS: str = ""
    PAYMENT_AMOUNT: str = "0"
    PAYMENT_DENOM: str = "ujuno"
    PAYMENT_DENOM_TYPE: str = Field(
        default="native",
        validation_alias=AliasChoices("PAYMENT_DENOM_TYPE", "PAYMENT_DENOM_KIND"),
    )

    RATE_LIMIT_ENABLED: bool = True
    CREATE_SESSION_RATE_LIMIT: int = 10
    CREATE_SESSION_RATE_WINDOW: int = 60

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[1].parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
