# app/core/config.py
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class Settings(BaseSettings):
    PROJECT_NAME: str = "YieldClaw x402 Gateway"
    SERVICE_NAME: str = "yieldclaw-x402"
    SERVICE_VERSION: str = "1.0.0"
    PORT: int = 3402
    DEBUG: bool = False  # exposes collaborator error detail in 500 bodies

    # Payment network (Arc testnet, native USDC)
    X402_NETWORK: str = "arc-testnet"
    X402_CHAIN_ID: int = 5042002
    X402_PAYMENT_TOKEN: str = "0x3600000000000000000000000000000000000000"
    X402_PAYMENT_TOKEN_DECIMALS: int = 6
    X402_PAYMENT_TOKEN_SYMBOL: str = "USDC"
    X402_PAY_TO_ADDRESS: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("X402_PAY_TO_ADDRESS", "YIELDCLAW_PAY_ADDRESS"),
    )

    # JSON file with {"endpoints": {pattern: {price, description}}}; built-in table if unset
    X402_ENDPOINTS_FILE: Optional[str] = None

    # Fixed-window rate limiting per client IP
    X402_RATE_LIMIT_MAX: int = 100
    X402_RATE_LIMIT_WINDOW_SECONDS: int = 60
    X402_RATE_LIMIT_SWEEP_SECONDS: int = 300
    # Key clients on X-Forwarded-For / X-Real-IP; only enable behind a trusted proxy
    X402_TRUST_PROXY_HEADERS: bool = False

    # Data collaborators
    COLLABORATOR_BACKEND: str = "script"  # "script" or "http"
    COLLABORATOR_SCRIPTS_DIR: str = "scripts"
    COLLABORATOR_BASE_URL: Optional[str] = None
    COLLABORATOR_TIMEOUT_SECONDS: float = 30.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env
        populate_by_name = True


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
