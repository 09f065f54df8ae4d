# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal



class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: Literal["dev", "staging", "prod"] = "dev"

    # -----------------------
    # Pool wallet
    # -----------------------
    # Every contribution is routed into this wallet and every payout leaves from it.
    TANDA_POOL_WALLET: str = Field(default="https://ilp.interledger-test.dev/tandapay-pool")

    # -----------------------
    # Payment gateway (Mode Switch)
    # -----------------------
    GATEWAY_MODE: Literal["mock", "http"] = "mock"
    GATEWAY_BASE_URL: str = ""
    GATEWAY_API_KEY: str = ""
    GATEWAY_AUTH_MODE: str = "bearer"  # "bearer" or "x-api-key"

    # HTTP timeouts (a timeout is reported as a failed transfer)
    GATEWAY_HTTP_TIMEOUT_S: float = 20.0

    # -----------------------
    # Invites
    # -----------------------
    FRONTEND_URL: str = "http://localhost:3001"
    INVITE_CODE_LENGTH: int = Field(default=6, ge=4, le=16)

    LOG_LEVEL: str = "INFO"



settings = Settings()


def validate_env_settings() -> None:
    """
    Fail fast outside dev when the gateway or pool wallet is not configured.
    """
    env = (settings.ENV or "dev").strip().lower()
    if env == "dev":
        return

    missing: list[str] = []
    if not (settings.TANDA_POOL_WALLET or "").strip():
        missing.append("TANDA_POOL_WALLET")

    if settings.GATEWAY_MODE == "http":
        if not (settings.GATEWAY_BASE_URL or "").strip():
            missing.append("GATEWAY_BASE_URL")
        if not (settings.GATEWAY_API_KEY or "").strip():
            missing.append("GATEWAY_API_KEY")

    if missing:
        raise RuntimeError(f"Missing required settings for ENV={env}: {', '.join(missing)}")
