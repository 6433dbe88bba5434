"""Centralized configuration management for the PiggyBanks tip service.

Loads all configuration from environment variables with sensible defaults.
"""

from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Config(BaseSettings):
    """Main configuration class for the tip service."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Facilitator (verify/settle boundary)
    facilitator_url: str = Field(default="", description="x402 facilitator base URL")
    facilitator_api_key: str = Field(default="", description="Facilitator API key (bearer token)")
    facilitator_timeout_seconds: float = Field(
        default=30.0, description="Upper bound on a single verify or settle call"
    )

    # Service
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    service_url: str = Field(default="http://localhost:3000", description="Used by the demo tipper")

    # Demo tipper wallet (scripts/send_tip.py only; the service never signs)
    payer_private_key: str = Field(default="", description="EVM private key of the tipper")

    # Database
    database_path: str = Field(default="./piggybank.db")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    # Payment requirements policy
    payment_scheme: str = Field(default="exact")
    payment_network: str = Field(default="base-sepolia", description="Base Sepolia")
    chain_id: int = Field(default=84532, description="Base Sepolia chain id")
    payment_timeout_seconds: int = Field(
        default=60, description="Window within which a payment proof must be settled"
    )

    # USDC on Base Sepolia (FiatTokenV2_2, EIP-712 domain version "2")
    token_address: str = Field(
        default="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        description="Base Sepolia USDC address",
    )
    token_symbol: str = Field(default="USDC")
    token_decimals: int = Field(default=6)
    token_name: str = Field(default="USDC")
    token_version: str = Field(default="2")


# Global config instance
config = Config()


def validate_config(settings: Optional[Config] = None) -> None:
    """Validate that the configuration required to serve tips is present.

    Called once at process start so a misconfigured deployment never reaches
    the first request.

    Args:
        settings: Configuration to validate. Defaults to the global config.

    Raises:
        ValueError: If required configuration is missing.
    """
    settings = settings or config
    errors = []

    if not settings.facilitator_url.strip():
        errors.append("FACILITATOR_URL must be set")
    if not settings.facilitator_api_key.strip():
        errors.append("FACILITATOR_API_KEY must be set")
    if not settings.database_path.strip():
        errors.append("DATABASE_PATH must not be empty")
    if settings.facilitator_timeout_seconds <= 0:
        errors.append("FACILITATOR_TIMEOUT_SECONDS must be positive")
    if settings.token_decimals < 0:
        errors.append("TOKEN_DECIMALS must not be negative")

    if errors:
        error_msg = "Configuration errors for tip service:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)
