"""Shared data models for the PiggyBanks tip service.

All Pydantic models used across the service. Wire formats use camelCase
(x402 and the web client both speak it), Python attributes use snake_case.
The x402 v1 protocol shapes come from the x402 SDK schemas.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from x402.schemas import SettleResponse
from x402.schemas.v1 import PaymentRequirementsV1


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Recipient(CamelModel):
    """A creator profile that can receive tips."""

    address: str = Field(description="Payout address, lower-cased")
    slug: str = Field(description="Unique lowercase handle used in profile URLs")
    display_name: Optional[str] = Field(default=None, description="Name shown to tippers")
    bio: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True, description="Inactive profiles cannot be tipped")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def label(self) -> str:
        """Display name, falling back to the slug."""
        return self.display_name or self.slug


class PaymentRequirements(PaymentRequirementsV1):
    """x402 v1 payment requirements advertised in a 402 challenge."""

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SettleResult(SettleResponse):
    """Outcome of a facilitator settle call.

    Facilitators omit ``transaction`` and ``network`` when settlement fails,
    and some omit the transaction on success too.
    """

    transaction: Optional[str] = None
    network: Optional[str] = None


class PaymentReceipt(SettleResponse):
    """Settlement receipt echoed back in the X-PAYMENT-RESPONSE header."""

    success: bool = True
    amount: str = Field(description="Settled amount in smallest units")
    token: str = Field(description="Token symbol")
    recipient: str = Field(description="Payout address")


class Donation(CamelModel):
    """Confirmed donation record written after settlement."""

    id: Optional[int] = Field(default=None, description="Store-assigned identifier")
    tx_hash: str = Field(description="Settlement transaction identifier")
    chain_id: int
    from_address: str
    to_address: str
    token_address: str
    token_symbol: str
    token_decimals: int
    amount_raw: str = Field(description="Amount in smallest units")
    amount_formatted: str = Field(description="Human readable amount")
    message: str = Field(default="", max_length=500)
    is_anonymous: bool = Field(default=False)
    status: Literal["pending", "confirmed", "failed"] = Field(default="pending")
    confirmations: int = Field(default=0, ge=0)
    transaction_timestamp: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DonationSummary(CamelModel):
    """Aggregate totals for a recipient's dashboard."""

    count: int = 0
    total_raw: str = "0"
    token_symbol: str = "USDC"


class TipRequest(CamelModel):
    """Body of POST /api/send-tip.

    Every field is optional here so that the orchestrator, not the framework,
    decides how a missing field is reported.
    """

    recipient_slug: Optional[str] = None
    amount: Optional[str] = None
    message: Optional[str] = None
    sender_address: Optional[str] = None

    @field_validator("recipient_slug", "amount", "message", "sender_address", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)


class CreateRecipientRequest(CamelModel):
    """Body of POST /api/create-user."""

    address: Optional[str] = None
    slug: Optional[str] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None


class UpdateRecipientRequest(CamelModel):
    """Body of PUT /api/user/{address}. Fields left out keep their value."""

    display_name: Optional[str] = None
    bio: Optional[str] = None
