"""Builds x402 payment requirements for a tip.

Amounts are handled as ``Decimal`` end to end so no floating-point remainder
can leak into ``maxAmountRequired``.
"""

from decimal import ROUND_DOWN, Context, Decimal, InvalidOperation
from typing import Optional

from src.config import Config, config
from src.models import PaymentRequirements, Recipient
from src.piggybank.errors import InvalidAmount

# EIP-3009 transfer values are uint256
MAX_SMALLEST_UNITS = Decimal(2**256 - 1)

# Wide enough to hold every uint256 digit; anything cut off is a fractional unit
SCALING_CONTEXT = Context(prec=100, rounding=ROUND_DOWN)


def parse_amount(requested_amount: str) -> Decimal:
    """Parse a human amount such as ``"2.5"``.

    Raises:
        InvalidAmount: If the value is non-numeric, not finite, or not positive.
    """
    text = str(requested_amount).strip()
    # Decimal() also takes Python digit separators ("1_000")
    if "_" in text:
        raise InvalidAmount()
    try:
        amount = Decimal(text)
    except (InvalidOperation, ValueError):
        raise InvalidAmount()
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount()
    return amount


def to_smallest_unit(amount: Decimal, decimals: int) -> str:
    """Scale ``amount`` by ``10**decimals`` and render the integer part.

    Fractional smallest units are rounded down: ``1.0000009`` USDC becomes
    ``"1000000"``.

    Raises:
        InvalidAmount: If the scaled value does not fit a uint256.
    """
    try:
        scaled = amount.scaleb(decimals, context=SCALING_CONTEXT).to_integral_value(
            rounding=ROUND_DOWN, context=SCALING_CONTEXT
        )
        if scaled > MAX_SMALLEST_UNITS:
            raise InvalidAmount()
        return str(int(scaled))
    except (ArithmeticError, ValueError) as e:
        raise InvalidAmount() from e


def build_requirements(
    recipient: Recipient,
    requested_amount: str,
    request_url: str,
    settings: Optional[Config] = None,
) -> PaymentRequirements:
    """Construct the payment requirements for tipping ``recipient``.

    Args:
        recipient: Resolved recipient; its registered address becomes ``payTo``.
        requested_amount: Human amount in whole tokens.
        request_url: URL of the tip endpoint, bound into ``resource``.
        settings: Payment policy. Defaults to the global config.

    Returns:
        Requirements suitable for a 402 challenge and for verify/settle.

    Raises:
        InvalidAmount: If the amount is invalid or rounds down to zero.
    """
    settings = settings or config
    amount = parse_amount(requested_amount)
    max_amount_required = to_smallest_unit(amount, settings.token_decimals)
    if max_amount_required == "0":
        raise InvalidAmount()

    return PaymentRequirements(
        scheme=settings.payment_scheme,
        network=settings.payment_network,
        max_amount_required=max_amount_required,
        resource=request_url,
        description=f"Tip {requested_amount} {settings.token_symbol} to {recipient.label}",
        mime_type="application/json",
        pay_to=recipient.address,
        max_timeout_seconds=settings.payment_timeout_seconds,
        asset=settings.token_address,
        extra={"name": settings.token_name, "version": settings.token_version},
    )
