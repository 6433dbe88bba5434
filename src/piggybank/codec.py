"""X-PAYMENT / X-PAYMENT-RESPONSE header codec.

Both headers carry base64-encoded JSON. The codec only handles that
transport envelope; the decoded payload is never inspected here.
"""

import base64
import json
from typing import Any, Union

from x402.http.constants import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER
from x402.http.utils import (
    encode_payment_response_header,
    encode_payment_signature_header,
    safe_base64_decode,
)
from x402.schemas.v1 import PaymentPayloadV1

from src.models import PaymentReceipt
from src.piggybank.errors import MalformedPaymentHeader

PAYMENT_HEADER = X_PAYMENT_HEADER
PAYMENT_RESPONSE_HEADER = X_PAYMENT_RESPONSE_HEADER


def decode_payment_header(value: str) -> dict[str, Any]:
    """Decode an X-PAYMENT header value into the payment payload.

    Clients that strip base64 padding are accepted.

    Args:
        value: Base64 of a UTF-8 JSON object.

    Returns:
        The parsed payload, forwarded verbatim to the facilitator.

    Raises:
        MalformedPaymentHeader: On any base64, UTF-8 or JSON failure, or when
            the JSON value is not an object.
    """
    value = value.strip()
    value += "=" * (-len(value) % 4)
    try:
        raw = base64.b64decode(value, validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        raise MalformedPaymentHeader() from e
    if not isinstance(payload, dict):
        raise MalformedPaymentHeader()
    return payload


def encode_payment_header(payload: Union[PaymentPayloadV1, dict[str, Any]]) -> str:
    """Encode a payment payload for the X-PAYMENT request header."""
    if isinstance(payload, PaymentPayloadV1):
        return encode_payment_signature_header(payload)
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def encode_payment_response(receipt: PaymentReceipt) -> str:
    """Encode a settlement receipt for the X-PAYMENT-RESPONSE header."""
    return encode_payment_response_header(receipt)


def decode_payment_response(value: str) -> PaymentReceipt:
    """Inverse of :func:`encode_payment_response`, for clients and tests."""
    return PaymentReceipt.model_validate_json(safe_base64_decode(value))
