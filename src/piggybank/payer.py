"""Payer side of the exchange: turn a 402 challenge into an X-PAYMENT header.

Payment proofs are produced by the x402 SDK client with the "exact" EVM
scheme registered, i.e. an EIP-3009 TransferWithAuthorization signed with
EIP-712 for the first requirement the challenge accepts. Used by the tip
demo script and by end-to-end tests; the server never signs.
"""

from typing import Any, Optional, Union

from eth_account import Account
from x402 import x402Client
from x402.mechanisms.evm import (
    EthAccountSigner,
    ExactEIP3009Payload,
    hash_eip3009_authorization,
    hex_to_bytes,
    verify_eoa_signature,
)
from x402.mechanisms.evm.exact.register import register_exact_evm_client
from x402.mechanisms.evm.v1.utils import get_evm_chain_id
from x402.schemas.v1 import PaymentPayloadV1, PaymentRequiredV1, PaymentRequirementsV1

from src.piggybank.codec import encode_payment_header


def create_payer_client(private_key: str) -> x402Client:
    """x402 client that pays with the EVM account behind ``private_key``."""
    account = Account.from_key(private_key)
    client = x402Client()
    register_exact_evm_client(client, EthAccountSigner(account))
    # Tip sizes are chosen by the tipper, not capped at the SDK's default budget
    client.set_spend_controls(False)
    return client


async def build_payment_payload(
    payment_required: Union[PaymentRequiredV1, dict[str, Any]],
    private_key: str,
) -> PaymentPayloadV1:
    """Sign a payment authorization answering a 402 challenge.

    Args:
        payment_required: The 402 response body (``x402Version``, ``accepts``).
        private_key: Payer's private key (hex).

    Returns:
        The x402 v1 payment payload, ready for :func:`build_payment_header`.
    """
    if not isinstance(payment_required, PaymentRequiredV1):
        payment_required = PaymentRequiredV1.model_validate(payment_required)
    client = create_payer_client(private_key)
    return await client.create_payment_payload(payment_required)


async def build_payment_header(
    payment_required: Union[PaymentRequiredV1, dict[str, Any]],
    private_key: str,
) -> str:
    """Same as :func:`build_payment_payload`, base64-encoded for X-PAYMENT."""
    payload = await build_payment_payload(payment_required, private_key)
    return encode_payment_header(payload)


def verify_payer_signature(
    payload: Union[PaymentPayloadV1, dict[str, Any]],
    requirements: PaymentRequirementsV1,
) -> Optional[str]:
    """Check the EIP-3009 signature of an "exact" EVM payment payload.

    Args:
        payload: Decoded X-PAYMENT payload.
        requirements: Requirements the payload claims to satisfy; supply the
            chain, token contract and EIP-712 domain.

    Returns:
        The authorizing address if the signature is valid, else None.
    """
    inner = payload.payload if isinstance(payload, PaymentPayloadV1) else payload["payload"]
    exact = ExactEIP3009Payload.from_dict(inner)
    if not exact.signature:
        return None

    extra = requirements.extra or {}
    digest = hash_eip3009_authorization(
        exact.authorization,
        get_evm_chain_id(requirements.network),
        requirements.asset,
        extra.get("name", "USDC"),
        extra.get("version", "2"),
    )
    signer = exact.authorization.from_address
    if verify_eoa_signature(digest, hex_to_bytes(exact.signature), signer):
        return signer
    return None
