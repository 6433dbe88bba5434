"""Wallet-ownership checks for profile edits.

The owner signs ``"Authenticate with PiggyBanks at <ms timestamp>"`` with the
profile's wallet (EIP-191 personal_sign) and sends it in three headers. A
signature is accepted for five minutes either side of its timestamp.
"""

import time
from typing import Mapping, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from src.logging_utils import get_logger
from src.piggybank.errors import WalletAuthError

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-wallet-signature"
MESSAGE_HEADER = "x-wallet-message"
TIMESTAMP_HEADER = "x-wallet-timestamp"
AUTH_WINDOW_MS = 5 * 60 * 1000


def auth_message(timestamp) -> str:
    return f"Authenticate with PiggyBanks at {timestamp}"


def verify_wallet_ownership(
    headers: Mapping[str, str],
    address: str,
    now_ms: Optional[int] = None,
) -> str:
    """Check that the request was signed by ``address``.

    Args:
        headers: Request headers (case-insensitive mapping).
        address: Wallet the request claims to act for.
        now_ms: Current time in milliseconds, for tests.

    Returns:
        The lower-cased verified address.

    Raises:
        WalletAuthError: If a header is missing or the signature is stale,
            malformed, or from another wallet.
    """
    signature = headers.get(SIGNATURE_HEADER)
    message = headers.get(MESSAGE_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)
    if not signature or not message or not timestamp:
        raise WalletAuthError("Missing authentication headers")

    try:
        timestamp_ms = int(timestamp)
    except ValueError:
        raise WalletAuthError("Verification failed")

    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    if abs(now_ms - timestamp_ms) > AUTH_WINDOW_MS:
        raise WalletAuthError("Authentication expired")

    if message != auth_message(timestamp):
        raise WalletAuthError("Invalid message format")

    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        logger.warning(f"Wallet signature could not be recovered: {e}")
        raise WalletAuthError("Verification failed") from e

    if recovered.lower() != address.strip().lower():
        logger.warning(f"Wallet signature from {recovered} does not match {address}")
        raise WalletAuthError("Invalid signature")
    return recovered.lower()
