"""Unit tests for wallet-ownership verification."""

import pytest

from src.piggybank.auth import (
    AUTH_WINDOW_MS,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    auth_message,
    verify_wallet_ownership,
)
from src.piggybank.errors import WalletAuthError

NOW_MS = 1_760_000_000_000


@pytest.mark.unit
class TestVerifyWalletOwnership:
    """Test signed-message checks for profile edits."""

    def test_message_format(self):
        assert auth_message(NOW_MS) == "Authenticate with PiggyBanks at 1760000000000"

    def test_valid_signature(self, recipient_account, wallet_auth_headers):
        headers = wallet_auth_headers(recipient_account, timestamp=NOW_MS)

        verified = verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS)

        assert verified == recipient_account.address.lower()

    def test_address_case_ignored(self, recipient_account, wallet_auth_headers):
        headers = wallet_auth_headers(recipient_account, timestamp=NOW_MS)

        verified = verify_wallet_ownership(
            headers, recipient_account.address.lower(), now_ms=NOW_MS
        )
        assert verified == recipient_account.address.lower()

    @pytest.mark.parametrize("offset", [AUTH_WINDOW_MS, -AUTH_WINDOW_MS])
    def test_edge_of_window_accepted(self, recipient_account, wallet_auth_headers, offset):
        headers = wallet_auth_headers(recipient_account, timestamp=NOW_MS)

        verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS + offset)

    @pytest.mark.parametrize("offset", [AUTH_WINDOW_MS + 1, -AUTH_WINDOW_MS - 1])
    def test_outside_window_rejected(self, recipient_account, wallet_auth_headers, offset):
        headers = wallet_auth_headers(recipient_account, timestamp=NOW_MS)

        with pytest.raises(WalletAuthError, match="Authentication expired"):
            verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS + offset)

    @pytest.mark.parametrize("missing", ["signature", "message", "timestamp"])
    def test_missing_header(self, recipient_account, wallet_auth_headers, missing):
        headers = wallet_auth_headers(recipient_account, timestamp=NOW_MS)
        del headers[f"x-wallet-{missing}"]

        with pytest.raises(WalletAuthError, match="Missing authentication headers"):
            verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS)

    def test_other_wallet_rejected(self, recipient_account, payer_account, wallet_auth_headers):
        headers = wallet_auth_headers(payer_account, timestamp=NOW_MS)

        with pytest.raises(WalletAuthError, match="Invalid signature"):
            verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS)

    def test_message_must_match_timestamp(self, recipient_account, wallet_auth_headers):
        headers = wallet_auth_headers(
            recipient_account, timestamp=NOW_MS, message=auth_message(NOW_MS - 1)
        )

        with pytest.raises(WalletAuthError, match="Invalid message format"):
            verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS)

    def test_foreign_message_rejected(self, recipient_account, wallet_auth_headers):
        headers = wallet_auth_headers(
            recipient_account, timestamp=NOW_MS, message="Sign in to something else"
        )

        with pytest.raises(WalletAuthError, match="Invalid message format"):
            verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS)

    def test_non_numeric_timestamp(self, recipient_account, wallet_auth_headers):
        headers = wallet_auth_headers(recipient_account, timestamp=NOW_MS)
        headers[TIMESTAMP_HEADER] = "yesterday"

        with pytest.raises(WalletAuthError, match="Verification failed"):
            verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS)

    def test_garbage_signature(self, recipient_account, wallet_auth_headers):
        headers = wallet_auth_headers(recipient_account, timestamp=NOW_MS)
        headers[SIGNATURE_HEADER] = "0x1234"

        with pytest.raises(WalletAuthError, match="Verification failed"):
            verify_wallet_ownership(headers, recipient_account.address, now_ms=NOW_MS)
