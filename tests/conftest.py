import os
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from x402.schemas import VerifyResponse

# Set dummy environment variables for testing
# This must run before src.config is imported by any test
os.environ.setdefault("FACILITATOR_URL", "http://facilitator.test")
os.environ.setdefault("FACILITATOR_API_KEY", "test-api-key")
os.environ.setdefault("LOG_FORMAT", "text")

from src.config import Config
from src.database import Database
from src.models import SettleResult
from src.piggybank.auth import (
    MESSAGE_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    auth_message,
)
from src.piggybank.directory import RecipientDirectory
from src.piggybank.ledger import DonationLedger
from src.piggybank.orchestrator import TipOrchestrator

TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def settings(tmp_path):
    return Config(
        facilitator_url="http://facilitator.test",
        facilitator_api_key="test-api-key",
        facilitator_timeout_seconds=5.0,
        database_path=str(tmp_path / "ledger.db"),
    )


@pytest.fixture
async def test_db(settings):
    """Create a temporary test database."""
    db = Database(settings.database_path)
    await db.initialize()
    return db


@pytest.fixture
def directory(test_db):
    return RecipientDirectory(test_db)


@pytest.fixture
def ledger(test_db):
    return DonationLedger(test_db)


@pytest.fixture
def recipient_account():
    return Account.create()


@pytest.fixture
def payer_account():
    return Account.create()


@pytest.fixture
async def recipient(directory, recipient_account):
    return await directory.register_recipient(recipient_account.address, "alice", "Alice")


@pytest.fixture
def facilitator(payer_account):
    """Facilitator gateway that accepts and settles every payment."""
    gateway = MagicMock()
    gateway.verify = AsyncMock(
        return_value=VerifyResponse(is_valid=True, payer=payer_account.address)
    )
    gateway.settle = AsyncMock(
        return_value=SettleResult(
            success=True,
            transaction=TX_HASH,
            network="base-sepolia",
            payer=payer_account.address,
        )
    )
    return gateway


@pytest.fixture
def orchestrator(directory, ledger, facilitator, settings):
    return TipOrchestrator(directory, ledger, facilitator, settings)


@pytest.fixture
def wallet_auth_headers():
    """Sign profile-edit auth headers the way the web client does."""

    def sign(account, timestamp=None, message=None):
        timestamp = int(time.time() * 1000) if timestamp is None else timestamp
        message = auth_message(timestamp) if message is None else message
        signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
        return {
            SIGNATURE_HEADER: "0x" + signed.signature.hex().removeprefix("0x"),
            MESSAGE_HEADER: message,
            TIMESTAMP_HEADER: str(timestamp),
        }

    return sign
