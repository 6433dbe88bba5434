"""Donation ledger: write-once records of settled tips, plus dashboard reads."""

from typing import Optional

from src.database import Database
from src.logging_utils import get_logger
from src.models import Donation, DonationSummary

logger = get_logger(__name__)

MAX_LIST_LIMIT = 200


class DonationLedger:
    """Persists confirmed donations. Write-once: records have no update path."""

    def __init__(self, db: Database):
        self.db = db

    async def record_donation(self, donation: Donation) -> Donation:
        """Persist a donation after normalizing its fields.

        Hashes and addresses are lower-cased, the token symbol upper-cased,
        and the message trimmed, matching how the store indexes them.

        Args:
            donation: Donation to write.

        Returns:
            The stored donation with its id.

        Raises:
            DuplicateDonationError: If the tx hash was already recorded.
        """
        normalized = donation.model_copy(
            update={
                "id": None,
                "tx_hash": donation.tx_hash.strip().lower(),
                "from_address": donation.from_address.strip().lower(),
                "to_address": donation.to_address.strip().lower(),
                "token_address": donation.token_address.strip().lower(),
                "token_symbol": donation.token_symbol.strip().upper(),
                "message": (donation.message or "").strip(),
            }
        )
        stored = await self.db.create_donation(normalized)
        logger.info(
            f"Recorded {stored.status} donation {stored.id}: {stored.amount_formatted} "
            f"{stored.token_symbol} {stored.from_address} -> {stored.to_address}"
        )
        return stored

    async def get_donation(self, donation_id: int) -> Optional[Donation]:
        return await self.db.get_donation(donation_id)

    async def list_donations(self, to_address: str, limit: int = 50) -> list[Donation]:
        """Newest donations received by ``to_address`` (limit clamped to 1..200)."""
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        return await self.db.list_donations(to_address.strip().lower(), limit)

    async def donation_summary(self, to_address: str, token_symbol: str) -> DonationSummary:
        return await self.db.donation_summary(to_address.strip().lower(), token_symbol.upper())
