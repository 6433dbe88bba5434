"""SQLite database interface for the PiggyBanks ledger.

Holds recipient profiles and confirmed donations. Uniqueness of slugs,
payout addresses and settlement transaction hashes is enforced by the
schema, not by application code.
"""

import sqlite3
from datetime import datetime
from typing import Optional

import aiosqlite

from .config import config
from .logging_utils import get_logger
from .models import Donation, DonationSummary, Recipient
from .piggybank.errors import DuplicateDonationError, RecipientConflict

logger = get_logger(__name__)

# SQL Schema
SCHEMA_SQL = """
-- Creator profiles
CREATE TABLE IF NOT EXISTS recipients (
    address TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    display_name TEXT,
    bio TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Confirmed donations (write-once)
CREATE TABLE IF NOT EXISTS donations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_hash TEXT NOT NULL UNIQUE,
    chain_id INTEGER NOT NULL,
    from_address TEXT NOT NULL,
    to_address TEXT NOT NULL,
    token_address TEXT NOT NULL,
    token_symbol TEXT NOT NULL,
    token_decimals INTEGER NOT NULL,
    amount_raw TEXT NOT NULL,
    amount_formatted TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT '',
    is_anonymous INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL CHECK(status IN ('pending', 'confirmed', 'failed')),
    confirmations INTEGER NOT NULL DEFAULT 0,
    transaction_timestamp TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_donations_to_address ON donations(to_address, created_at);
CREATE INDEX IF NOT EXISTS idx_donations_from_address ON donations(from_address, created_at);
CREATE INDEX IF NOT EXISTS idx_donations_status ON donations(chain_id, status);
"""


def _row_to_recipient(row) -> Recipient:
    return Recipient(
        address=row["address"],
        slug=row["slug"],
        display_name=row["display_name"],
        bio=row["bio"],
        is_active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_donation(row) -> Donation:
    return Donation(
        id=row["id"],
        tx_hash=row["tx_hash"],
        chain_id=row["chain_id"],
        from_address=row["from_address"],
        to_address=row["to_address"],
        token_address=row["token_address"],
        token_symbol=row["token_symbol"],
        token_decimals=row["token_decimals"],
        amount_raw=row["amount_raw"],
        amount_formatted=row["amount_formatted"],
        message=row["message"],
        is_anonymous=bool(row["is_anonymous"]),
        status=row["status"],
        confirmations=row["confirmations"],
        transaction_timestamp=datetime.fromisoformat(row["transaction_timestamp"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class Database:
    """Async database interface for recipients and donations."""

    def __init__(self, db_path: str = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. Defaults to config.database_path.
        """
        self.db_path = db_path or config.database_path

    async def initialize(self) -> None:
        """Initialize database schema."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(SCHEMA_SQL)
            await db.commit()
        logger.info(f"Database initialized at {self.db_path}")

    # Recipient operations
    async def create_recipient(self, recipient: Recipient) -> None:
        """Insert a new recipient profile.

        Args:
            recipient: Profile to create. Address and slug must already be normalized.

        Raises:
            RecipientConflict: If the address or slug is already registered.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO recipients
                    (address, slug, display_name, bio, is_active, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        recipient.address,
                        recipient.slug,
                        recipient.display_name,
                        recipient.bio,
                        1 if recipient.is_active else 0,
                        recipient.created_at.isoformat(),
                        recipient.updated_at.isoformat(),
                    ),
                )
                await db.commit()
        except sqlite3.IntegrityError as e:
            field = "slug" if "recipients.slug" in str(e) else "address"
            logger.warning(f"Recipient {field} already taken: {recipient.slug} / {recipient.address}")
            raise RecipientConflict(field) from e
        logger.info(f"Created recipient: {recipient.slug}")

    async def get_recipient_by_slug(
        self, slug: str, active_only: bool = True
    ) -> Optional[Recipient]:
        """Get a recipient by slug.

        Args:
            slug: Normalized (lowercase) slug.
            active_only: Ignore deactivated profiles.

        Returns:
            Recipient if found, None otherwise.
        """
        query = "SELECT * FROM recipients WHERE slug = ?"
        if active_only:
            query += " AND is_active = 1"
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, (slug,))
            row = await cursor.fetchone()
            return _row_to_recipient(row) if row else None

    async def get_recipient_by_address(
        self, address: str, active_only: bool = False
    ) -> Optional[Recipient]:
        """Get a recipient by payout address.

        Args:
            address: Normalized (lowercase) address.
            active_only: Ignore deactivated profiles. Off by default so that
                registration still sees a deactivated owner of the address.

        Returns:
            Recipient if found, None otherwise.
        """
        query = "SELECT * FROM recipients WHERE address = ?"
        if active_only:
            query += " AND is_active = 1"
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, (address,))
            row = await cursor.fetchone()
            return _row_to_recipient(row) if row else None

    async def slug_taken(self, slug: str, exclude_address: Optional[str] = None) -> bool:
        """Check whether a slug is held by any recipient other than ``exclude_address``."""
        async with aiosqlite.connect(self.db_path) as db:
            if exclude_address:
                cursor = await db.execute(
                    "SELECT 1 FROM recipients WHERE slug = ? AND address != ?",
                    (slug, exclude_address),
                )
            else:
                cursor = await db.execute("SELECT 1 FROM recipients WHERE slug = ?", (slug,))
            return await cursor.fetchone() is not None

    async def update_recipient_profile(
        self, address: str, display_name: Optional[str], bio: Optional[str]
    ) -> bool:
        """Replace an active recipient's display name and bio.

        Returns:
            False if no active recipient has this address.
        """
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                UPDATE recipients SET display_name = ?, bio = ?, updated_at = ?
                WHERE address = ? AND is_active = 1
                """,
                (display_name, bio, datetime.utcnow().isoformat(), address),
            )
            await db.commit()
            updated = cursor.rowcount > 0
        if updated:
            logger.info(f"Updated profile for {address}")
        return updated

    async def set_recipient_active(self, address: str, active: bool) -> bool:
        """Flip the active flag. Returns False if the address is unknown."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE recipients SET is_active = ?, updated_at = ? WHERE address = ?",
                (1 if active else 0, datetime.utcnow().isoformat(), address),
            )
            await db.commit()
            updated = cursor.rowcount > 0
        logger.info(f"Recipient {address} active={active}")
        return updated

    # Donation operations
    async def create_donation(self, donation: Donation) -> Donation:
        """Insert a donation record.

        Args:
            donation: Donation to insert. ``id`` is ignored and assigned by the store.

        Returns:
            The stored donation with its assigned id.

        Raises:
            DuplicateDonationError: If a donation with the same tx_hash exists.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT INTO donations
                    (tx_hash, chain_id, from_address, to_address, token_address,
                     token_symbol, token_decimals, amount_raw, amount_formatted, message,
                     is_anonymous, status, confirmations, transaction_timestamp, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        donation.tx_hash,
                        donation.chain_id,
                        donation.from_address,
                        donation.to_address,
                        donation.token_address,
                        donation.token_symbol,
                        donation.token_decimals,
                        donation.amount_raw,
                        donation.amount_formatted,
                        donation.message,
                        1 if donation.is_anonymous else 0,
                        donation.status,
                        donation.confirmations,
                        donation.transaction_timestamp.isoformat(),
                        donation.created_at.isoformat(),
                    ),
                )
                await db.commit()
                donation_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            logger.warning(f"Donation already recorded for tx {donation.tx_hash}")
            raise DuplicateDonationError(donation.tx_hash) from e

        logger.info(f"Created donation {donation_id} for tx {donation.tx_hash}")
        return donation.model_copy(update={"id": donation_id})

    async def get_donation(self, donation_id: int) -> Optional[Donation]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM donations WHERE id = ?", (donation_id,))
            row = await cursor.fetchone()
            return _row_to_donation(row) if row else None

    async def list_donations(self, to_address: str, limit: int = 50) -> list[Donation]:
        """List a recipient's donations, newest first.

        Args:
            to_address: Normalized recipient address.
            limit: Maximum number of rows.

        Returns:
            Donations ordered by creation time descending.
        """
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT * FROM donations
                WHERE to_address = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (to_address, limit),
            )
            rows = await cursor.fetchall()
            return [_row_to_donation(row) for row in rows]

    async def donation_summary(self, to_address: str, token_symbol: str) -> DonationSummary:
        """Count and total confirmed donations of one token for a recipient."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT amount_raw FROM donations
                WHERE to_address = ? AND token_symbol = ? AND status = 'confirmed'
                """,
                (to_address, token_symbol),
            )
            rows = await cursor.fetchall()

        # amount_raw is a decimal string that may exceed SQLite's 64-bit integers
        total = sum(int(row[0]) for row in rows)
        return DonationSummary(count=len(rows), total_raw=str(total), token_symbol=token_symbol)
