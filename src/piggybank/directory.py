"""Recipient directory: slug to payout address resolution and profile registration."""

import re
from typing import Optional

from eth_utils import is_hex_address

from src.database import Database
from src.logging_utils import get_logger
from src.models import Recipient
from src.piggybank.errors import InvalidRecipient, RecipientConflict, RecipientNotFound

logger = get_logger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 30
DISPLAY_NAME_MAX_LENGTH = 50
BIO_MAX_LENGTH = 500


def normalize_slug(slug: str) -> str:
    return slug.strip().lower()


def normalize_address(address: str) -> str:
    return address.strip().lower()


def validate_slug(slug: str) -> None:
    """Raise InvalidRecipient unless ``slug`` is 3-30 chars of [a-z0-9-]."""
    if (
        len(slug) < SLUG_MIN_LENGTH
        or len(slug) > SLUG_MAX_LENGTH
        or not SLUG_PATTERN.match(slug)
    ):
        raise InvalidRecipient(
            "Slug must be 3-30 characters, lowercase letters, numbers, and hyphens only"
        )


def clean_profile_text(
    display_name: Optional[str], bio: Optional[str]
) -> tuple[Optional[str], Optional[str]]:
    """Trim display name and bio, enforce their limits, turn blanks into None."""
    display_name = display_name.strip() if display_name else None
    bio = bio.strip() if bio else None
    if display_name and len(display_name) > DISPLAY_NAME_MAX_LENGTH:
        raise InvalidRecipient(f"Display name must be at most {DISPLAY_NAME_MAX_LENGTH} characters")
    if bio and len(bio) > BIO_MAX_LENGTH:
        raise InvalidRecipient(f"Bio must be at most {BIO_MAX_LENGTH} characters")
    return display_name or None, bio or None


class RecipientDirectory:
    """Looks up and registers creator profiles."""

    def __init__(self, db: Database):
        self.db = db

    async def resolve_recipient(self, slug: str) -> Optional[Recipient]:
        """Resolve a slug to an active recipient.

        Lookup is case-insensitive. Deactivated profiles resolve to None, the
        same as unknown slugs.

        Args:
            slug: Slug as supplied by the client.

        Returns:
            The recipient, or None if no active recipient matches.
        """
        normalized = normalize_slug(slug)
        if not normalized:
            return None
        recipient = await self.db.get_recipient_by_slug(normalized)
        if recipient is None:
            logger.info(f"No active recipient for slug '{normalized}'")
        return recipient

    async def get_recipient_by_address(self, address: str) -> Optional[Recipient]:
        """Public lookup by payout address; deactivated profiles resolve to None."""
        return await self.db.get_recipient_by_address(normalize_address(address), active_only=True)

    async def is_slug_available(self, slug: str, current_address: Optional[str] = None) -> bool:
        """Check slug availability, ignoring the profile owned by ``current_address``.

        ``current_address`` lets an existing creator keep their own slug while
        editing their profile.
        """
        exclude = normalize_address(current_address) if current_address else None
        return not await self.db.slug_taken(normalize_slug(slug), exclude_address=exclude)

    async def register_recipient(
        self,
        address: str,
        slug: str,
        display_name: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> Recipient:
        """Create a new recipient profile.

        Args:
            address: Payout address (0x-prefixed, 20 bytes hex).
            slug: Requested handle.
            display_name: Optional display name.
            bio: Optional bio.

        Returns:
            The stored recipient.

        Raises:
            InvalidRecipient: If any field fails validation.
            RecipientConflict: If the address or slug is already registered.
        """
        if not address or not slug:
            raise InvalidRecipient("Address and slug are required")

        address = normalize_address(address)
        slug = normalize_slug(slug)

        if not is_hex_address(address):
            raise InvalidRecipient("Address must be a 0x-prefixed 20-byte hex address")
        validate_slug(slug)

        display_name, bio = clean_profile_text(display_name, bio)

        if await self.db.get_recipient_by_address(address):
            raise RecipientConflict("address")
        if await self.db.slug_taken(slug):
            raise RecipientConflict("slug")

        recipient = Recipient(
            address=address,
            slug=slug,
            display_name=display_name,
            bio=bio,
        )
        await self.db.create_recipient(recipient)
        logger.info(f"Registered recipient {slug} -> {address}")
        return recipient

    async def update_recipient(self, address: str, changes: dict[str, Optional[str]]) -> Recipient:
        """Edit an active profile's display name and/or bio.

        Args:
            address: Profile owner.
            changes: New ``display_name`` and/or ``bio``. Fields not present
                keep their value; a blank value clears the field.

        Returns:
            The updated recipient.

        Raises:
            InvalidRecipient: If a field is too long.
            RecipientNotFound: If no active profile has this address.
        """
        address = normalize_address(address)
        current = await self.db.get_recipient_by_address(address, active_only=True)
        if current is None:
            raise RecipientNotFound(address)

        display_name, bio = clean_profile_text(
            changes.get("display_name", current.display_name),
            changes.get("bio", current.bio),
        )
        if not await self.db.update_recipient_profile(address, display_name, bio):
            raise RecipientNotFound(address)
        return await self.db.get_recipient_by_address(address)

    async def deactivate_recipient(self, address: str) -> None:
        """Soft-delete a profile: it can no longer be looked up or tipped.

        Raises:
            RecipientNotFound: If no active profile has this address.
        """
        address = normalize_address(address)
        if await self.db.get_recipient_by_address(address, active_only=True) is None:
            raise RecipientNotFound(address)
        await self.db.set_recipient_active(address, False)
        logger.info(f"Deactivated recipient {address}")
