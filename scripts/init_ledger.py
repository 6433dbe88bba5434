"""Database initialization script.

Creates the ledger schema and optionally registers a recipient:

    python scripts/init_ledger.py [ADDRESS SLUG [DISPLAY_NAME]]
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import config
from src.database import Database
from src.logging_utils import get_logger, setup_logging
from src.piggybank.directory import RecipientDirectory
from src.piggybank.errors import InvalidRecipient, RecipientConflict

setup_logging(config.log_level, config.log_format)
logger = get_logger(__name__)


async def main(args: list[str]) -> int:
    """Initialize the database and seed an optional recipient."""
    db = Database(config.database_path)
    logger.info(f"Initializing ledger at {db.db_path}")
    await db.initialize()

    if len(args) >= 2:
        address, slug = args[0], args[1]
        display_name = args[2] if len(args) > 2 else None
        try:
            recipient = await RecipientDirectory(db).register_recipient(address, slug, display_name)
        except (InvalidRecipient, RecipientConflict) as e:
            logger.error(f"Could not register recipient: {e}")
            return 1
        logger.info(f"Registered {recipient.slug} -> {recipient.address}")

    logger.info("Ledger initialization complete!")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
