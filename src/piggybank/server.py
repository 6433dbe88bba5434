"""PiggyBanks tip service.

FastAPI application exposing:
- x402-protected tipping (POST /api/send-tip)
- Creator profile registration, lookup, wallet-signed editing and deactivation
- Donation history for the creator dashboard
"""

import sys
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.config import Config, config, validate_config
from src.database import Database
from src.logging_utils import (
    CORRELATION_HEADER,
    CorrelationIdContext,
    get_logger,
    setup_logging,
)
from src.models import CreateRecipientRequest, TipRequest, UpdateRecipientRequest
from src.piggybank.auth import verify_wallet_ownership
from src.piggybank.codec import PAYMENT_HEADER, PAYMENT_RESPONSE_HEADER
from src.piggybank.directory import RecipientDirectory
from src.piggybank.errors import (
    InvalidRecipient,
    RecipientConflict,
    RecipientNotFound,
    WalletAuthError,
)
from src.piggybank.facilitator import FacilitatorGateway, HTTPFacilitatorClient
from src.piggybank.ledger import DonationLedger
from src.piggybank.orchestrator import TipOrchestrator

logger = get_logger(__name__)

CONFLICT_MESSAGES = {
    "address": "User with this address already exists",
    "slug": "This slug is already taken",
}


def create_app(
    settings: Optional[Config] = None,
    facilitator: Optional[FacilitatorGateway] = None,
    database: Optional[Database] = None,
) -> FastAPI:
    """Build the tip service application.

    Args:
        settings: Service configuration. Defaults to the global config.
        facilitator: Verify/settle gateway. Defaults to an HTTP client for
            ``settings.facilitator_url``.
        database: Store. Defaults to SQLite at ``settings.database_path``.

    Returns:
        The configured FastAPI application.
    """
    settings = settings or config
    database = database or Database(settings.database_path)
    http_facilitator = None
    if facilitator is None:
        http_facilitator = HTTPFacilitatorClient(
            base_url=settings.facilitator_url,
            api_key=settings.facilitator_api_key,
            timeout=settings.facilitator_timeout_seconds,
        )
        facilitator = http_facilitator

    directory = RecipientDirectory(database)
    ledger = DonationLedger(database)
    orchestrator = TipOrchestrator(directory, ledger, facilitator, settings)

    app = FastAPI(title="PiggyBanks", description="x402 tip service")
    app.state.settings = settings
    app.state.directory = directory
    app.state.ledger = ledger
    app.state.orchestrator = orchestrator

    @app.on_event("startup")
    async def startup():
        """Initialize database on startup."""
        logger.info("Initializing tip service...")
        await database.initialize()
        logger.info("Tip service initialized")

    @app.on_event("shutdown")
    async def shutdown():
        if http_facilitator is not None:
            await http_facilitator.close()
        if orchestrator.pending_settlements:
            logger.error(
                f"Shutting down with {orchestrator.pending_settlements} settlement(s) still in flight"
            )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        with CorrelationIdContext(request.headers.get(CORRELATION_HEADER)) as correlation_id:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "piggybank"}

    @app.post("/api/send-tip")
    async def send_tip(request: Request):
        """Tip a creator through the x402 payment exchange.

        Without an X-PAYMENT header this answers 402 with the payment
        requirements. With one, it verifies and settles the payment through
        the facilitator, records the donation and answers 200 with an
        X-PAYMENT-RESPONSE receipt.
        """
        try:
            body = await request.json()
            tip = TipRequest.model_validate(body)
        except ValueError as e:
            logger.warning(f"Invalid tip request body: {e}")
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        logger.info(f"Tip request for '{tip.recipient_slug}' amount={tip.amount}")
        outcome = await orchestrator.handle(
            tip,
            payment_header=request.headers.get(PAYMENT_HEADER),
            resource_url=str(request.url),
        )

        headers = dict(outcome.headers)
        if PAYMENT_RESPONSE_HEADER in headers:
            headers["Access-Control-Expose-Headers"] = PAYMENT_RESPONSE_HEADER
        return JSONResponse(outcome.body, status_code=outcome.status_code, headers=headers)

    @app.post("/api/create-user")
    async def create_user(request: Request):
        """Register a creator profile."""
        try:
            body = CreateRecipientRequest.model_validate(await request.json())
        except ValueError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        try:
            recipient = await directory.register_recipient(
                address=body.address,
                slug=body.slug,
                display_name=body.display_name,
                bio=body.bio,
            )
        except InvalidRecipient as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except RecipientConflict as e:
            return JSONResponse({"error": CONFLICT_MESSAGES[e.field]}, status_code=409)
        except Exception as e:
            logger.error(f"Error creating user: {e}", exc_info=True)
            return JSONResponse({"error": "Failed to create user"}, status_code=500)

        return JSONResponse(
            {"message": "User created successfully", "user": recipient.to_wire()},
            status_code=201,
        )

    @app.get("/api/check-slug")
    async def check_slug(
        slug: Optional[str] = None,
        current_address: Optional[str] = Query(default=None, alias="currentAddress"),
    ):
        """Check whether a slug is free, ignoring the caller's own profile."""
        if not slug:
            return JSONResponse({"error": "Slug is required"}, status_code=400)
        try:
            available = await directory.is_slug_available(slug, current_address)
        except Exception as e:
            logger.error(f"Error checking slug availability: {e}", exc_info=True)
            return JSONResponse({"error": "Failed to check slug availability"}, status_code=500)
        return {"available": available, "slug": slug}

    @app.get("/api/user/slug/{slug}")
    async def get_user_by_slug(slug: str):
        """Public profile lookup used by the tip page."""
        recipient = await directory.resolve_recipient(slug)
        if recipient is None:
            return JSONResponse({"error": "User not found"}, status_code=404)
        return {"user": recipient.to_wire()}

    @app.get("/api/user/{address}")
    async def get_user_by_address(address: str):
        recipient = await directory.get_recipient_by_address(address)
        if recipient is None:
            return JSONResponse({"error": "User not found"}, status_code=404)
        return {"user": recipient.to_wire()}

    @app.put("/api/user/{address}")
    async def update_user(address: str, request: Request):
        """Edit display name and bio. Must be signed by the profile's wallet."""
        try:
            verify_wallet_ownership(request.headers, address)
        except WalletAuthError as e:
            return JSONResponse({"error": e.message}, status_code=401)

        try:
            body = UpdateRecipientRequest.model_validate(await request.json())
        except ValueError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        try:
            recipient = await directory.update_recipient(
                address, body.model_dump(exclude_unset=True)
            )
        except InvalidRecipient as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except RecipientNotFound:
            return JSONResponse({"error": "User not found"}, status_code=404)
        except Exception as e:
            logger.error(f"Error updating user: {e}", exc_info=True)
            return JSONResponse({"error": "Failed to update user"}, status_code=500)

        return {"message": "User updated successfully", "user": recipient.to_wire()}

    @app.delete("/api/user/{address}")
    async def deactivate_user(address: str, request: Request):
        """Soft-delete a profile. Must be signed by the profile's wallet."""
        try:
            verify_wallet_ownership(request.headers, address)
        except WalletAuthError as e:
            return JSONResponse({"error": e.message}, status_code=401)

        try:
            await directory.deactivate_recipient(address)
        except RecipientNotFound:
            return JSONResponse({"error": "User not found"}, status_code=404)
        except Exception as e:
            logger.error(f"Error deactivating user: {e}", exc_info=True)
            return JSONResponse({"error": "Failed to deactivate user"}, status_code=500)

        return {"message": "User deactivated successfully"}

    @app.get("/api/donations/{address}")
    async def get_donations(address: str, limit: int = Query(default=50, ge=1, le=200)):
        """Donation history and totals for a creator's dashboard."""
        try:
            donations = await ledger.list_donations(address, limit)
            summary = await ledger.donation_summary(address, settings.token_symbol)
        except Exception as e:
            logger.error(f"Error fetching donations: {e}", exc_info=True)
            return JSONResponse({"error": "Failed to fetch donations"}, status_code=500)
        return {
            "donations": [d.to_wire() for d in donations],
            "summary": summary.to_wire(),
        }

    @app.get("/api/donation/{donation_id}")
    async def get_donation(donation_id: int):
        """A single donation, e.g. for the tipper's confirmation page."""
        donation = await ledger.get_donation(donation_id)
        if donation is None:
            return JSONResponse({"error": "Donation not found"}, status_code=404)
        return {"donation": donation.to_wire()}

    return app


def main() -> None:
    """Validate configuration, then serve. Fails fast on missing credentials."""
    import uvicorn

    validate_config(config)
    setup_logging(config.log_level, config.log_format)

    app = create_app(config)
    logger.info(f"Starting tip service on {config.host}:{config.port}")
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
