"""Tip orchestrator: the x402 challenge / verify / settle / record exchange.

A tip request walks a fixed sequence of states::

    ENTRY -> NO_HEADER                      (402 challenge)
    ENTRY -> DECODING -> VERIFYING -> SETTLING -> RECORDING -> FULFILLED

and can be REJECTED from any of them. Funds must move (settle) before a
donation is recorded and before success is reported. Nothing is retried:
a failed or ambiguous payment step ends the request and the client must
come back with a fresh payment proof.
"""

import asyncio
import json
import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field
from x402.schemas.v1 import PaymentRequiredV1

from src.config import Config, config
from src.logging_utils import get_logger
from src.models import (
    Donation,
    PaymentReceipt,
    PaymentRequirements,
    Recipient,
    SettleResult,
    TipRequest,
)
from src.piggybank.codec import PAYMENT_RESPONSE_HEADER, decode_payment_header, encode_payment_response
from src.piggybank.directory import RecipientDirectory
from src.piggybank.errors import InvalidAmount, MalformedPaymentHeader
from src.piggybank.facilitator import FacilitatorGateway
from src.piggybank.ledger import DonationLedger
from src.piggybank.payment_requirements import build_requirements

logger = get_logger(__name__)

MESSAGE_MAX_LENGTH = 500
MISSING_FIELDS_ERROR = "Missing required fields: recipientSlug, amount, senderAddress"


class TipState(str, Enum):
    """Protocol states of a single tip request."""

    ENTRY = "entry"
    NO_HEADER = "no_header"
    DECODING = "decoding"
    VERIFYING = "verifying"
    SETTLING = "settling"
    RECORDING = "recording"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


class TipOutcome(BaseModel):
    """HTTP-shaped result of handling one tip request."""

    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = Field(default_factory=dict)
    state: TipState = Field(description="State the request ended in")
    rejected_at: Optional[TipState] = Field(
        default=None, description="State in which the request was rejected"
    )


def _reject(at: TipState, status_code: int, body: dict[str, Any]) -> TipOutcome:
    return TipOutcome(status_code=status_code, body=body, state=TipState.REJECTED, rejected_at=at)


class TipOrchestrator:
    """Runs the x402 tip exchange against an injected facilitator gateway."""

    def __init__(
        self,
        directory: RecipientDirectory,
        ledger: DonationLedger,
        facilitator: FacilitatorGateway,
        settings: Optional[Config] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the orchestrator.

        Args:
            directory: Resolves recipient slugs.
            ledger: Records confirmed donations.
            facilitator: Verify/settle boundary.
            settings: Payment policy. Defaults to the global config.
            timeout: Upper bound in seconds on each facilitator call.
                Defaults to ``settings.facilitator_timeout_seconds``.
        """
        self.directory = directory
        self.ledger = ledger
        self.facilitator = facilitator
        self.settings = settings or config
        self.timeout = timeout if timeout is not None else self.settings.facilitator_timeout_seconds
        # Settle calls that outlived their request; held so they run to completion
        self._pending_settlements: set[asyncio.Future] = set()

    @property
    def pending_settlements(self) -> int:
        return len(self._pending_settlements)

    async def handle(
        self,
        tip: TipRequest,
        payment_header: Optional[str],
        resource_url: str,
    ) -> TipOutcome:
        """Handle one POST /api/send-tip request.

        Args:
            tip: Parsed request body.
            payment_header: Raw X-PAYMENT value, or None on the first attempt.
            resource_url: URL of this request, bound into the requirements.

        Returns:
            The outcome to send back to the client.
        """
        try:
            return await self._handle(tip, payment_header, resource_url)
        except Exception as e:
            logger.error(f"Send tip error: {e}", exc_info=True)
            return _reject(
                TipState.ENTRY,
                500,
                {"error": "Internal server error", "details": str(e)},
            )

    async def _handle(
        self, tip: TipRequest, payment_header: Optional[str], resource_url: str
    ) -> TipOutcome:
        # 1. Entry: validate, resolve recipient, build requirements
        slug = (tip.recipient_slug or "").strip()
        amount = (tip.amount or "").strip()
        sender_address = (tip.sender_address or "").strip()
        message = (tip.message or "").strip()

        if not slug or not amount or not sender_address:
            return _reject(TipState.ENTRY, 400, {"error": MISSING_FIELDS_ERROR})

        if len(message) > MESSAGE_MAX_LENGTH:
            return _reject(
                TipState.ENTRY,
                400,
                {"error": f"Message must be at most {MESSAGE_MAX_LENGTH} characters"},
            )

        recipient = await self.directory.resolve_recipient(slug)
        if recipient is None:
            return _reject(TipState.ENTRY, 404, {"error": "Recipient not found"})

        try:
            requirements = build_requirements(recipient, amount, resource_url, self.settings)
        except InvalidAmount as e:
            return _reject(TipState.ENTRY, 400, {"error": e.message})

        # 2. No header: challenge
        if not payment_header:
            logger.info("[x402] No payment header - returning 402")
            return TipOutcome(
                status_code=402,
                body=PaymentRequiredV1(
                    error="X-PAYMENT header is required",
                    accepts=[requirements],
                ).model_dump(by_alias=True, exclude_none=True),
                state=TipState.NO_HEADER,
            )

        # 3. Decode
        logger.info("[x402] Decoding payment header...")
        try:
            payload = decode_payment_header(payment_header)
        except MalformedPaymentHeader as e:
            logger.warning(f"[x402] Failed to decode payment header: {e.__cause__ or e}")
            return _reject(TipState.DECODING, e.status_code, {"error": e.message})
        logger.debug(f"[x402] Payment payload decoded: {json.dumps(payload)}")

        # 4. Verify
        logger.info(
            f"[x402] Verifying payment of {requirements.max_amount_required} to {recipient.address}"
        )
        try:
            verify_result = await asyncio.wait_for(
                self.facilitator.verify(payload, requirements), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"[x402] Verification timed out after {self.timeout}s")
            return _reject(
                TipState.VERIFYING,
                500,
                {
                    "error": "Payment verification failed",
                    "details": f"Facilitator did not answer within {self.timeout}s",
                },
            )
        except Exception as e:
            logger.error(f"[x402] Verification error: {e}", exc_info=True)
            return _reject(
                TipState.VERIFYING,
                500,
                {"error": "Payment verification failed", "details": str(e)},
            )

        if not verify_result.is_valid:
            logger.warning(f"[x402] Payment verification failed: {verify_result.invalid_reason}")
            return _reject(
                TipState.VERIFYING,
                402,
                {"error": "Payment verification failed", "reason": verify_result.invalid_reason},
            )
        logger.info(f"[x402] Payment verified for payer: {verify_result.payer}")

        # 5. Settle before anything is recorded or reported
        logger.info("[x402] Settling payment...")
        try:
            settlement = await self._settle(payload, requirements)
        except asyncio.TimeoutError:
            logger.error(
                f"[x402] Settlement did not complete within {self.timeout}s; "
                "left running for reconciliation"
            )
            return _reject(
                TipState.SETTLING,
                500,
                {
                    "error": "Payment settlement failed",
                    "details": f"Settlement did not complete within {self.timeout}s",
                },
            )
        except Exception as e:
            logger.error(f"[x402] Settlement error ({type(e).__name__}): {e}", exc_info=True)
            return _reject(
                TipState.SETTLING,
                500,
                {"error": "Payment settlement failed", "details": str(e)},
            )

        if not settlement.success:
            logger.warning(f"[x402] Settlement failed: {settlement.error_reason}")
            return _reject(
                TipState.SETTLING,
                402,
                {"error": "Payment settlement failed", "reason": settlement.error_reason},
            )
        logger.info(
            f"[x402] Payment settled: tx={settlement.transaction} "
            f"network={settlement.network} payer={settlement.payer}"
        )

        # 6. Record
        payer = settlement.payer or verify_result.payer or sender_address
        tx_hash = settlement.transaction or f"x402-{int(time.time() * 1000)}"
        donation_id = await self._record(recipient, requirements, tx_hash, payer, amount, message)

        # 7. Fulfill
        receipt = PaymentReceipt(
            success=True,
            transaction=tx_hash,
            network=settlement.network or requirements.network,
            payer=settlement.payer,
            amount=requirements.max_amount_required,
            token=self.settings.token_symbol,
            recipient=recipient.address,
        )
        return TipOutcome(
            status_code=200,
            body={
                "success": True,
                "donation": {
                    "id": donation_id,
                    "amount": amount,
                    "recipient": recipient.label,
                },
            },
            headers={PAYMENT_RESPONSE_HEADER: encode_payment_response(receipt)},
            state=TipState.FULFILLED,
        )

    async def _settle(
        self, payload: dict[str, Any], requirements: PaymentRequirements
    ) -> SettleResult:
        """Call settle with a deadline that never cancels the settle call itself.

        A settle that outlives the deadline (or a cancelled request) keeps
        running in the background and its outcome is logged on completion.
        """
        task = asyncio.ensure_future(self.facilitator.settle(payload, requirements))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            if not task.done():
                self._pending_settlements.add(task)
                task.add_done_callback(self._settlement_finished_late)
            raise

    def _settlement_finished_late(self, task: asyncio.Future) -> None:
        self._pending_settlements.discard(task)
        if task.cancelled():
            logger.error("[x402] RECONCILE: late settlement was cancelled; outcome unknown")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[x402] RECONCILE: late settlement raised: {exc}")
            return
        result = task.result()
        logger.error(
            f"[x402] RECONCILE: settlement finished after its request gave up: "
            f"success={result.success} tx={result.transaction} payer={result.payer} "
            f"reason={result.error_reason}"
        )

    async def _record(
        self,
        recipient: Recipient,
        requirements: PaymentRequirements,
        tx_hash: str,
        payer: str,
        amount: str,
        message: str,
    ) -> Optional[int]:
        """Write the confirmed donation. Failures are logged, never raised.

        Returns:
            The donation id, or None if the record could not be written.
        """
        donation = Donation(
            tx_hash=tx_hash,
            chain_id=self.settings.chain_id,
            from_address=payer,
            to_address=recipient.address,
            token_address=requirements.asset,
            token_symbol=self.settings.token_symbol,
            token_decimals=self.settings.token_decimals,
            amount_raw=requirements.max_amount_required,
            amount_formatted=amount,
            message=message,
            is_anonymous=False,
            status="confirmed",
            confirmations=1,
        )
        try:
            stored = await self.ledger.record_donation(donation)
        except Exception as e:
            # Funds already moved; report success and leave the gap for reconciliation
            logger.error(
                f"[x402] RECONCILE: payment settled (tx {tx_hash}, {amount} "
                f"{self.settings.token_symbol} {payer} -> {recipient.address}) "
                f"but donation record failed: {e}",
                exc_info=True,
            )
            return None
        logger.info(f"[x402] Donation saved to database: {stored.id}")
        return stored.id
