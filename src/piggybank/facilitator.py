"""Facilitator gateway: the external verify/settle boundary.

Signature checks, nonce handling and chain submission all happen inside the
facilitator. This module only defines the contract the orchestrator depends
on and an HTTP client that speaks the x402 facilitator API.
"""

from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError
from x402.schemas import VerifyResponse

from src.logging_utils import CORRELATION_HEADER, get_correlation_id, get_logger
from src.models import PaymentRequirements, SettleResult
from src.piggybank.errors import FacilitatorError, FacilitatorTimeout

logger = get_logger(__name__)


class FacilitatorGateway(Protocol):
    """What the tip orchestrator needs from a facilitator.

    Implementations raise ``FacilitatorError`` when no clear answer could be
    obtained. Neither call is safe to retry blindly.
    """

    async def verify(
        self, payload: dict[str, Any], requirements: PaymentRequirements
    ) -> VerifyResponse: ...

    async def settle(
        self, payload: dict[str, Any], requirements: PaymentRequirements
    ) -> SettleResult: ...


class HTTPFacilitatorClient:
    """Client for a remote x402 facilitator (``POST /verify`` and ``POST /settle``)."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        x402_version: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the facilitator client.

        Args:
            base_url: Facilitator base URL.
            api_key: Optional API key, sent as a bearer token.
            timeout: Per-request timeout in seconds.
            x402_version: Protocol version stamped on every request.
            transport: Optional httpx transport (tests inject a MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.x402_version = x402_version

        headers = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        """Close the underlying HTTP client."""
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _request_body(self, payload: dict[str, Any], requirements: PaymentRequirements) -> dict:
        return {
            "x402Version": self.x402_version,
            "paymentPayload": payload,
            "paymentRequirements": requirements.to_wire(),
        }

    async def _post(self, path: str, body: dict, result_key: str) -> dict:
        """POST to the facilitator and return its JSON object.

        A 4xx answer that still carries a structured result (``result_key``)
        is a legitimate rejection and is returned as-is. Everything else that
        is not a 2xx JSON object raises.
        """
        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers[CORRELATION_HEADER] = correlation_id

        try:
            response = await self._http.post(path, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise FacilitatorTimeout(f"Facilitator {path} timed out") from e
        except httpx.HTTPError as e:
            raise FacilitatorError(f"Facilitator {path} request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if (
            response.status_code >= 500
            or not isinstance(data, dict)
            or (response.status_code >= 400 and result_key not in data)
        ):
            raise FacilitatorError(
                f"Facilitator {path} responded with {response.status_code}: {response.text[:200]}"
            )
        return data

    async def verify(
        self, payload: dict[str, Any], requirements: PaymentRequirements
    ) -> VerifyResponse:
        """Ask the facilitator whether the payment proof satisfies the requirements."""
        data = await self._post("/verify", self._request_body(payload, requirements), "isValid")
        try:
            return VerifyResponse.model_validate(data)
        except ValidationError as e:
            raise FacilitatorError(f"Unexpected verify response: {data}") from e

    async def settle(
        self, payload: dict[str, Any], requirements: PaymentRequirements
    ) -> SettleResult:
        """Ask the facilitator to execute the payment on-chain."""
        data = await self._post("/settle", self._request_body(payload, requirements), "success")
        try:
            return SettleResult.model_validate(data)
        except ValidationError as e:
            raise FacilitatorError(f"Unexpected settle response: {data}") from e
