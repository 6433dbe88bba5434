"""Exceptions raised by the tip service.

``TipError`` subclasses carry the HTTP status the orchestrator answers with.
Infrastructure failures (facilitator, store) are plain exceptions and are
mapped to 500 where they are caught.
"""


class TipError(Exception):
    """A tip request that is rejected before or during payment."""

    status_code = 400
    code = "tip_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTipRequest(TipError):
    """Missing or malformed request fields."""

    code = "invalid_request"


class InvalidAmount(InvalidTipRequest):
    """Requested amount is non-numeric or not positive."""

    code = "invalid_amount"

    def __init__(self, message: str = "Invalid amount"):
        super().__init__(message)


class MalformedPaymentHeader(TipError):
    """X-PAYMENT is present but is not base64-encoded JSON.

    Distinct from a missing header: the client sent something broken rather
    than nothing at all.
    """

    status_code = 402
    code = "malformed_payment_header"

    def __init__(self, message: str = "Invalid X-PAYMENT header format"):
        super().__init__(message)


class FacilitatorError(Exception):
    """The facilitator could not be reached or answered with garbage."""


class FacilitatorTimeout(FacilitatorError):
    """A facilitator call exceeded the configured timeout."""


class DuplicateDonationError(Exception):
    """A donation with this transaction hash is already recorded."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Donation already recorded for tx {tx_hash}")
        self.tx_hash = tx_hash


class InvalidRecipient(ValueError):
    """Profile registration input failed validation."""


class RecipientConflict(Exception):
    """The address or slug is already registered."""

    def __init__(self, field: str):
        super().__init__(f"This {field} is already taken")
        self.field = field


class RecipientNotFound(Exception):
    """No active profile is registered for the address."""

    def __init__(self, address: str):
        super().__init__(f"No active recipient for {address}")
        self.address = address


class WalletAuthError(Exception):
    """A profile edit was not signed by the profile's wallet."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
