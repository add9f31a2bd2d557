"""Error taxonomy shared by the booking and payment services."""


class MarketplaceError(Exception):
    """Base class for errors raised by the booking and payment services."""

    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class BookingValidationError(MarketplaceError):
    """Bad interval, past start time, self-booking or a spot that is not bookable."""


class ConflictError(MarketplaceError):
    """Requested interval overlaps an active booking on the same spot."""

    status_code = 409


class InvalidStateTransition(MarketplaceError):
    status_code = 409

    def __init__(self, current: str, target: str, message: str = ""):
        super().__init__(
            message or f"Cannot move booking from {current} to {target}.",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class NotFoundError(MarketplaceError):
    status_code = 404


class PaymentNotFound(NotFoundError):
    """No local payment matches the reference number or external id."""


class PollTimeout(MarketplaceError):
    """Polling gave up while the payment was still pending."""

    status_code = 202

    def __init__(self, reference_number: str, attempts: int):
        super().__init__(
            f"Payment {reference_number} still pending after {attempts} attempts.",
            reference_number=reference_number,
            attempts=attempts,
        )
        self.reference_number = reference_number
        self.attempts = attempts


class GatewayError(MarketplaceError):
    """Network failure or non-2xx response from the payment gateway."""

    status_code = 502
