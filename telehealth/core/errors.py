"""Error taxonomy for the booking engine.

Authorization, conflict and lookup errors are surfaced directly to the caller.
Provider and store errors carry an ``is_retryable`` flag consumed by the
retry helper before being surfaced as ProvisioningFailed/StoreUnavailable.
"""


class BookingError(Exception):
    """Base exception for booking engine errors."""

    pass


class Unauthenticated(BookingError):
    """Raised when the actor token cannot be resolved to an identity."""

    pass


class Forbidden(BookingError):
    """Raised when the resolved actor may not perform the operation.

    ``redirect_area`` names the area the actor does belong to, so a
    presentation layer can redirect instead of rendering an error.
    """

    def __init__(self, message: str, redirect_area: str | None = None) -> None:
        super().__init__(message)
        self.redirect_area = redirect_area


class SlotConflict(BookingError):
    """Raised when the (doctor, start time) slot is already held."""

    pass


class NotFound(BookingError):
    """Raised when an appointment does not exist."""

    pass


class InvalidBookingRequest(BookingError):
    """Raised when a booking request fails validation."""

    pass


class ProvisioningFailed(BookingError):
    """Raised when a video session could not be provisioned."""

    def __init__(self, message: str, permanent: bool = True) -> None:
        super().__init__(message)
        self.permanent = permanent


class NotificationFailed(BookingError):
    """Raised internally when a notification send exhausts its retries.

    Never propagated out of booking operations; converted into a receipt.
    """

    pass


class StoreUnavailable(BookingError):
    """Raised when the durable store cannot be reached after retries."""

    is_retryable = True


class ExternalServiceError(Exception):
    """Base exception for third-party provider and gateway errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        is_retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_retryable = is_retryable


class VideoProviderError(ExternalServiceError):
    """Video room provider error."""

    pass


class GatewayError(ExternalServiceError):
    """Email or SMS gateway error."""

    pass
