class CommerceError(Exception):
    """Base exception for the commerce API."""

    pass


class ClientError(CommerceError):
    """Raised for bad, unsigned, malformed or oversized input.

    Never mutates state and is never retried by this service.
    """

    status_code = 400
    error = "bad_request"

    def __init__(self, detail: str, event_id: str | None = None):
        self.detail = detail
        self.event_id = event_id
        super().__init__(detail)


class SignatureVerificationError(ClientError):
    """Raised when a webhook body fails signature verification."""

    error = "invalid_signature"


class PayloadTooLargeError(ClientError):
    """Raised when a webhook body exceeds the configured size limit."""

    status_code = 413
    error = "payload_too_large"


class MalformedEventError(ClientError):
    """Raised when a webhook body is not JSON or lacks id/type/data.object."""

    error = "malformed_event"


class ProcessingError(CommerceError):
    """Raised when reconciliation cannot apply an event.

    The unit of work is rolled back and the provider is asked to redeliver.
    """

    pass


class CheckoutError(CommerceError):
    """Raised when the provider rejects a checkout session request."""

    def __init__(self, message: str, status_code: int = 502):
        self.status_code = status_code
        super().__init__(message)
