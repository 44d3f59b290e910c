# services/errors.py


class OrderServiceError(Exception):
    """Base for errors reported synchronously to the HTTP caller."""
    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {'error': self.message}
        if self.details is not None:
            body['details'] = self.details
        return body


class NotFound(OrderServiceError):
    status_code = 404


class Unauthorized(OrderServiceError):
    status_code = 401


class Forbidden(OrderServiceError):
    status_code = 403


class InvalidInput(OrderServiceError):
    status_code = 400


class InvalidTransition(InvalidInput):
    def __init__(self, current, requested):
        super().__init__(
            f"Cannot change order status from '{current}' to '{requested}'",
            details={'currentStatus': current, 'requestedStatus': requested},
        )
        self.current = current
        self.requested = requested


class OrderConflict(OrderServiceError):
    status_code = 409


class VerificationError(Exception):
    """A gateway callback failed verification. Never rendered back to the gateway."""

    MISSING_DATA = 'missing-data'
    DECODE_ERROR = 'decode-error'
    BAD_SIGNATURE = 'bad-signature'
    UNKNOWN_ORDER = 'unknown-order'
    PAYMENT_FAILED = 'payment-failed'
    AMOUNT_MISMATCH = 'amount-mismatch'

    def __init__(self, reason, invoice_no=None):
        super().__init__(reason)
        self.reason = reason
        self.invoice_no = invoice_no
