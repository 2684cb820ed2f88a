"""Custom exceptions for the produce back-office application."""


def _fmt_qty(value):
    value = float(value)
    return f"{int(value)}" if value % 1 == 0 else f"{value:.2f}".rstrip('0').rstrip('.')


class BackofficeError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = type(self).__name__
        return rv


class ValidationError(BackofficeError):
    """Malformed or missing input."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class BusinessLogicError(BackofficeError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(BackofficeError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InsufficientStockError(BusinessLogicError):
    """Raised when a delivery item asks for more than a purchase lot has left."""
    def __init__(self, product_name, required, available, purchase_id=None):
        message = (
            f"Insufficient stock for {product_name}: "
            f"requested {_fmt_qty(required)}, available {_fmt_qty(available)}"
        )
        payload = {'purchase_id': purchase_id} if purchase_id is not None else None
        super().__init__(message, status_code=409, payload=payload)
        self.purchase_id = purchase_id
        self.required = required
        self.available = available


class InvoicedDeliveryError(BusinessLogicError):
    """Raised when deleting or editing a delivery already claimed by an invoice."""
    def __init__(self, delivery_id):
        super().__init__(
            f'Delivery #{delivery_id} has already been invoiced and cannot be changed',
            status_code=409,
            payload={'delivery_id': delivery_id}
        )


class AlreadyInvoicedError(BusinessLogicError):
    """Raised when an invoice already exists for (customer, year, month)."""
    def __init__(self, customer_id, year, month, invoice_id=None):
        super().__init__(
            f'Customer #{customer_id} already has an invoice for {year}-{month:02d}',
            status_code=409,
            payload={'invoice_id': invoice_id}
        )


class NoPendingDeliveriesError(BusinessLogicError):
    """Raised when there is nothing to invoice for (customer, year, month)."""
    def __init__(self, customer_id, year, month):
        super().__init__(
            f'No delivered, uninvoiced deliveries for customer #{customer_id} in {year}-{month:02d}',
            status_code=422
        )


class AdminFloorViolationError(BusinessLogicError):
    """Raised when an operation would leave the system without an ADMIN."""
    def __init__(self, message='At least one administrator must remain'):
        super().__init__(message, status_code=400)


class UnauthorizedError(BackofficeError):
    """Raised when the request carries no valid credentials."""
    def __init__(self, message="Authentication required"):
        super().__init__(message, 401)


class ForbiddenError(BackofficeError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Forbidden"):
        super().__init__(message, 403)


class ExternalServiceError(BackofficeError):
    """Failure of an external collaborator (document export, auth provider)."""

    AUTHENTICATION_FAILED = 'AUTHENTICATION_FAILED'
    TEMPLATE_NOT_FOUND = 'TEMPLATE_NOT_FOUND'
    PERMISSION_DENIED = 'PERMISSION_DENIED'
    QUOTA_EXCEEDED = 'QUOTA_EXCEEDED'
    NETWORK_ERROR = 'NETWORK_ERROR'
    INVALID_DATA = 'INVALID_DATA'
    UNKNOWN_ERROR = 'UNKNOWN_ERROR'

    def __init__(self, message, code=UNKNOWN_ERROR, cause=None):
        super().__init__(message, 502, payload={'code': code})
        self.code = code
        self.cause = cause
