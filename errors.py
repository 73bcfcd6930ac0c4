"""
Errors raised by the storefront services.

Every error carries a human readable ``message`` (shown to the shopper as-is)
and a short machine ``code``. The HTTP layer maps ``status_code`` onto the
response; services never build HTTP responses themselves.
"""
from typing import Optional


class StoreError(Exception):
    status_code = 400
    code = "store_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationFailed(StoreError):
    status_code = 422
    code = "validation_failed"


class NotFound(StoreError):
    status_code = 404
    code = "not_found"


class CouponRejected(StoreError):
    status_code = 400
    code = "coupon_rejected"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason


class OutOfStock(StoreError):
    status_code = 409
    code = "out_of_stock"


class PriceChanged(StoreError):
    status_code = 409
    code = "price_changed"


class PaymentError(StoreError):
    status_code = 400
    code = "payment_error"


class PaymentGatewayUnavailable(StoreError):
    status_code = 503
    code = "payment_gateway_unavailable"
