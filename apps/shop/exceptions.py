"""Order domain errors.

Raised by the service layer when a business rule is violated. Raising one
inside ``transaction.atomic`` aborts the unit of work; the DRF exception
handler below is the single place that turns the error kind into an HTTP
response.
"""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler


class ShopError(Exception):
    code = 'shop_error'
    status_code = status.HTTP_400_BAD_REQUEST

    def detail(self) -> dict:
        return {}

    def as_response_body(self) -> dict:
        return {'error': self.code, 'message': str(self), **self.detail()}


class InsufficientStock(ShopError):
    code = 'insufficient_stock'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, product_id: int, requested: int, available: int, title: str = ''):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.title = title
        name = title or f"product {product_id}"
        super().__init__(f"Insufficient stock for {name}: requested {requested}, available {available}")

    def detail(self):
        return {'productId': self.product_id, 'requested': self.requested, 'available': self.available}


class InvalidSelection(ShopError):
    """Some requested cart lines do not exist or belong to someone else."""

    code = 'invalid_selection'

    def __init__(self, missing=()):
        self.missing = sorted(missing)
        if self.missing:
            super().__init__(f"Cart items not found: {', '.join(str(i) for i in self.missing)}")
        else:
            super().__init__("At least one cart item must be selected")

    def detail(self):
        return {'missing': self.missing}


class InvalidPaymentMethod(ShopError):
    code = 'invalid_payment_method'

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown payment method: {value!r}")

    def detail(self):
        return {'value': self.value}


class InvalidTransition(ShopError):
    code = 'invalid_transition'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, from_status, attempted, reason: str = ''):
        self.from_status = str(from_status)
        self.attempted = str(attempted)
        self.reason = reason
        message = f"Cannot move order from {self.from_status} to {self.attempted}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def detail(self):
        return {'from': self.from_status, 'attempted': self.attempted}


class InvalidStatus(ShopError):
    code = 'invalid_status'

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown order status: {value!r}")

    def detail(self):
        return {'value': self.value}


class MissingShipmentInfo(ShopError):
    code = 'missing_shipment_info'

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Shipping requires: {', '.join(self.missing)}")

    def detail(self):
        return {'missing': self.missing}


class MissingPaymentProof(ShopError):
    code = 'missing_payment_proof'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} has no proof of payment to approve")

    def detail(self):
        return {'orderId': self.order_id}


class MalformedReference(ShopError):
    code = 'malformed_reference'

    def __init__(self, reference):
        self.reference = reference
        super().__init__(f"Unrecognized transaction reference: {reference!r}")

    def detail(self):
        return {'reference': self.reference}


class OrderNotFound(ShopError):
    code = 'order_not_found'
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")

    def detail(self):
        return {'orderId': self.order_id}


class GatewayError(ShopError):
    code = 'gateway_error'
    status_code = status.HTTP_502_BAD_GATEWAY


class IdempotencyConflict(ShopError):
    code = 'idempotency_conflict'
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, key):
        self.key = key
        super().__init__(f"Idempotency-Key {key!r} was already used with a different request body")


def shop_exception_handler(exc, context):
    if isinstance(exc, ShopError):
        return Response(exc.as_response_body(), status=exc.status_code)
    return exception_handler(exc, context)
