"""Payment gateway adapter and notification reconciliation.

The gateway knows an order by a reference of the form
``<PREFIX>-<order id>-<unix timestamp>``; a new reference is minted for
every checkout session so an order can be retried after an expired session.
"""
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests
from django.conf import settings
from django.db import transaction

from .exceptions import GatewayError, InvalidTransition, MalformedReference, OrderNotFound
from .models import Order, OrderStatus, PaymentMethod, PaymentNotification
from .state_machine import Trigger, apply_transition, lock_order
from .tx import retry_on_tx_failure

logger = logging.getLogger(__name__)

SUCCESS_OUTCOMES = {'capture', 'settlement'}
FAILURE_OUTCOMES = {'cancel', 'expire', 'deny'}
RISK_ACCEPT = 'accept'
RISK_CHALLENGE = 'challenge'
RISK_DENY = 'deny'

PAID_STATUSES = {OrderStatus.PROCESSING, OrderStatus.PACKED, OrderStatus.SHIPPED, OrderStatus.COMPLETED}


def gateway_settings():
    return settings.PAYMENT_GATEWAY


def build_order_reference(order_id, now=None) -> str:
    prefix = gateway_settings()['ORDER_PREFIX']
    return f"{prefix}-{order_id}-{int(now if now is not None else time.time())}"


def parse_order_reference(reference) -> int:
    """Extract the internal order id from a gateway transaction reference."""
    if not isinstance(reference, str):
        raise MalformedReference(reference)
    # The prefix may itself contain hyphens; id and timestamp never do.
    parts = reference.rsplit('-', 2)
    prefix = gateway_settings()['ORDER_PREFIX']
    if len(parts) != 3 or parts[0] != prefix or not all(_is_ascii_number(p) for p in parts[1:]):
        raise MalformedReference(reference)
    return int(parts[1])


def _is_ascii_number(value: str) -> bool:
    # str.isdigit() also accepts digits int() rejects, e.g. '²'
    return value.isascii() and value.isdigit()


@dataclass(frozen=True)
class GatewayNotification:
    reference: str
    outcome: str
    risk: Optional[str] = None
    transaction_id: str = ''

    @classmethod
    def from_payload(cls, data: dict) -> 'GatewayNotification':
        """Normalize a gateway HTTP notification, verifying its signature when a server key is set.

        Raises KeyError when a required field is absent.
        """
        reference = str(data['order_id'])
        outcome = str(data['transaction_status']).strip().lower()
        verify_signature(data)
        risk = data.get('fraud_status')
        return cls(
            reference=reference,
            outcome=outcome,
            risk=str(risk).strip().lower() if risk else None,
            transaction_id=str(data.get('transaction_id') or ''),
        )


def verify_signature(data: dict) -> None:
    server_key = gateway_settings()['SERVER_KEY']
    if not server_key:
        return
    raw = f"{data.get('order_id', '')}{data.get('status_code', '')}{data.get('gross_amount', '')}{server_key}"
    expected = hashlib.sha512(raw.encode()).hexdigest()
    if not hmac.compare_digest(expected, str(data.get('signature_key', ''))):
        raise GatewayError("Invalid notification signature")


def resolve_target(outcome: str, risk: Optional[str]) -> Optional[OrderStatus]:
    """Map a gateway outcome to the status the order should end up in, or None for no change."""
    if outcome in FAILURE_OUTCOMES or (outcome in SUCCESS_OUTCOMES and risk == RISK_DENY):
        return OrderStatus.CANCELLED
    if outcome in SUCCESS_OUTCOMES and risk == RISK_CHALLENGE:
        # held for manual review; the order keeps awaiting payment
        return None
    if outcome in SUCCESS_OUTCOMES and risk == RISK_ACCEPT:
        return OrderStatus.PROCESSING
    return None


def already_applied(target: OrderStatus, current) -> bool:
    """True when the order is already at, or past, the state this outcome leads to."""
    if target == current:
        return True
    return target == OrderStatus.PROCESSING and OrderStatus(current) in PAID_STATUSES


def _audit(notification: GatewayNotification, order_id, outcome, note=''):
    PaymentNotification.objects.create(
        order_id=order_id,
        reference=notification.reference[:100],
        transaction_id=notification.transaction_id[:100],
        transaction_status=notification.outcome[:30],
        fraud_status=(notification.risk or '')[:30],
        outcome=outcome,
        note=note[:255],
    )


@retry_on_tx_failure()
def reconcile_notification(notification: GatewayNotification) -> dict:
    """Apply a gateway outcome to its order.

    Re-delivery of an already applied outcome is a no-op. Unresolvable
    notifications are recorded and re-raised for the caller to log; either
    way the gateway only needs an acknowledgment.
    """
    try:
        with transaction.atomic():
            order_id = parse_order_reference(notification.reference)
            order = lock_order(order_id)
            target = resolve_target(notification.outcome, notification.risk)
            if target is None or already_applied(target, order.status):
                _audit(notification, order.pk, PaymentNotification.Outcome.IGNORED,
                       f"no change from {order.status}")
                logger.info("PAYMENT NOTIFY — order %s %s/%s: no change (%s)",
                            order.pk, notification.outcome, notification.risk, order.status)
                return {'received': True, 'orderId': order.pk, 'status': order.status, 'changed': False}
            previous = order.status
            apply_transition(order, target, Trigger.GATEWAY)
            _audit(notification, order.pk, PaymentNotification.Outcome.APPLIED, f"{previous} -> {target}")
            return {'received': True, 'orderId': order.pk, 'status': order.status, 'changed': True}
    except (MalformedReference, OrderNotFound, InvalidTransition) as e:
        order_id = parse_order_reference(notification.reference) if isinstance(e, InvalidTransition) else None
        _audit(notification, order_id, PaymentNotification.Outcome.REJECTED, str(e))
        raise


def create_payment_session(*, user, order_id) -> dict:
    """Open a gateway checkout session for an order awaiting payment.

    Read-only on our side: the order is not touched, and the gateway's
    ``{token, redirect_url}`` is handed back as is.
    """
    order = (Order.objects.prefetch_related('items__product')
             .select_related('user').filter(pk=order_id, user=user).first())
    if order is None:
        raise OrderNotFound(order_id)
    if order.status != OrderStatus.AWAITING_PAYMENT or order.payment_method == PaymentMethod.COD:
        raise InvalidTransition(order.status, OrderStatus.PROCESSING, "order is not awaiting payment")

    conf = gateway_settings()
    payload = {
        'transaction_details': {
            'order_id': build_order_reference(order.pk),
            'gross_amount': int(order.total),
        },
        'item_details': [
            {
                'id': str(item.product_id),
                'price': int(item.unit_price),
                'quantity': item.quantity,
                'name': item.product.title[:50],
            }
            for item in order.items.all()
        ],
        'customer_details': {
            'first_name': user.get_full_name() or user.get_username(),
            'email': user.email,
        },
    }
    try:
        resp = requests.post(
            conf['SNAP_URL'],
            json=payload,
            auth=(conf['SERVER_KEY'], ''),
            headers={'Accept': 'application/json'},
            timeout=conf['TIMEOUT_SECONDS'],
        )
        resp.raise_for_status()
        body = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.error("PAYMENT SESSION FAILED — order %s: %s", order.pk, e)
        raise GatewayError(f"Payment gateway unavailable: {e}") from e

    if 'token' not in body or 'redirect_url' not in body:
        logger.error("PAYMENT SESSION FAILED — order %s: unexpected response %s", order.pk, body)
        raise GatewayError("Payment gateway returned an unexpected response")
    logger.info("PAYMENT SESSION — order %s reference %s", order.pk, payload['transaction_details']['order_id'])
    return {'token': body['token'], 'redirect_url': body['redirect_url']}
