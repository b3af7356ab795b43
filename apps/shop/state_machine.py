"""Order status lifecycle.

Every status change goes through ``apply_transition``; nothing else writes
``Order.status`` after creation.

    awaiting_payment -> processing     gateway success or approved payment proof
    awaiting_payment -> cancelled      customer or gateway (never COD)
    processing       -> cancelled      customer (COD only)
    processing -> packed -> shipped -> completed    admin
    completed / cancelled              terminal, deletable by the owner
"""
import enum
import logging

from django.utils import timezone

from .exceptions import InvalidTransition, MissingPaymentProof, MissingShipmentInfo, OrderNotFound
from .inventory import release_order_items
from .models import Order, OrderStatus, PaymentMethod
from .notifications import STATUS_CHANGED, record_event
from .tx import require_atomic

logger = logging.getLogger(__name__)


class Trigger(str, enum.Enum):
    CUSTOMER = 'customer'
    GATEWAY = 'gateway'
    ADMIN = 'admin'


S = OrderStatus

TRANSITIONS = {
    (S.AWAITING_PAYMENT, S.PROCESSING): {Trigger.GATEWAY, Trigger.ADMIN},
    (S.AWAITING_PAYMENT, S.CANCELLED): {Trigger.CUSTOMER, Trigger.GATEWAY},
    (S.PROCESSING, S.CANCELLED): {Trigger.CUSTOMER},
    (S.PROCESSING, S.PACKED): {Trigger.ADMIN},
    (S.PACKED, S.SHIPPED): {Trigger.ADMIN},
    (S.SHIPPED, S.COMPLETED): {Trigger.ADMIN},
}


def initial_status(payment_method) -> OrderStatus:
    if PaymentMethod(payment_method) == PaymentMethod.COD:
        return OrderStatus.PROCESSING
    return OrderStatus.AWAITING_PAYMENT


def allowed_targets(status, trigger: Trigger):
    current = OrderStatus(status)
    return [to for (frm, to), triggers in TRANSITIONS.items() if frm == current and trigger in triggers]


def check_transition(order: Order, target: OrderStatus, trigger: Trigger, *, tracking_number='', courier=''):
    current = OrderStatus(order.status)
    triggers = TRANSITIONS.get((current, target))
    if not triggers or trigger not in triggers:
        raise InvalidTransition(current, target)

    if target == S.CANCELLED:
        is_cod = order.payment_method == PaymentMethod.COD
        if current == S.AWAITING_PAYMENT and is_cod:
            raise InvalidTransition(current, target, "cash-on-delivery orders do not await payment")
        if current == S.PROCESSING and not is_cod:
            raise InvalidTransition(current, target, "only cash-on-delivery orders can be cancelled once processing")

    if current == S.AWAITING_PAYMENT and target == S.PROCESSING and trigger == Trigger.ADMIN:
        if not order.payment_proof_url:
            raise MissingPaymentProof(order.pk)

    if target == S.SHIPPED:
        missing = [name for name, value in (('trackingNumber', tracking_number), ('courier', courier))
                   if not (value or '').strip()]
        if missing:
            raise MissingShipmentInfo(missing)


def lock_order(order_id, *, user=None) -> Order:
    """Fetch and row-lock an order; scoped to ``user`` when given."""
    require_atomic()
    qs = Order.objects.select_for_update().filter(pk=order_id)
    if user is not None:
        qs = qs.filter(user=user)
    order = qs.first()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def apply_transition(order: Order, target: OrderStatus, trigger: Trigger, *, tracking_number='', courier='') -> Order:
    """Move ``order`` to ``target`` inside the caller's transaction.

    The write is conditional on the status the caller saw; if another
    transaction moved the order first, nothing is written (and no stock is
    released) and InvalidTransition is raised.
    """
    require_atomic()
    target = OrderStatus(target)
    check_transition(order, target, trigger, tracking_number=tracking_number, courier=courier)

    expected = order.status
    now = timezone.now()
    fields = {'status': target, 'updated_at': now}
    if target == S.SHIPPED:
        fields.update(tracking_number=tracking_number.strip(), courier=courier.strip(), shipped_at=now)

    updated = Order.objects.filter(pk=order.pk, status=expected).update(**fields)
    if not updated:
        current = Order.objects.filter(pk=order.pk).values_list('status', flat=True).first()
        raise InvalidTransition(current or expected, target, "order was changed concurrently")
    for name, value in fields.items():
        setattr(order, name, value)

    if target == S.CANCELLED:
        release_order_items(order)

    record_event(order, STATUS_CHANGED)
    logger.info("ORDER %s — %s -> %s by %s", order.pk, expected, target.value, trigger.value)
    return order


def delete_terminal_order(order: Order) -> None:
    """Remove a completed/cancelled order and its items. Stock is not touched."""
    require_atomic()
    if not order.is_terminal:
        raise InvalidTransition(order.status, 'deleted', "only completed or cancelled orders can be deleted")
    order.items.all().delete()
    order_id = order.pk
    order.delete()
    logger.info("ORDER %s — deleted", order_id)
