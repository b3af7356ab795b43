import logging
from decimal import Decimal

from django.db import transaction

from . import inventory
from .cart import load_lines
from .exceptions import InsufficientStock, InvalidPaymentMethod, InvalidStatus, InvalidTransition, OrderNotFound
from .models import CartItem, Order, OrderItem, OrderStatus, PaymentMethod
from .notifications import ORDER_CREATED, record_event
from .state_machine import Trigger, apply_transition, delete_terminal_order, initial_status, lock_order
from .tx import retry_on_tx_failure

logger = logging.getLogger(__name__)


def parse_payment_method(value) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise InvalidPaymentMethod(value) from None


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(value) from None


@retry_on_tx_failure()
@transaction.atomic
def create_order(*, user, payment_method, cart_item_ids) -> Order:
    """Turn the selected cart lines into an order, reserving stock.

    Order, items, stock reservations and cart cleanup commit together; any
    failure leaves the cart and the catalog untouched.
    """
    method = parse_payment_method(payment_method)
    lines = load_lines(user, cart_item_ids)

    # Lock in id order, then re-read prices and stock from the locked rows.
    products = inventory.lock_products(line.product_id for line in lines)

    total = Decimal('0.00')
    for line in lines:
        p = products[line.product_id]
        if p.stock < line.quantity:
            raise InsufficientStock(p.pk, line.quantity, p.stock, title=p.title)
        total += p.price * line.quantity

    order = Order.objects.create(
        user=user,
        total=total,
        status=initial_status(method),
        payment_method=method,
    )
    OrderItem.objects.bulk_create([
        OrderItem(order=order, product_id=line.product_id, quantity=line.quantity,
                  unit_price=products[line.product_id].price)
        for line in lines
    ])
    for line in lines:
        inventory.reserve(line.product_id, line.quantity)
    CartItem.objects.filter(pk__in=[line.pk for line in lines]).delete()

    record_event(order, ORDER_CREATED)
    logger.info("ORDER %s — created for user %s: %d line(s), total %s, %s",
                order.pk, user.pk, len(lines), total, order.status)
    return order


@retry_on_tx_failure()
@transaction.atomic
def cancel_order(*, user, order_id) -> Order:
    order = lock_order(order_id, user=user)
    return apply_transition(order, OrderStatus.CANCELLED, Trigger.CUSTOMER)


@transaction.atomic
def submit_payment_proof(*, user, order_id, proof_url: str) -> Order:
    """Attach a bank-transfer receipt for an admin to approve later."""
    order = lock_order(order_id, user=user)
    if order.status != OrderStatus.AWAITING_PAYMENT or order.payment_method == PaymentMethod.COD:
        raise InvalidTransition(order.status, OrderStatus.AWAITING_PAYMENT,
                                "payment proof is only accepted while awaiting payment")
    order.payment_proof_url = proof_url
    order.save(update_fields=['payment_proof_url', 'updated_at'])
    logger.info("ORDER %s — payment proof submitted", order.pk)
    return order


@retry_on_tx_failure()
@transaction.atomic
def update_order_status(*, order_id, status, tracking_number='', courier='') -> Order:
    """Admin status change. Approving a payment proof is awaiting_payment -> processing."""
    target = parse_status(status)
    order = lock_order(order_id)
    return apply_transition(order, target, Trigger.ADMIN,
                            tracking_number=tracking_number or '', courier=courier or '')


@transaction.atomic
def delete_order(*, user, order_id) -> None:
    order = lock_order(order_id, user=user)
    delete_terminal_order(order)


def get_order_for_user(*, user, order_id) -> Order:
    order = Order.objects.prefetch_related('items__product').filter(pk=order_id, user=user).first()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def list_orders_for_user(user):
    return Order.objects.filter(user=user).prefetch_related('items__product').order_by('-created_at')


def list_all_orders(status=None):
    qs = Order.objects.select_related('user').prefetch_related('items__product').order_by('-created_at')
    if status:
        qs = qs.filter(status=parse_status(status))
    return qs
