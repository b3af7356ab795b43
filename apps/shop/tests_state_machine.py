import pytest
from django.db import transaction

from .exceptions import (
    InvalidStatus, InvalidTransition, MissingPaymentProof, MissingShipmentInfo, OrderNotFound,
)
from .models import Order, OrderItem, OrderStatus, OutboxEvent, Product
from .services import (
    cancel_order, create_order, delete_order, submit_payment_proof, update_order_status,
)
from .state_machine import TRANSITIONS, Trigger, allowed_targets, apply_transition, initial_status

pytestmark = pytest.mark.django_db


@pytest.fixture
def checkout(user, make_product, add_line):
    def make(method='BANK_TRANSFER', qty=2, stock=5):
        p = make_product(stock=stock)
        order = create_order(user=user, payment_method=method, cart_item_ids=[add_line(user, p, qty).pk])
        return order, p
    return make


def stock_of(product):
    return Product.objects.get(pk=product.pk).stock


def status_of(order):
    return Order.objects.get(pk=order.pk).status


def test_table_has_no_edges_out_of_terminal_states():
    for frm, _ in TRANSITIONS:
        assert frm not in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


def test_allowed_targets_for_admin():
    assert allowed_targets('processing', Trigger.ADMIN) == [OrderStatus.PACKED]
    assert allowed_targets('awaiting_payment', Trigger.CUSTOMER) == [OrderStatus.CANCELLED]
    assert allowed_targets('completed', Trigger.ADMIN) == []


def test_initial_status():
    assert initial_status('COD') == OrderStatus.PROCESSING
    assert initial_status('BANK_TRANSFER') == OrderStatus.AWAITING_PAYMENT
    assert initial_status('GATEWAY') == OrderStatus.AWAITING_PAYMENT


def test_cancel_awaiting_payment_restores_stock_once(user, checkout):
    order, p = checkout('BANK_TRANSFER', qty=2, stock=5)
    assert stock_of(p) == 3

    cancel_order(user=user, order_id=order.pk)

    assert status_of(order) == OrderStatus.CANCELLED
    assert stock_of(p) == 5

    with pytest.raises(InvalidTransition):
        cancel_order(user=user, order_id=order.pk)
    assert stock_of(p) == 5


def test_cod_order_can_be_cancelled_while_processing(user, checkout):
    order, p = checkout('COD', qty=1, stock=2)
    assert status_of(order) == OrderStatus.PROCESSING

    cancel_order(user=user, order_id=order.pk)

    assert status_of(order) == OrderStatus.CANCELLED
    assert stock_of(p) == 2
    with pytest.raises(InvalidTransition):
        cancel_order(user=user, order_id=order.pk)


def test_paid_non_cod_order_cannot_be_cancelled(user, checkout):
    order, p = checkout('GATEWAY', qty=1)
    Order.objects.filter(pk=order.pk).update(status=OrderStatus.PROCESSING)

    with pytest.raises(InvalidTransition):
        cancel_order(user=user, order_id=order.pk)

    assert status_of(order) == OrderStatus.PROCESSING
    assert stock_of(p) == 4


def test_customer_cannot_cancel_someone_elses_order(other_user, checkout):
    order, p = checkout()

    with pytest.raises(OrderNotFound):
        cancel_order(user=other_user, order_id=order.pk)

    assert status_of(order) == OrderStatus.AWAITING_PAYMENT


def test_admin_fulfilment_chain(checkout):
    order, _ = checkout('COD')

    update_order_status(order_id=order.pk, status='packed')
    with pytest.raises(MissingShipmentInfo) as exc:
        update_order_status(order_id=order.pk, status='shipped', tracking_number='JNE123')
    assert exc.value.missing == ['courier']
    assert status_of(order) == OrderStatus.PACKED

    shipped = update_order_status(order_id=order.pk, status='shipped', tracking_number='JNE123', courier='JNE')
    assert shipped.shipped_at is not None
    stored = Order.objects.get(pk=order.pk)
    assert (stored.status, stored.tracking_number, stored.courier) == ('shipped', 'JNE123', 'JNE')

    update_order_status(order_id=order.pk, status='completed')
    assert status_of(order) == OrderStatus.COMPLETED


def test_admin_cannot_skip_or_rewind(checkout):
    order, _ = checkout('COD')

    with pytest.raises(InvalidTransition):
        update_order_status(order_id=order.pk, status='completed')
    with pytest.raises(InvalidTransition):
        update_order_status(order_id=order.pk, status='cancelled')
    assert status_of(order) == OrderStatus.PROCESSING


def test_unknown_status_value(checkout):
    order, _ = checkout('COD')

    with pytest.raises(InvalidStatus):
        update_order_status(order_id=order.pk, status='lost_in_space')


def test_admin_approval_needs_payment_proof(user, checkout):
    order, _ = checkout('BANK_TRANSFER')

    with pytest.raises(MissingPaymentProof):
        update_order_status(order_id=order.pk, status='processing')

    submit_payment_proof(user=user, order_id=order.pk, proof_url='https://files.test/receipt.jpg')
    update_order_status(order_id=order.pk, status='processing')
    assert status_of(order) == OrderStatus.PROCESSING


def test_payment_proof_only_while_awaiting_payment(user, checkout):
    order, _ = checkout('COD')

    with pytest.raises(InvalidTransition):
        submit_payment_proof(user=user, order_id=order.pk, proof_url='https://files.test/receipt.jpg')


def test_stale_writer_cannot_double_release(user, checkout):
    order, p = checkout('BANK_TRANSFER', qty=2, stock=5)
    stale = Order.objects.get(pk=order.pk)

    cancel_order(user=user, order_id=order.pk)
    assert stock_of(p) == 5

    with pytest.raises(InvalidTransition):
        with transaction.atomic():
            apply_transition(stale, OrderStatus.CANCELLED, Trigger.GATEWAY)
    assert stock_of(p) == 5


def test_every_transition_queues_a_notification(user, checkout):
    order, _ = checkout('BANK_TRANSFER')

    cancel_order(user=user, order_id=order.pk)

    kinds = list(OutboxEvent.objects.filter(order=order).order_by('pk').values_list('event_type', 'payload__status'))
    assert kinds == [('order_created', 'awaiting_payment'), ('status_changed', 'cancelled')]


def test_delete_terminal_order_keeps_stock(user, checkout):
    order, p = checkout('BANK_TRANSFER', qty=2, stock=5)
    cancel_order(user=user, order_id=order.pk)

    delete_order(user=user, order_id=order.pk)

    assert not Order.objects.filter(pk=order.pk).exists()
    assert not OrderItem.objects.filter(order_id=order.pk).exists()
    assert stock_of(p) == 5


def test_delete_requires_terminal_state_and_owner(user, other_user, checkout):
    order, p = checkout('COD', qty=1, stock=3)

    with pytest.raises(InvalidTransition):
        delete_order(user=user, order_id=order.pk)

    update_order_status(order_id=order.pk, status='packed')
    update_order_status(order_id=order.pk, status='shipped', tracking_number='T1', courier='JNE')
    update_order_status(order_id=order.pk, status='completed')

    with pytest.raises(OrderNotFound):
        delete_order(user=other_user, order_id=order.pk)

    delete_order(user=user, order_id=order.pk)
    assert not Order.objects.filter(pk=order.pk).exists()
    assert stock_of(p) == 2
