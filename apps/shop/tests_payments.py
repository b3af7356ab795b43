import hashlib

import pytest
import requests

from . import payments
from .exceptions import GatewayError, InvalidTransition, MalformedReference, OrderNotFound
from .models import Order, OrderStatus, OutboxEvent, PaymentNotification, Product
from .payments import (
    GatewayNotification, build_order_reference, create_payment_session, parse_order_reference,
    reconcile_notification, resolve_target,
)
from .services import create_order

pytestmark = pytest.mark.django_db


@pytest.fixture
def pending_order(user, make_product, add_line):
    p = make_product(price='50000.00', stock=10)
    order = create_order(user=user, payment_method='GATEWAY', cart_item_ids=[add_line(user, p, 2).pk])
    return order, p


def notify(order_id, outcome, risk=None):
    return GatewayNotification(
        reference=build_order_reference(order_id, now=1700000000),
        outcome=outcome,
        risk=risk,
        transaction_id='trx-1',
    )


def status_changes(order):
    return OutboxEvent.objects.filter(order=order, event_type='status_changed').count()


def test_reference_roundtrip_and_rejects_foreign_formats():
    assert parse_order_reference('HOLYCAT-42-1700000000') == 42
    for bad in ('HOLYCAT-42', 'OTHER-42-1700000000', 'HOLYCAT-abc-1700000000', '42', None, 'HOLYCAT-4-2-1',
                'HOLYCAT-²-1700000000', 'HOLYCAT-42-١٧٠٠', 'HOLYCAT--1700000000'):
        with pytest.raises(MalformedReference):
            parse_order_reference(bad)


def test_reference_prefix_may_contain_hyphens(settings):
    settings.PAYMENT_GATEWAY = {**settings.PAYMENT_GATEWAY, 'ORDER_PREFIX': 'HOLY-CAT'}

    reference = build_order_reference(42, now=1700000000)

    assert reference == 'HOLY-CAT-42-1700000000'
    assert parse_order_reference(reference) == 42
    with pytest.raises(MalformedReference):
        parse_order_reference('HOLYCAT-42-1700000000')


@pytest.mark.parametrize('outcome, risk, target', [
    ('settlement', 'accept', OrderStatus.PROCESSING),
    ('capture', 'accept', OrderStatus.PROCESSING),
    ('capture', 'challenge', None),
    ('capture', 'deny', OrderStatus.CANCELLED),
    ('settlement', None, None),
    ('pending', None, None),
    ('cancel', None, OrderStatus.CANCELLED),
    ('expire', None, OrderStatus.CANCELLED),
    ('deny', None, OrderStatus.CANCELLED),
    ('refund', 'accept', None),
])
def test_outcome_mapping(outcome, risk, target):
    assert resolve_target(outcome, risk) == target


def test_settlement_delivered_twice_applies_once(pending_order):
    order, _ = pending_order

    first = reconcile_notification(notify(order.pk, 'settlement', 'accept'))
    second = reconcile_notification(notify(order.pk, 'settlement', 'accept'))

    assert first['changed'] is True
    assert second['changed'] is False
    assert Order.objects.get(pk=order.pk).status == OrderStatus.PROCESSING
    assert status_changes(order) == 1
    outcomes = list(PaymentNotification.objects.filter(order=order).order_by('pk').values_list('outcome', flat=True))
    assert outcomes == ['applied', 'ignored']


def test_challenge_keeps_order_awaiting_payment(pending_order):
    order, _ = pending_order

    result = reconcile_notification(notify(order.pk, 'capture', 'challenge'))

    assert result['changed'] is False
    assert Order.objects.get(pk=order.pk).status == OrderStatus.AWAITING_PAYMENT
    assert status_changes(order) == 0


def test_expiry_cancels_and_restores_stock(pending_order):
    order, p = pending_order
    assert Product.objects.get(pk=p.pk).stock == 8

    reconcile_notification(notify(order.pk, 'expire'))
    reconcile_notification(notify(order.pk, 'expire'))

    assert Order.objects.get(pk=order.pk).status == OrderStatus.CANCELLED
    assert Product.objects.get(pk=p.pk).stock == 10
    assert status_changes(order) == 1


def test_late_success_after_fulfilment_is_a_no_op(pending_order):
    order, _ = pending_order
    reconcile_notification(notify(order.pk, 'capture', 'accept'))
    Order.objects.filter(pk=order.pk).update(status=OrderStatus.PACKED)

    result = reconcile_notification(notify(order.pk, 'settlement', 'accept'))

    assert result['changed'] is False
    assert Order.objects.get(pk=order.pk).status == OrderStatus.PACKED


def test_success_after_cancellation_is_rejected_and_recorded(pending_order):
    order, p = pending_order
    reconcile_notification(notify(order.pk, 'expire'))

    with pytest.raises(InvalidTransition):
        reconcile_notification(notify(order.pk, 'settlement', 'accept'))

    assert Order.objects.get(pk=order.pk).status == OrderStatus.CANCELLED
    assert Product.objects.get(pk=p.pk).stock == 10
    assert PaymentNotification.objects.filter(order=order, outcome='rejected').count() == 1


def test_cancel_notification_cannot_touch_a_cod_order(user, make_product, add_line):
    p = make_product(stock=3)
    order = create_order(user=user, payment_method='COD', cart_item_ids=[add_line(user, p, 1).pk])

    with pytest.raises(InvalidTransition):
        reconcile_notification(notify(order.pk, 'cancel'))

    assert Order.objects.get(pk=order.pk).status == OrderStatus.PROCESSING
    assert Product.objects.get(pk=p.pk).stock == 2


def test_unknown_order_and_bad_reference_are_recorded():
    with pytest.raises(OrderNotFound):
        reconcile_notification(notify(987654, 'settlement', 'accept'))
    with pytest.raises(MalformedReference):
        reconcile_notification(GatewayNotification(reference='garbage', outcome='settlement', risk='accept'))

    assert PaymentNotification.objects.filter(outcome='rejected', order__isnull=True).count() == 2


def test_payload_normalization():
    n = GatewayNotification.from_payload({
        'order_id': 'HOLYCAT-7-1700000000',
        'transaction_status': 'Settlement',
        'fraud_status': 'ACCEPT',
        'transaction_id': 'abc',
    })
    assert (n.reference, n.outcome, n.risk, n.transaction_id) == ('HOLYCAT-7-1700000000', 'settlement', 'accept', 'abc')

    with pytest.raises(KeyError):
        GatewayNotification.from_payload({'order_id': 'HOLYCAT-7-1700000000'})


def test_signature_is_checked_when_server_key_configured(settings):
    settings.PAYMENT_GATEWAY = {**settings.PAYMENT_GATEWAY, 'SERVER_KEY': 'SB-server-key'}
    data = {
        'order_id': 'HOLYCAT-7-1700000000',
        'status_code': '200',
        'gross_amount': '100000.00',
        'transaction_status': 'settlement',
        'fraud_status': 'accept',
    }
    good = hashlib.sha512(b'HOLYCAT-7-1700000000200100000.00SB-server-key').hexdigest()

    assert GatewayNotification.from_payload({**data, 'signature_key': good}).outcome == 'settlement'
    with pytest.raises(GatewayError):
        GatewayNotification.from_payload({**data, 'signature_key': 'forged'})


class FakeResponse:
    def __init__(self, body, status=201):
        self.body = body
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.body


def test_payment_session_passes_gateway_answer_through(monkeypatch, user, pending_order):
    order, _ = pending_order
    calls = []

    def fake_post(url, json=None, **kwargs):
        calls.append(json)
        return FakeResponse({'token': 'snap-token', 'redirect_url': 'https://pay.test/snap-token'})

    monkeypatch.setattr(payments.requests, 'post', fake_post)

    session = create_payment_session(user=user, order_id=order.pk)

    assert session == {'token': 'snap-token', 'redirect_url': 'https://pay.test/snap-token'}
    sent = calls[0]
    assert sent['transaction_details']['gross_amount'] == 100000
    assert parse_order_reference(sent['transaction_details']['order_id']) == order.pk
    assert sent['item_details'][0]['quantity'] == 2
    assert Order.objects.get(pk=order.pk).status == OrderStatus.AWAITING_PAYMENT


def test_payment_session_gateway_failure(monkeypatch, user, pending_order):
    order, _ = pending_order

    def boom(*args, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(payments.requests, 'post', boom)

    with pytest.raises(GatewayError):
        create_payment_session(user=user, order_id=order.pk)


def test_payment_session_only_for_orders_awaiting_payment(user, other_user, make_product, add_line):
    p = make_product(stock=3)
    cod = create_order(user=user, payment_method='COD', cart_item_ids=[add_line(user, p, 1).pk])

    with pytest.raises(InvalidTransition):
        create_payment_session(user=user, order_id=cod.pk)
    with pytest.raises(OrderNotFound):
        create_payment_session(user=other_user, order_id=cod.pk)
