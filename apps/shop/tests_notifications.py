from datetime import timedelta
from io import StringIO
from smtplib import SMTPException

import pytest
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.utils import timezone

from . import notifications
from .models import Order, OutboxEvent, Product
from .notifications import claim, dispatch_pending
from .services import create_order, update_order_status

pytestmark = pytest.mark.django_db


def checkout(user, make_product, add_line, method='BANK_TRANSFER'):
    p = make_product(stock=5)
    return create_order(user=user, payment_method=method, cart_item_ids=[add_line(user, p, 1).pk])


def test_nothing_is_sent_before_commit(user, make_product, add_line, mailoutbox, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks() as callbacks:
        order = checkout(user, make_product, add_line)

    assert len(callbacks) == 1
    assert mailoutbox == []
    assert OutboxEvent.objects.get(order=order).status == OutboxEvent.Status.PENDING


def test_checkout_mail_goes_out_after_commit(user, make_product, add_line, mailoutbox,
                                             django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        order = checkout(user, make_product, add_line)

    assert len(mailoutbox) == 1
    assert mailoutbox[0].to == ['buyer@test.com']
    assert mailoutbox[0].subject == f"Order #{order.pk} is awaiting payment"
    event = OutboxEvent.objects.get(order=order)
    assert (event.status, event.attempts) == (OutboxEvent.Status.SENT, 1)
    assert event.sent_at is not None


def test_mail_failure_does_not_undo_the_order(monkeypatch, user, make_product, add_line, mailoutbox,
                                              django_capture_on_commit_callbacks):
    def broken_send(*args, **kwargs):
        raise SMTPException("relay down")

    monkeypatch.setattr(notifications, 'send_mail', broken_send)

    with django_capture_on_commit_callbacks(execute=True):
        order = checkout(user, make_product, add_line)

    assert Order.objects.filter(pk=order.pk).exists()
    event = OutboxEvent.objects.get(order=order)
    assert (event.status, event.attempts) == (OutboxEvent.Status.FAILED, 1)
    assert 'relay down' in event.last_error

    out = StringIO()
    call_command('dispatch_outbox', '--pending-only', stdout=out)
    assert 'Sent 0 event(s); 1 not yet delivered.' in out.getvalue()

    monkeypatch.undo()
    out = StringIO()
    call_command('dispatch_outbox', stdout=out)
    assert 'Sent 1 event(s); 0 not yet delivered.' in out.getvalue()
    assert len(mailoutbox) == 1
    event.refresh_from_db()
    assert (event.status, event.attempts, event.last_error) == (OutboxEvent.Status.SENT, 2, '')


def test_events_past_the_attempt_limit_are_left_alone(settings, user, make_product, add_line):
    order = checkout(user, make_product, add_line)
    OutboxEvent.objects.filter(order=order).update(
        status=OutboxEvent.Status.FAILED, attempts=settings.OUTBOX_MAX_ATTEMPTS,
    )

    assert dispatch_pending(include_failed=True) == 0


def test_packed_is_recorded_but_not_mailed(user, make_product, add_line, mailoutbox,
                                           django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        order = checkout(user, make_product, add_line, method='COD')
    with django_capture_on_commit_callbacks(execute=True):
        update_order_status(order_id=order.pk, status='packed')

    assert [m.subject for m in mailoutbox] == [f"Order #{order.pk} is being processed"]
    packed = OutboxEvent.objects.get(order=order, payload__status='packed')
    assert packed.status == OutboxEvent.Status.SENT


def test_shipping_mail_carries_tracking_details(user, make_product, add_line, mailoutbox,
                                                django_capture_on_commit_callbacks):
    order = checkout(user, make_product, add_line, method='COD')
    update_order_status(order_id=order.pk, status='packed')

    with django_capture_on_commit_callbacks(execute=True):
        update_order_status(order_id=order.pk, status='shipped', tracking_number='JNE-0042', courier='JNE')

    assert mailoutbox[-1].subject == f"Order #{order.pk} has been shipped"
    assert 'Tracking number: JNE-0042' in mailoutbox[-1].body
    assert 'Courier: JNE' in mailoutbox[-1].body


def test_seed_data_is_repeatable():
    call_command('seed_data', stdout=StringIO())
    call_command('seed_data', stdout=StringIO())

    assert Product.objects.count() == 8
    admin = get_user_model().objects.get(username='test@example.com')
    assert admin.is_superuser and admin.is_staff
    assert admin.check_password('secret')


def test_event_claimed_elsewhere_is_not_sent_again(user, make_product, add_line, mailoutbox):
    order = checkout(user, make_product, add_line)
    event = OutboxEvent.objects.get(order=order)
    OutboxEvent.objects.filter(pk=event.pk).update(status=OutboxEvent.Status.SENDING, claimed_at=timezone.now())

    assert dispatch_pending(event_ids=[event.pk]) == 0
    assert dispatch_pending(include_failed=True, reclaim_stale=True) == 0

    assert mailoutbox == []
    event.refresh_from_db()
    assert (event.status, event.attempts) == (OutboxEvent.Status.SENDING, 0)


def test_only_one_of_two_dispatchers_wins_the_claim(user, make_product, add_line):
    order = checkout(user, make_product, add_line)
    # Both dispatchers read the event while it is still pending.
    first = OutboxEvent.objects.get(order=order)
    second = OutboxEvent.objects.get(order=order)

    assert claim(first) is True
    assert claim(second) is False
    assert OutboxEvent.objects.get(pk=first.pk).status == OutboxEvent.Status.SENDING


def test_dispatch_outbox_reclaims_abandoned_sends(settings, user, make_product, add_line, mailoutbox):
    stale = checkout(user, make_product, add_line)
    fresh = checkout(user, make_product, add_line)
    long_ago = timezone.now() - timedelta(seconds=settings.OUTBOX_CLAIM_TIMEOUT + 60)
    OutboxEvent.objects.filter(order=stale).update(status=OutboxEvent.Status.SENDING, claimed_at=long_ago)
    OutboxEvent.objects.filter(order=fresh).update(status=OutboxEvent.Status.SENDING, claimed_at=timezone.now())

    out = StringIO()
    call_command('dispatch_outbox', stdout=out)

    assert 'Sent 1 event(s); 1 not yet delivered.' in out.getvalue()
    assert [m.subject for m in mailoutbox] == [f"Order #{stale.pk} is awaiting payment"]
    assert OutboxEvent.objects.get(order=fresh).status == OutboxEvent.Status.SENDING
