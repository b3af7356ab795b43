"""Post-commit order notifications via a transactional outbox.

Events are written in the same transaction as the status change and sent
only after it commits. A dispatcher claims an event (status ``sending``)
before mailing it, so the post-commit hook and ``dispatch_outbox`` never
send the same event twice. A failed send is logged and left in the outbox for
``manage.py dispatch_outbox``; it never reaches the caller of the order
operation.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .models import OrderStatus, OutboxEvent

logger = logging.getLogger(__name__)

ORDER_CREATED = 'order_created'
STATUS_CHANGED = 'status_changed'

# No customer e-mail for PACKED.
SUBJECTS = {
    OrderStatus.AWAITING_PAYMENT: "Order #{id} is awaiting payment",
    OrderStatus.PROCESSING: "Order #{id} is being processed",
    OrderStatus.SHIPPED: "Order #{id} has been shipped",
    OrderStatus.COMPLETED: "Order #{id} is complete",
    OrderStatus.CANCELLED: "Order #{id} has been cancelled",
}


def record_event(order, event_type: str) -> OutboxEvent:
    """Queue a notification for ``order``'s current status; call inside the unit of work."""
    event = OutboxEvent.objects.create(
        order=order,
        event_type=event_type,
        payload={
            'order_id': order.pk,
            'status': order.status,
            'total': str(order.total),
            'tracking_number': order.tracking_number,
            'courier': order.courier,
        },
    )
    transaction.on_commit(lambda: dispatch_pending(event_ids=[event.pk]), robust=True)
    return event


def build_message(event: OutboxEvent):
    payload = event.payload
    subject = SUBJECTS.get(OrderStatus(payload['status']))
    if subject is None:
        return None
    subject = subject.format(id=payload['order_id'])
    lines = [subject + '.', f"Total: Rp {payload.get('total')}"]
    if payload.get('status') == OrderStatus.SHIPPED:
        lines.append(f"Courier: {payload.get('courier')}")
        lines.append(f"Tracking number: {payload.get('tracking_number')}")
    lines.append("Thank you for shopping at Holycat!")
    return subject, '\n'.join(lines)


def dispatch_event(event: OutboxEvent) -> bool:
    """Try to deliver one event. Returns True when it ends up sent; never raises."""
    event.attempts += 1
    try:
        message = build_message(event)
        if message is not None:
            user = event.order.user if event.order_id else None
            if user is not None and user.email:
                subject, body = message
                send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [user.email])
            else:
                logger.info("NOTIFY — event %s has no recipient, skipping mail", event.pk)
    except Exception as e:
        logger.exception("NOTIFY FAILED — event %s order %s: %s", event.pk, event.order_id, e)
        event.status = OutboxEvent.Status.FAILED
        event.last_error = str(e)[:1000]
        event.save(update_fields=['attempts', 'status', 'last_error'])
        return False
    event.status = OutboxEvent.Status.SENT
    event.sent_at = timezone.now()
    event.last_error = ''
    event.save(update_fields=['attempts', 'status', 'sent_at', 'last_error'])
    logger.info("NOTIFY — %s order %s sent", event.event_type, event.order_id)
    return True


def claim(event: OutboxEvent, now=None) -> bool:
    """Mark ``event`` as being sent by this caller. False if another dispatcher got it first."""
    now = now or timezone.now()
    won = (OutboxEvent.objects
           .filter(pk=event.pk, status=event.status, claimed_at=event.claimed_at)
           .update(status=OutboxEvent.Status.SENDING, claimed_at=now))
    if won:
        event.status = OutboxEvent.Status.SENDING
        event.claimed_at = now
    return bool(won)


def claim_events(event_ids=None, limit=100, include_failed=False, reclaim_stale=False):
    """Claim up to ``limit`` deliverable events and return them.

    Locked rows are skipped, so parallel dispatchers split a batch instead of
    sharing it. ``reclaim_stale`` also picks up events a dispatcher claimed
    more than OUTBOX_CLAIM_TIMEOUT seconds ago and never finished.
    """
    now = timezone.now()
    statuses = [OutboxEvent.Status.PENDING]
    if include_failed:
        statuses.append(OutboxEvent.Status.FAILED)
    claimable = Q(status__in=statuses)
    if reclaim_stale:
        cutoff = now - timedelta(seconds=settings.OUTBOX_CLAIM_TIMEOUT)
        claimable |= Q(status=OutboxEvent.Status.SENDING, claimed_at__lt=cutoff)

    with transaction.atomic():
        qs = (OutboxEvent.objects
              .select_for_update(skip_locked=True)
              .filter(claimable, attempts__lt=settings.OUTBOX_MAX_ATTEMPTS)
              .order_by('created_at'))
        if event_ids is not None:
            qs = qs.filter(pk__in=event_ids)
        return [event for event in qs[:limit] if claim(event, now)]


def dispatch_pending(event_ids=None, limit=100, include_failed=False, reclaim_stale=False) -> int:
    """Claim and send pending (and optionally failed or stale) events; returns how many were sent."""
    sent = 0
    for event in claim_events(event_ids, limit, include_failed, reclaim_stale):
        if dispatch_event(event):
            sent += 1
    return sent
