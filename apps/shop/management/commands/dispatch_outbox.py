from django.core.management.base import BaseCommand

from apps.shop.models import OutboxEvent
from apps.shop.notifications import dispatch_pending


class Command(BaseCommand):
    help = 'Send queued order notifications, retrying failed ones'

    def add_arguments(self, parser):
        parser.add_argument('--limit', type=int, default=100, help='Maximum events to send in this run')
        parser.add_argument('--pending-only', action='store_true', help='Do not retry failed events')

    def handle(self, *args, **options):
        sent = dispatch_pending(
            limit=options['limit'],
            include_failed=not options['pending_only'],
            reclaim_stale=True,
        )
        left = OutboxEvent.objects.exclude(status=OutboxEvent.Status.SENT).count()
        self.stdout.write(self.style.SUCCESS(f'Sent {sent} event(s); {left} not yet delivered.'))
