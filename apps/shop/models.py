from decimal import Decimal

from django.conf import settings
from django.db import models


class Product(models.Model):
    """Catalog entry; stock is only moved through the inventory ledger."""

    class Category(models.TextChoices):
        FOOD = 'food', 'Food'
        MEDICINE = 'medicine', 'Medicine'
        SUPPLEMENTS = 'supplements', 'Supplements & vitamins'
        GROOMING = 'grooming', 'Grooming'
        ACCESSORIES = 'accessories', 'Accessories'
        OTHER = 'other', 'Other'

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    stock = models.PositiveIntegerField(default=0)
    category = models.CharField(max_length=20, choices=Category.choices, default=Category.OTHER)
    image = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'shop_product'
        constraints = [
            models.CheckConstraint(condition=models.Q(stock__gte=0), name='shop_product_stock_non_negative'),
        ]

    def __str__(self):
        return self.title


class CartItem(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='cart_items')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='cart_items')
    quantity = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'shop_cart_item'
        constraints = [
            models.UniqueConstraint(fields=['user', 'product'], name='shop_cart_item_user_product_uniq'),
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name='shop_cart_item_quantity_positive'),
        ]

    def __str__(self):
        return f"{self.product_id} x{self.quantity}"


class OrderStatus(models.TextChoices):
    AWAITING_PAYMENT = 'awaiting_payment', 'Awaiting payment'
    PROCESSING = 'processing', 'Processing'
    PACKED = 'packed', 'Packed'
    SHIPPED = 'shipped', 'Shipped'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class PaymentMethod(models.TextChoices):
    COD = 'COD', 'Cash on delivery'
    BANK_TRANSFER = 'BANK_TRANSFER', 'Bank transfer'
    GATEWAY = 'GATEWAY', 'Gateway checkout'


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


class Order(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders')
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=OrderStatus.choices)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    payment_proof_url = models.CharField(max_length=500, blank=True)
    tracking_number = models.CharField(max_length=100, blank=True)
    courier = models.CharField(max_length=100, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'shop_order'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='shop_order_status_idx'),
            models.Index(fields=['user', 'created_at'], name='shop_order_user_created_idx'),
        ]

    def __str__(self):
        return f"Order #{self.id} ({self.status})"

    @property
    def is_terminal(self):
        return OrderStatus(self.status) in TERMINAL_STATUSES


class OrderItem(models.Model):
    """Line captured at checkout; unit_price is what was actually charged."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='order_items')
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = 'shop_order_item'

    def __str__(self):
        return f"{self.product_id} x{self.quantity} @ {self.unit_price}"

    @property
    def line_total(self):
        return self.unit_price * self.quantity


class OutboxEvent(models.Model):
    """Transactional outbox: written with the status change, sent after commit."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        SENDING = 'sending', 'Sending'
        SENT = 'sent', 'Sent'
        FAILED = 'failed', 'Failed'

    order = models.ForeignKey(Order, on_delete=models.SET_NULL, null=True, related_name='events')
    event_type = models.CharField(max_length=50)
    payload = models.JSONField(default=dict)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    claimed_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'shop_outbox_event'
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='shop_outbox_status_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} order={self.order_id} [{self.status}]"


class PaymentNotification(models.Model):
    """Audit trail of every gateway notification received, applied or not."""

    class Outcome(models.TextChoices):
        APPLIED = 'applied', 'Applied'
        IGNORED = 'ignored', 'Ignored'
        REJECTED = 'rejected', 'Rejected'

    order = models.ForeignKey(Order, on_delete=models.SET_NULL, null=True, blank=True, related_name='payment_notifications')
    reference = models.CharField(max_length=100)
    transaction_id = models.CharField(max_length=100, blank=True)
    transaction_status = models.CharField(max_length=30, blank=True)
    fraud_status = models.CharField(max_length=30, blank=True)
    outcome = models.CharField(max_length=20, choices=Outcome.choices)
    note = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'shop_payment_notification'
        ordering = ['-created_at']

    def __str__(self):
        return f"[{self.created_at}] {self.reference} {self.transaction_status} -> {self.outcome}"


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=128)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    request_hash = models.CharField(max_length=64)
    status_code = models.PositiveSmallIntegerField()
    response_body = models.JSONField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'shop_idempotency_key'
        constraints = [
            models.UniqueConstraint(fields=['key', 'user'], name='shop_idempotency_key_user_uniq'),
        ]
