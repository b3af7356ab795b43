from django.contrib import admin

from .models import CartItem, Order, OrderItem, OutboxEvent, PaymentNotification, Product


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = ('product', 'quantity', 'unit_price')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('title', 'category', 'price', 'stock', 'created_at')
    list_filter = ('category',)
    search_fields = ('title',)
    readonly_fields = ('created_at', 'updated_at')


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'total', 'status', 'payment_method', 'created_at')
    list_filter = ('status', 'payment_method', 'created_at')
    search_fields = ('user__email', 'tracking_number')
    inlines = [OrderItemInline]
    # Status changes go through the API so stock and notifications stay consistent.
    readonly_fields = ('user', 'total', 'status', 'payment_method', 'payment_proof_url',
                       'tracking_number', 'courier', 'shipped_at', 'created_at', 'updated_at')

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    list_display = ('user', 'product', 'quantity', 'created_at')


@admin.register(OutboxEvent)
class OutboxEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'event_type', 'status', 'attempts', 'created_at', 'claimed_at', 'sent_at')
    list_filter = ('status', 'event_type')


@admin.register(PaymentNotification)
class PaymentNotificationAdmin(admin.ModelAdmin):
    list_display = ('reference', 'order', 'transaction_status', 'fraud_status', 'outcome', 'created_at')
    list_filter = ('outcome', 'transaction_status')
    search_fields = ('reference', 'transaction_id')
