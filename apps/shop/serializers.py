from rest_framework import serializers

from .models import CartItem, Order, OrderItem, PaymentMethod


class OrderCreateIn(serializers.Serializer):
    paymentMethod = serializers.ChoiceField(choices=PaymentMethod.choices)
    cartItemIds = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)

    def validate_cartItemIds(self, ids):
        if len(set(ids)) != len(ids):
            raise serializers.ValidationError("Cart item ids must be unique.")
        return ids


class StatusUpdateIn(serializers.Serializer):
    # Free text on purpose: unknown values are reported as invalid_status by the service.
    status = serializers.CharField()
    trackingNumber = serializers.CharField(required=False, allow_blank=True, default='')
    courier = serializers.CharField(required=False, allow_blank=True, default='')


class PaymentProofIn(serializers.Serializer):
    paymentProofUrl = serializers.URLField(max_length=500)


class PaymentSessionIn(serializers.Serializer):
    orderId = serializers.IntegerField(min_value=1)


class CartAddIn(serializers.Serializer):
    productId = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, default=1)


class CartUpdateIn(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class CartItemOut(serializers.ModelSerializer):
    productId = serializers.IntegerField(source='product_id')
    title = serializers.CharField(source='product.title')
    price = serializers.DecimalField(source='product.price', max_digits=12, decimal_places=2)

    class Meta:
        model = CartItem
        fields = ('id', 'productId', 'title', 'price', 'quantity')


class OrderItemOut(serializers.ModelSerializer):
    productId = serializers.IntegerField(source='product_id')
    title = serializers.CharField(source='product.title')
    unitPrice = serializers.DecimalField(source='unit_price', max_digits=12, decimal_places=2)

    class Meta:
        model = OrderItem
        fields = ('id', 'productId', 'title', 'quantity', 'unitPrice')


class OrderOut(serializers.ModelSerializer):
    paymentMethod = serializers.CharField(source='payment_method')
    paymentProofUrl = serializers.CharField(source='payment_proof_url')
    trackingNumber = serializers.CharField(source='tracking_number')
    shippedAt = serializers.DateTimeField(source='shipped_at')
    createdAt = serializers.DateTimeField(source='created_at')
    items = OrderItemOut(many=True, read_only=True)

    class Meta:
        model = Order
        fields = ('id', 'status', 'total', 'paymentMethod', 'paymentProofUrl',
                  'trackingNumber', 'courier', 'shippedAt', 'createdAt', 'items')


class AdminOrderOut(OrderOut):
    userId = serializers.IntegerField(source='user_id')
    email = serializers.EmailField(source='user.email')

    class Meta(OrderOut.Meta):
        fields = OrderOut.Meta.fields + ('userId', 'email')
