import hashlib
import json
import logging

from django.db import transaction
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import cart, services
from .exceptions import GatewayError, IdempotencyConflict, InvalidTransition, MalformedReference, OrderNotFound
from .models import IdempotencyKey
from .payments import GatewayNotification, create_payment_session, reconcile_notification
from .serializers import (
    AdminOrderOut, CartAddIn, CartItemOut, CartUpdateIn, OrderCreateIn, OrderOut,
    PaymentProofIn, PaymentSessionIn, StatusUpdateIn,
)

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
#  Cart
# ─────────────────────────────────────────
class CartView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        lines, subtotal = cart.cart_summary(request.user)
        return Response({'items': CartItemOut(lines, many=True).data, 'subtotal': str(subtotal)})

    def post(self, request):
        ser = CartAddIn(data=request.data)
        ser.is_valid(raise_exception=True)
        line, created = cart.add_to_cart(
            user=request.user,
            product_id=ser.validated_data['productId'],
            quantity=ser.validated_data['quantity'],
        )
        return Response(CartItemOut(line).data, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


class CartItemView(APIView):
    permission_classes = [IsAuthenticated]

    def put(self, request, line_id):
        ser = CartUpdateIn(data=request.data)
        ser.is_valid(raise_exception=True)
        line = cart.update_line(user=request.user, line_id=line_id, quantity=ser.validated_data['quantity'])
        return Response(CartItemOut(line).data)

    def delete(self, request, line_id):
        cart.remove_line(user=request.user, line_id=line_id)
        return Response({'success': True})


# ─────────────────────────────────────────
#  Orders (customer)
# ─────────────────────────────────────────
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_order_view(request):
    ser = OrderCreateIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data

    idem = request.headers.get('Idempotency-Key')
    body_hash = hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()

    if idem:
        with transaction.atomic():
            rec, created = IdempotencyKey.objects.select_for_update().get_or_create(
                key=idem, user=request.user,
                defaults={'request_hash': body_hash, 'status_code': 0, 'response_body': {}},
            )
            if not created and rec.status_code:
                if rec.request_hash != body_hash:
                    raise IdempotencyConflict(idem)
                logger.info("ORDER CREATE — replaying idempotency key %s", idem)
                return Response(rec.response_body, status=rec.status_code)

            order = services.create_order(
                user=request.user, payment_method=data['paymentMethod'], cart_item_ids=data['cartItemIds'],
            )
            payload = {'orderId': order.pk, 'total': str(order.total), 'status': order.status}
            rec.request_hash, rec.response_body, rec.status_code = body_hash, payload, status.HTTP_201_CREATED
            rec.save(update_fields=['request_hash', 'response_body', 'status_code'])
    else:
        order = services.create_order(
            user=request.user, payment_method=data['paymentMethod'], cart_item_ids=data['cartItemIds'],
        )
        payload = {'orderId': order.pk, 'total': str(order.total), 'status': order.status}

    headers = {'Location': f"/orders/{order.pk}"}
    return Response(payload, status=status.HTTP_201_CREATED, headers=headers)


class OrderListView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        orders = services.list_orders_for_user(request.user)
        return Response(OrderOut(orders, many=True).data)


class OrderDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, order_id):
        order = services.get_order_for_user(user=request.user, order_id=order_id)
        return Response(OrderOut(order).data)

    def delete(self, request, order_id):
        services.delete_order(user=request.user, order_id=order_id)
        return Response({'success': True})


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def cancel_order_view(request, order_id):
    order = services.cancel_order(user=request.user, order_id=order_id)
    return Response({'id': order.pk, 'status': order.status})


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def submit_proof_view(request, order_id):
    ser = PaymentProofIn(data=request.data)
    ser.is_valid(raise_exception=True)
    order = services.submit_payment_proof(
        user=request.user, order_id=order_id, proof_url=ser.validated_data['paymentProofUrl'],
    )
    return Response({'id': order.pk, 'status': order.status, 'paymentProofUrl': order.payment_proof_url})


# ─────────────────────────────────────────
#  Payments
# ─────────────────────────────────────────
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def payment_session_view(request):
    ser = PaymentSessionIn(data=request.data)
    ser.is_valid(raise_exception=True)
    session = create_payment_session(user=request.user, order_id=ser.validated_data['orderId'])
    return Response(session, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def payment_notify_view(request):
    """Gateway webhook. Once the body parses, the answer is 200 so the gateway stops retrying."""
    if not isinstance(request.data, dict):
        return Response({'error': 'invalid payload'}, status=status.HTTP_400_BAD_REQUEST)
    try:
        notification = GatewayNotification.from_payload(request.data)
    except KeyError as e:
        return Response({'error': f"missing field {e.args[0]}"}, status=status.HTTP_400_BAD_REQUEST)
    except GatewayError as e:
        logger.warning("PAYMENT NOTIFY REJECTED — %s (ref %s)", e, request.data.get('order_id'))
        return Response({'error': e.code}, status=status.HTTP_403_FORBIDDEN)

    try:
        result = reconcile_notification(notification)
    except (MalformedReference, OrderNotFound, InvalidTransition) as e:
        logger.warning("PAYMENT NOTIFY IGNORED — %s: %s", e.code, e)
        return Response({'received': True, 'changed': False})
    return Response({'received': True, 'changed': result['changed']})


# ─────────────────────────────────────────
#  Admin
# ─────────────────────────────────────────
class AdminOrderListView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        orders = services.list_all_orders(status=request.query_params.get('status'))
        return Response(AdminOrderOut(orders, many=True).data)


@api_view(['PUT'])
@permission_classes([IsAdminUser])
def admin_update_status_view(request, order_id):
    ser = StatusUpdateIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data
    order = services.update_order_status(
        order_id=order_id,
        status=data['status'],
        tracking_number=data['trackingNumber'],
        courier=data['courier'],
    )
    return Response(AdminOrderOut(order).data)
