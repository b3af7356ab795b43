from django.urls import path

from . import views

urlpatterns = [
    path('cart', views.CartView.as_view(), name='cart'),
    path('cart/<int:line_id>', views.CartItemView.as_view(), name='cart-item'),

    path('orders', views.OrderListView.as_view(), name='order-list'),
    path('orders/create', views.create_order_view, name='order-create'),
    path('orders/<int:order_id>', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:order_id>/cancel', views.cancel_order_view, name='order-cancel'),
    path('orders/<int:order_id>/submit-proof', views.submit_proof_view, name='order-submit-proof'),

    path('payments/create', views.payment_session_view, name='payment-create'),
    path('payments/notify', views.payment_notify_view, name='payment-notify'),

    path('admin/orders', views.AdminOrderListView.as_view(), name='admin-order-list'),
    path('admin/orders/<int:order_id>/status', views.admin_update_status_view, name='admin-order-status'),
]
