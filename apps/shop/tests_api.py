import pytest
from rest_framework.test import APIClient

from . import payments
from .models import CartItem, IdempotencyKey, Order, OrderStatus, Product

pytestmark = pytest.mark.django_db


@pytest.fixture
def product(make_product):
    return make_product(title='Payment Test Product', price='50000.00', stock=100)


def add_to_cart(api, product, quantity=1):
    res = api.post('/cart', {'productId': product.pk, 'quantity': quantity}, format='json')
    assert res.status_code in (200, 201)
    return res.data['id']


def test_cart_add_merges_and_lists(api, product):
    first = api.post('/cart', {'productId': product.pk, 'quantity': 2}, format='json')
    again = api.post('/cart', {'productId': product.pk, 'quantity': 1}, format='json')

    assert first.status_code == 201
    assert again.status_code == 200
    assert again.data['quantity'] == 3

    res = api.get('/cart')
    assert res.status_code == 200
    assert len(res.data['items']) == 1
    assert res.data['subtotal'] == '150000.00'


def test_cart_update_and_remove(api, product, other_user):
    line_id = add_to_cart(api, product)

    assert api.put(f'/cart/{line_id}', {'quantity': 5}, format='json').data['quantity'] == 5

    intruder = APIClient()
    intruder.force_authenticate(user=other_user)
    assert intruder.delete(f'/cart/{line_id}').status_code == 400

    assert api.delete(f'/cart/{line_id}').data == {'success': True}
    assert not CartItem.objects.filter(pk=line_id).exists()


def test_create_order_returns_201_and_empties_cart(api, product):
    line_id = add_to_cart(api, product)

    res = api.post('/orders/create', {'paymentMethod': 'BANK_TRANSFER', 'cartItemIds': [line_id]}, format='json')

    assert res.status_code == 201
    order_id = res.data['orderId']
    assert res['Location'] == f'/orders/{order_id}'
    assert api.get('/cart').data['items'] == []

    detail = api.get(f'/orders/{order_id}')
    assert detail.status_code == 200
    assert detail.data['status'] == 'awaiting_payment'
    assert detail.data['items'][0]['productId'] == product.pk

    history = api.get('/orders')
    assert [o['id'] for o in history.data] == [order_id]


def test_create_order_reports_which_product_lacks_stock(api, make_product):
    scarce = make_product(title='Scarce', stock=1)
    line_id = add_to_cart(api, scarce, 2)

    res = api.post('/orders/create', {'paymentMethod': 'COD', 'cartItemIds': [line_id]}, format='json')

    assert res.status_code == 409
    assert res.data['error'] == 'insufficient_stock'
    assert (res.data['productId'], res.data['requested'], res.data['available']) == (scarce.pk, 2, 1)
    assert Order.objects.count() == 0


def test_create_order_validates_body(api, product):
    line_id = add_to_cart(api, product)

    assert api.post('/orders/create', {'paymentMethod': 'BARTER', 'cartItemIds': [line_id]},
                    format='json').status_code == 400
    assert api.post('/orders/create', {'paymentMethod': 'COD', 'cartItemIds': []},
                    format='json').status_code == 400
    res = api.post('/orders/create', {'paymentMethod': 'COD', 'cartItemIds': [line_id, 424242]}, format='json')
    assert res.status_code == 400
    assert res.data['error'] == 'invalid_selection'
    assert res.data['missing'] == [424242]


def test_idempotency_key_replays_the_first_response(api, product):
    line_id = add_to_cart(api, product)
    body = {'paymentMethod': 'COD', 'cartItemIds': [line_id]}

    first = api.post('/orders/create', body, format='json', HTTP_IDEMPOTENCY_KEY='k-1')
    second = api.post('/orders/create', body, format='json', HTTP_IDEMPOTENCY_KEY='k-1')

    assert first.status_code == second.status_code == 201
    assert first.data['orderId'] == second.data['orderId']
    assert Order.objects.count() == 1
    assert Product.objects.get(pk=product.pk).stock == 99

    other = api.post('/orders/create', {'paymentMethod': 'BANK_TRANSFER', 'cartItemIds': [line_id]},
                     format='json', HTTP_IDEMPOTENCY_KEY='k-1')
    assert other.status_code == 422


def test_failed_checkout_does_not_burn_the_idempotency_key(api, make_product):
    scarce = make_product(title='Scarce', stock=0)
    line_id = add_to_cart(api, scarce, 1)

    res = api.post('/orders/create', {'paymentMethod': 'COD', 'cartItemIds': [line_id]},
                   format='json', HTTP_IDEMPOTENCY_KEY='k-2')

    assert res.status_code == 409
    assert not IdempotencyKey.objects.filter(key='k-2').exists()


def test_cancel_endpoint(api, product):
    line_id = add_to_cart(api, product)
    order_id = api.post('/orders/create', {'paymentMethod': 'BANK_TRANSFER', 'cartItemIds': [line_id]},
                        format='json').data['orderId']

    res = api.put(f'/orders/{order_id}/cancel')
    assert res.status_code == 200
    assert res.data['status'] == 'cancelled'

    again = api.put(f'/orders/{order_id}/cancel')
    assert again.status_code == 409
    assert again.data['error'] == 'invalid_transition'
    assert (again.data['from'], again.data['attempted']) == ('cancelled', 'cancelled')

    assert api.delete(f'/orders/{order_id}').status_code == 200
    assert api.get(f'/orders/{order_id}').status_code == 404


def test_submit_proof_endpoint(api, product):
    line_id = add_to_cart(api, product)
    order_id = api.post('/orders/create', {'paymentMethod': 'BANK_TRANSFER', 'cartItemIds': [line_id]},
                        format='json').data['orderId']

    res = api.put(f'/orders/{order_id}/submit-proof', {'paymentProofUrl': 'https://files.test/r.jpg'}, format='json')

    assert res.status_code == 200
    assert Order.objects.get(pk=order_id).payment_proof_url == 'https://files.test/r.jpg'


def test_webhook_acknowledges_everything_it_can_parse(api, product):
    line_id = add_to_cart(api, product)
    order_id = api.post('/orders/create', {'paymentMethod': 'GATEWAY', 'cartItemIds': [line_id]},
                        format='json').data['orderId']
    gateway = APIClient()
    payload = {
        'transaction_status': 'settlement',
        'fraud_status': 'accept',
        'order_id': f'HOLYCAT-{order_id}-1700000000',
        'gross_amount': '50000.00',
        'transaction_id': 'simulated-1',
        'status_code': '200',
    }

    res = gateway.post('/payments/notify', payload, format='json')
    assert res.status_code == 200
    assert res.data == {'received': True, 'changed': True}
    assert Order.objects.get(pk=order_id).status == OrderStatus.PROCESSING

    assert gateway.post('/payments/notify', payload, format='json').data['changed'] is False
    assert gateway.post('/payments/notify', {**payload, 'order_id': 'nonsense'}, format='json').status_code == 200
    assert gateway.post('/payments/notify', {**payload, 'order_id': 'HOLYCAT-²-1700000000'}, format='json').status_code == 200
    assert gateway.post('/payments/notify', {**payload, 'order_id': 'HOLYCAT-999999-1'}, format='json').status_code == 200
    assert gateway.post('/payments/notify', {'fraud_status': 'accept'}, format='json').status_code == 400


def test_admin_routes_require_staff(api):
    assert api.get('/admin/orders').status_code == 403
    assert api.put('/admin/orders/1/status', {'status': 'packed'}, format='json').status_code == 403


def test_admin_status_update(api, admin_api, product):
    line_id = add_to_cart(api, product)
    order_id = api.post('/orders/create', {'paymentMethod': 'COD', 'cartItemIds': [line_id]},
                        format='json').data['orderId']

    assert admin_api.put(f'/admin/orders/{order_id}/status', {'status': 'delivered'},
                         format='json').data['error'] == 'invalid_status'
    assert admin_api.put(f'/admin/orders/{order_id}/status', {'status': 'packed'}, format='json').status_code == 200

    missing = admin_api.put(f'/admin/orders/{order_id}/status', {'status': 'shipped'}, format='json')
    assert missing.status_code == 400
    assert missing.data['missing'] == ['trackingNumber', 'courier']

    shipped = admin_api.put(f'/admin/orders/{order_id}/status',
                            {'status': 'shipped', 'trackingNumber': 'JNE-1', 'courier': 'JNE'}, format='json')
    assert shipped.status_code == 200
    assert shipped.data['trackingNumber'] == 'JNE-1'
    assert shipped.data['shippedAt'] is not None

    listing = admin_api.get('/admin/orders', {'status': 'shipped'})
    assert [o['id'] for o in listing.data] == [order_id]


def test_orders_are_private(api, other_user, product):
    line_id = add_to_cart(api, product)
    order_id = api.post('/orders/create', {'paymentMethod': 'COD', 'cartItemIds': [line_id]},
                        format='json').data['orderId']
    intruder = APIClient()
    intruder.force_authenticate(user=other_user)

    assert intruder.get(f'/orders/{order_id}').status_code == 404
    assert intruder.put(f'/orders/{order_id}/cancel').status_code == 404
    assert APIClient().get('/orders').status_code in (401, 403)


def test_payment_session_endpoint(monkeypatch, api, product):
    class Answer:
        def raise_for_status(self):
            pass

        def json(self):
            return {'token': 'snap-token', 'redirect_url': 'https://pay.test/snap-token'}

    monkeypatch.setattr(payments.requests, 'post', lambda *args, **kwargs: Answer())
    line_id = add_to_cart(api, product)
    order_id = api.post('/orders/create', {'paymentMethod': 'GATEWAY', 'cartItemIds': [line_id]},
                        format='json').data['orderId']

    res = api.post('/payments/create', {'orderId': order_id}, format='json')

    assert res.status_code == 201
    assert res.data == {'token': 'snap-token', 'redirect_url': 'https://pay.test/snap-token'}
