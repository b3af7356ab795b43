import threading
from decimal import Decimal

import pytest
from django.db import connections

from .exceptions import InsufficientStock, InvalidPaymentMethod, InvalidSelection, InvalidTransition
from .models import CartItem, Order, OrderItem, OrderStatus, PaymentMethod, Product
from .services import create_order, update_order_status

pytestmark = pytest.mark.django_db


def test_checkout_prices_reserves_and_empties_selected_lines(user, make_product, add_line):
    food = make_product(title='Royal Canin Kitten 2kg', price='285000.00', stock=5)
    toy = make_product(title='Feather Wand Toy', price='15000.00', stock=8)
    l1 = add_line(user, food, 2)
    l2 = add_line(user, toy, 3)

    order = create_order(user=user, payment_method='BANK_TRANSFER', cart_item_ids=[l1.pk, l2.pk])

    assert order.total == Decimal('615000.00')
    assert order.status == OrderStatus.AWAITING_PAYMENT
    items = {i.product_id: i for i in order.items.all()}
    assert items[food.pk].quantity == 2 and items[food.pk].unit_price == Decimal('285000.00')
    assert items[toy.pk].quantity == 3 and items[toy.pk].unit_price == Decimal('15000.00')
    assert sum(i.quantity * i.unit_price for i in items.values()) == order.total
    food.refresh_from_db()
    toy.refresh_from_db()
    assert (food.stock, toy.stock) == (3, 5)
    assert not CartItem.objects.filter(pk__in=[l1.pk, l2.pk]).exists()


def test_partial_cart_checkout_leaves_other_lines(user, make_product, add_line):
    a = make_product(title='A', stock=5)
    b = make_product(title='B', stock=5)
    chosen = add_line(user, a, 1)
    kept = add_line(user, b, 2)

    create_order(user=user, payment_method='COD', cart_item_ids=[chosen.pk])

    assert list(CartItem.objects.filter(user=user).values_list('pk', flat=True)) == [kept.pk]
    b.refresh_from_db()
    assert b.stock == 5


def test_checkout_uses_current_catalog_price(user, make_product, add_line):
    p = make_product(price='50000.00', stock=5)
    line = add_line(user, p, 2)
    Product.objects.filter(pk=p.pk).update(price=Decimal('45000.00'))

    order = create_order(user=user, payment_method='BANK_TRANSFER', cart_item_ids=[line.pk])

    assert order.total == Decimal('90000.00')
    assert order.items.get().unit_price == Decimal('45000.00')


def test_order_item_price_does_not_follow_later_catalog_changes(user, make_product, add_line):
    p = make_product(price='50000.00', stock=5)
    order = create_order(user=user, payment_method='COD', cart_item_ids=[add_line(user, p, 1).pk])

    Product.objects.filter(pk=p.pk).update(price=Decimal('99000.00'))

    assert OrderItem.objects.get(order=order).unit_price == Decimal('50000.00')


def test_insufficient_stock_rolls_back_everything(user, make_product, add_line):
    plenty = make_product(title='Plenty', stock=10)
    scarce = make_product(title='Scarce', stock=1)
    l1 = add_line(user, plenty, 2)
    l2 = add_line(user, scarce, 2)

    with pytest.raises(InsufficientStock) as exc:
        create_order(user=user, payment_method='BANK_TRANSFER', cart_item_ids=[l1.pk, l2.pk])

    assert exc.value.product_id == scarce.pk
    assert exc.value.available == 1
    assert Order.objects.count() == 0
    plenty.refresh_from_db()
    scarce.refresh_from_db()
    assert (plenty.stock, scarce.stock) == (10, 1)
    assert CartItem.objects.filter(user=user).count() == 2


def test_foreign_or_missing_line_is_a_hard_failure(user, other_user, make_product, add_line):
    p = make_product(stock=10)
    mine = add_line(user, p, 1)
    theirs = add_line(other_user, p, 1)

    with pytest.raises(InvalidSelection) as exc:
        create_order(user=user, payment_method='COD', cart_item_ids=[mine.pk, theirs.pk, 999999])

    assert exc.value.missing == sorted([theirs.pk, 999999])
    assert Order.objects.count() == 0
    assert CartItem.objects.filter(pk=mine.pk).exists()
    p.refresh_from_db()
    assert p.stock == 10


def test_empty_selection_is_rejected(user):
    with pytest.raises(InvalidSelection):
        create_order(user=user, payment_method='COD', cart_item_ids=[])


def test_unknown_payment_method_is_rejected(user, make_product, add_line):
    line = add_line(user, make_product(stock=3), 1)

    with pytest.raises(InvalidPaymentMethod):
        create_order(user=user, payment_method='CRYPTO', cart_item_ids=[line.pk])

    assert Order.objects.count() == 0


@pytest.mark.parametrize('method, status', [
    (PaymentMethod.COD, OrderStatus.PROCESSING),
    (PaymentMethod.BANK_TRANSFER, OrderStatus.AWAITING_PAYMENT),
    (PaymentMethod.GATEWAY, OrderStatus.AWAITING_PAYMENT),
])
def test_initial_status_follows_payment_method(user, make_product, add_line, method, status):
    line = add_line(user, make_product(stock=3), 1)

    order = create_order(user=user, payment_method=method, cart_item_ids=[line.pk])

    assert Order.objects.get(pk=order.pk).status == status


def test_bank_transfer_order_cannot_jump_to_shipped(user, make_product, add_line):
    p = make_product(price='1000.00', stock=3)
    line = add_line(user, p, 2)

    order = create_order(user=user, payment_method='BANK_TRANSFER', cart_item_ids=[line.pk])

    assert order.total == Decimal('2000.00')
    assert order.status == OrderStatus.AWAITING_PAYMENT
    p.refresh_from_db()
    assert p.stock == 1

    with pytest.raises(InvalidTransition):
        update_order_status(order_id=order.pk, status='shipped')
    order.refresh_from_db()
    assert order.status == OrderStatus.AWAITING_PAYMENT


def test_sequential_checkouts_stop_at_zero_stock(make_product, add_line, django_user_model):
    n = 4
    p = make_product(stock=n - 1)
    buyers = [django_user_model.objects.create_user(f'buyer{i}', f'b{i}@test.com', 'pw') for i in range(n)]
    lines = [add_line(b, p, 1) for b in buyers]

    ok, failed = 0, 0
    for buyer, line in zip(buyers, lines):
        try:
            create_order(user=buyer, payment_method='COD', cart_item_ids=[line.pk])
            ok += 1
        except InsufficientStock:
            failed += 1

    assert (ok, failed) == (n - 1, 1)
    p.refresh_from_db()
    assert p.stock == 0


@pytest.mark.django_db(transaction=True)
def test_concurrent_checkouts_never_oversell(make_product, add_line, django_user_model):
    n = 6
    p = make_product(stock=n - 1)
    buyers = [django_user_model.objects.create_user(f'racer{i}', f'r{i}@test.com', 'pw') for i in range(n)]
    lines = [add_line(b, p, 1) for b in buyers]
    results = []
    barrier = threading.Barrier(n)

    def checkout(buyer, line):
        try:
            barrier.wait()
            create_order(user=buyer, payment_method='COD', cart_item_ids=[line.pk])
            results.append('ok')
        except InsufficientStock:
            results.append('insufficient')
        except Exception as e:
            results.append(repr(e))
        finally:
            connections.close_all()

    threads = [threading.Thread(target=checkout, args=pair) for pair in zip(buyers, lines)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ['insufficient'] + ['ok'] * (n - 1)
    p.refresh_from_db()
    assert p.stock == 0
    assert Order.objects.count() == n - 1
