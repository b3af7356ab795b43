import pytest
from django.db import transaction

from .exceptions import InsufficientStock
from .inventory import release, reserve
from .models import Product

pytestmark = pytest.mark.django_db


def test_reserve_decrements_stock(make_product):
    p = make_product(stock=5)

    with transaction.atomic():
        reserve(p.pk, 3)

    p.refresh_from_db()
    assert p.stock == 2


def test_reserve_rejects_instead_of_clamping(make_product):
    p = make_product(stock=2)

    with pytest.raises(InsufficientStock) as exc:
        with transaction.atomic():
            reserve(p.pk, 3)

    assert (exc.value.product_id, exc.value.requested, exc.value.available) == (p.pk, 3, 2)
    p.refresh_from_db()
    assert p.stock == 2


def test_last_unit_cannot_be_reserved_twice_from_stale_snapshots(make_product):
    p = make_product(stock=1)
    # Both callers read stock=1 before either writes.
    first_view = Product.objects.get(pk=p.pk)
    second_view = Product.objects.get(pk=p.pk)
    assert first_view.stock == second_view.stock == 1

    with transaction.atomic():
        reserve(p.pk, 1)
    with pytest.raises(InsufficientStock) as exc:
        with transaction.atomic():
            reserve(p.pk, 1)

    assert exc.value.available == 0
    p.refresh_from_db()
    assert p.stock == 0


def test_release_has_no_upper_bound(make_product):
    p = make_product(stock=0)

    with transaction.atomic():
        release(p.pk, 4)

    p.refresh_from_db()
    assert p.stock == 4


@pytest.mark.parametrize('qty', [0, -1])
def test_quantities_must_be_positive(make_product, qty):
    p = make_product(stock=5)
    with transaction.atomic():
        with pytest.raises(ValueError):
            reserve(p.pk, qty)
        with pytest.raises(ValueError):
            release(p.pk, qty)


@pytest.mark.django_db(transaction=True)
def test_ledger_refuses_to_run_outside_a_transaction(make_product):
    p = make_product(stock=5)

    with pytest.raises(RuntimeError):
        reserve(p.pk, 1)

    p.refresh_from_db()
    assert p.stock == 5
