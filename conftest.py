from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from apps.shop.models import CartItem, Product


@pytest.fixture
def user():
    return get_user_model().objects.create_user('buyer', 'buyer@test.com', 'pw')


@pytest.fixture
def other_user():
    return get_user_model().objects.create_user('other', 'other@test.com', 'pw')


@pytest.fixture
def staff():
    return get_user_model().objects.create_user('staff', 'staff@test.com', 'pw', is_staff=True)


@pytest.fixture
def make_product():
    def make(title='Whiskas Tuna 1.2kg', price='65000.00', stock=10, category=Product.Category.FOOD):
        return Product.objects.create(title=title, price=Decimal(price), stock=stock, category=category)
    return make


@pytest.fixture
def add_line():
    def add(user, product, quantity=1):
        return CartItem.objects.create(user=user, product=product, quantity=quantity)
    return add


@pytest.fixture
def api(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def admin_api(staff):
    client = APIClient()
    client.force_authenticate(user=staff)
    return client
