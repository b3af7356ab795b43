from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.shortcuts import get_object_or_404

from .exceptions import InvalidSelection
from .models import CartItem, Product


def load_lines(user, line_ids):
    """Return the user's cart lines for ``line_ids`` with their products, in request order.

    All or nothing: any id that is missing or owned by someone else raises
    InvalidSelection naming every unresolved id.
    """
    ids = list(dict.fromkeys(int(i) for i in line_ids))
    if not ids:
        raise InvalidSelection()
    by_id = {
        line.pk: line
        for line in CartItem.objects.select_related('product').filter(user=user, pk__in=ids)
    }
    missing = [i for i in ids if i not in by_id]
    if missing:
        raise InvalidSelection(missing)
    return [by_id[i] for i in ids]


@transaction.atomic
def add_to_cart(*, user, product_id: int, quantity: int = 1) -> tuple[CartItem, bool]:
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    product = get_object_or_404(Product, pk=product_id)
    line, created = CartItem.objects.select_for_update().get_or_create(
        user=user, product=product, defaults={'quantity': quantity},
    )
    if not created:
        CartItem.objects.filter(pk=line.pk).update(quantity=F('quantity') + quantity)
        line.refresh_from_db(fields=['quantity'])
    return line, created


def update_line(*, user, line_id: int, quantity: int) -> CartItem:
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    line = CartItem.objects.filter(user=user, pk=line_id).first()
    if line is None:
        raise InvalidSelection([line_id])
    line.quantity = quantity
    line.save(update_fields=['quantity'])
    return line


def remove_line(*, user, line_id: int) -> None:
    deleted, _ = CartItem.objects.filter(user=user, pk=line_id).delete()
    if not deleted:
        raise InvalidSelection([line_id])


def cart_summary(user):
    """Lines plus a subtotal at current catalog prices."""
    lines = list(CartItem.objects.select_related('product').filter(user=user).order_by('created_at'))
    subtotal = sum((line.product.price * line.quantity for line in lines), Decimal('0.00'))
    return lines, subtotal
