import logging

from django.db.models import F

from .exceptions import InsufficientStock
from .models import Product
from .tx import require_atomic

logger = logging.getLogger(__name__)


def lock_products(product_ids):
    """Row-lock products in ascending id order and return them by id.

    A fixed lock order keeps two checkouts over the same products from
    deadlocking each other.
    """
    require_atomic()
    ids = sorted(set(product_ids))
    return {p.pk: p for p in Product.objects.select_for_update().filter(pk__in=ids).order_by('pk')}


def reserve(product_id: int, quantity: int) -> None:
    """Take ``quantity`` units out of stock, or raise InsufficientStock.

    The check and the decrement are one conditional UPDATE, so two callers
    racing for the last unit cannot both succeed even without row locks.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    require_atomic()
    updated = (Product.objects
               .filter(pk=product_id, stock__gte=quantity)
               .update(stock=F('stock') - quantity))
    if updated:
        logger.debug("STOCK RESERVE — product %s -%d", product_id, quantity)
        return
    row = Product.objects.filter(pk=product_id).values('stock', 'title').first()
    available = row['stock'] if row else 0
    raise InsufficientStock(product_id, quantity, available, title=row['title'] if row else '')


def release(product_id: int, quantity: int) -> None:
    """Put previously reserved units back. No upper bound is enforced."""
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    require_atomic()
    Product.objects.filter(pk=product_id).update(stock=F('stock') + quantity)
    logger.debug("STOCK RELEASE — product %s +%d", product_id, quantity)


def release_order_items(order) -> None:
    for item in order.items.all():
        release(item.product_id, item.quantity)
