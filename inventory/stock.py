"""Stock table: on-hand quantity per (product, warehouse).

Reads are free. Writes (``apply_delta`` / ``set_absolute``) are only valid inside
the Ledger Engine's transaction and lock the touched row with
``SELECT ... FOR UPDATE`` so concurrent validations serialize per pair.
"""

import logging

from django.db import transaction
from django.db.transaction import TransactionManagementError

from inventory.exceptions import InsufficientStockError
from inventory.models import StockLevel

logger = logging.getLogger(__name__)


def get_quantity(product_id, warehouse_id):
    return (
        StockLevel.objects.filter(product_id=product_id, warehouse_id=warehouse_id)
        .values_list("quantity", flat=True)
        .first()
        or 0
    )


def _require_transaction():
    if not transaction.get_connection().in_atomic_block:
        raise TransactionManagementError("Stock levels can only be changed inside a ledger transaction.")


def lock_levels(pairs):
    """Lock (creating when missing) the stock rows for ``pairs``.

    Rows are locked in ascending (product_id, warehouse_id) order so two
    validations touching overlapping pairs always acquire locks in the same
    order. Returns a dict keyed by pair.
    """
    _require_transaction()
    locked = {}
    for product_id, warehouse_id in sorted(set(pairs), key=lambda pair: (str(pair[0]), str(pair[1]))):
        level, _ = StockLevel.objects.select_for_update().get_or_create(
            product_id=product_id,
            warehouse_id=warehouse_id,
            defaults={"quantity": 0},
        )
        locked[(product_id, warehouse_id)] = level
    return locked


def _locked_level(product_id, warehouse_id, locked):
    if locked is not None and (product_id, warehouse_id) in locked:
        return locked[(product_id, warehouse_id)]
    return lock_levels([(product_id, warehouse_id)])[(product_id, warehouse_id)]


def apply_delta(product_id, warehouse_id, delta, *, locked=None):
    """Add ``delta`` (may be negative) to the stock row and return the new quantity."""
    _require_transaction()
    level = _locked_level(product_id, warehouse_id, locked)
    new_quantity = level.quantity + delta
    if new_quantity < 0:
        raise InsufficientStockError(
            f"Insufficient stock for product {product_id} in warehouse {warehouse_id}: "
            f"available {level.quantity}, requested {-delta}.",
            entity="product",
            entity_id=product_id,
            warehouse_id=str(warehouse_id),
            available=level.quantity,
            requested=-delta,
        )

    level.quantity = new_quantity
    level.save(update_fields=["quantity", "updated_at"])
    logger.debug(
        "stock_delta_applied",
        extra={
            "product_id": str(product_id),
            "warehouse_id": str(warehouse_id),
            "quantity_change": delta,
            "quantity_after": new_quantity,
        },
    )
    return new_quantity


def set_absolute(product_id, warehouse_id, value, *, locked=None):
    """Force the stock row to ``value``; returns ``(delta, new_quantity)``."""
    _require_transaction()
    if value < 0:
        raise InsufficientStockError(
            f"Stock for product {product_id} cannot be set below zero.",
            entity="product",
            entity_id=product_id,
            warehouse_id=str(warehouse_id),
            requested=value,
        )
    level = _locked_level(product_id, warehouse_id, locked)
    delta = value - level.quantity
    if delta:
        apply_delta(product_id, warehouse_id, delta, locked={(product_id, warehouse_id): level})
    return delta, value


def discard_empty_levels(warehouse_id):
    """Drop the zero-quantity rows of a warehouse that is about to be deleted."""
    _require_transaction()
    deleted, _ = StockLevel.objects.filter(warehouse_id=warehouse_id, quantity=0).delete()
    return deleted
