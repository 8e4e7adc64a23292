"""Ledger engine: document transitions and the atomic ``-> done`` apply step.

This module is the only caller of the stock table's write functions and the only
place ledger rows are created.
"""

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.db.models import Max, Sum
from rest_framework.exceptions import ValidationError

from inventory import documents, stock
from inventory.exceptions import AlreadyAppliedError, InsufficientStockError, InvalidStateError
from inventory.models import DocumentStatus, LedgerEntry, StockLevel

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    DocumentStatus.DRAFT: {DocumentStatus.WAITING, DocumentStatus.READY, DocumentStatus.DONE, DocumentStatus.CANCELED},
    DocumentStatus.WAITING: {DocumentStatus.READY, DocumentStatus.DONE, DocumentStatus.CANCELED},
    DocumentStatus.READY: {DocumentStatus.DONE, DocumentStatus.CANCELED},
    DocumentStatus.DONE: set(),
    DocumentStatus.CANCELED: set(),
}

ADJUSTMENT_MODE_SNAPSHOT = "snapshot"
ADJUSTMENT_MODE_ABSOLUTE = "absolute"


@dataclass(frozen=True)
class StockDelta:
    product_id: object
    warehouse_id: object
    quantity_change: int
    notes: str = ""
    target: int | None = None

    @property
    def pair(self):
        return (self.product_id, self.warehouse_id)


def adjustment_mode():
    return getattr(settings, "INVENTORY_ADJUSTMENT_MODE", ADJUSTMENT_MODE_SNAPSHOT)


def touched_pairs(document, lines):
    pairs = set()
    for line in lines:
        for name in document.warehouse_fields:
            pairs.add((line.product_id, getattr(document, f"{name}_id")))
    return pairs


def compute_deltas(document, lines, quantities=None):
    """Signed stock changes a document applies when it is validated.

    ``quantities`` maps (product_id, warehouse_id) to the live on-hand value and
    is only read for adjustments in absolute mode. Zero changes are dropped.
    """
    deltas = []
    if document.document_type == "receipt":
        notes = f"Receipt {document.number}"
        deltas = [StockDelta(line.product_id, document.warehouse_id, line.quantity, notes) for line in lines]
    elif document.document_type == "delivery":
        notes = f"Delivery {document.number}"
        deltas = [StockDelta(line.product_id, document.warehouse_id, -line.quantity, notes) for line in lines]
    elif document.document_type == "transfer":
        for line in lines:
            deltas.append(
                StockDelta(line.product_id, document.from_warehouse_id, -line.quantity, f"Transfer {document.number} out")
            )
            deltas.append(
                StockDelta(line.product_id, document.to_warehouse_id, line.quantity, f"Transfer {document.number} in")
            )
    elif document.document_type == "adjustment":
        notes = document.reason or f"Stock adjustment {document.number}"
        absolute = adjustment_mode() == ADJUSTMENT_MODE_ABSOLUTE
        running = dict(quantities or {}) if absolute else {}
        for line in lines:
            pair = (line.product_id, document.warehouse_id)
            target = None
            if absolute:
                target = line.physical_quantity
                change = target - running.get(pair, 0)
            else:
                # A repeated product counts from the previous line's physical quantity.
                change = line.physical_quantity - running.get(pair, line.recorded_quantity)
            running[pair] = line.physical_quantity
            deltas.append(StockDelta(line.product_id, document.warehouse_id, change, notes, target))
    else:
        raise ValidationError({"document_type": f"Unknown document type '{document.document_type}'."})

    return [delta for delta in deltas if delta.quantity_change != 0]


def check_sufficient_stock(deltas, quantities):
    """Raise before any write if applying ``deltas`` in order would drive a pair negative."""
    running = dict(quantities)
    for delta in deltas:
        available = running.get(delta.pair, 0)
        if available + delta.quantity_change < 0:
            raise InsufficientStockError(
                f"Insufficient stock for product {delta.product_id} in warehouse {delta.warehouse_id}: "
                f"available {available}, requested {-delta.quantity_change}.",
                entity="product",
                entity_id=delta.product_id,
                warehouse_id=str(delta.warehouse_id),
                available=available,
                requested=-delta.quantity_change,
            )
        running[delta.pair] = available + delta.quantity_change


def _log_extra(document, **extra):
    payload = {
        "document_type": document.document_type,
        "document_id": str(document.id),
        "document_number": document.number,
    }
    payload.update(extra)
    return payload


def validate_document(document, *, user=None):
    """Apply a document's stock changes, append its ledger rows and mark it done.

    Everything runs in one transaction. The document row is re-read under lock so
    a racing duplicate validation fails with ``AlreadyAppliedError`` instead of
    applying twice. Stock rows are then locked in a fixed order, every change is
    checked, and only then written.
    """
    doc_type = documents.document_type_for(document)
    try:
        with transaction.atomic():
            current = documents.get_document(doc_type.key, document.pk, for_update=True)
            if current.status == DocumentStatus.DONE:
                raise AlreadyAppliedError(
                    f"{current.number} has already been validated.",
                    entity=doc_type.key,
                    entity_id=current.id,
                )
            if current.status == DocumentStatus.CANCELED:
                raise InvalidStateError(
                    f"Cannot validate {current.number}: document is canceled.",
                    entity=doc_type.key,
                    entity_id=current.id,
                    status=current.status,
                )

            lines = list(current.lines.all())
            if not lines:
                raise ValidationError({"items": ["A document without items cannot be validated."]})

            locked = stock.lock_levels(touched_pairs(current, lines))
            quantities = {pair: level.quantity for pair, level in locked.items()}
            deltas = compute_deltas(current, lines, quantities)
            check_sufficient_stock(deltas, quantities)

            acting_user = user or current.user
            entries = []
            for delta in deltas:
                if delta.target is not None:
                    _, quantity_after = stock.set_absolute(delta.product_id, delta.warehouse_id, delta.target, locked=locked)
                else:
                    quantity_after = stock.apply_delta(delta.product_id, delta.warehouse_id, delta.quantity_change, locked=locked)
                entries.append(
                    LedgerEntry.objects.create(
                        product_id=delta.product_id,
                        warehouse_id=delta.warehouse_id,
                        movement_type=LedgerEntry.MovementType.IN if delta.quantity_change > 0 else LedgerEntry.MovementType.OUT,
                        reference_type=doc_type.key,
                        reference_id=current.id,
                        reference_number=current.number,
                        quantity_change=delta.quantity_change,
                        quantity_after=quantity_after,
                        user=acting_user,
                        notes=delta.notes,
                    )
                )

            from_status = current.status
            current.status = DocumentStatus.DONE
            current.save(update_fields=["status", "updated_at"])
    except InsufficientStockError as exc:
        logger.warning(
            "document_validation_rejected",
            extra=_log_extra(document, product_id=exc.entity_id, warehouse_id=exc.context.get("warehouse_id")),
        )
        raise

    logger.info(
        "document_validated",
        extra=_log_extra(current, from_status=from_status, status=current.status, ledger_rows=len(entries)),
    )
    return current


def transition_document(document, target_status, *, user=None):
    """Move a document to ``target_status``.

    ``done`` goes through :func:`validate_document`; every other move only
    changes the status. Requesting the current non-terminal status is a no-op.
    """
    if target_status not in DocumentStatus.values:
        raise ValidationError({"status": [f"'{target_status}' is not a valid status."]})
    if target_status == DocumentStatus.DONE:
        return validate_document(document, user=user)

    doc_type = documents.document_type_for(document)
    with transaction.atomic():
        current = documents.get_document(doc_type.key, document.pk, for_update=True)
        if current.status == target_status and current.status not in documents.TERMINAL_STATUSES:
            return current
        if target_status not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidStateError(
                f"Cannot move {current.number} from {current.status} to {target_status}.",
                entity=doc_type.key,
                entity_id=current.id,
                status=current.status,
                requested_status=target_status,
            )
        from_status = current.status
        current.status = target_status
        current.save(update_fields=["status", "updated_at"])

    logger.info("document_transitioned", extra=_log_extra(current, from_status=from_status, status=target_status))
    return current


def book_initial_stock(product, warehouse, quantity, *, user, notes=""):
    """Record opening stock for a product as a receipt validated on the spot."""
    receipt = documents.create_document(
        "receipt",
        user=user,
        warehouse=warehouse,
        items=[{"product": product, "quantity": quantity}],
        notes=notes or "Initial stock",
    )
    return validate_document(receipt, user=user)


def check_ledger_consistency():
    """Compare every stock row with the ledger that produced it.

    Returns a list of discrepancies; an empty list means the ledger sums and the
    latest ``quantity_after`` both match on-hand stock for every pair.
    """
    ledger = {
        (row["product_id"], row["warehouse_id"]): row
        for row in LedgerEntry.objects.order_by()
        .values("product_id", "warehouse_id")
        .annotate(total=Sum("quantity_change"), last_id=Max("id"))
    }
    last_after = dict(
        LedgerEntry.objects.filter(id__in=[row["last_id"] for row in ledger.values()]).values_list("id", "quantity_after")
    )
    levels = {
        (row["product_id"], row["warehouse_id"]): row["quantity"]
        for row in StockLevel.objects.values("product_id", "warehouse_id", "quantity")
    }

    problems = []
    for pair in sorted(set(ledger) | set(levels), key=lambda pair: (str(pair[0]), str(pair[1]))):
        quantity = levels.get(pair, 0)
        row = ledger.get(pair)
        ledger_total = row["total"] if row else 0
        latest = last_after.get(row["last_id"]) if row else None
        if ledger_total != quantity or (latest is not None and latest != quantity):
            problems.append(
                {
                    "product_id": str(pair[0]),
                    "warehouse_id": str(pair[1]),
                    "quantity": quantity,
                    "ledger_total": ledger_total,
                    "last_quantity_after": latest,
                }
            )
    return problems
