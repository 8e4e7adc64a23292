"""Document store: receipts, deliveries, transfers and adjustments with their lines.

Status changes do not happen here; ``inventory.services`` owns every transition.
"""

import logging
import uuid
from dataclasses import dataclass

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from inventory import stock
from inventory.exceptions import InvalidStateError, NotFoundError
from inventory.models import (
    Adjustment,
    AdjustmentLine,
    Delivery,
    DeliveryLine,
    DocumentSequence,
    DocumentStatus,
    Product,
    Receipt,
    ReceiptLine,
    Transfer,
    TransferLine,
    Warehouse,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (DocumentStatus.DONE, DocumentStatus.CANCELED)


@dataclass(frozen=True)
class DocumentType:
    key: str
    model: type
    line_model: type
    editable_fields: tuple
    line_fields: tuple


DOCUMENT_TYPES = {
    "receipt": DocumentType("receipt", Receipt, ReceiptLine, ("notes", "supplier"), ("quantity", "unit_price")),
    "delivery": DocumentType("delivery", Delivery, DeliveryLine, ("notes", "customer"), ("quantity", "unit_price")),
    "transfer": DocumentType("transfer", Transfer, TransferLine, ("notes",), ("quantity",)),
    "adjustment": DocumentType("adjustment", Adjustment, AdjustmentLine, ("notes", "reason"), ("physical_quantity",)),
}


def get_document_type(key):
    try:
        return DOCUMENT_TYPES[key]
    except KeyError:
        raise ValidationError({"document_type": f"Unknown document type '{key}'."})


def document_type_for(document):
    return DOCUMENT_TYPES[document.document_type]


def next_document_number(prefix, day=None):
    """Return the next ``{PREFIX}-{YYYYMMDD}-{seq:04d}`` number.

    The per-(prefix, day) counter row is locked for the rest of the caller's
    transaction, so concurrent creators queue on it instead of reading the same count.
    """
    day = day or timezone.localdate()
    with transaction.atomic():
        sequence, _ = DocumentSequence.objects.select_for_update().get_or_create(prefix=prefix, day=day)
        DocumentSequence.objects.filter(pk=sequence.pk).update(last_value=F("last_value") + 1)
        sequence.refresh_from_db(fields=["last_value"])
    return f"{prefix}-{day:%Y%m%d}-{sequence.last_value:04d}"


def get_document(document_type, document_id, *, for_update=False):
    doc_type = get_document_type(document_type)
    queryset = doc_type.model.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=document_id)
    except (doc_type.model.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError(
            f"{doc_type.model._meta.verbose_name.capitalize()} {document_id} does not exist.",
            entity=doc_type.key,
            entity_id=document_id,
        )


def _as_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    pk = getattr(value, "pk", None)
    if pk is not None:
        return pk
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def _resolve_warehouses(model, fields, *, partial):
    """Pull the warehouse references for ``model`` out of ``fields`` as Warehouse rows."""
    resolved = {}
    errors = {}
    for name in model.warehouse_fields:
        if name not in fields or fields[name] is None:
            if not partial:
                errors[name] = ["This field is required."]
            continue
        value = fields[name]
        if isinstance(value, Warehouse):
            resolved[name] = value
            continue
        warehouse_id = _as_uuid(value)
        warehouse = Warehouse.objects.filter(pk=warehouse_id).first() if warehouse_id else None
        if warehouse is None:
            errors[name] = [f"Warehouse {value} does not exist."]
        else:
            resolved[name] = warehouse
    if errors:
        raise ValidationError(errors)
    return resolved


def _check_transfer_sides(document_or_model, warehouses, current=None):
    if "from_warehouse" not in document_or_model.warehouse_fields:
        return
    source = warehouses.get("from_warehouse") or getattr(current, "from_warehouse", None)
    destination = warehouses.get("to_warehouse") or getattr(current, "to_warehouse", None)
    if source is not None and destination is not None and source.pk == destination.pk:
        raise ValidationError({"to_warehouse": ["Source and destination warehouses must differ."]})


def _parse_int(value, *, minimum):
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError, ArithmeticError):
        return None
    # int() truncates floats and Decimals but rejects fractional strings.
    if not isinstance(value, str) and number != value:
        return None
    return number if number >= minimum else None


def _clean_items(doc_type, items):
    """Validate raw item payloads and resolve their products.

    Returns a list of dicts ready to become line rows (``recorded_quantity`` is
    filled in later for adjustments).
    """
    if not items:
        raise ValidationError({"items": ["At least one item is required."]})

    product_ids = {_as_uuid(item.get("product")) for item in items if isinstance(item, dict)}
    product_ids.discard(None)
    products = Product.objects.in_bulk(list(product_ids))

    cleaned = []
    item_errors = []
    for item in items:
        errors = {}
        if not isinstance(item, dict):
            item_errors.append({"non_field_errors": ["Each item must be an object."]})
            continue
        product = products.get(_as_uuid(item.get("product")))
        if item.get("product") is None:
            errors["product"] = ["This field is required."]
        elif product is None:
            errors["product"] = [f"Product {item.get('product')} does not exist."]

        line = {"product": product}
        if doc_type.key == "adjustment":
            physical = _parse_int(item.get("physical_quantity"), minimum=0)
            if physical is None:
                errors["physical_quantity"] = ["Physical quantity must be a whole number of zero or more."]
            line["physical_quantity"] = physical
        else:
            quantity = _parse_int(item.get("quantity"), minimum=1)
            if quantity is None:
                errors["quantity"] = ["Quantity must be a whole number greater than zero."]
            line["quantity"] = quantity
            if "unit_price" in doc_type.line_fields:
                line["unit_price"] = item.get("unit_price")

        item_errors.append(errors)
        cleaned.append(line)

    if any(item_errors):
        raise ValidationError({"items": item_errors})
    return cleaned


def _write_lines(document, cleaned_items):
    doc_type = document_type_for(document)
    rows = []
    for position, line in enumerate(cleaned_items):
        values = dict(line)
        if doc_type.key == "adjustment":
            recorded = stock.get_quantity(values["product"].pk, document.warehouse_id)
            values["recorded_quantity"] = recorded
            values["difference"] = values["physical_quantity"] - recorded
        rows.append(doc_type.line_model(document=document, position=position, **values))
    doc_type.line_model.objects.bulk_create(rows)
    return rows


def _resnapshot_adjustment(document):
    for line in document.lines.all():
        line.recorded_quantity = stock.get_quantity(line.product_id, document.warehouse_id)
        line.difference = line.physical_quantity - line.recorded_quantity
        line.save(update_fields=["recorded_quantity", "difference"])


def create_document(document_type, *, user, items, **fields):
    """Create a draft document with its lines and a freshly allocated number."""
    doc_type = get_document_type(document_type)
    model = doc_type.model
    warehouses = _resolve_warehouses(model, fields, partial=False)
    _check_transfer_sides(model, warehouses)
    cleaned = _clean_items(doc_type, items)
    extra = {name: fields[name] for name in doc_type.editable_fields if fields.get(name) is not None}

    with transaction.atomic():
        document = model.objects.create(
            number=next_document_number(model.number_prefix),
            status=DocumentStatus.DRAFT,
            user=user,
            **warehouses,
            **extra,
        )
        _write_lines(document, cleaned)

    logger.info(
        "document_created",
        extra={
            "document_type": doc_type.key,
            "document_id": str(document.id),
            "document_number": document.number,
            "user_id": str(user.pk),
        },
    )
    return document


def _ensure_draft(document, operation):
    if document.status != DocumentStatus.DRAFT:
        raise InvalidStateError(
            f"Cannot {operation} {document.number}: document is {document.status}.",
            entity=document.document_type,
            entity_id=document.id,
            status=document.status,
        )


def replace_items(document, items):
    """Swap every line of a draft document for ``items``."""
    doc_type = document_type_for(document)
    cleaned = _clean_items(doc_type, items)
    with transaction.atomic():
        document = get_document(doc_type.key, document.pk, for_update=True)
        _ensure_draft(document, "change items of")
        document.lines.all().delete()
        _write_lines(document, cleaned)
        document.save(update_fields=["updated_at"])
    return document


def update_fields(document, fields):
    """Merge non-null descriptive and warehouse fields into ``document``.

    Warehouse references may only change while the document is a draft.
    Descriptive fields stay editable until the document is done or canceled.
    """
    if "status" in fields:
        raise ValidationError({"status": ["Status changes go through the document transition."]})

    doc_type = document_type_for(document)
    model = doc_type.model
    fields = {name: value for name, value in fields.items() if value is not None}
    unknown = set(fields) - set(doc_type.editable_fields) - set(model.warehouse_fields)
    if unknown:
        raise ValidationError({name: ["This field cannot be updated."] for name in sorted(unknown)})

    warehouses = _resolve_warehouses(model, fields, partial=True)
    with transaction.atomic():
        document = get_document(doc_type.key, document.pk, for_update=True)
        if document.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Cannot edit {document.number}: document is {document.status}.",
                entity=doc_type.key,
                entity_id=document.id,
                status=document.status,
            )
        changed = [name for name, warehouse in warehouses.items() if getattr(document, f"{name}_id") != warehouse.pk]
        if changed:
            _ensure_draft(document, "change warehouses of")
            _check_transfer_sides(model, warehouses, current=document)

        changed_fields = ["updated_at"]
        for name in doc_type.editable_fields:
            if name in fields:
                setattr(document, name, fields[name])
                changed_fields.append(name)
        for name, warehouse in warehouses.items():
            setattr(document, name, warehouse)
            changed_fields.append(name)
        document.save(update_fields=changed_fields)

        if doc_type.key == "adjustment" and changed:
            _resnapshot_adjustment(document)
    return document


def delete_document(document):
    doc_type = document_type_for(document)
    with transaction.atomic():
        document = get_document(doc_type.key, document.pk, for_update=True)
        if document.status == DocumentStatus.DONE:
            raise InvalidStateError(
                f"Cannot delete {document.number}: validated documents are permanent.",
                entity=doc_type.key,
                entity_id=document.id,
                status=document.status,
            )
        document_id = document.pk
        document.delete()
    logger.info(
        "document_deleted",
        extra={"document_type": doc_type.key, "document_id": str(document_id), "document_number": document.number},
    )


def document_snapshot(document):
    """Plain dict of a document and its lines, used for audit before/after payloads."""
    doc_type = document_type_for(document)
    snapshot = {
        "id": str(document.id),
        "number": document.number,
        "status": document.status,
        "notes": document.notes,
    }
    for name in document.warehouse_fields:
        snapshot[f"{name}_id"] = str(getattr(document, f"{name}_id"))
    for name in doc_type.editable_fields:
        snapshot[name] = getattr(document, name)
    line_values = ["product_id", *doc_type.line_fields]
    if doc_type.key == "adjustment":
        line_values += ["recorded_quantity", "difference"]
    snapshot["items"] = [
        {name: getattr(line, name) for name in line_values} for line in document.lines.all()
    ]
    return snapshot
