import uuid

from django.conf import settings
from django.db.models import Count, F, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework.exceptions import ValidationError

from inventory.models import Delivery, DocumentStatus, LedgerEntry, Product, Receipt, StockLevel, Transfer

PENDING_STATUSES = [DocumentStatus.DRAFT, DocumentStatus.WAITING, DocumentStatus.READY]


def ledger_page_limit():
    return getattr(settings, "INVENTORY_LEDGER_PAGE_LIMIT", 500)


def parse_limit(raw_limit, *, default=100, minimum=1, maximum=None):
    maximum = maximum or ledger_page_limit()
    if raw_limit in (None, ""):
        return min(default, maximum)

    try:
        limit = int(raw_limit)
    except (TypeError, ValueError):
        raise ValidationError({"limit": f"Limit must be an integer between {minimum} and {maximum}."})

    if not minimum <= limit <= maximum:
        raise ValidationError({"limit": f"Limit must be between {minimum} and {maximum}."})
    return limit


def uuid_param(name, raw_value):
    try:
        return uuid.UUID(str(raw_value))
    except ValueError:
        raise ValidationError({name: "Must be a valid UUID."})


def _parse_bound(name, raw_value):
    if not raw_value:
        return None
    try:
        day = parse_date(raw_value)
        if day is not None:
            return ("date", day)
        value = parse_datetime(raw_value)
    except ValueError:
        value = None
    if value is None:
        raise ValidationError({name: "Use an ISO date or datetime."})
    return ("datetime", value)


def ledger_queryset(params):
    """Ledger rows filtered by ``params`` (a query-param mapping), newest first."""
    queryset = LedgerEntry.objects.select_related("product", "warehouse", "user")

    for name in ("product", "warehouse"):
        if params.get(name):
            queryset = queryset.filter(**{f"{name}_id": uuid_param(name, params[name])})
    for name, choices in (("movement_type", LedgerEntry.MovementType), ("reference_type", LedgerEntry.ReferenceType)):
        value = params.get(name)
        if value:
            if value not in choices.values:
                raise ValidationError({name: f"Must be one of: {', '.join(choices.values)}."})
            queryset = queryset.filter(**{name: value})
    if params.get("reference_id"):
        queryset = queryset.filter(reference_id=uuid_param("reference_id", params["reference_id"]))

    start = _parse_bound("start_date", params.get("start_date"))
    end = _parse_bound("end_date", params.get("end_date"))
    if start:
        kind, value = start
        queryset = queryset.filter(**({"created_at__gte": value} if kind == "datetime" else {"created_at__date__gte": value}))
    if end:
        kind, value = end
        queryset = queryset.filter(**({"created_at__lte": value} if kind == "datetime" else {"created_at__date__lte": value}))

    return queryset.order_by("-id")


def _pending_count(model, warehouse_id):
    queryset = model.objects.filter(status__in=PENDING_STATUSES)
    if warehouse_id:
        if model is Transfer:
            queryset = queryset.filter(Q(from_warehouse_id=warehouse_id) | Q(to_warehouse_id=warehouse_id))
        else:
            queryset = queryset.filter(warehouse_id=warehouse_id)
    return queryset.count()


def low_stock_queryset(warehouse_id=None):
    queryset = StockLevel.objects.select_related("product", "warehouse").filter(quantity__lte=F("product__reorder_level"))
    if warehouse_id:
        queryset = queryset.filter(warehouse_id=warehouse_id)
    return queryset.order_by("quantity", "product__name")


def dashboard_kpis(warehouse_id=None):
    levels = StockLevel.objects.all()
    if warehouse_id:
        levels = levels.filter(warehouse_id=warehouse_id)

    totals = Product.objects.annotate(
        on_hand=Coalesce(
            Sum("stock_levels__quantity", filter=Q(stock_levels__warehouse_id=warehouse_id) if warehouse_id else None),
            Value(0),
        )
    )
    return {
        "total_products": Product.objects.count(),
        "total_quantity": levels.aggregate(total=Coalesce(Sum("quantity"), Value(0)))["total"],
        "low_stock_items": low_stock_queryset(warehouse_id).count(),
        "out_of_stock_products": totals.filter(on_hand__lte=0).count(),
        "pending_receipts": _pending_count(Receipt, warehouse_id),
        "pending_deliveries": _pending_count(Delivery, warehouse_id),
        "pending_transfers": _pending_count(Transfer, warehouse_id),
        "warehouses_with_stock": levels.filter(quantity__gt=0).aggregate(count=Count("warehouse", distinct=True))["count"],
    }


def recent_activity(limit, warehouse_id=None):
    queryset = LedgerEntry.objects.select_related("product", "warehouse", "user")
    if warehouse_id:
        queryset = queryset.filter(warehouse_id=warehouse_id)
    return list(queryset.order_by("-id")[:limit])
