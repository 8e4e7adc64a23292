import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q

from inventory.exceptions import LedgerImmutableError


class Category(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "categories"


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, null=True, blank=True, related_name="products")
    unit_of_measure = models.CharField(max_length=32)
    reorder_level = models.PositiveIntegerField(default=0)
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["name"], name="inv_product_name_idx"),
            models.Index(fields=["category"], name="inv_product_category_idx"),
        ]

    def __str__(self):
        return f"{self.sku} {self.name}"


class Warehouse(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)
    location = models.CharField(max_length=255, blank=True, default="")
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.code


class StockLevel(models.Model):
    """On-hand quantity for one product in one warehouse.

    Written only by ``inventory.stock`` from inside a Ledger Engine transaction.
    A missing row means a quantity of zero.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="stock_levels")
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="stock_levels")
    quantity = models.IntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["product", "warehouse"], name="uniq_stock_product_warehouse"),
            models.CheckConstraint(condition=Q(quantity__gte=0), name="stock_quantity_non_negative"),
        ]
        indexes = [
            models.Index(fields=["warehouse", "quantity"], name="inv_stock_wh_qty_idx"),
        ]


class DocumentSequence(models.Model):
    """Per-(prefix, day) counter behind document numbers."""

    prefix = models.CharField(max_length=8)
    day = models.DateField()
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["prefix", "day"], name="uniq_document_sequence_prefix_day"),
        ]


class DocumentStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    WAITING = "waiting", "Waiting"
    READY = "ready", "Ready"
    DONE = "done", "Done"
    CANCELED = "canceled", "Canceled"


class MovementDocument(models.Model):
    Status = DocumentStatus

    document_type = None
    number_prefix = None
    warehouse_fields = ()

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    number = models.CharField(max_length=32, unique=True, editable=False)
    status = models.CharField(max_length=16, choices=DocumentStatus.choices, default=DocumentStatus.DRAFT)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self):
        return self.number

    @property
    def is_done(self):
        return self.status == DocumentStatus.DONE


class Receipt(MovementDocument):
    document_type = "receipt"
    number_prefix = "REC"
    warehouse_fields = ("warehouse",)

    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="receipts")
    supplier = models.CharField(max_length=255, blank=True, default="")

    class Meta(MovementDocument.Meta):
        indexes = [models.Index(fields=["status", "created_at"], name="inv_receipt_status_idx")]


class Delivery(MovementDocument):
    document_type = "delivery"
    number_prefix = "DEL"
    warehouse_fields = ("warehouse",)

    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="deliveries")
    customer = models.CharField(max_length=255, blank=True, default="")

    class Meta(MovementDocument.Meta):
        verbose_name_plural = "deliveries"
        indexes = [models.Index(fields=["status", "created_at"], name="inv_delivery_status_idx")]


class Transfer(MovementDocument):
    document_type = "transfer"
    number_prefix = "TRF"
    warehouse_fields = ("from_warehouse", "to_warehouse")

    from_warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="outgoing_transfers")
    to_warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="incoming_transfers")

    class Meta(MovementDocument.Meta):
        indexes = [models.Index(fields=["status", "created_at"], name="inv_transfer_status_idx")]
        constraints = [
            models.CheckConstraint(condition=~Q(from_warehouse=models.F("to_warehouse")), name="transfer_distinct_warehouses"),
        ]


class Adjustment(MovementDocument):
    document_type = "adjustment"
    number_prefix = "ADJ"
    warehouse_fields = ("warehouse",)

    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="adjustments")
    reason = models.TextField(blank=True, default="")

    class Meta(MovementDocument.Meta):
        indexes = [models.Index(fields=["status", "created_at"], name="inv_adjustment_status_idx")]


class ReceiptLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    document = models.ForeignKey(Receipt, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    class Meta:
        ordering = ["position"]
        constraints = [models.CheckConstraint(condition=Q(quantity__gt=0), name="receipt_line_quantity_positive")]


class DeliveryLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    document = models.ForeignKey(Delivery, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    class Meta:
        ordering = ["position"]
        constraints = [models.CheckConstraint(condition=Q(quantity__gt=0), name="delivery_line_quantity_positive")]


class TransferLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    document = models.ForeignKey(Transfer, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    quantity = models.PositiveIntegerField()

    class Meta:
        ordering = ["position"]
        constraints = [models.CheckConstraint(condition=Q(quantity__gt=0), name="transfer_line_quantity_positive")]


class AdjustmentLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    document = models.ForeignKey(Adjustment, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="+")
    # stock on hand when the line was written
    recorded_quantity = models.IntegerField()
    physical_quantity = models.PositiveIntegerField()
    difference = models.IntegerField()

    class Meta:
        ordering = ["position"]


class LedgerEntryQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise LedgerImmutableError("Ledger entries cannot be updated.")

    def delete(self):
        raise LedgerImmutableError("Ledger entries cannot be deleted.")

    def for_pair(self, product_id, warehouse_id):
        return self.filter(product_id=product_id, warehouse_id=warehouse_id)


class LedgerEntry(models.Model):
    class MovementType(models.TextChoices):
        IN = "in", "In"
        OUT = "out", "Out"

    class ReferenceType(models.TextChoices):
        RECEIPT = "receipt", "Receipt"
        DELIVERY = "delivery", "Delivery"
        TRANSFER = "transfer", "Transfer"
        ADJUSTMENT = "adjustment", "Adjustment"

    id = models.BigAutoField(primary_key=True)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="ledger_entries")
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="ledger_entries")
    movement_type = models.CharField(max_length=8, choices=MovementType.choices)
    reference_type = models.CharField(max_length=16, choices=ReferenceType.choices)
    reference_id = models.UUIDField()
    reference_number = models.CharField(max_length=32, blank=True, default="")
    quantity_change = models.IntegerField()
    quantity_after = models.IntegerField()
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="+")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = LedgerEntryQuerySet.as_manager()

    class Meta:
        ordering = ["-id"]
        verbose_name_plural = "ledger entries"
        indexes = [
            models.Index(fields=["product", "warehouse", "id"], name="inv_ledger_pair_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="inv_ledger_reference_idx"),
            models.Index(fields=["created_at"], name="inv_ledger_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=~Q(quantity_change=0), name="ledger_quantity_change_non_zero"),
            models.CheckConstraint(condition=Q(quantity_after__gte=0), name="ledger_quantity_after_non_negative"),
            models.CheckConstraint(
                condition=(Q(movement_type="in", quantity_change__gt=0) | Q(movement_type="out", quantity_change__lt=0)),
                name="ledger_movement_type_matches_sign",
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise LedgerImmutableError("Ledger entries cannot be updated.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise LedgerImmutableError("Ledger entries cannot be deleted.")
