import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


DOCUMENT_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("waiting", "Waiting"),
    ("ready", "Ready"),
    ("done", "Done"),
    ("canceled", "Canceled"),
]


def _document_fields():
    return [
        ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
        ("number", models.CharField(editable=False, max_length=32, unique=True)),
        ("status", models.CharField(choices=DOCUMENT_STATUS_CHOICES, default="draft", max_length=16)),
        ("notes", models.TextField(blank=True, default="")),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
        (
            "user",
            models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="+", to=settings.AUTH_USER_MODEL),
        ),
    ]


def _line_fields(document_model):
    return [
        ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
        ("position", models.PositiveIntegerField(default=0)),
        (
            "document",
            models.ForeignKey(
                on_delete=django.db.models.deletion.CASCADE,
                related_name="lines",
                to=f"inventory.{document_model}",
            ),
        ),
        (
            "product",
            models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="+", to="inventory.product"),
        ),
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Category",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255, unique=True)),
                ("description", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["name"], "verbose_name_plural": "categories"},
        ),
        migrations.CreateModel(
            name="Warehouse",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=32, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("location", models.CharField(blank=True, default="", max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sku", models.CharField(max_length=64, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("unit_of_measure", models.CharField(max_length=32)),
                ("reorder_level", models.PositiveIntegerField(default=0)),
                ("description", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "category",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="products",
                        to="inventory.category",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["name"], name="inv_product_name_idx"),
                    models.Index(fields=["category"], name="inv_product_category_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockLevel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.IntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_levels",
                        to="inventory.product",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_levels",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["warehouse", "quantity"], name="inv_stock_wh_qty_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=("product", "warehouse"), name="uniq_stock_product_warehouse"),
                    models.CheckConstraint(condition=models.Q(("quantity__gte", 0)), name="stock_quantity_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DocumentSequence",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("prefix", models.CharField(max_length=8)),
                ("day", models.DateField()),
                ("last_value", models.PositiveIntegerField(default=0)),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("prefix", "day"), name="uniq_document_sequence_prefix_day"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Receipt",
            fields=_document_fields()
            + [
                ("supplier", models.CharField(blank=True, default="", max_length=255)),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="receipts",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [models.Index(fields=["status", "created_at"], name="inv_receipt_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="Delivery",
            fields=_document_fields()
            + [
                ("customer", models.CharField(blank=True, default="", max_length=255)),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="deliveries",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "verbose_name_plural": "deliveries",
                "indexes": [models.Index(fields=["status", "created_at"], name="inv_delivery_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="Transfer",
            fields=_document_fields()
            + [
                (
                    "from_warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="outgoing_transfers",
                        to="inventory.warehouse",
                    ),
                ),
                (
                    "to_warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="incoming_transfers",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [models.Index(fields=["status", "created_at"], name="inv_transfer_status_idx")],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("from_warehouse", models.F("to_warehouse")), _negated=True),
                        name="transfer_distinct_warehouses",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Adjustment",
            fields=_document_fields()
            + [
                ("reason", models.TextField(blank=True, default="")),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="adjustments",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [models.Index(fields=["status", "created_at"], name="inv_adjustment_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="ReceiptLine",
            fields=_line_fields("receipt")
            + [
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
            ],
            options={
                "ordering": ["position"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gt", 0)), name="receipt_line_quantity_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DeliveryLine",
            fields=_line_fields("delivery")
            + [
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
            ],
            options={
                "ordering": ["position"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gt", 0)), name="delivery_line_quantity_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TransferLine",
            fields=_line_fields("transfer") + [("quantity", models.PositiveIntegerField())],
            options={
                "ordering": ["position"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gt", 0)), name="transfer_line_quantity_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AdjustmentLine",
            fields=_line_fields("adjustment")
            + [
                ("recorded_quantity", models.IntegerField()),
                ("physical_quantity", models.PositiveIntegerField()),
                ("difference", models.IntegerField()),
            ],
            options={"ordering": ["position"]},
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("movement_type", models.CharField(choices=[("in", "In"), ("out", "Out")], max_length=8)),
                (
                    "reference_type",
                    models.CharField(
                        choices=[
                            ("receipt", "Receipt"),
                            ("delivery", "Delivery"),
                            ("transfer", "Transfer"),
                            ("adjustment", "Adjustment"),
                        ],
                        max_length=16,
                    ),
                ),
                ("reference_id", models.UUIDField()),
                ("reference_number", models.CharField(blank=True, default="", max_length=32)),
                ("quantity_change", models.IntegerField()),
                ("quantity_after", models.IntegerField()),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="inventory.product",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="inventory.warehouse",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="+", to=settings.AUTH_USER_MODEL),
                ),
            ],
            options={
                "ordering": ["-id"],
                "verbose_name_plural": "ledger entries",
                "indexes": [
                    models.Index(fields=["product", "warehouse", "id"], name="inv_ledger_pair_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="inv_ledger_reference_idx"),
                    models.Index(fields=["created_at"], name="inv_ledger_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity_change", 0), _negated=True),
                        name="ledger_quantity_change_non_zero",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("quantity_after__gte", 0)),
                        name="ledger_quantity_after_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("movement_type", "in"), ("quantity_change__gt", 0)),
                            models.Q(("movement_type", "out"), ("quantity_change__lt", 0)),
                            _connector="OR",
                        ),
                        name="ledger_movement_type_matches_sign",
                    ),
                ],
            },
        ),
    ]
