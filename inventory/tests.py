import uuid
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import IntegrityError, transaction
from django.db.transaction import TransactionManagementError
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.models import AuditLog
from inventory import documents, services, stock
from inventory.exceptions import (
    AlreadyAppliedError,
    InsufficientStockError,
    InvalidStateError,
    LedgerImmutableError,
    NotFoundError,
)
from inventory.models import (
    Category,
    Delivery,
    DocumentSequence,
    DocumentStatus,
    LedgerEntry,
    Product,
    Receipt,
    StockLevel,
    Transfer,
    Warehouse,
)


class StockLedgerTestCase(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="clerk", password="pass1234")
        self.main = Warehouse.objects.create(code="WH-1", name="Main Warehouse")
        self.store = Warehouse.objects.create(code="WH-2", name="Store Front")
        self.product = Product.objects.create(sku="P-001", name="Widget", unit_of_measure="pcs", reorder_level=10)
        self.other = Product.objects.create(sku="P-002", name="Gadget", unit_of_measure="pcs", reorder_level=5)

    def receive(self, quantity, *, product=None, warehouse=None):
        receipt = documents.create_document(
            "receipt",
            user=self.user,
            warehouse=warehouse or self.main,
            items=[{"product": product or self.product, "quantity": quantity}],
        )
        return services.validate_document(receipt)

    def deliver(self, quantity, *, product=None, warehouse=None):
        return documents.create_document(
            "delivery",
            user=self.user,
            warehouse=warehouse or self.main,
            items=[{"product": product or self.product, "quantity": quantity}],
        )

    def quantity(self, product=None, warehouse=None):
        return stock.get_quantity((product or self.product).id, (warehouse or self.main).id)


class DocumentStoreTests(StockLedgerTestCase):
    def test_numbers_are_sequential_per_prefix_and_day(self):
        today = timezone.localdate().strftime("%Y%m%d")

        first = self.deliver(1)
        second = self.deliver(2)
        receipt = documents.create_document(
            "receipt", user=self.user, warehouse=self.main, items=[{"product": self.product, "quantity": 3}]
        )

        self.assertEqual(first.number, f"DEL-{today}-0001")
        self.assertEqual(second.number, f"DEL-{today}-0002")
        self.assertEqual(receipt.number, f"REC-{today}-0001")

    def test_numbers_of_deleted_drafts_are_not_reused(self):
        draft = self.deliver(1)
        documents.delete_document(draft)

        replacement = self.deliver(1)

        self.assertTrue(replacement.number.endswith("-0002"))

    def test_numbers_continue_from_the_stored_counter(self):
        day = timezone.localdate()
        DocumentSequence.objects.create(prefix="DEL", day=day, last_value=7)

        delivery = self.deliver(1)

        self.assertEqual(delivery.number, f"DEL-{day:%Y%m%d}-0008")
        self.assertEqual(DocumentSequence.objects.get(prefix="DEL", day=day).last_value, 8)

    def test_duplicate_number_is_refused_by_the_database(self):
        delivery = self.deliver(1)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Delivery.objects.create(number=delivery.number, user=self.user, warehouse=self.main)
        self.assertEqual(Delivery.objects.filter(number=delivery.number).count(), 1)

    def test_create_requires_items(self):
        with self.assertRaises(ValidationError) as ctx:
            documents.create_document("receipt", user=self.user, warehouse=self.main, items=[])

        self.assertIn("items", ctx.exception.detail)
        self.assertFalse(Receipt.objects.exists())

    def test_create_requires_warehouse(self):
        with self.assertRaises(ValidationError) as ctx:
            documents.create_document("delivery", user=self.user, items=[{"product": self.product, "quantity": 1}])

        self.assertIn("warehouse", ctx.exception.detail)

    def test_create_rejects_unknown_warehouse_and_product(self):
        with self.assertRaises(ValidationError) as ctx:
            documents.create_document(
                "receipt", user=self.user, warehouse=uuid.uuid4(), items=[{"product": self.product, "quantity": 1}]
            )
        self.assertIn("warehouse", ctx.exception.detail)

        with self.assertRaises(ValidationError) as ctx:
            documents.create_document(
                "receipt", user=self.user, warehouse=self.main, items=[{"product": uuid.uuid4(), "quantity": 1}]
            )
        self.assertIn("items", ctx.exception.detail)

    def test_create_rejects_non_positive_quantity(self):
        with self.assertRaises(ValidationError):
            documents.create_document(
                "receipt", user=self.user, warehouse=self.main, items=[{"product": self.product, "quantity": 0}]
            )

    def test_create_rejects_fractional_quantities(self):
        for quantity in (Decimal("2.7"), 2.5, "2.5"):
            with self.assertRaises(ValidationError):
                documents.create_document(
                    "receipt", user=self.user, warehouse=self.main, items=[{"product": self.product, "quantity": quantity}]
                )
        self.assertFalse(Receipt.objects.exists())

        receipt = documents.create_document(
            "receipt", user=self.user, warehouse=self.main, items=[{"product": self.product, "quantity": Decimal("3")}]
        )
        self.assertEqual(receipt.lines.get().quantity, 3)

    def test_transfer_requires_distinct_warehouses(self):
        with self.assertRaises(ValidationError) as ctx:
            documents.create_document(
                "transfer",
                user=self.user,
                from_warehouse=self.main,
                to_warehouse=self.main,
                items=[{"product": self.product, "quantity": 1}],
            )

        self.assertIn("to_warehouse", ctx.exception.detail)

    def test_replace_items_only_while_draft(self):
        delivery = self.deliver(5)

        documents.replace_items(delivery, [{"product": self.other, "quantity": 2}, {"product": self.product, "quantity": 1}])
        lines = list(delivery.lines.all())
        self.assertEqual([(line.product_id, line.quantity) for line in lines], [(self.other.id, 2), (self.product.id, 1)])

        services.transition_document(delivery, DocumentStatus.WAITING)
        with self.assertRaises(InvalidStateError):
            documents.replace_items(delivery, [{"product": self.product, "quantity": 9}])

    def test_update_fields_rules(self):
        delivery = self.deliver(5)
        services.transition_document(delivery, DocumentStatus.READY)

        updated = documents.update_fields(delivery, {"notes": "Leave at dock", "customer": "ACME", "reason": None})
        self.assertEqual(updated.notes, "Leave at dock")
        self.assertEqual(updated.customer, "ACME")

        with self.assertRaises(InvalidStateError):
            documents.update_fields(delivery, {"warehouse": self.store})
        with self.assertRaises(ValidationError):
            documents.update_fields(delivery, {"status": DocumentStatus.DONE})

    def test_descriptive_fields_frozen_once_done(self):
        receipt = self.receive(5)

        with self.assertRaises(InvalidStateError):
            documents.update_fields(receipt, {"notes": "late edit"})

    def test_delete_refused_when_done(self):
        receipt = self.receive(5)

        with self.assertRaises(InvalidStateError):
            documents.delete_document(receipt)
        self.assertTrue(Receipt.objects.filter(pk=receipt.pk).exists())

    def test_canceled_documents_can_be_deleted(self):
        delivery = self.deliver(5)
        services.transition_document(delivery, DocumentStatus.CANCELED)

        documents.delete_document(delivery)

        self.assertFalse(Delivery.objects.filter(pk=delivery.pk).exists())

    def test_get_document_unknown_ids(self):
        with self.assertRaises(NotFoundError):
            documents.get_document("receipt", uuid.uuid4())
        with self.assertRaises(NotFoundError):
            documents.get_document("receipt", "not-a-uuid")

    def test_adjustment_snapshots_recorded_quantity(self):
        self.receive(42)

        adjustment = documents.create_document(
            "adjustment",
            user=self.user,
            warehouse=self.main,
            reason="Cycle count",
            items=[{"product": self.product, "physical_quantity": 50}],
        )

        line = adjustment.lines.get()
        self.assertEqual(line.recorded_quantity, 42)
        self.assertEqual(line.difference, 8)

    def test_adjustment_warehouse_change_resnapshots(self):
        self.receive(42)
        adjustment = documents.create_document(
            "adjustment",
            user=self.user,
            warehouse=self.store,
            items=[{"product": self.product, "physical_quantity": 40}],
        )
        self.assertEqual(adjustment.lines.get().recorded_quantity, 0)

        documents.update_fields(adjustment, {"warehouse": self.main})

        line = adjustment.lines.get()
        self.assertEqual(line.recorded_quantity, 42)
        self.assertEqual(line.difference, -2)


class LedgerEngineTests(StockLedgerTestCase):
    def test_receipt_then_deliveries_end_to_end(self):
        self.receive(100)
        self.assertEqual(self.quantity(), 100)
        entry = LedgerEntry.objects.get()
        self.assertEqual((entry.movement_type, entry.quantity_change, entry.quantity_after), ("in", 100, 100))

        delivery = services.validate_document(self.deliver(30))
        self.assertEqual(delivery.status, DocumentStatus.DONE)
        self.assertEqual(self.quantity(), 70)
        out = LedgerEntry.objects.filter(reference_id=delivery.id).get()
        self.assertEqual((out.movement_type, out.quantity_change, out.quantity_after), ("out", -30, 70))
        self.assertEqual(out.reference_type, "delivery")
        self.assertEqual(out.reference_number, delivery.number)
        self.assertEqual(out.user, self.user)

        oversized = self.deliver(1000)
        with self.assertRaises(InsufficientStockError):
            services.validate_document(oversized)
        self.assertEqual(self.quantity(), 70)
        oversized.refresh_from_db()
        self.assertEqual(oversized.status, DocumentStatus.DRAFT)
        self.assertFalse(LedgerEntry.objects.filter(reference_id=oversized.id).exists())

    def test_insufficient_stock_names_the_product(self):
        self.receive(5)

        with self.assertRaises(InsufficientStockError) as ctx:
            services.validate_document(self.deliver(6))

        self.assertEqual(ctx.exception.entity, "product")
        self.assertEqual(ctx.exception.entity_id, str(self.product.id))
        self.assertEqual(ctx.exception.context["available"], 5)
        self.assertEqual(ctx.exception.context["requested"], 6)

    def test_transfer_moves_stock_between_warehouses(self):
        self.receive(40)
        transfer = documents.create_document(
            "transfer",
            user=self.user,
            from_warehouse=self.main,
            to_warehouse=self.store,
            items=[{"product": self.product, "quantity": 15}],
        )

        services.validate_document(transfer)

        rows = list(LedgerEntry.objects.filter(reference_id=transfer.id).order_by("id"))
        self.assertEqual([(row.warehouse_id, row.movement_type, row.quantity_change) for row in rows], [
            (self.main.id, "out", -15),
            (self.store.id, "in", 15),
        ])
        self.assertEqual(sum(row.quantity_change for row in rows), 0)
        self.assertEqual(self.quantity(), 25)
        self.assertEqual(self.quantity(warehouse=self.store), 15)

    def test_failed_transfer_rolls_back_every_line(self):
        self.receive(10)
        self.receive(3, product=self.other)
        transfer = documents.create_document(
            "transfer",
            user=self.user,
            from_warehouse=self.main,
            to_warehouse=self.store,
            items=[{"product": self.product, "quantity": 10}, {"product": self.other, "quantity": 4}],
        )
        ledger_before = LedgerEntry.objects.count()

        with self.assertRaises(InsufficientStockError):
            services.validate_document(transfer)

        self.assertEqual(self.quantity(), 10)
        self.assertEqual(self.quantity(warehouse=self.store), 0)
        self.assertEqual(LedgerEntry.objects.count(), ledger_before)

    def test_duplicate_lines_are_checked_together(self):
        self.receive(100)
        delivery = documents.create_document(
            "delivery",
            user=self.user,
            warehouse=self.main,
            items=[{"product": self.product, "quantity": 60}, {"product": self.product, "quantity": 50}],
        )

        with self.assertRaises(InsufficientStockError):
            services.validate_document(delivery)
        self.assertEqual(self.quantity(), 100)

    def test_adjustment_applies_counted_difference(self):
        self.receive(42)
        adjustment = documents.create_document(
            "adjustment",
            user=self.user,
            warehouse=self.main,
            reason="Annual count",
            items=[{"product": self.product, "physical_quantity": 50}],
        )

        services.validate_document(adjustment)

        entry = LedgerEntry.objects.get(reference_id=adjustment.id)
        self.assertEqual((entry.movement_type, entry.quantity_change, entry.quantity_after), ("in", 8, 50))
        self.assertEqual(entry.notes, "Annual count")
        self.assertEqual(self.quantity(), 50)

    def test_adjustment_with_repeated_product_ends_at_last_count(self):
        self.receive(42)
        repeated = documents.create_document(
            "adjustment",
            user=self.user,
            warehouse=self.main,
            items=[{"product": self.product, "physical_quantity": 50}, {"product": self.product, "physical_quantity": 50}],
        )

        services.validate_document(repeated)

        self.assertEqual(self.quantity(), 50)
        rows = LedgerEntry.objects.filter(reference_id=repeated.id).order_by("id")
        self.assertEqual([(row.quantity_change, row.quantity_after) for row in rows], [(8, 50)])

        recount = documents.create_document(
            "adjustment",
            user=self.user,
            warehouse=self.main,
            items=[{"product": self.product, "physical_quantity": 55}, {"product": self.product, "physical_quantity": 45}],
        )

        services.validate_document(recount)

        self.assertEqual(self.quantity(), 45)
        rows = LedgerEntry.objects.filter(reference_id=recount.id).order_by("id")
        self.assertEqual([(row.quantity_change, row.quantity_after) for row in rows], [(5, 55), (-10, 45)])

    @override_settings(INVENTORY_ADJUSTMENT_MODE="absolute")
    def test_absolute_adjustment_with_repeated_product_ends_at_last_count(self):
        self.receive(42)
        adjustment = documents.create_document(
            "adjustment",
            user=self.user,
            warehouse=self.main,
            items=[{"product": self.product, "physical_quantity": 50}, {"product": self.product, "physical_quantity": 50}],
        )

        services.validate_document(adjustment)

        self.assertEqual(self.quantity(), 50)
        self.assertEqual(LedgerEntry.objects.filter(reference_id=adjustment.id).count(), 1)

    def test_adjustment_uses_snapshot_not_live_stock(self):
        self.receive(42)
        adjustment = documents.create_document(
            "adjustment", user=self.user, warehouse=self.main, items=[{"product": self.product, "physical_quantity": 50}]
        )
        self.receive(10)

        services.validate_document(adjustment)

        self.assertEqual(self.quantity(), 60)

    @override_settings(INVENTORY_ADJUSTMENT_MODE="absolute")
    def test_absolute_adjustment_sets_physical_count(self):
        self.receive(42)
        adjustment = documents.create_document(
            "adjustment", user=self.user, warehouse=self.main, items=[{"product": self.product, "physical_quantity": 50}]
        )
        self.receive(10)

        services.validate_document(adjustment)

        self.assertEqual(self.quantity(), 50)
        entry = LedgerEntry.objects.get(reference_id=adjustment.id)
        self.assertEqual((entry.movement_type, entry.quantity_change, entry.quantity_after), ("out", -2, 50))

    def test_adjustment_without_difference_writes_no_ledger_row(self):
        self.receive(20)
        adjustment = documents.create_document(
            "adjustment", user=self.user, warehouse=self.main, items=[{"product": self.product, "physical_quantity": 20}]
        )

        adjustment = services.validate_document(adjustment)

        self.assertEqual(adjustment.status, DocumentStatus.DONE)
        self.assertFalse(LedgerEntry.objects.filter(reference_id=adjustment.id).exists())

    def test_stale_negative_adjustment_cannot_drive_stock_below_zero(self):
        self.receive(10)
        adjustment = documents.create_document(
            "adjustment", user=self.user, warehouse=self.main, items=[{"product": self.product, "physical_quantity": 0}]
        )
        services.validate_document(self.deliver(5))

        with self.assertRaises(InsufficientStockError):
            services.validate_document(adjustment)
        self.assertEqual(self.quantity(), 5)

    def test_second_validation_is_rejected(self):
        receipt = self.receive(100)

        with self.assertRaises(AlreadyAppliedError):
            services.validate_document(receipt)

        self.assertEqual(self.quantity(), 100)
        self.assertEqual(LedgerEntry.objects.count(), 1)

    def test_stale_copy_racing_a_finished_validation(self):
        receipt = documents.create_document(
            "receipt", user=self.user, warehouse=self.main, items=[{"product": self.product, "quantity": 100}]
        )
        stale = Receipt.objects.get(pk=receipt.pk)

        services.validate_document(receipt)
        self.assertEqual(stale.status, DocumentStatus.DRAFT)
        with self.assertRaises(AlreadyAppliedError):
            services.validate_document(stale)

        self.assertEqual(self.quantity(), 100)
        self.assertEqual(LedgerEntry.objects.filter(reference_id=receipt.id).count(), 1)

    def test_transitions_move_forward_only(self):
        delivery = self.deliver(1)

        self.assertEqual(services.transition_document(delivery, DocumentStatus.WAITING).status, DocumentStatus.WAITING)
        self.assertEqual(services.transition_document(delivery, DocumentStatus.WAITING).status, DocumentStatus.WAITING)
        self.assertEqual(services.transition_document(delivery, DocumentStatus.READY).status, DocumentStatus.READY)
        with self.assertRaises(InvalidStateError):
            services.transition_document(delivery, DocumentStatus.DRAFT)
        self.assertFalse(LedgerEntry.objects.exists())

    def test_canceled_and_done_are_terminal(self):
        self.receive(10)
        canceled = services.transition_document(self.deliver(1), DocumentStatus.CANCELED)
        with self.assertRaises(InvalidStateError):
            services.transition_document(canceled, DocumentStatus.DONE)
        with self.assertRaises(InvalidStateError):
            services.transition_document(canceled, DocumentStatus.CANCELED)

        done = services.transition_document(self.deliver(1), DocumentStatus.DONE)
        with self.assertRaises(InvalidStateError):
            services.transition_document(done, DocumentStatus.CANCELED)
        with self.assertRaises(AlreadyAppliedError):
            services.transition_document(done, DocumentStatus.DONE)

    def test_unknown_status_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            services.transition_document(self.deliver(1), "shipped")

    def test_validation_is_logged(self):
        receipt = documents.create_document(
            "receipt", user=self.user, warehouse=self.main, items=[{"product": self.product, "quantity": 1}]
        )

        with self.assertLogs("inventory.services", level="INFO") as logs:
            services.validate_document(receipt)

        self.assertTrue(any("document_validated" in line for line in logs.output))

    def test_book_initial_stock_goes_through_a_receipt(self):
        receipt = services.book_initial_stock(self.other, self.store, 12, user=self.user)

        self.assertEqual(receipt.status, DocumentStatus.DONE)
        self.assertEqual(self.quantity(product=self.other, warehouse=self.store), 12)
        self.assertEqual(LedgerEntry.objects.get().reference_id, receipt.id)


class LedgerIntegrityTests(StockLedgerTestCase):
    def test_ledger_rows_cannot_change(self):
        self.receive(10)
        entry = LedgerEntry.objects.get()

        entry.notes = "rewritten"
        with self.assertRaises(LedgerImmutableError):
            entry.save()
        with self.assertRaises(LedgerImmutableError):
            entry.delete()
        with self.assertRaises(LedgerImmutableError):
            LedgerEntry.objects.filter(pk=entry.pk).update(notes="rewritten")
        with self.assertRaises(LedgerImmutableError):
            LedgerEntry.objects.all().delete()

        self.assertEqual(LedgerEntry.objects.get().notes, f"Receipt {entry.reference_number}")

    def test_stock_can_be_rebuilt_from_ledger(self):
        self.receive(100)
        self.receive(30, product=self.other)
        services.validate_document(self.deliver(25))
        transfer = documents.create_document(
            "transfer",
            user=self.user,
            from_warehouse=self.main,
            to_warehouse=self.store,
            items=[{"product": self.product, "quantity": 40}, {"product": self.other, "quantity": 10}],
        )
        services.validate_document(transfer)
        adjustment = documents.create_document(
            "adjustment", user=self.user, warehouse=self.store, items=[{"product": self.product, "physical_quantity": 37}]
        )
        services.validate_document(adjustment)
        canceled = self.deliver(5)
        services.transition_document(canceled, DocumentStatus.CANCELED)

        for level in StockLevel.objects.all():
            entries = LedgerEntry.objects.for_pair(level.product_id, level.warehouse_id)
            self.assertEqual(sum(entries.values_list("quantity_change", flat=True)), level.quantity)
            self.assertEqual(entries.order_by("-id").first().quantity_after, level.quantity)
        self.assertEqual(services.check_ledger_consistency(), [])
        self.assertEqual(self.quantity(warehouse=self.store), 37)

    def test_consistency_check_reports_drift(self):
        self.receive(10)
        StockLevel.objects.filter(product=self.product, warehouse=self.main).update(quantity=99)

        problems = services.check_ledger_consistency()

        self.assertEqual(len(problems), 1)
        self.assertEqual(problems[0]["quantity"], 99)
        self.assertEqual(problems[0]["ledger_total"], 10)

    def test_stock_reads_default_to_zero(self):
        self.assertEqual(stock.get_quantity(self.product.id, self.store.id), 0)


class StockTableTransactionTests(TransactionTestCase):
    def test_writes_require_an_open_transaction(self):
        product = Product.objects.create(sku="TX-1", name="Tx", unit_of_measure="pcs")
        warehouse = Warehouse.objects.create(code="TX", name="Tx")

        with self.assertRaises(TransactionManagementError):
            stock.apply_delta(product.id, warehouse.id, 5)
        with self.assertRaises(TransactionManagementError):
            stock.set_absolute(product.id, warehouse.id, 5)
        with self.assertRaises(TransactionManagementError):
            stock.discard_empty_levels(warehouse.id)
        self.assertFalse(StockLevel.objects.exists())


class ManagementCommandTests(StockLedgerTestCase):
    def test_check_stock_ledger_passes_and_fails(self):
        self.receive(10)
        out = StringIO()
        call_command("check_stock_ledger", stdout=out)
        self.assertIn("match", out.getvalue())

        StockLevel.objects.filter(product=self.product).update(quantity=3)
        with self.assertRaises(CommandError):
            call_command("check_stock_ledger", stdout=StringIO())

    def test_seed_demo_data_is_repeatable(self):
        call_command("seed_demo_data", stdout=StringIO())
        ledger_rows = LedgerEntry.objects.count()
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(LedgerEntry.objects.count(), ledger_rows)
        self.assertEqual(services.check_ledger_consistency(), [])
        store = Warehouse.objects.get(code="WH-STORE")
        cola = Product.objects.get(sku="SKU-COLA-001")
        self.assertEqual(stock.get_quantity(cola.id, store.id), 24)


class DocumentApiTests(StockLedgerTestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def create_receipt(self, quantity=100):
        return self.client.post(
            "/api/v1/receipts/",
            {
                "warehouse": str(self.main.id),
                "supplier": "Acme Supplies",
                "items": [{"product": str(self.product.id), "quantity": quantity, "unit_price": "2.50"}],
            },
            format="json",
        )

    def test_requires_authentication(self):
        response = APIClient().get("/api/v1/receipts/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")

    def test_create_and_validate_receipt(self):
        response = self.create_receipt()

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["status"], "draft")
        self.assertTrue(payload["number"].startswith("REC-"))
        self.assertEqual(payload["items"][0]["quantity"], 100)
        self.assertEqual(payload["items"][0]["product_sku"], "P-001")

        response = self.client.post(f"/api/v1/receipts/{payload['id']}/validate/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "done")

        response = self.client.get(
            "/api/v1/stock/quantity/", {"product": str(self.product.id), "warehouse": str(self.main.id)}
        )
        self.assertEqual(response.json()["quantity"], 100)

        actions = set(AuditLog.objects.filter(entity_id=payload["id"]).values_list("action", flat=True))
        self.assertEqual(actions, {"receipt.create", "receipt.validate"})

    def test_create_without_items_is_rejected(self):
        response = self.client.post("/api/v1/receipts/", {"warehouse": str(self.main.id), "items": []}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_create_with_missing_warehouse_is_rejected(self):
        response = self.client.post(
            "/api/v1/deliveries/", {"items": [{"product": str(self.product.id), "quantity": 1}]}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("warehouse", response.json()["errors"])

    def test_insufficient_stock_envelope_and_rollback(self):
        self.receive(10)
        delivery = self.deliver(5)

        response = self.client.patch(
            f"/api/v1/deliveries/{delivery.id}/",
            {"items": [{"product": str(self.product.id), "quantity": 1000}], "status": "done"},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_stock")
        self.assertEqual(payload["status"], 409)
        self.assertEqual(payload["errors"]["entity"], "product")
        self.assertEqual(payload["errors"]["entity_id"], str(self.product.id))
        self.assertEqual(payload["errors"]["warehouse_id"], str(self.main.id))
        delivery.refresh_from_db()
        self.assertEqual(delivery.status, DocumentStatus.DRAFT)
        self.assertEqual(delivery.lines.get().quantity, 5)
        self.assertEqual(self.quantity(), 10)

    def test_status_walk_over_http(self):
        self.receive(10)
        delivery = self.deliver(4)

        for target in ("waiting", "ready", "done"):
            response = self.client.patch(f"/api/v1/deliveries/{delivery.id}/", {"status": target}, format="json")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["status"], target)
        self.assertEqual(self.quantity(), 6)

        response = self.client.patch(f"/api/v1/deliveries/{delivery.id}/", {"status": "done"}, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "already_applied")

        response = self.client.patch(f"/api/v1/deliveries/{delivery.id}/", {"status": "draft"}, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_state")

    def test_double_validate_returns_conflict(self):
        receipt_id = self.create_receipt().json()["id"]

        self.assertEqual(self.client.post(f"/api/v1/receipts/{receipt_id}/validate/").status_code, 200)
        response = self.client.post(f"/api/v1/receipts/{receipt_id}/validate/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "already_applied")
        self.assertEqual(LedgerEntry.objects.count(), 1)

    def test_delete_rules(self):
        done_id = self.create_receipt().json()["id"]
        self.client.post(f"/api/v1/receipts/{done_id}/validate/")
        draft_id = self.create_receipt().json()["id"]

        response = self.client.delete(f"/api/v1/receipts/{done_id}/")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_state")

        response = self.client.delete(f"/api/v1/receipts/{draft_id}/")
        self.assertEqual(response.status_code, 204)
        self.assertTrue(AuditLog.objects.filter(action="receipt.delete", entity_id=draft_id).exists())

    def test_unknown_document_is_not_found(self):
        response = self.client.get(f"/api/v1/transfers/{uuid.uuid4()}/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")
        self.assertEqual(response.json()["errors"]["entity"], "transfer")

    def test_transfer_list_matches_either_warehouse(self):
        self.receive(10)
        transfer = documents.create_document(
            "transfer",
            user=self.user,
            from_warehouse=self.main,
            to_warehouse=self.store,
            items=[{"product": self.product, "quantity": 1}],
        )

        for warehouse in (self.main, self.store):
            response = self.client.get("/api/v1/transfers/", {"warehouse": str(warehouse.id)})
            self.assertEqual([row["id"] for row in response.json()["results"]], [str(transfer.id)])

        other = Warehouse.objects.create(code="WH-3", name="Overflow")
        response = self.client.get("/api/v1/transfers/", {"warehouse": str(other.id)})
        self.assertEqual(response.json()["results"], [])

    def test_list_filters_by_status(self):
        self.receive(10)
        draft = self.deliver(1)

        response = self.client.get("/api/v1/receipts/", {"status": "done"})
        self.assertEqual(response.json()["count"], 1)
        response = self.client.get("/api/v1/deliveries/", {"status": "draft"})
        self.assertEqual([row["id"] for row in response.json()["results"]], [str(draft.id)])

    def test_adjustment_over_http(self):
        self.receive(42)

        response = self.client.post(
            "/api/v1/adjustments/",
            {
                "warehouse": str(self.main.id),
                "reason": "Count",
                "items": [{"product": str(self.product.id), "physical_quantity": 50}],
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["items"][0]["difference"], 8)

        response = self.client.post(f"/api/v1/adjustments/{response.json()['id']}/validate/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.quantity(), 50)


class LedgerAndDashboardApiTests(StockLedgerTestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)
        self.receive(100)
        services.validate_document(self.deliver(95))
        transfer = documents.create_document(
            "transfer",
            user=self.user,
            from_warehouse=self.main,
            to_warehouse=self.store,
            items=[{"product": self.product, "quantity": 2}],
        )
        self.transfer = services.validate_document(transfer)

    def test_ledger_is_newest_first_and_filterable(self):
        response = self.client.get("/api/v1/ledger/")
        self.assertEqual(response.status_code, 200)
        rows = response.json()["results"]
        self.assertEqual(len(rows), 4)
        self.assertEqual([row["id"] for row in rows], sorted((row["id"] for row in rows), reverse=True))

        response = self.client.get("/api/v1/ledger/", {"movement_type": "out"})
        self.assertEqual({row["movement_type"] for row in response.json()["results"]}, {"out"})
        self.assertEqual(response.json()["count"], 2)

        response = self.client.get("/api/v1/ledger/", {"reference_type": "transfer", "warehouse": str(self.store.id)})
        rows = response.json()["results"]
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["reference_id"], str(self.transfer.id))

        today = timezone.localdate().isoformat()
        response = self.client.get("/api/v1/ledger/", {"start_date": today, "end_date": today, "limit": 2})
        self.assertEqual(response.json()["count"], 2)

    def test_ledger_rejects_bad_filters(self):
        self.assertEqual(self.client.get("/api/v1/ledger/", {"movement_type": "sideways"}).status_code, 400)
        self.assertEqual(self.client.get("/api/v1/ledger/", {"product": "nope"}).status_code, 400)
        self.assertEqual(self.client.get("/api/v1/ledger/", {"limit": 100000}).status_code, 400)
        self.assertEqual(self.client.get("/api/v1/ledger/", {"start_date": "yesterday"}).status_code, 400)

    def test_ledger_has_no_write_endpoints(self):
        entry = LedgerEntry.objects.first()

        self.assertEqual(self.client.post("/api/v1/ledger/", {}, format="json").status_code, 405)
        self.assertEqual(self.client.delete(f"/api/v1/ledger/{entry.id}/").status_code, 405)

    def test_dashboard_kpis(self):
        Receipt.objects.create(number="REC-PENDING-1", warehouse=self.main, user=self.user)

        response = self.client.get("/api/v1/dashboard/kpis/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["total_products"], 2)
        self.assertEqual(payload["total_quantity"], 5)
        self.assertEqual(payload["low_stock_items"], 2)
        self.assertEqual(payload["out_of_stock_products"], 1)
        self.assertEqual(payload["pending_receipts"], 1)
        self.assertEqual(payload["pending_deliveries"], 0)

        response = self.client.get("/api/v1/dashboard/kpis/", {"warehouse": str(self.store.id)})
        self.assertEqual(response.json()["total_quantity"], 2)
        self.assertEqual(response.json()["pending_receipts"], 0)

    def test_low_stock_and_recent_activity(self):
        response = self.client.get("/api/v1/dashboard/low-stock/")
        rows = response.json()["results"]
        self.assertEqual([row["quantity"] for row in rows], [2, 3])

        response = self.client.get("/api/v1/dashboard/recent-activity/", {"limit": 1})
        rows = response.json()["results"]
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["warehouse"], str(self.store.id))

    def test_stock_list_filters(self):
        response = self.client.get("/api/v1/stock/", {"warehouse": str(self.store.id)})

        rows = response.json()["results"]
        self.assertEqual([(row["product_sku"], row["quantity"]) for row in rows], [("P-001", 2)])

    def test_stock_quantity_requires_both_ids(self):
        response = self.client.get("/api/v1/stock/quantity/", {"product": str(self.product.id)})

        self.assertEqual(response.status_code, 400)
        self.assertIn("warehouse", response.json()["errors"])


class MasterDataApiTests(StockLedgerTestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def test_create_product_with_initial_stock(self):
        category = Category.objects.create(name="Hardware")

        response = self.client.post(
            "/api/v1/products/",
            {
                "sku": "P-NEW",
                "name": "Bolt",
                "unit_of_measure": "pcs",
                "reorder_level": 3,
                "category": str(category.id),
                "initial_stock": 25,
                "warehouse": str(self.store.id),
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        product = Product.objects.get(sku="P-NEW")
        self.assertEqual(stock.get_quantity(product.id, self.store.id), 25)
        entry = LedgerEntry.objects.get(product=product)
        self.assertEqual(entry.reference_type, "receipt")
        self.assertEqual(Receipt.objects.get(pk=entry.reference_id).status, DocumentStatus.DONE)

    def test_initial_stock_needs_a_warehouse(self):
        response = self.client.post(
            "/api/v1/products/",
            {"sku": "P-NEW", "name": "Bolt", "unit_of_measure": "pcs", "initial_stock": 5},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(Product.objects.filter(sku="P-NEW").exists())

    def test_duplicate_sku_is_a_validation_error(self):
        response = self.client.post(
            "/api/v1/products/", {"sku": "P-001", "name": "Dup", "unit_of_measure": "pcs"}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("sku", response.json()["errors"])

    def test_product_search_and_detail(self):
        self.receive(7)

        response = self.client.get("/api/v1/products/", {"search": "widg"})
        rows = response.json()["results"]
        self.assertEqual([(row["sku"], row["on_hand"]) for row in rows], [("P-001", 7)])

        response = self.client.get(f"/api/v1/products/{self.product.id}/")
        self.assertEqual(response.json()["stock"][0]["warehouse_code"], "WH-1")
        self.assertEqual(response.json()["stock"][0]["quantity"], 7)

    def test_warehouse_delete_guard(self):
        self.receive(1)

        response = self.client.delete(f"/api/v1/warehouses/{self.main.id}/")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_state")

        StockLevel.objects.create(product=self.product, warehouse=self.store, quantity=0)

        response = self.client.delete(f"/api/v1/warehouses/{self.store.id}/")
        self.assertEqual(response.status_code, 204)
        self.assertFalse(StockLevel.objects.filter(warehouse_id=self.store.id).exists())
        self.assertTrue(AuditLog.objects.filter(action="warehouse.delete", entity_id=self.store.id).exists())

    def test_duplicate_warehouse_code(self):
        response = self.client.post("/api/v1/warehouses/", {"code": "WH-1", "name": "Again"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("code", response.json()["errors"])
