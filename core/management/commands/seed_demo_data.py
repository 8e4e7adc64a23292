from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from inventory import documents, services
from inventory.models import Category, LedgerEntry, Product, Warehouse


class Command(BaseCommand):
    help = "Seed demo warehouses, products and opening stock for local development."

    def handle(self, *args, **options):
        User = get_user_model()

        admin_user, admin_created = User.objects.get_or_create(
            username="admin",
            defaults={
                "email": "admin@example.com",
                "is_staff": True,
                "is_superuser": True,
                "is_active": True,
            },
        )
        if admin_created:
            admin_user.set_password("admin1234")
            admin_user.save(update_fields=["password"])

        clerk_user, clerk_created = User.objects.get_or_create(
            username="clerk",
            defaults={"email": "clerk@example.com", "is_active": True},
        )
        if clerk_created:
            clerk_user.set_password("clerk1234")
            clerk_user.save(update_fields=["password"])

        warehouse_main, _ = Warehouse.objects.get_or_create(
            code="WH-MAIN",
            defaults={"name": "Main Warehouse", "location": "Building A"},
        )
        warehouse_store, _ = Warehouse.objects.get_or_create(
            code="WH-STORE",
            defaults={"name": "Store Front", "location": "Building B"},
        )

        beverages, _ = Category.objects.get_or_create(name="Beverages")
        snacks, _ = Category.objects.get_or_create(name="Snacks")

        cola, _ = Product.objects.get_or_create(
            sku="SKU-COLA-001",
            defaults={"category": beverages, "name": "Cola 330ml", "unit_of_measure": "can", "reorder_level": 20},
        )
        chips, _ = Product.objects.get_or_create(
            sku="SKU-CHIPS-001",
            defaults={"category": snacks, "name": "Potato Chips", "unit_of_measure": "bag", "reorder_level": 10},
        )

        booked = 0
        for product, quantity in [(cola, 120), (chips, 60)]:
            # Re-running the command must not book the opening stock twice.
            if LedgerEntry.objects.filter(product=product, warehouse=warehouse_main).exists():
                continue
            services.book_initial_stock(product, warehouse_main, quantity, user=admin_user, notes="Demo opening stock")
            booked += 1

        if booked:
            transfer = documents.create_document(
                "transfer",
                user=clerk_user,
                from_warehouse=warehouse_main,
                to_warehouse=warehouse_store,
                items=[{"product": cola, "quantity": 24}, {"product": chips, "quantity": 12}],
                notes="Demo shelf restock",
            )
            services.validate_document(transfer, user=clerk_user)

            documents.create_document(
                "delivery",
                user=clerk_user,
                warehouse=warehouse_store,
                customer="Walk-in",
                items=[{"product": cola, "quantity": 6}],
            )

        self.stdout.write(self.style.SUCCESS("Demo data seeded."))
        self.stdout.write("Users: admin/admin1234, clerk/clerk1234")
        self.stdout.write(f"Warehouses: {warehouse_main.code}, {warehouse_store.code}")
