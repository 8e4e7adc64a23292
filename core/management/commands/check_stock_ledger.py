from django.core.management.base import BaseCommand, CommandError

from inventory.services import check_ledger_consistency


class Command(BaseCommand):
    help = "Verify that every stock level equals the sum of its ledger rows."

    def handle(self, *args, **options):
        problems = check_ledger_consistency()
        if not problems:
            self.stdout.write(self.style.SUCCESS("Stock levels match the ledger."))
            return

        self.stdout.write(self.style.MIGRATE_HEADING("Stock / ledger drift"))
        for problem in problems:
            self.stdout.write(
                self.style.ERROR(
                    f"product={problem['product_id']} warehouse={problem['warehouse_id']} "
                    f"quantity={problem['quantity']} ledger_total={problem['ledger_total']} "
                    f"last_quantity_after={problem['last_quantity_after']}"
                )
            )
        raise CommandError(f"{len(problems)} stock level(s) disagree with the ledger.")
