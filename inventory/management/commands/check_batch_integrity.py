# inventory/management/commands/check_batch_integrity.py

from django.core.management.base import BaseCommand, CommandError

from inventory.services.integrity import find_batch_violations


class Command(BaseCommand):
    help = "فحص سلامة أرصدة التشغيلات: الكميات، توزيع الفروع، ومطابقة سجل الحركات."

    def add_arguments(self, parser):
        parser.add_argument(
            "--batch",
            dest="batch_ids",
            type=int,
            action="append",
            help="رقم التشغيلة (id) المراد فحصها، يمكن تكراره.",
        )

    def handle(self, *args, **options):
        violations = find_batch_violations(options.get("batch_ids"))

        if not violations:
            self.stdout.write(self.style.SUCCESS("✓ لا توجد مخالفات."))
            return

        for violation in violations:
            self.stdout.write(self.style.ERROR(str(violation)))

        raise CommandError(f"{len(violations)} violation(s) found.")
