"""
Reconcile MoMo transactions against provider history.

Without dates the previous ``--days`` full days (ending yesterday) are
reconciled. Providers without a history endpoint fail and are reported;
reconcile those through the API with an uploaded statement.

Usage:
    python manage.py momo_reconcile
    python manage.py momo_reconcile --company=acme --provider=airtel --days=7
    python manage.py momo_reconcile --start-date=2026-01-01 --end-date=2026-01-31 --force
"""

from __future__ import annotations

from datetime import date, timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.tenancy import TenantContext

from momo.models import MomoProvider
from momo.services import ReconciliationService
from momo.state_machines import EventSource, ProviderCode


def _parse_date(value: str, option: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise CommandError(f"--{option} must be YYYY-MM-DD, got {value!r}")


class Command(BaseCommand):
    help = "Reconcile MoMo transactions with provider records"

    def add_arguments(self, parser):
        parser.add_argument(
            "--company",
            type=str,
            help="Company slug (all active companies if omitted)",
        )
        parser.add_argument(
            "--provider",
            type=str,
            choices=ProviderCode.values,
            help="Provider code (all active providers if omitted)",
        )
        parser.add_argument("--start-date", type=str, help="First day (YYYY-MM-DD)")
        parser.add_argument("--end-date", type=str, help="Last day (YYYY-MM-DD)")
        parser.add_argument(
            "--days",
            type=int,
            default=1,
            help="Number of days to reconcile when dates are not both given",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Re-run periods that were already approved",
        )

    def handle(self, *args, **options):
        start_date, end_date = self.get_date_range(options)
        self.stdout.write(f"Reconciling transactions from {start_date} to {end_date}")

        providers = list(self.get_providers(options))
        if not providers:
            raise CommandError("No active MoMo providers found.")

        succeeded = failed = 0
        for provider in providers:
            label = f"{provider.display_name or provider.name} ({provider.code}, {provider.company.slug})"
            self.stdout.write(f"Reconciling provider: {label}")
            ctx = TenantContext(company_id=provider.company_id, source=EventSource.COMMAND)

            try:
                recon = ReconciliationService.run(
                    ctx, provider, start_date, end_date, force=options["force"]
                )
            except BaseApplicationError as e:
                failed += 1
                self.stderr.write(self.style.ERROR(f"  Reconciliation failed: {e.message}"))
                continue

            succeeded += 1
            summary = recon.summary
            self.stdout.write(self.style.SUCCESS(f"  {recon.reference} completed"))
            self.stdout.write(f"  - Book transactions: {summary.get('book_count', 0)}")
            self.stdout.write(f"  - Statement lines: {summary.get('statement_count', 0)}")
            self.stdout.write(f"  - Matched: {recon.matched_count}")
            self.stdout.write(f"  - Unmatched book: {recon.unmatched_book_count}")
            self.stdout.write(f"  - Unmatched bank: {recon.unmatched_bank_count}")
            self.stdout.write(f"  - Reconciliation rate: {summary.get('reconciliation_rate')}%")
            if recon.has_discrepancies:
                self.stdout.write(
                    self.style.WARNING("  Discrepancies found, manual review required")
                )

        self.stdout.write("")
        self.stdout.write("Reconciliation Summary:")
        self.stdout.write(f"  - Providers processed: {len(providers)}")
        self.stdout.write(f"  - Successful reconciliations: {succeeded}")
        self.stdout.write(f"  - Failed reconciliations: {failed}")

        if failed:
            raise CommandError(f"{failed} reconciliation(s) failed. Check the logs for details.")

    def get_date_range(self, options) -> tuple[date, date]:
        days = max(options["days"], 1)
        start = options.get("start_date")
        end = options.get("end_date")

        if start and end:
            start_date = _parse_date(start, "start-date")
            end_date = _parse_date(end, "end-date")
        elif start:
            start_date = _parse_date(start, "start-date")
            end_date = start_date + timedelta(days=days - 1)
        elif end:
            end_date = _parse_date(end, "end-date")
            start_date = end_date - timedelta(days=days - 1)
        else:
            end_date = timezone.localdate() - timedelta(days=1)
            start_date = end_date - timedelta(days=days - 1)

        if start_date > end_date:
            raise CommandError("--start-date must not be after --end-date")
        return start_date, end_date

    def get_providers(self, options):
        queryset = MomoProvider.objects.filter(
            is_active=True, company__is_active=True
        ).select_related("company")
        if options.get("company"):
            queryset = queryset.filter(company__slug=options["company"])
        if options.get("provider"):
            queryset = queryset.filter(code=options["provider"])
        return queryset.order_by("company__slug", "code")
