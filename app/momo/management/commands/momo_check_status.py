"""
Poll providers for the status of in-flight MoMo transactions.

Usage:
    python manage.py momo_check_status --pending-only --hours=6
    python manage.py momo_check_status --transaction=<uuid>
    python manage.py momo_check_status --company=acme --provider=airtel --limit=20
"""

from __future__ import annotations

import time
from collections import Counter
from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.tenancy import TenantContext

from momo.models import MomoTransaction
from momo.services import TransactionService
from momo.state_machines import EventSource, ProviderCode, TransactionStatus

# Pause between provider calls so a large batch doesn't hammer the APIs.
REQUEST_PAUSE_SECONDS = 0.1


class Command(BaseCommand):
    help = "Check status of MoMo transactions with their providers"

    def add_arguments(self, parser):
        parser.add_argument(
            "--pending-only",
            action="store_true",
            help="Only check pending and processing transactions",
        )
        parser.add_argument(
            "--hours",
            type=int,
            default=24,
            help="Check transactions created in the last N hours (0 for no limit)",
        )
        parser.add_argument(
            "--transaction",
            type=str,
            help="Check one transaction by id",
        )
        parser.add_argument(
            "--provider",
            type=str,
            choices=ProviderCode.values,
            help="Only check transactions for this provider",
        )
        parser.add_argument(
            "--company",
            type=str,
            help="Only check transactions for this company slug",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=100,
            help="Maximum number of transactions to check",
        )

    def handle(self, *args, **options):
        self.stdout.write("Checking MoMo transaction statuses...")

        transactions = list(self.get_transactions(options))
        if not transactions:
            self.stdout.write("No transactions found to check.")
            return

        self.stdout.write(f"Found {len(transactions)} transaction(s) to check.")
        counts = Counter()

        for index, txn in enumerate(transactions):
            ctx = TenantContext(company_id=txn.company_id, source=EventSource.COMMAND)
            old_status = txn.status
            try:
                updated = TransactionService.check_status(ctx, txn.pk)
            except BaseApplicationError as e:
                counts["failed"] += 1
                self.stderr.write(
                    self.style.ERROR(
                        f"Failed to check {txn.transaction_number}: {e.message}"
                    )
                )
            else:
                counts["checked"] += 1
                counts[updated.status] += 1
                if updated.status != old_status:
                    counts["updated"] += 1
                    self.stdout.write(
                        f"Transaction {txn.transaction_number}: {old_status} -> {updated.status}"
                    )

            if index < len(transactions) - 1:
                time.sleep(REQUEST_PAUSE_SECONDS)

        self.stdout.write("")
        self.stdout.write("Status Check Summary:")
        for label, key in (
            ("Transactions checked", "checked"),
            ("Status updates", "updated"),
            ("Check failures", "failed"),
            ("Completed", TransactionStatus.COMPLETED),
            ("Pending", TransactionStatus.PENDING),
            ("Processing", TransactionStatus.PROCESSING),
            ("Failed", TransactionStatus.FAILED),
            ("Cancelled", TransactionStatus.CANCELLED),
        ):
            self.stdout.write(f"  {label}: {counts[key]}")

        if counts["failed"]:
            self.stdout.write(
                self.style.WARNING("Some status checks failed. Check the logs for details.")
            )
        else:
            self.stdout.write(self.style.SUCCESS("Status check completed."))

    def get_transactions(self, options):
        if options.get("transaction"):
            queryset = MomoTransaction.objects.filter(pk=options["transaction"])
            if not queryset.exists():
                raise CommandError(f"Transaction {options['transaction']} not found")
            return queryset

        queryset = MomoTransaction.objects.select_related("provider")
        if options["pending_only"]:
            queryset = queryset.filter(
                status__in=[TransactionStatus.PENDING, TransactionStatus.PROCESSING]
            )
        else:
            queryset = queryset.exclude(
                status__in=[
                    TransactionStatus.COMPLETED,
                    TransactionStatus.FAILED,
                    TransactionStatus.CANCELLED,
                ]
            )

        if options["hours"] > 0:
            since = timezone.now() - timedelta(hours=options["hours"])
            queryset = queryset.filter(created_at__gte=since)
        if options.get("provider"):
            queryset = queryset.filter(provider__code=options["provider"])
        if options.get("company"):
            queryset = queryset.filter(company__slug=options["company"])

        queryset = queryset.order_by("-created_at")
        if options["limit"] > 0:
            queryset = queryset[: options["limit"]]
        return queryset
