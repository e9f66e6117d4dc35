"""
Show MoMo wallet balances as each provider reports them.

Usage:
    python manage.py momo_balance
    python manage.py momo_balance --company=acme --provider=airtel
"""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from core.exceptions import BaseApplicationError

from momo.models import MomoProvider
from momo.providers import get_gateway
from momo.state_machines import ProviderCode


class Command(BaseCommand):
    help = "Show wallet balances reported by active MoMo providers"

    def add_arguments(self, parser):
        parser.add_argument(
            "--company",
            type=str,
            help="Only show providers of this company slug",
        )
        parser.add_argument(
            "--provider",
            type=str,
            choices=ProviderCode.values,
            help="Only show this provider",
        )

    def handle(self, *args, **options):
        providers = MomoProvider.objects.filter(is_active=True).select_related("company")
        if options.get("company"):
            providers = providers.filter(company__slug=options["company"])
        if options.get("provider"):
            providers = providers.filter(code=options["provider"])
        providers = list(providers.order_by("company__slug", "code"))
        if not providers:
            raise CommandError("No active providers match the given filters")

        failed = 0
        for provider in providers:
            label = f"{provider.company.slug}/{provider.code}"
            try:
                balance = get_gateway(provider).get_balance()
            except BaseApplicationError as e:
                failed += 1
                self.stderr.write(self.style.ERROR(f"{label}: {e.message}"))
                continue
            self.stdout.write(f"{label}: {balance.amount:,.2f} {balance.currency}")

        if failed:
            raise CommandError(f"{failed} balance check(s) failed")
