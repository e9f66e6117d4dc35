"""
MoMo app configuration.

Connects the notification receivers for transaction and reconciliation
signals when the app registry is ready.
"""

from django.apps import AppConfig


class MomoConfig(AppConfig):
    """Configuration for the mobile-money application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "momo"
    verbose_name = "Mobile Money"

    def ready(self):
        from momo import receivers  # noqa: F401
