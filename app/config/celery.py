"""
Celery configuration for the MoMo payments service.

Celery runs the MoMo background work:
- Webhook processing, queued by the webhook endpoint after the row commits
- Status polling, retries and expiry of in-flight transactions
- Ledger re-posting and nightly reconciliation

Redis is both the message broker and result backend. Periodic schedules
live in the django-celery-beat tables (DatabaseScheduler). Tasks are
auto-discovered from all installed Django apps.

Usage:
    from momo.tasks import check_transaction_status

    check_transaction_status.delay(str(company.id), str(txn.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
