"""
Add Celery Beat schedules for MoMo maintenance tasks.

This migration creates periodic task schedules for:
- Webhook and transaction retries
- Status polling and expiry of unacknowledged transactions
- Ledger re-posting
- Nightly reconciliation
"""

from django.db import migrations

TASK_NAMES = [
    "MoMo: Retry Due Transactions",
    "MoMo: Retry Failed Webhooks",
    "MoMo: Check Pending Statuses",
    "MoMo: Expire Stale Transactions",
    "MoMo: Post Unposted Transactions",
    "MoMo: Nightly Reconciliation",
]


def create_periodic_tasks(apps, schema_editor):
    """Create periodic tasks for MoMo processing."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # =========================================================================
    # Schedules
    # =========================================================================

    every_minute, _ = IntervalSchedule.objects.get_or_create(every=1, period="minutes")
    every_5min, _ = IntervalSchedule.objects.get_or_create(every=5, period="minutes")
    every_15min, _ = IntervalSchedule.objects.get_or_create(every=15, period="minutes")

    # Daily at 1 AM UTC, after the provider's day has closed
    daily_1am, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="1",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )

    # =========================================================================
    # Periodic Tasks
    # =========================================================================

    PeriodicTask.objects.get_or_create(
        name="MoMo: Retry Due Transactions",
        defaults={
            "task": "momo.tasks.retry_due_transactions",
            "interval": every_minute,
            "enabled": True,
            "description": (
                "Re-submits or re-polls transactions whose next_retry_at has "
                "passed, and fails the ones that ran out of attempts."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="MoMo: Retry Failed Webhooks",
        defaults={
            "task": "momo.tasks.retry_failed_webhooks",
            "interval": every_5min,
            "enabled": True,
            "description": "Re-processes verified webhooks whose processing failed.",
        },
    )

    PeriodicTask.objects.get_or_create(
        name="MoMo: Check Pending Statuses",
        defaults={
            "task": "momo.tasks.check_pending_transaction_statuses",
            "interval": every_15min,
            "enabled": True,
            "description": (
                "Queues a provider status poll for every in-flight transaction "
                "created in the last 24 hours."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="MoMo: Expire Stale Transactions",
        defaults={
            "task": "momo.tasks.expire_stale_transactions",
            "interval": every_5min,
            "enabled": True,
            "description": (
                "Expires pending transactions the provider never acknowledged "
                "within the status timeout."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="MoMo: Post Unposted Transactions",
        defaults={
            "task": "momo.tasks.post_unposted_transactions",
            "interval": every_15min,
            "enabled": True,
            "description": "Posts completed transactions whose ledger posting failed.",
        },
    )

    PeriodicTask.objects.get_or_create(
        name="MoMo: Nightly Reconciliation",
        defaults={
            "task": "momo.tasks.run_scheduled_reconciliation",
            "crontab": daily_1am,
            "enabled": True,
            "description": (
                "Reconciles yesterday's completed transactions against each "
                "provider's transaction history."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove MoMo periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")
    PeriodicTask.objects.filter(name__in=TASK_NAMES).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("momo", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
