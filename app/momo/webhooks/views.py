"""
Webhook endpoint for mobile-money providers.

POST /api/v1/momo/webhooks/<company_slug>/<provider_code>/

The view:
1. Resolves the provider from the URL (404 when unknown)
2. Verifies, deduplicates and stores the delivery (WebhookService.ingest)
3. Queues verified originals for async processing
4. Answers 200 {"received": true}

Providers retry anything that isn't a 2xx, so bad signatures and
duplicates get a 200 too. What really happened is on the MomoWebhook row.
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.exceptions import NotFoundError
from core.helpers import get_client_ip

from momo.models import MomoWebhook
from momo.services import WebhookService
from momo.state_machines import WebhookStatus
from momo.tasks import process_momo_webhook

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def momo_webhook(request: HttpRequest, company_slug: str, provider_code: str) -> JsonResponse:
    """Receive one provider callback."""
    try:
        provider = WebhookService.resolve_provider(company_slug, provider_code)
    except NotFoundError as e:
        logger.warning(
            "Webhook for unknown provider",
            extra={"company": company_slug, "provider": provider_code},
        )
        return JsonResponse(e.to_dict(), status=e.http_status)

    webhook = WebhookService.ingest(
        provider,
        request.body,
        request.headers,
        ip_address=get_client_ip(request) or None,
    )
    if webhook.status == WebhookStatus.PENDING:
        transaction.on_commit(lambda: _enqueue(webhook))

    return JsonResponse({"received": True})


def _enqueue(webhook: MomoWebhook) -> None:
    try:
        process_momo_webhook.delay(str(webhook.pk))
    except Exception:
        # Left FAILED so retry_failed_webhooks picks it up
        logger.exception(
            "Could not queue webhook for processing",
            extra={"webhook_pk": str(webhook.pk)},
        )
        MomoWebhook.objects.filter(pk=webhook.pk, status=WebhookStatus.PENDING).update(
            status=WebhookStatus.FAILED, error_message="Could not queue for processing"
        )
