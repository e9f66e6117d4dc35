"""
URL configuration for the MoMo API.

Routes:
    Transactions:
        /transactions/                    - List (GET), initiate (POST)
        /transactions/{id}/               - Detail (GET)
        /transactions/{id}/check-status/  - Poll the provider (POST)
        /transactions/{id}/cancel/        - Cancel (POST)

    Reconciliations:
        /reconciliations/                     - List (GET), run (POST)
        /reconciliations/{id}/                - Summary (GET)
        /reconciliations/{id}/force-match/    - Manual match (POST)
        /reconciliations/{id}/force-unmatch/  - Manual unmatch (POST)
        /reconciliations/{id}/approve/        - Approve (POST)
        /reconciliations/report/              - Report (GET)

    Webhooks:
        /webhooks/{company_slug}/{provider_code}/ - Provider callback (POST)

All routes are prefixed with /api/v1/momo/ when included in the main URLconf.
"""

from django.urls import path

from rest_framework.routers import DefaultRouter

from momo.views import BankReconciliationViewSet, MomoTransactionViewSet
from momo.webhooks.views import momo_webhook

router = DefaultRouter()
router.register(r"transactions", MomoTransactionViewSet, basename="transaction")
router.register(r"reconciliations", BankReconciliationViewSet, basename="reconciliation")

app_name = "momo"
urlpatterns = router.urls + [
    path(
        "webhooks/<slug:company_slug>/<str:provider_code>/",
        momo_webhook,
        name="webhook",
    ),
]
