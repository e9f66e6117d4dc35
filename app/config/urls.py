"""
URL configuration for the MoMo payments service.

The `urlpatterns` list routes URLs to views. This is the root URL configuration
that includes all app-specific routes.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain JWT pair (POST)
    /api/v1/auth/token/refresh/    - Refresh access token (POST)
    /api/v1/momo/                  - Mobile money endpoints
        transactions/                          - List/initiate transactions
        transactions/{id}/                     - Transaction detail
        transactions/{id}/check-status/        - Poll provider for status
        transactions/{id}/cancel/              - Cancel transaction
        reconciliations/                       - List/run reconciliations
        reconciliations/{id}/                  - Reconciliation summary
        reconciliations/{id}/force-match/      - Manual match
        reconciliations/{id}/force-unmatch/    - Manual unmatch
        reconciliations/{id}/approve/          - Approve reconciliation
        reconciliations/report/                - Reconciliation report
        webhooks/{company}/{provider}/         - Provider callback (POST)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # JWT authentication
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Mobile money
    path("momo/", include("momo.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "MoMo Payments Admin"
admin.site.site_title = "MoMo Payments"
admin.site.index_title = "Mobile money operations"
