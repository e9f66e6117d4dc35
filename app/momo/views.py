"""
Views for the MoMo operator API.

ViewSets:
    MomoTransactionViewSet: Initiate, list, poll and cancel transactions
    BankReconciliationViewSet: Run, inspect, adjust and approve reconciliations

Endpoints:
    Transactions:
        GET  /api/v1/momo/transactions/ - List the company's transactions
        POST /api/v1/momo/transactions/ - Initiate a payment, payout, transfer or refund
        GET  /api/v1/momo/transactions/{id}/ - Transaction detail
        POST /api/v1/momo/transactions/{id}/check-status/ - Poll the provider
        POST /api/v1/momo/transactions/{id}/cancel/ - Cancel

    Reconciliations:
        GET  /api/v1/momo/reconciliations/ - List runs
        POST /api/v1/momo/reconciliations/ - Run a reconciliation
        GET  /api/v1/momo/reconciliations/{id}/ - Summary with items
        POST /api/v1/momo/reconciliations/{id}/force-match/
        POST /api/v1/momo/reconciliations/{id}/force-unmatch/
        POST /api/v1/momo/reconciliations/{id}/approve/
        GET  /api/v1/momo/reconciliations/report/?provider=mtn&days=30

Every request names its company in the ``X-Company`` header; the user
must be a member. Viewers read, operators write, approvers approve.
"""

from __future__ import annotations

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)

from core.exceptions import BaseApplicationError, ValidationError
from core.views import application_error_response

from companies.models import MembershipRole
from companies.services import TenancyService

from momo.models import BankReconciliation, MomoProvider, MomoTransaction
from momo.providers import detect_provider
from momo.serializers import (
    BankReconciliationListSerializer,
    BankReconciliationSerializer,
    CancelTransactionSerializer,
    ForceMatchSerializer,
    ForceUnmatchSerializer,
    InitiateTransactionSerializer,
    MomoTransactionSerializer,
    ReconciliationItemSerializer,
    ReconciliationReportSerializer,
    RunReconciliationSerializer,
)
from momo.services import ReconciliationService, TransactionService
from momo.state_machines import TransactionType

COMPANY_HEADER = OpenApiParameter(
    name="X-Company",
    type=str,
    location=OpenApiParameter.HEADER,
    description="Slug of the company the request acts for",
    required=True,
)


class TenantScopedViewMixin:
    """
    Resolves the TenantContext from ``X-Company`` and renders domain errors.
    """

    permission_classes = [IsAuthenticated]

    def get_tenant(self):
        if not hasattr(self, "_tenant"):
            self._tenant = TenancyService.resolve(
                self.request.user, self.request.headers.get("X-Company")
            )
        return self._tenant

    def require_role(self, role: str):
        return TenancyService.require_role(self.get_tenant(), role)

    def handle_exception(self, exc):
        if isinstance(exc, BaseApplicationError):
            return application_error_response(exc)
        return super().handle_exception(exc)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_momo_transactions",
        summary="List transactions",
        parameters=[
            COMPANY_HEADER,
            OpenApiParameter(name="status", type=str, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="type", type=str, location=OpenApiParameter.QUERY, required=False),
        ],
        tags=["MoMo - Transactions"],
    ),
    retrieve=extend_schema(
        operation_id="get_momo_transaction",
        summary="Get transaction",
        parameters=[COMPANY_HEADER],
        tags=["MoMo - Transactions"],
    ),
)
class MomoTransactionViewSet(
    TenantScopedViewMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    serializer_class = MomoTransactionSerializer

    def get_queryset(self):
        queryset = MomoTransaction.objects.for_tenant(self.get_tenant()).select_related(
            "provider"
        )
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        type_filter = self.request.query_params.get("type")
        if type_filter:
            queryset = queryset.filter(type=type_filter)
        return queryset

    @extend_schema(
        operation_id="initiate_momo_transaction",
        summary="Initiate transaction",
        description=(
            "Validate and submit a payment, payout, transfer or refund. "
            "The transaction is returned as stored after the provider call; "
            "provider outages leave it pending with a retry scheduled. "
            "Without a provider, the company's provider for the phone prefix is used."
        ),
        parameters=[COMPANY_HEADER],
        request=InitiateTransactionSerializer,
        responses={
            201: MomoTransactionSerializer,
            400: OpenApiResponse(description="Invalid amount, phone or limits"),
            403: OpenApiResponse(description="Operator role required"),
        },
        tags=["MoMo - Transactions"],
    )
    def create(self, request):
        ctx = self.get_tenant()
        self.require_role(MembershipRole.OPERATOR)
        serializer = InitiateTransactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        transaction_type = data.pop("type")

        if transaction_type == TransactionType.REFUND:
            txn = TransactionService.initiate_refund(
                ctx,
                data.pop("original_transaction_id"),
                data.pop("amount", None),
                description=data["description"],
                internal_reference=data["internal_reference"],
                metadata=data["metadata"],
            )
        else:
            amount = data.pop("amount")
            phone = data.pop("phone")
            provider = self.resolve_provider(ctx, data.pop("provider", None), phone)
            data.pop("original_transaction_id", None)
            if transaction_type == TransactionType.PAYMENT:
                txn = TransactionService.initiate_payment(ctx, provider, amount, phone, **data)
            else:
                txn = TransactionService.initiate_payout(
                    ctx, provider, amount, phone, transaction_type=transaction_type, **data
                )

        return Response(MomoTransactionSerializer(txn).data, status=status.HTTP_201_CREATED)

    @staticmethod
    def resolve_provider(ctx, code, phone) -> MomoProvider:
        if code:
            return MomoProvider.objects.get_for_tenant(ctx, code=code)
        provider = detect_provider(ctx, phone)
        if provider is None:
            raise ValidationError(
                "No active provider serves this phone number",
                error_code="PROVIDER_NOT_DETECTED",
                details={"phone": phone},
            )
        return provider

    @extend_schema(
        operation_id="check_momo_transaction_status",
        summary="Poll provider for status",
        parameters=[COMPANY_HEADER],
        request=None,
        responses={200: MomoTransactionSerializer},
        tags=["MoMo - Transactions"],
    )
    @action(detail=True, methods=["post"], url_path="check-status")
    def check_status(self, request, pk=None):
        self.require_role(MembershipRole.OPERATOR)
        txn = TransactionService.check_status(self.get_tenant(), pk)
        return Response(MomoTransactionSerializer(txn).data)

    @extend_schema(
        operation_id="cancel_momo_transaction",
        summary="Cancel transaction",
        parameters=[COMPANY_HEADER],
        request=CancelTransactionSerializer,
        responses={
            200: MomoTransactionSerializer,
            409: OpenApiResponse(description="Transaction already finished"),
        },
        tags=["MoMo - Transactions"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        self.require_role(MembershipRole.OPERATOR)
        serializer = CancelTransactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        txn = TransactionService.cancel(
            self.get_tenant(), pk, reason=serializer.validated_data["reason"]
        )
        return Response(MomoTransactionSerializer(txn).data)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_momo_reconciliations",
        summary="List reconciliations",
        parameters=[COMPANY_HEADER],
        tags=["MoMo - Reconciliation"],
    ),
    retrieve=extend_schema(
        operation_id="get_momo_reconciliation",
        summary="Get reconciliation summary",
        parameters=[COMPANY_HEADER],
        tags=["MoMo - Reconciliation"],
    ),
)
class BankReconciliationViewSet(
    TenantScopedViewMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    def get_queryset(self):
        queryset = BankReconciliation.objects.for_tenant(self.get_tenant()).select_related(
            "provider"
        )
        if self.action == "retrieve":
            queryset = queryset.prefetch_related("items__transaction", "manual_actions")
        return queryset

    def get_serializer_class(self):
        if self.action == "list":
            return BankReconciliationListSerializer
        return BankReconciliationSerializer

    def _reconciliation(self, pk) -> BankReconciliation:
        return BankReconciliation.objects.get_for_tenant(self.get_tenant(), pk=pk)

    @extend_schema(
        operation_id="run_momo_reconciliation",
        summary="Run reconciliation",
        description=(
            "Match the provider's completed transactions for the period against "
            "the uploaded statement, or the provider's history when none is sent."
        ),
        parameters=[COMPANY_HEADER],
        request=RunReconciliationSerializer,
        responses={
            201: BankReconciliationSerializer,
            409: OpenApiResponse(description="Already approved or already running"),
            502: OpenApiResponse(description="Provider history unavailable"),
        },
        tags=["MoMo - Reconciliation"],
    )
    def create(self, request):
        ctx = self.get_tenant()
        self.require_role(MembershipRole.OPERATOR)
        serializer = RunReconciliationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        provider = MomoProvider.objects.get_for_tenant(ctx, code=data["provider"])
        try:
            statement = serializer.statement_lines()
        except ValueError as e:
            raise ValidationError(str(e), error_code="INVALID_STATEMENT")

        recon = ReconciliationService.run(
            ctx,
            provider,
            data["start_date"],
            data["end_date"],
            actor=request.user,
            statement=statement,
            force=data["force"],
            statement_opening_balance=data["statement_opening_balance"],
            book_opening_balance=data["book_opening_balance"],
        )
        recon = self.get_queryset().prefetch_related("items__transaction", "manual_actions").get(
            pk=recon.pk
        )
        return Response(BankReconciliationSerializer(recon).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="force_match_momo_reconciliation_item",
        summary="Force-match a transaction with a statement line",
        parameters=[COMPANY_HEADER],
        request=ForceMatchSerializer,
        responses={200: ReconciliationItemSerializer},
        tags=["MoMo - Reconciliation"],
    )
    @action(detail=True, methods=["post"], url_path="force-match")
    def force_match(self, request, pk=None):
        self.require_role(MembershipRole.OPERATOR)
        serializer = ForceMatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = ReconciliationService.force_match(
            self.get_tenant(),
            self._reconciliation(pk).pk,
            serializer.validated_data["transaction_id"],
            serializer.validated_data["statement_reference"],
            request.user,
            serializer.validated_data["reason"],
        )
        return Response(ReconciliationItemSerializer(item).data)

    @extend_schema(
        operation_id="force_unmatch_momo_reconciliation_item",
        summary="Split a matched item",
        parameters=[COMPANY_HEADER],
        request=ForceUnmatchSerializer,
        responses={200: ReconciliationItemSerializer},
        tags=["MoMo - Reconciliation"],
    )
    @action(detail=True, methods=["post"], url_path="force-unmatch")
    def force_unmatch(self, request, pk=None):
        self.require_role(MembershipRole.OPERATOR)
        serializer = ForceUnmatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = ReconciliationService.force_unmatch(
            self.get_tenant(),
            self._reconciliation(pk).pk,
            serializer.validated_data["item_id"],
            request.user,
            serializer.validated_data["reason"],
        )
        return Response(ReconciliationItemSerializer(item).data)

    @extend_schema(
        operation_id="approve_momo_reconciliation",
        summary="Approve reconciliation",
        parameters=[COMPANY_HEADER],
        request=None,
        responses={
            200: BankReconciliationListSerializer,
            403: OpenApiResponse(description="Approver role required"),
            409: OpenApiResponse(description="Reconciliation not completed"),
        },
        tags=["MoMo - Reconciliation"],
    )
    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        recon = ReconciliationService.approve(self.get_tenant(), pk, request.user)
        return Response(BankReconciliationListSerializer(recon).data)

    @extend_schema(
        operation_id="momo_reconciliation_report",
        summary="Reconciliation report",
        parameters=[
            COMPANY_HEADER,
            OpenApiParameter(name="provider", type=str, location=OpenApiParameter.QUERY, required=True),
            OpenApiParameter(name="days", type=int, location=OpenApiParameter.QUERY, required=False),
        ],
        responses={200: ReconciliationReportSerializer},
        tags=["MoMo - Reconciliation"],
    )
    @action(detail=False, methods=["get"])
    def report(self, request):
        ctx = self.get_tenant()
        provider = MomoProvider.objects.get_for_tenant(
            ctx, code=request.query_params.get("provider", "")
        )
        try:
            days = int(request.query_params.get("days", 30))
        except ValueError:
            raise ValidationError("days must be an integer", error_code="INVALID_DAYS")
        report = ReconciliationService.report(ctx, provider, days=days)
        return Response(ReconciliationReportSerializer(report).data)
