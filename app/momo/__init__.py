"""
Mobile-money (MoMo) payments for MTN, Airtel and Zamtel.

This app handles:
- Payment, payout and refund initiation through provider gateways
- The transaction state machine and its audit trail
- Signed webhook ingestion with deduplication
- Reconciliation of ledger transactions against provider statements
- Retry scheduling for failed or ambiguous transactions
- Double-entry ledger posting of net amounts and fees

Related apps:
    - companies: every record is owned by a Company (TenantContext)
    - core: base models, exceptions and service patterns

Usage:
    from momo.services import TransactionService, WebhookService

    txn = TransactionService.initiate_payment(ctx, provider, amount, phone)
    WebhookService.ingest(provider, raw_body, headers)
"""
