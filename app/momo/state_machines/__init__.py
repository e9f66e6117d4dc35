"""
State machine enums and helpers for MoMo models.

This module defines the state enums used by MoMo models with django-fsm,
plus the explicit transaction transition table.
"""

from momo.state_machines.states import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    AuditAction,
    EventSource,
    ManualActionType,
    ProviderCode,
    ReconciliationItemStatus,
    ReconciliationStatus,
    TransactionStatus,
    TransactionType,
    WebhookStatus,
    can_transition,
    is_terminal,
    sources_for,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AuditAction",
    "EventSource",
    "ManualActionType",
    "ProviderCode",
    "ReconciliationItemStatus",
    "ReconciliationStatus",
    "TERMINAL_STATUSES",
    "TransactionStatus",
    "TransactionType",
    "WebhookStatus",
    "can_transition",
    "is_terminal",
    "sources_for",
]
