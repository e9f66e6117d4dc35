"""
Core Application - Infrastructure & Base Classes

Generic, reusable building blocks with no knowledge of mobile money.

Models (core.models, core.model_mixins):
    - BaseModel: Abstract model with timestamps
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic locking counter
    - AppendOnlyMixin: Insert-only rows for audit trails

Tenancy (core.tenancy, core.managers):
    - TenantContext: Mandatory company scope for every service call
    - TenantScopedManager / TenantScopedQuerySet: ``for_tenant(ctx)`` queries

Services (core.services):
    - BaseService, ServiceResult

Exceptions (core.exceptions):
    - BaseApplicationError, ValidationError, NotFoundError,
      PermissionDeniedError, ConflictError, ExternalServiceError

Fields (core.fields):
    - EncryptedTextField: Fernet-encrypted credentials

Helpers (core.helpers):
    - HMAC verification, money rounding, client IP extraction
"""
