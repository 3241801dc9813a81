"""Core data models for Hourglass Sync."""

from hourglass_sync.core.document import (
    FIELD_KEYS,
    NAMESPACE_PREFIXES,
    Document,
    collect_document,
    empty_document,
    is_sync_relevant,
    plan_apply,
    weekly_snapshot_key,
)
from hourglass_sync.core.identity import (
    AuthCapability,
    Credential,
    IdentityResolver,
    PrimaryIdentity,
    ProviderKind,
    SecondaryIdentity,
    StaticAuth,
    TrustingResolver,
    UserIdentity,
    identity_from_key,
)

__all__ = [
    # Document layout
    "Document",
    "FIELD_KEYS",
    "NAMESPACE_PREFIXES",
    "collect_document",
    "empty_document",
    "is_sync_relevant",
    "plan_apply",
    "weekly_snapshot_key",
    # Identity
    "AuthCapability",
    "Credential",
    "IdentityResolver",
    "PrimaryIdentity",
    "ProviderKind",
    "SecondaryIdentity",
    "StaticAuth",
    "TrustingResolver",
    "UserIdentity",
    "identity_from_key",
]
