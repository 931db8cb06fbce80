"""
MEDIAVAULT - Access & Audit Module

Authorization decisions, accessible-set queries, grant mutations and
the audit trail.

Components:
- resolver.py: point decisions for one (entity, actor) pair
- aggregator.py: the set of projects an actor can see
- grants.py: grant mutations with their audit records
- audit.py: audit recording, descriptions, queries and export

Usage:
    from mediavault.api.access import (
        check_project_access,
        check_album_access,
        get_accessible_project_ids,
    )

    from mediavault.api.access import AuditAction, EntityType, log_audit_event
"""

from mediavault.api.access.resolver import (
    AccessDenied,
    AccessGranted,
    AccessResult,
    EntityKind,
    EntityNotFound,
    check_album_access,
    check_project_access,
    resolve_access,
)

from mediavault.api.access.aggregator import (
    accessible_projects_query,
    get_accessible_project_ids,
)

from mediavault.api.access.audit import (
    ANONYMOUS_ACTOR,
    SYSTEM_ACTOR,
    AuditAction,
    AuditEvent,
    AuditLogger,
    AuditMetadata,
    EntityType,
    describe_event,
    log_audit_event,
)

from mediavault.api.access.grants import (
    AccessListChanges,
    AccessListEntry,
    GrantService,
)

__all__ = [
    # Resolver
    "AccessDenied",
    "AccessGranted",
    "AccessResult",
    "EntityKind",
    "EntityNotFound",
    "check_album_access",
    "check_project_access",
    "resolve_access",

    # Aggregator
    "accessible_projects_query",
    "get_accessible_project_ids",

    # Audit
    "ANONYMOUS_ACTOR",
    "SYSTEM_ACTOR",
    "AuditAction",
    "AuditEvent",
    "AuditLogger",
    "AuditMetadata",
    "EntityType",
    "describe_event",
    "log_audit_event",

    # Grants
    "AccessListChanges",
    "AccessListEntry",
    "GrantService",
]
