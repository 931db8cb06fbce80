# MEDIAVAULT - Multi-tenant media management
"""
MEDIAVAULT: authorization and audit core for the media platform.

Core Components:
    - Access Resolver: per-entity access decisions
    - Accessible-Set Aggregator: visible project ids for list queries
    - Audit Recorder: immutable audit trail
    - Grant Service: transactional grant mutations

Example:
    from mediavault.api.access import Actor, Role, check_project_access

    decision = await check_project_access(db, project_id, Actor("user-1", Role.PRO))
    if decision.allows(AccessLevel.WRITE):
        ...

Author: MEDIAVAULT Development Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "MEDIAVAULT Development Team"
