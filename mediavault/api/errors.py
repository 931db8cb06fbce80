"""
MEDIAVAULT - Exception Hierarchy

Errors raised by the grant mutation layer. Access decisions are never
raised: not-found and denied are returned as values by the resolver.

Exception Categories:
    - GrantError: grant mutation failures
        - GrantNotFoundError: revoking a grant that does not exist
        - GrantTargetNotFoundError: the project, album or user does not exist
"""

from typing import Any, Dict, Optional


class MediaVaultError(Exception):
    """
    Base exception for all MEDIAVAULT errors.

    Attributes:
        message: Human-readable error description
        code: Optional error code for programmatic handling
        details: Optional dict with additional context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class GrantError(MediaVaultError):
    """Base exception for grant mutation errors."""

    pass


class GrantNotFoundError(GrantError):
    """No grant exists for the (entity, user) pair."""

    def __init__(self, entity_type: str, entity_id: str, user_id: str):
        super().__init__(
            "Access not found",
            code="GRANT_NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": entity_id, "user_id": user_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.user_id = user_id


class GrantTargetNotFoundError(GrantError):
    """A project, album or user referenced by a grant does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"{entity_type} not found",
            code="GRANT_TARGET_NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
