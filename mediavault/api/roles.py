"""
MEDIAVAULT - Roles and Access Levels

Role classification and the ordered access levels shared by the
resolver, the grant tables and the audit trail.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union


# ============================================================
# Roles
# ============================================================


class Role(str, Enum):
    """Actor roles."""

    USER = "USER"
    PRO = "PRO"
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"
    SUPERADMIN = "SUPERADMIN"


ADMIN_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.SUPERADMIN})


def parse_role(value: Union[Role, str, None]) -> Optional[Role]:
    """Map a raw role value to a Role, or None if it is not one."""
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        try:
            return Role(value)
        except ValueError:
            return None
    return None


def is_admin(role: Union[Role, str, None]) -> bool:
    """
    Check whether a role is an administrator role.

    Total over its input: unknown or malformed values are not admins.
    """
    return parse_role(role) in ADMIN_ROLES


# ============================================================
# Access Levels
# ============================================================


class AccessLevel(str, Enum):
    """Permission tiers, ordered READ < WRITE < FULL."""

    READ = "READ"
    WRITE = "WRITE"
    FULL = "FULL"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]

    def includes(self, required: Union["AccessLevel", str]) -> bool:
        """Check if this level satisfies a required level."""
        return self.rank >= AccessLevel(required).rank

    @classmethod
    def highest(cls, *levels: Union["AccessLevel", str, None]) -> Optional["AccessLevel"]:
        """Return the highest of the given levels, ignoring None."""
        present = [cls(level) for level in levels if level is not None]
        if not present:
            return None
        return max(present, key=lambda level: level.rank)


_ACCESS_RANK: Dict[AccessLevel, int] = {
    AccessLevel.READ: 1,
    AccessLevel.WRITE: 2,
    AccessLevel.FULL: 3,
}

# Level implied by administrator role and by ownership
ADMIN_ACCESS_LEVEL = AccessLevel.FULL
OWNER_ACCESS_LEVEL = AccessLevel.FULL


# ============================================================
# Actor
# ============================================================


@dataclass(frozen=True)
class Actor:
    """The authenticated identity performing a request."""

    id: str
    role: Union[Role, str]

    @property
    def is_admin(self) -> bool:
        return is_admin(self.role)
