"""Database module."""

from mediavault.api.db.session import get_db, init_db, close_db
from mediavault.api.db.models import (
    Base,
    User,
    Project,
    Album,
    ProjectAccess,
    ClientProjectAccess,
    ClientAlbumAccess,
    AuditLog,
)

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "Base",
    "User",
    "Project",
    "Album",
    "ProjectAccess",
    "ClientProjectAccess",
    "ClientAlbumAccess",
    "AuditLog",
]
