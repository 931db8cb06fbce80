"""
MEDIAVAULT - Audit Logging System

Immutable audit trail for every authorization-relevant mutation.

Recording never raises to the caller: actor lookup failures degrade to a
null snapshot and persistence failures are logged to the operator
channel. Each record is written inside a SAVEPOINT, so a failed insert
leaves the surrounding business transaction intact, and a rolled back
business transaction discards its audit rows with it.
"""

import csv
import hashlib
import io
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.config import settings
from mediavault.api.db.models import AuditLog, User, new_id, utcnow
from mediavault.api.roles import AccessLevel


logger = logging.getLogger(__name__)


# ============================================================
# Audit Taxonomy
# ============================================================


class AuditAction(str, Enum):
    """Auditable actions."""

    # Users
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"

    # Projects
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_UPDATED = "PROJECT_UPDATED"
    PROJECT_DELETED = "PROJECT_DELETED"
    PROJECT_EXPORT_REQUESTED = "PROJECT_EXPORT_REQUESTED"

    # Albums
    ALBUM_CREATED = "ALBUM_CREATED"
    ALBUM_UPDATED = "ALBUM_UPDATED"
    ALBUM_DELETED = "ALBUM_DELETED"
    ALBUM_IMAGE_ADDED = "ALBUM_IMAGE_ADDED"
    ALBUM_IMAGE_REMOVED = "ALBUM_IMAGE_REMOVED"
    ALBUM_DOWNLOADED = "ALBUM_DOWNLOADED"

    # Images
    IMAGE_UPLOADED = "IMAGE_UPLOADED"
    IMAGE_DELETED = "IMAGE_DELETED"
    IMAGE_DOWNLOADED = "IMAGE_DOWNLOADED"

    # Share links
    SHARE_LINK_CREATED = "SHARE_LINK_CREATED"
    SHARE_LINK_REVOKED = "SHARE_LINK_REVOKED"
    SHARE_LINK_ACCESSED = "SHARE_LINK_ACCESSED"
    SHARE_LINK_REQUESTED = "SHARE_LINK_REQUESTED"

    # Jobs
    JOB_CREATED = "JOB_CREATED"
    JOB_STARTED = "JOB_STARTED"
    JOB_COMPLETED = "JOB_COMPLETED"
    JOB_FAILED = "JOB_FAILED"
    JOB_CANCELLED = "JOB_CANCELLED"
    JOB_RETRIED = "JOB_RETRIED"
    JOB_FORCE_RUN = "JOB_FORCE_RUN"

    # Internal grants
    ACCESS_GRANTED = "ACCESS_GRANTED"
    ACCESS_REVOKED = "ACCESS_REVOKED"
    ACCESS_MODIFIED = "ACCESS_MODIFIED"

    # Client grants
    CLIENT_ACCESS_GRANTED = "CLIENT_ACCESS_GRANTED"
    CLIENT_ACCESS_REVOKED = "CLIENT_ACCESS_REVOKED"
    CLIENT_ACCESS_MODIFIED = "CLIENT_ACCESS_MODIFIED"

    # PRO requests
    PRO_REQUEST_SUBMITTED = "PRO_REQUEST_SUBMITTED"
    FACE_RECOGNITION_REQUESTED = "FACE_RECOGNITION_REQUESTED"
    WATERMARK_REQUESTED = "WATERMARK_REQUESTED"

    # System
    STORAGE_USAGE_CHANGED = "STORAGE_USAGE_CHANGED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"


class EntityType(str, Enum):
    """Entity types referenced by audit records."""

    USER = "User"
    PROJECT = "Project"
    ALBUM = "Album"
    IMAGE = "Image"
    SHARE_LINK = "ShareLink"
    SHARE_REQUEST = "ShareRequest"
    JOB = "Job"
    PRO_REQUEST = "ProRequest"
    SETTINGS = "Settings"


SYSTEM_ACTOR = "system"
ANONYMOUS_ACTOR = "anonymous"
SENTINEL_ACTORS: FrozenSet[str] = frozenset({SYSTEM_ACTOR, ANONYMOUS_ACTOR})


# ============================================================
# Metadata
# ============================================================


class AuditMetadata(BaseModel):
    """
    Event metadata with typed well-known keys.

    Keys are stored camelCase. Unknown keys pass through untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None
    project_id: Optional[str] = Field(None, alias="projectId")
    project_name: Optional[str] = Field(None, alias="projectName")
    album_id: Optional[str] = Field(None, alias="albumId")
    album_name: Optional[str] = Field(None, alias="albumName")
    image_ids: Optional[List[str]] = Field(None, alias="imageIds")
    image_count: Optional[int] = Field(None, alias="imageCount")
    image_name: Optional[str] = Field(None, alias="imageName")
    target_user_id: Optional[str] = Field(None, alias="targetUserId")
    target_user_email: Optional[str] = Field(None, alias="targetUserEmail")
    client_user_id: Optional[str] = Field(None, alias="clientUserId")
    access_level: Optional[AccessLevel] = Field(None, alias="accessLevel")
    request_type: Optional[str] = Field(None, alias="requestType")
    request_id: Optional[str] = Field(None, alias="requestId")
    job_type: Optional[str] = Field(None, alias="jobType")
    job_id: Optional[str] = Field(None, alias="jobId")
    error: Optional[str] = None
    watermark_text: Optional[str] = Field(None, alias="watermarkText")
    ip_address: Optional[str] = Field(None, alias="ipAddress")
    user_agent: Optional[str] = Field(None, alias="userAgent")

    def to_json(self) -> Dict[str, Any]:
        """Wire form: camelCase keys, None values dropped, extras kept."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


_GRANT_KEYS = frozenset({
    "targetUserId", "targetUserEmail", "clientUserId", "accessLevel",
    "projectName", "albumName",
})
_IMAGE_SET_KEYS = frozenset({"albumName", "imageIds", "imageCount"})
_JOB_KEYS = frozenset({"jobType", "jobId", "projectId", "albumId"})

ACTION_METADATA_KEYS: Dict[AuditAction, FrozenSet[str]] = {
    AuditAction.USER_CREATED: frozenset({"name"}),
    AuditAction.USER_UPDATED: frozenset({"name"}),
    AuditAction.USER_DELETED: frozenset({"name"}),
    AuditAction.USER_LOGIN: frozenset({"ipAddress", "userAgent"}),
    AuditAction.USER_LOGOUT: frozenset(),
    AuditAction.PROJECT_CREATED: frozenset({"name"}),
    AuditAction.PROJECT_UPDATED: frozenset({"name"}),
    AuditAction.PROJECT_DELETED: frozenset({"name"}),
    AuditAction.PROJECT_EXPORT_REQUESTED: frozenset({"requestId", "projectName"}),
    AuditAction.ALBUM_CREATED: frozenset({"name", "projectId"}),
    AuditAction.ALBUM_UPDATED: frozenset({"name", "projectId"}),
    AuditAction.ALBUM_DELETED: frozenset({"name", "projectId"}),
    AuditAction.ALBUM_IMAGE_ADDED: _IMAGE_SET_KEYS,
    AuditAction.ALBUM_IMAGE_REMOVED: _IMAGE_SET_KEYS,
    AuditAction.ALBUM_DOWNLOADED: frozenset({"albumName", "projectId", "imageCount"}),
    AuditAction.IMAGE_UPLOADED: frozenset({"projectId", "albumId"}),
    AuditAction.IMAGE_DELETED: frozenset({"imageName", "albumId"}),
    AuditAction.IMAGE_DOWNLOADED: frozenset({"imageName", "albumId", "projectId"}),
    AuditAction.SHARE_LINK_CREATED: frozenset({"projectId", "projectName"}),
    AuditAction.SHARE_LINK_REVOKED: frozenset({"projectId"}),
    AuditAction.SHARE_LINK_ACCESSED: frozenset({"projectId"}),
    AuditAction.SHARE_LINK_REQUESTED: frozenset({"projectId", "projectName"}),
    AuditAction.JOB_CREATED: _JOB_KEYS,
    AuditAction.JOB_STARTED: _JOB_KEYS,
    AuditAction.JOB_COMPLETED: _JOB_KEYS,
    AuditAction.JOB_FAILED: _JOB_KEYS | {"error"},
    AuditAction.JOB_CANCELLED: _JOB_KEYS,
    AuditAction.JOB_RETRIED: _JOB_KEYS,
    AuditAction.JOB_FORCE_RUN: _JOB_KEYS,
    AuditAction.ACCESS_GRANTED: _GRANT_KEYS,
    AuditAction.ACCESS_REVOKED: _GRANT_KEYS,
    AuditAction.ACCESS_MODIFIED: _GRANT_KEYS,
    AuditAction.CLIENT_ACCESS_GRANTED: _GRANT_KEYS,
    AuditAction.CLIENT_ACCESS_REVOKED: _GRANT_KEYS,
    AuditAction.CLIENT_ACCESS_MODIFIED: _GRANT_KEYS,
    AuditAction.PRO_REQUEST_SUBMITTED: frozenset({"requestType", "projectId"}),
    AuditAction.FACE_RECOGNITION_REQUESTED: frozenset({"albumName"}),
    AuditAction.WATERMARK_REQUESTED: frozenset({"watermarkText", "albumName"}),
    AuditAction.STORAGE_USAGE_CHANGED: frozenset(),
    AuditAction.QUOTA_EXCEEDED: frozenset(),
    AuditAction.SETTINGS_UPDATED: frozenset(),
}


MetadataInput = Union[AuditMetadata, Dict[str, Any], None]


def normalize_metadata(metadata: MetadataInput) -> Optional[Dict[str, Any]]:
    """Convert caller metadata to its stored JSON form."""
    if metadata is None:
        return None
    if isinstance(metadata, AuditMetadata):
        return metadata.to_json()
    try:
        return AuditMetadata.model_validate(metadata).to_json()
    except ValidationError:
        logger.warning("Audit metadata failed validation, storing as-is")
        return _json_safe(metadata)


def _json_safe(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


# ============================================================
# Descriptions
# ============================================================


DESCRIPTION_TEMPLATES: Dict[AuditAction, str] = {
    AuditAction.USER_CREATED: "Created user account {name}",
    AuditAction.USER_UPDATED: "Updated user account {name}",
    AuditAction.USER_DELETED: "Deleted user account {name}",
    AuditAction.USER_LOGIN: "User logged in from {ipAddress}",
    AuditAction.USER_LOGOUT: "User logged out",
    AuditAction.PROJECT_CREATED: 'Created project "{name}"',
    AuditAction.PROJECT_UPDATED: 'Updated project "{name}"',
    AuditAction.PROJECT_DELETED: 'Deleted project "{name}"',
    AuditAction.PROJECT_EXPORT_REQUESTED: 'Requested export of project "{projectName}"',
    AuditAction.ALBUM_CREATED: 'Created album "{name}"',
    AuditAction.ALBUM_UPDATED: 'Updated album "{name}"',
    AuditAction.ALBUM_DELETED: 'Deleted album "{name}"',
    AuditAction.ALBUM_IMAGE_ADDED: 'Added {imageCount} image(s) to album "{albumName}"',
    AuditAction.ALBUM_IMAGE_REMOVED: 'Removed {imageCount} image(s) from album "{albumName}"',
    AuditAction.ALBUM_DOWNLOADED: 'Downloaded album "{albumName}" ({imageCount} images)',
    AuditAction.IMAGE_UPLOADED: "Uploaded image {entityId}",
    AuditAction.IMAGE_DELETED: 'Deleted image "{imageName}"',
    AuditAction.IMAGE_DOWNLOADED: 'Downloaded image "{imageName}"',
    AuditAction.SHARE_LINK_CREATED: 'Created share link for project "{projectName}"',
    AuditAction.SHARE_LINK_REVOKED: "Revoked share link {entityId}",
    AuditAction.SHARE_LINK_ACCESSED: "Share link {entityId} accessed",
    AuditAction.SHARE_LINK_REQUESTED: 'Requested share link for project "{projectName}"',
    AuditAction.JOB_CREATED: "Created {jobType} job {entityId}",
    AuditAction.JOB_STARTED: "Started {jobType} job {entityId}",
    AuditAction.JOB_COMPLETED: "Completed {jobType} job {entityId}",
    AuditAction.JOB_FAILED: "{jobType} job {entityId} failed: {error}",
    AuditAction.JOB_CANCELLED: "Cancelled {jobType} job {entityId}",
    AuditAction.JOB_RETRIED: "Retried {jobType} job {entityId}",
    AuditAction.JOB_FORCE_RUN: "Forced run of {jobType} job {entityId}",
    AuditAction.ACCESS_GRANTED: (
        "Granted {accessLevel} access on {entityType} {entityId} to {targetUser}"
    ),
    AuditAction.ACCESS_REVOKED: (
        "Revoked {oldAccessLevel} access on {entityType} {entityId} from {targetUser}"
    ),
    AuditAction.ACCESS_MODIFIED: (
        "Changed access on {entityType} {entityId} for {targetUser} "
        "from {oldAccessLevel} to {newAccessLevel}"
    ),
    AuditAction.CLIENT_ACCESS_GRANTED: (
        "Granted client {accessLevel} access on {entityType} {entityId} to {targetUser}"
    ),
    AuditAction.CLIENT_ACCESS_REVOKED: (
        "Revoked client {oldAccessLevel} access on {entityType} {entityId} from {targetUser}"
    ),
    AuditAction.CLIENT_ACCESS_MODIFIED: (
        "Changed client access on {entityType} {entityId} for {targetUser} "
        "from {oldAccessLevel} to {newAccessLevel}"
    ),
    AuditAction.PRO_REQUEST_SUBMITTED: "Submitted {requestType} request",
    AuditAction.FACE_RECOGNITION_REQUESTED: "Requested face recognition for album {entityId}",
    AuditAction.WATERMARK_REQUESTED: 'Requested watermark "{watermarkText}" for album {entityId}',
    AuditAction.STORAGE_USAGE_CHANGED: "Storage usage changed for {entityType} {entityId}",
    AuditAction.QUOTA_EXCEEDED: "Storage quota exceeded for {entityType} {entityId}",
    AuditAction.SETTINGS_UPDATED: "Updated settings {entityId}",
}

# Revocations recorded without the level that was removed
UNKNOWN_LEVEL_TEMPLATES: Dict[AuditAction, str] = {
    AuditAction.ACCESS_REVOKED: "Revoked access on {entityType} {entityId} from {targetUser}",
    AuditAction.CLIENT_ACCESS_REVOKED: (
        "Revoked client access on {entityType} {entityId} from {targetUser}"
    ),
}

MISSING_FIELD = "unknown"

# Template fields computed from the event rather than read from metadata
DERIVED_FIELDS: FrozenSet[str] = frozenset({
    "entityType", "entityId", "targetUser", "oldAccessLevel", "newAccessLevel",
})


class _TemplateFields(dict):
    def __missing__(self, key: str) -> str:
        return MISSING_FIELD


def _access_level_of(value: Optional[Dict[str, Any]]) -> Optional[str]:
    if not value or value.get("accessLevel") is None:
        return None
    return _field_value(value["accessLevel"])


def _field_value(value: Any) -> Any:
    return _enum_value(value) if isinstance(value, Enum) else value


def _template_fields(
    entity_type: str,
    entity_id: Optional[str],
    metadata: Optional[Dict[str, Any]],
    old_value: Optional[Dict[str, Any]],
    new_value: Optional[Dict[str, Any]],
) -> _TemplateFields:
    fields = _TemplateFields(
        {k: _field_value(v) for k, v in (metadata or {}).items() if v is not None}
    )
    fields["entityType"] = entity_type
    if entity_id is not None:
        fields["entityId"] = entity_id

    fields.setdefault("name", entity_id or MISSING_FIELD)
    if "imageCount" not in fields and "imageIds" in fields:
        fields["imageCount"] = len(fields["imageIds"])

    target = (
        fields.get("targetUserEmail")
        or fields.get("targetUserId")
        or fields.get("clientUserId")
    )
    if target:
        fields["targetUser"] = target

    old_level = _access_level_of(old_value)
    new_level = _access_level_of(new_value)
    if old_level:
        fields["oldAccessLevel"] = old_level
    if new_level:
        fields["newAccessLevel"] = new_level
        fields.setdefault("accessLevel", new_level)
    return fields


def describe_event(
    action: Union[AuditAction, str],
    entity_type: Union[EntityType, str],
    entity_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    old_value: Optional[Dict[str, Any]] = None,
    new_value: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Synthesize a human-readable description for an event.

    Known actions use their template; missing fields render as "unknown".
    A revocation without the removed level is described without one.
    Unknown actions fall back to "<action> performed on <entityType>".
    """
    action_value = _enum_value(action)
    entity_type_value = _enum_value(entity_type)

    try:
        known_action = AuditAction(action_value)
    except ValueError:
        return f"{action_value} performed on {entity_type_value}"

    fields = _template_fields(entity_type_value, entity_id, metadata, old_value, new_value)
    template = DESCRIPTION_TEMPLATES[known_action]
    if "oldAccessLevel" not in fields:
        template = UNKNOWN_LEVEL_TEMPLATES.get(known_action, template)
    return template.format_map(fields)


def _enum_value(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else str(value)


# ============================================================
# Audit Event Structure
# ============================================================


@dataclass
class AuditEvent:
    """One logical state change to be recorded."""

    action: Union[AuditAction, str]
    entity_type: Union[EntityType, str]
    entity_id: Optional[str]
    user_id: Optional[str] = None
    metadata: MetadataInput = None
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class ActorSnapshot:
    """Point-in-time identity of the acting user."""

    user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None


def compute_hash(entry: AuditLog) -> str:
    """Compute SHA256 hash for integrity verification."""
    content = f"{entry.id}{entry.created_at.isoformat()}{entry.user_id}{entry.action}"
    return hashlib.sha256(content.encode()).hexdigest()


def entry_to_dict(entry: AuditLog) -> Dict[str, Any]:
    """Convert a stored record to a dictionary."""
    return {
        "id": entry.id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "user_id": entry.user_id,
        "user_email": entry.user_email,
        "user_name": entry.user_name,
        "user_role": entry.user_role,
        "metadata": entry.event_metadata,
        "old_value": entry.old_value,
        "new_value": entry.new_value,
        "description": entry.description,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


# ============================================================
# Audit Logger
# ============================================================


class ExportFormat(str, Enum):
    """Output formats for audit exports."""

    JSON = "json"
    CSV = "csv"


CSV_EXPORT_COLUMNS: Tuple[str, ...] = (
    "ID", "Timestamp", "Action", "Entity Type", "Entity ID",
    "User ID", "User Name", "User Email", "User Role",
    "Description", "IP Address", "Metadata",
)


class AuditLogger:
    """
    Central audit logging service.

    All audit events flow through this class.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_session = db_session
        self.clock = clock

    async def record(self, event: AuditEvent) -> None:
        """Record one event. Never raises."""
        try:
            entry = await self._build_entry(event)
        except Exception:
            logger.exception("Failed to build audit event %s", _enum_value(event.action))
            return

        try:
            async with self.db_session.begin_nested():
                self.db_session.add(entry)
        except Exception:
            logger.exception(
                "Failed to persist audit event %s on %s:%s",
                entry.action,
                entry.entity_type,
                entry.entity_id,
            )
            return

        logger.info(
            "AUDIT",
            extra={
                "audit_event": entry_to_dict(entry),
                "event_hash": compute_hash(entry),
            },
        )

    async def _build_entry(self, event: AuditEvent) -> AuditLog:
        actor = await self._resolve_actor(event.user_id)
        metadata = normalize_metadata(event.metadata)
        old_value = _json_safe(event.old_value)
        new_value = _json_safe(event.new_value)
        entity_type = _enum_value(event.entity_type)

        description = event.description or describe_event(
            event.action,
            entity_type,
            event.entity_id,
            metadata,
            old_value,
            new_value,
        )

        return AuditLog(
            id=new_id(),
            action=_enum_value(event.action),
            entity_type=entity_type,
            entity_id=event.entity_id,
            user_id=actor.user_id,
            user_email=actor.email,
            user_name=actor.name,
            user_role=actor.role,
            event_metadata=metadata,
            old_value=old_value,
            new_value=new_value,
            description=description,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            created_at=self.clock(),
        )

    async def _resolve_actor(self, user_id: Optional[str]) -> ActorSnapshot:
        """Denormalize the acting user's identity."""
        if not user_id:
            return ActorSnapshot()

        if user_id in SENTINEL_ACTORS:
            return ActorSnapshot(name=user_id)

        try:
            async with self.db_session.begin_nested():
                user = await self.db_session.get(User, user_id)
        except Exception:
            logger.warning("Audit actor lookup failed for %s", user_id, exc_info=True)
            return ActorSnapshot()

        if user is None:
            logger.warning("Audit actor %s not found, recording without user", user_id)
            return ActorSnapshot()

        return ActorSnapshot(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=_enum_value(user.role) if user.role is not None else None,
        )

    async def query(
        self,
        action: Optional[Union[AuditAction, str]] = None,
        user_id: Optional[str] = None,
        entity_type: Optional[Union[EntityType, str]] = None,
        entity_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[AuditLog], int]:
        """Query audit records with filters, newest first."""
        conditions = []
        if action:
            conditions.append(AuditLog.action == _enum_value(action))
        if user_id:
            conditions.append(AuditLog.user_id == user_id)
        if entity_type:
            conditions.append(AuditLog.entity_type == _enum_value(entity_type))
        if entity_id:
            conditions.append(AuditLog.entity_id == entity_id)
        if start_time:
            conditions.append(AuditLog.created_at >= start_time)
        if end_time:
            conditions.append(AuditLog.created_at <= end_time)

        limit = min(limit or settings.AUDIT_PAGE_SIZE, settings.AUDIT_MAX_PAGE_SIZE)

        total = await self.db_session.scalar(
            select(func.count(AuditLog.id)).where(*conditions)
        )
        result = await self.db_session.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
            .offset(max(offset, 0))
        )
        return list(result.scalars().all()), total or 0

    async def fetch_all(
        self,
        action: Optional[Union[AuditAction, str]] = None,
        user_id: Optional[str] = None,
        entity_type: Optional[Union[EntityType, str]] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        batch_size: Optional[int] = None,
    ) -> List[AuditLog]:
        """Every record matching the filters, newest first, read in batches."""
        batch_size = min(batch_size or settings.AUDIT_MAX_PAGE_SIZE, settings.AUDIT_MAX_PAGE_SIZE)
        entries: List[AuditLog] = []
        while True:
            batch, total = await self.query(
                action=action,
                user_id=user_id,
                entity_type=entity_type,
                start_time=start_time,
                end_time=end_time,
                limit=batch_size,
                offset=len(entries),
            )
            entries.extend(batch)
            if not batch or len(entries) >= total:
                return entries

    async def export(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        action: Optional[Union[AuditAction, str]] = None,
        user_id: Optional[str] = None,
        entity_type: Optional[Union[EntityType, str]] = None,
        include_hash: bool = True,
        batch_size: Optional[int] = None,
    ) -> str:
        """
        Export audit records for compliance.

        Covers every matching record in the window; either bound may be
        omitted. The integrity hash is computed over the document without
        the hash itself.
        """
        entries = await self.fetch_all(
            action, user_id, entity_type, start_time, end_time, batch_size
        )

        export_data = {
            "export_timestamp": self.clock().isoformat(),
            "period_start": start_time.isoformat() if start_time else None,
            "period_end": end_time.isoformat() if end_time else None,
            "filters": {
                "action": _enum_value(action) if action else None,
                "user_id": user_id,
                "entity_type": _enum_value(entity_type) if entity_type else None,
            },
            "event_count": len(entries),
            "events": [entry_to_dict(e) for e in entries],
        }
        if include_hash:
            content = json.dumps(export_data, sort_keys=True, default=str)
            export_data["integrity_hash"] = hashlib.sha256(content.encode()).hexdigest()

        return json.dumps(export_data, indent=2, default=str)

    async def export_csv(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        action: Optional[Union[AuditAction, str]] = None,
        user_id: Optional[str] = None,
        entity_type: Optional[Union[EntityType, str]] = None,
        batch_size: Optional[int] = None,
    ) -> str:
        """Export audit records as CSV, one row per record."""
        entries = await self.fetch_all(
            action, user_id, entity_type, start_time, end_time, batch_size
        )

        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_EXPORT_COLUMNS)
        for entry in entries:
            writer.writerow([
                entry.id,
                entry.created_at.isoformat() if entry.created_at else "",
                entry.action,
                entry.entity_type,
                entry.entity_id or "",
                entry.user_id or "",
                entry.user_name or "",
                entry.user_email or "",
                entry.user_role or "",
                entry.description or "",
                entry.ip_address or "",
                json.dumps(entry.event_metadata or {}, sort_keys=True, default=str),
            ])
        return buffer.getvalue()


# ============================================================
# Event Helpers
# ============================================================


async def log_audit_event(
    db: AsyncSession,
    action: Union[AuditAction, str],
    entity_type: Union[EntityType, str],
    entity_id: Optional[str],
    user_id: Optional[str] = None,
    metadata: MetadataInput = None,
    old_value: Optional[Dict[str, Any]] = None,
    new_value: Optional[Dict[str, Any]] = None,
    description: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Record an audit event. Fire-and-forget: never raises."""
    await AuditLogger(db).record(
        AuditEvent(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            metadata=metadata,
            old_value=old_value,
            new_value=new_value,
            description=description,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    )


def _merge(metadata: Optional[Dict[str, Any]], **fields: Any) -> Dict[str, Any]:
    merged = dict(metadata or {})
    merged.update(fields)
    return merged


def _level_snapshot(level: Optional[Union[AccessLevel, str]]) -> Optional[Dict[str, Any]]:
    if level is None:
        return None
    return {"accessLevel": AccessLevel(level).value}


# ==================== Users ====================


async def log_user_created(db, user_id, created_by_id, metadata=None):
    await log_audit_event(
        db, AuditAction.USER_CREATED, EntityType.USER, user_id, created_by_id, metadata
    )


async def log_user_updated(db, user_id, updated_by_id, old_value=None, new_value=None, metadata=None):
    await log_audit_event(
        db, AuditAction.USER_UPDATED, EntityType.USER, user_id, updated_by_id,
        metadata, old_value, new_value,
    )


async def log_user_deleted(db, user_id, deleted_by_id, metadata=None):
    await log_audit_event(
        db, AuditAction.USER_DELETED, EntityType.USER, user_id, deleted_by_id, metadata
    )


async def log_user_login(db, user_id, ip_address=None, user_agent=None):
    await log_audit_event(
        db, AuditAction.USER_LOGIN, EntityType.USER, user_id, user_id,
        metadata={"ipAddress": ip_address, "userAgent": user_agent},
        ip_address=ip_address,
        user_agent=user_agent,
    )


async def log_user_logout(db, user_id):
    await log_audit_event(db, AuditAction.USER_LOGOUT, EntityType.USER, user_id, user_id)


# ==================== Projects ====================


async def log_project_created(db, project_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.PROJECT_CREATED, EntityType.PROJECT, project_id, user_id, metadata
    )


async def log_project_updated(db, project_id, user_id, old_value=None, new_value=None, metadata=None):
    await log_audit_event(
        db, AuditAction.PROJECT_UPDATED, EntityType.PROJECT, project_id, user_id,
        metadata, old_value, new_value,
    )


async def log_project_deleted(db, project_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.PROJECT_DELETED, EntityType.PROJECT, project_id, user_id, metadata
    )


async def log_project_export_requested(db, project_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.PROJECT_EXPORT_REQUESTED, EntityType.PROJECT, project_id,
        user_id, metadata,
    )


# ==================== Albums ====================


async def log_album_created(db, album_id, project_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.ALBUM_CREATED, EntityType.ALBUM, album_id, user_id,
        _merge(metadata, projectId=project_id),
    )


async def log_album_updated(db, album_id, user_id, old_value=None, new_value=None, metadata=None):
    await log_audit_event(
        db, AuditAction.ALBUM_UPDATED, EntityType.ALBUM, album_id, user_id,
        metadata, old_value, new_value,
    )


async def log_album_deleted(db, album_id, project_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.ALBUM_DELETED, EntityType.ALBUM, album_id, user_id,
        _merge(metadata, projectId=project_id),
    )


async def log_album_image_added(db, album_id, image_ids: Iterable[str], user_id, metadata=None):
    image_ids = list(image_ids)
    await log_audit_event(
        db, AuditAction.ALBUM_IMAGE_ADDED, EntityType.ALBUM, album_id, user_id,
        _merge(metadata, imageIds=image_ids, imageCount=len(image_ids)),
    )


async def log_album_image_removed(db, album_id, image_ids: Iterable[str], user_id, metadata=None):
    image_ids = list(image_ids)
    await log_audit_event(
        db, AuditAction.ALBUM_IMAGE_REMOVED, EntityType.ALBUM, album_id, user_id,
        _merge(metadata, imageIds=image_ids, imageCount=len(image_ids)),
    )


async def log_album_downloaded(db, album_id, user_id, image_count: int, metadata=None):
    await log_audit_event(
        db, AuditAction.ALBUM_DOWNLOADED, EntityType.ALBUM, album_id,
        user_id or ANONYMOUS_ACTOR,
        _merge(metadata, imageCount=image_count),
    )


# ==================== Images ====================


async def log_image_uploaded(db, image_id, project_id, album_id, user_id):
    await log_audit_event(
        db, AuditAction.IMAGE_UPLOADED, EntityType.IMAGE, image_id, user_id,
        {"projectId": project_id, "albumId": album_id},
    )


async def log_image_deleted(db, image_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.IMAGE_DELETED, EntityType.IMAGE, image_id, user_id, metadata
    )


async def log_image_downloaded(db, image_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.IMAGE_DOWNLOADED, EntityType.IMAGE, image_id,
        user_id or ANONYMOUS_ACTOR, metadata,
    )


# ==================== Share Links ====================


async def log_share_link_created(db, share_link_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.SHARE_LINK_CREATED, EntityType.SHARE_LINK, share_link_id,
        user_id, metadata,
    )


async def log_share_link_revoked(db, share_link_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.SHARE_LINK_REVOKED, EntityType.SHARE_LINK, share_link_id,
        user_id, metadata,
    )


async def log_share_link_accessed(db, share_link_id, user_id=None, metadata=None):
    await log_audit_event(
        db, AuditAction.SHARE_LINK_ACCESSED, EntityType.SHARE_LINK, share_link_id,
        user_id or ANONYMOUS_ACTOR, metadata,
    )


async def log_share_link_requested(db, request_id, project_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.SHARE_LINK_REQUESTED, EntityType.SHARE_REQUEST, request_id,
        user_id, _merge(metadata, projectId=project_id),
    )


# ==================== Jobs ====================


async def _log_job(db, action, job_id, job_type, user_id, metadata):
    await log_audit_event(
        db, action, EntityType.JOB, job_id, user_id or SYSTEM_ACTOR,
        _merge(metadata, jobType=job_type),
    )


async def log_job_created(db, job_id, job_type, user_id=None, metadata=None):
    await _log_job(db, AuditAction.JOB_CREATED, job_id, job_type, user_id, metadata)


async def log_job_started(db, job_id, job_type, user_id=None, metadata=None):
    await _log_job(db, AuditAction.JOB_STARTED, job_id, job_type, user_id, metadata)


async def log_job_completed(db, job_id, job_type, user_id=None, metadata=None):
    await _log_job(db, AuditAction.JOB_COMPLETED, job_id, job_type, user_id, metadata)


async def log_job_failed(db, job_id, job_type, error: str, user_id=None, metadata=None):
    await _log_job(
        db, AuditAction.JOB_FAILED, job_id, job_type, user_id,
        _merge(metadata, error=error),
    )


async def log_job_cancelled(db, job_id, job_type, user_id, metadata=None):
    await _log_job(db, AuditAction.JOB_CANCELLED, job_id, job_type, user_id, metadata)


async def log_job_retried(db, job_id, job_type, user_id, metadata=None):
    await _log_job(db, AuditAction.JOB_RETRIED, job_id, job_type, user_id, metadata)


async def log_job_force_run(db, job_id, job_type, user_id, metadata=None):
    await _log_job(db, AuditAction.JOB_FORCE_RUN, job_id, job_type, user_id, metadata)


# ==================== Grants ====================


_GRANT_ACTIONS = {
    False: (AuditAction.ACCESS_GRANTED, AuditAction.ACCESS_MODIFIED, AuditAction.ACCESS_REVOKED),
    True: (
        AuditAction.CLIENT_ACCESS_GRANTED,
        AuditAction.CLIENT_ACCESS_MODIFIED,
        AuditAction.CLIENT_ACCESS_REVOKED,
    ),
}


def access_change_event(
    entity_type: Union[EntityType, str],
    entity_id: str,
    target_user_id: str,
    actor_id: Optional[str],
    old_access_level: Optional[Union[AccessLevel, str]] = None,
    new_access_level: Optional[Union[AccessLevel, str]] = None,
    client: bool = False,
    metadata: Optional[Dict[str, Any]] = None,
    revocation: bool = False,
) -> AuditEvent:
    """
    Build the event for one grant row changing.

    No old level means a grant, no new level means a revocation, both
    means a modification. Client grants use the CLIENT_ACCESS_* actions.
    A revocation whose removed level is unknown is flagged with
    revocation=True and records no before snapshot.
    """
    granted, modified, revoked = _GRANT_ACTIONS[client]
    if revocation:
        if new_access_level is not None:
            raise ValueError("A revocation has no new access level")
        action = revoked
    elif old_access_level is None and new_access_level is None:
        raise ValueError("A grant change needs an old or a new access level")
    elif old_access_level is None:
        action = granted
    elif new_access_level is None:
        action = revoked
    else:
        action = modified

    fields: Dict[str, Any] = {"targetUserId": target_user_id}
    if client:
        fields["clientUserId"] = target_user_id
    if new_access_level is not None:
        fields["accessLevel"] = AccessLevel(new_access_level)

    return AuditEvent(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=actor_id,
        metadata=_merge(metadata, **fields),
        old_value=_level_snapshot(old_access_level),
        new_value=_level_snapshot(new_access_level),
    )


async def log_access_granted(
    db, entity_type, entity_id, target_user_id, access_level, granted_by_id, metadata=None
):
    await AuditLogger(db).record(access_change_event(
        entity_type, entity_id, target_user_id, granted_by_id,
        new_access_level=access_level, metadata=metadata,
    ))


async def log_access_revoked(
    db, entity_type, entity_id, target_user_id, old_access_level, revoked_by_id, metadata=None
):
    await AuditLogger(db).record(access_change_event(
        entity_type, entity_id, target_user_id, revoked_by_id,
        old_access_level=old_access_level, metadata=metadata, revocation=True,
    ))


async def log_access_modified(
    db, entity_type, entity_id, target_user_id, old_access_level, new_access_level,
    modified_by_id, metadata=None,
):
    await AuditLogger(db).record(access_change_event(
        entity_type, entity_id, target_user_id, modified_by_id,
        old_access_level, new_access_level, metadata=metadata,
    ))


async def log_client_access_granted(
    db, project_id, client_user_id, access_level, granted_by_id, metadata=None,
    entity_type=EntityType.PROJECT,
):
    await AuditLogger(db).record(access_change_event(
        entity_type, project_id, client_user_id, granted_by_id,
        new_access_level=access_level, client=True, metadata=metadata,
    ))


async def log_client_access_revoked(
    db, project_id, client_user_id, revoked_by_id, old_access_level=None, metadata=None,
    entity_type=EntityType.PROJECT,
):
    await AuditLogger(db).record(access_change_event(
        entity_type, project_id, client_user_id, revoked_by_id,
        old_access_level=old_access_level, client=True, metadata=metadata,
        revocation=True,
    ))


async def log_client_access_modified(
    db, project_id, client_user_id, old_access_level, new_access_level, modified_by_id,
    metadata=None, entity_type=EntityType.PROJECT,
):
    await AuditLogger(db).record(access_change_event(
        entity_type, project_id, client_user_id, modified_by_id,
        old_access_level, new_access_level, client=True, metadata=metadata,
    ))


# ==================== PRO Requests ====================


async def log_pro_request_submitted(db, request_id, user_id, request_type, metadata=None):
    await log_audit_event(
        db, AuditAction.PRO_REQUEST_SUBMITTED, EntityType.PRO_REQUEST, request_id,
        user_id, _merge(metadata, requestType=request_type),
    )


async def log_face_recognition_requested(db, album_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.FACE_RECOGNITION_REQUESTED, EntityType.ALBUM, album_id,
        user_id, metadata,
    )


async def log_watermark_requested(db, album_id, user_id, metadata=None):
    await log_audit_event(
        db, AuditAction.WATERMARK_REQUESTED, EntityType.ALBUM, album_id, user_id, metadata
    )


# ==================== System ====================


async def log_settings_updated(db, settings_key, user_id, old_value=None, new_value=None):
    await log_audit_event(
        db, AuditAction.SETTINGS_UPDATED, EntityType.SETTINGS, settings_key, user_id,
        old_value=old_value, new_value=new_value,
    )
