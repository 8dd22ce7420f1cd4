# Overview: Service-layer operations for the audit log; append-only.

from __future__ import annotations

from ..extensions import db
from ..models import AuditLogEntry
"""
medbill Audit Log Invariants (authoritative)

- Append-only: no updates or deletes of existing entries.
- Entries are written inside the same DB transaction as the action they record.
- No domain logic here.
"""


def append_audit_event(
    *,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    user_id: int | None = None,
    description: str | None = None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=(description or "")[:255] or None,
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def audit_trail(entity_type: str, entity_id: int) -> list[AuditLogEntry]:
    return (
        db.session.query(AuditLogEntry)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLogEntry.id.asc())
        .all()
    )
