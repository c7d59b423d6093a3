from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from sqlalchemy import event, select
from sqlalchemy.orm import Session

from app.openmics.modules.mics.models import AUDIT_ACTIONS, MicAuditEntry


class AuditImmutableError(RuntimeError):
    pass


def append_entry(
    s: Session,
    *,
    mic_id: str,
    action: str,
    edit_version: int,
    actor: str,
    data: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> MicAuditEntry:
    """
    Append-only audit helper. Only the store's mutations call this, inside
    their own unit of work, so the entry commits or rolls back with them.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")
    entry = MicAuditEntry(
        mic_id=mic_id,
        action_type=action,
        edit_version=edit_version,
        changed_by=actor,
        changed_at=occurred_at or datetime.utcnow(),
        data=copy.deepcopy(data) if data is not None else None,
    )
    s.add(entry)
    return entry


def list_by_record(s: Session, mic_id: str) -> list[MicAuditEntry]:
    """Oldest first. Works for deleted listings; unknown ids give []."""
    stmt = select(MicAuditEntry).where(MicAuditEntry.mic_id == mic_id).order_by(MicAuditEntry.id.asc())
    return list(s.scalars(stmt))


@event.listens_for(MicAuditEntry, "before_update")
def _refuse_update(mapper, connection, target):  # type: ignore[no-redef]
    raise AuditImmutableError(f"Audit entry {target.id} is immutable.")


@event.listens_for(MicAuditEntry, "before_delete")
def _refuse_delete(mapper, connection, target):  # type: ignore[no-redef]
    raise AuditImmutableError(f"Audit entry {target.id} cannot be deleted.")
