from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Date, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.openmics.models import Base, new_id

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
DocumentType = JSON().with_variant(JSONB(), "postgresql")

ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"
AUDIT_ACTIONS = (ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE)


class Mic(Base):
    __tablename__ = "mics"
    __table_args__ = (
        CheckConstraint("edit_version >= 0", name="ck_mics_edit_version_nonnegative"),
        Index("idx_mics_start_date", "start_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # Listing document; field schema belongs to the API layer.
    data: Mapped[dict[str, Any]] = mapped_column(DocumentType, nullable=False, default=dict)

    # Promoted from data on every write (sorting / date-window filtering).
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    recurrence: Mapped[str | None] = mapped_column(String(512), nullable=True)  # e.g. "FREQ=WEEKLY;BYDAY=MO"

    edit_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_edited_by: Mapped[str] = mapped_column(String(320), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class MicAuditEntry(Base):
    """
    Append-only history of listing mutations.
    mic_id is deliberately not a foreign key: entries outlive the listing.
    """

    __tablename__ = "mic_audit"
    __table_args__ = (
        CheckConstraint("action_type IN ('CREATE', 'UPDATE', 'DELETE')", name="ck_mic_audit_action_type"),
        Index("idx_mic_audit_mic_id", "mic_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    mic_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action_type: Mapped[str] = mapped_column(String(16), nullable=False)
    edit_version: Mapped[int] = mapped_column(Integer, nullable=False)  # version right after the action

    changed_by: Mapped[str] = mapped_column(String(320), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    data: Mapped[dict[str, Any] | None] = mapped_column(DocumentType, nullable=True)  # snapshot after the action
