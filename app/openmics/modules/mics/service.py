from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import Any, NoReturn

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from app.openmics.audit import append_entry, list_by_record
from app.openmics.db import atomic
from app.openmics.errors import NotFound, Unauthorized, ValidationError, VersionConflict
from app.openmics.modules.mics.models import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    Mic,
    MicAuditEntry,
)

logger = logging.getLogger(__name__)

MAX_RECURRENCE_LENGTH = 512
# Width of mics.last_edited_by and mic_audit.changed_by (an email fits).
MAX_ACTOR_LENGTH = 320

Document = dict[str, Any]
Predicate = Callable[[Document], bool]


def require_actor(actor: str | None) -> str:
    """Actor gate: every mutation names who is doing it. The value is stored as given."""
    if not isinstance(actor, str) or not actor.strip():
        raise Unauthorized("An authenticated actor is required for this operation.")
    if len(actor) > MAX_ACTOR_LENGTH:
        raise Unauthorized(f"Actor identity is longer than {MAX_ACTOR_LENGTH} characters.")
    return actor


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def validate_payload(payload: Any) -> tuple[Document, date | None, str | None]:
    """
    Structural checks only; field content is the caller's business.
    Returns a detached copy of the document plus the promoted columns.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be a JSON object.")
    if any(not isinstance(k, str) for k in payload):
        raise ValidationError("Payload field names must be strings.")
    try:
        data = json.loads(json.dumps(dict(payload), allow_nan=False))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Payload is not serializable: {e}") from e

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required.")

    raw_start = data.get("startDate")
    if raw_start is not None and not isinstance(raw_start, str):
        raise ValidationError("startDate must be a YYYY-MM-DD string.")
    try:
        start_date = parse_date(raw_start)
    except ValueError as e:
        raise ValidationError(f"startDate is not a valid date: {raw_start!r}") from e

    recurrence = data.get("recurrence")
    if recurrence is not None and not isinstance(recurrence, str):
        raise ValidationError("recurrence must be a string.")
    recurrence = (recurrence or "").strip() or None
    if recurrence and len(recurrence) > MAX_RECURRENCE_LENGTH:
        raise ValidationError(f"recurrence is longer than {MAX_RECURRENCE_LENGTH} characters.")

    return data, start_date, recurrence


def _check_expected_version(expected_version: Any) -> int:
    if isinstance(expected_version, bool) or not isinstance(expected_version, int) or expected_version < 0:
        raise ValidationError("Expected version must be a non-negative integer.")
    return expected_version


def _raise_gate_failure(s: Session, mic_id: str, expected: int) -> NoReturn:
    # The conditional write matched nothing: either the row is gone or it moved on.
    current = s.execute(select(Mic.edit_version).where(Mic.id == mic_id)).scalar_one_or_none()
    if current is None:
        raise NotFound(mic_id)
    logger.warning("mic.version_conflict id=%s expected=%s actual=%s", mic_id, expected, current)
    raise VersionConflict(mic_id, expected, current)


def create_mic(s: Session, payload: Document, actor: str) -> Mic:
    """Create a new listing at version 0."""
    actor = require_actor(actor)
    data, start_date, recurrence = validate_payload(payload)

    with atomic(s):
        now = datetime.utcnow()
        mic = Mic(
            data=data,
            start_date=start_date,
            recurrence=recurrence,
            edit_version=0,
            last_edited_by=actor,
            created_at=now,
            updated_at=now,
        )
        s.add(mic)
        s.flush()
        append_entry(s, mic_id=mic.id, action=ACTION_CREATE, edit_version=0, actor=actor, data=data, occurred_at=now)

    logger.info("mic.create id=%s version=0 actor=%s", mic.id, actor)
    return mic


def get_mic(s: Session, mic_id: str) -> Mic:
    with atomic(s):
        mic = s.get(Mic, mic_id, populate_existing=True)
    if mic is None:
        raise NotFound(mic_id)
    return mic


def list_mics(
    s: Session,
    *,
    start: date | None = None,
    end: date | None = None,
    predicate: Predicate | None = None,
) -> list[Mic]:
    """
    Listings ordered by start date (undated last), then creation.

    Date window: anything starting on/before `end`; one-off listings must also
    start on/after `start`, recurring ones only need to have begun. Undated
    listings drop out as soon as a bound is given. `predicate` then filters on
    the document itself.
    """
    if start and end and start > end:
        raise ValidationError("start must not be after end.")

    stmt = select(Mic)
    if end is not None:
        stmt = stmt.where(Mic.start_date.is_not(None), Mic.start_date <= end)
    if start is not None:
        stmt = stmt.where(Mic.start_date.is_not(None), or_(Mic.recurrence.is_not(None), Mic.start_date >= start))
    stmt = stmt.order_by(Mic.start_date.asc().nulls_last(), Mic.created_at.asc(), Mic.id.asc())

    with atomic(s):
        mics = list(s.scalars(stmt.execution_options(populate_existing=True)))
    if predicate is not None:
        mics = [m for m in mics if predicate(m.data)]
    return mics


def update_mic(s: Session, mic_id: str, expected_version: int, payload: Document, actor: str) -> Mic:
    """
    Replace the listing document if the caller saw the current version.
    The version check and the write are one conditional UPDATE.
    """
    actor = require_actor(actor)
    expected = _check_expected_version(expected_version)
    data, start_date, recurrence = validate_payload(payload)
    new_version = expected + 1

    with atomic(s):
        now = datetime.utcnow()
        result = s.execute(
            update(Mic)
            .where(Mic.id == mic_id, Mic.edit_version == expected)
            .values(
                data=data,
                start_date=start_date,
                recurrence=recurrence,
                edit_version=new_version,
                last_edited_by=actor,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            _raise_gate_failure(s, mic_id, expected)
        append_entry(s, mic_id=mic_id, action=ACTION_UPDATE, edit_version=new_version, actor=actor, data=data, occurred_at=now)
        mic = s.get(Mic, mic_id, populate_existing=True)

    logger.info("mic.update id=%s version=%s actor=%s", mic_id, new_version, actor)
    return mic


def delete_mic(s: Session, mic_id: str, actor: str, *, expected_version: int | None = None) -> None:
    """
    Remove the listing; its audit trail stays.
    Without expected_version the delete is conditional on the version read
    here, so a concurrent update turns into a VersionConflict.
    """
    actor = require_actor(actor)
    if expected_version is not None:
        expected_version = _check_expected_version(expected_version)

    with atomic(s):
        mic = s.get(Mic, mic_id, populate_existing=True)
        if mic is None:
            raise NotFound(mic_id)
        current = mic.edit_version
        if expected_version is not None and current != expected_version:
            logger.warning("mic.version_conflict id=%s expected=%s actual=%s", mic_id, expected_version, current)
            raise VersionConflict(mic_id, expected_version, current)

        snapshot = mic.data
        s.expunge(mic)
        result = s.execute(
            delete(Mic)
            .where(Mic.id == mic_id, Mic.edit_version == current)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            _raise_gate_failure(s, mic_id, current)
        append_entry(s, mic_id=mic_id, action=ACTION_DELETE, edit_version=current + 1, actor=actor, data=snapshot)

    logger.info("mic.delete id=%s version=%s actor=%s", mic_id, current + 1, actor)


def list_audit(s: Session, mic_id: str) -> list[MicAuditEntry]:
    with atomic(s):
        return list_by_record(s, mic_id)
