from __future__ import annotations

from datetime import date

from flask import Blueprint, jsonify, request

from app.openmics.db import db_session
from app.openmics.errors import ValidationError
from app.openmics.modules.mics.models import Mic, MicAuditEntry
from app.openmics.modules.mics.service import (
    create_mic,
    delete_mic,
    get_mic,
    list_audit,
    list_mics,
    parse_date,
    update_mic,
)
from app.openmics.rbac import current_actor, require_user

bp = Blueprint("mics", __name__)

VERSION_KEY = "editVersion"
# Echoed by mic_to_dict; dropped from incoming bodies so a fetched mic can be sent back as-is.
SERVER_KEYS = ("id", VERSION_KEY, "lastEditedBy", "createdAt", "updatedAt")


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def mic_to_dict(mic: Mic) -> dict:
    """Listing fields at the top level; server-owned keys win over same-named fields."""
    body = dict(mic.data)
    body.update(
        {
            "id": mic.id,
            VERSION_KEY: mic.edit_version,
            "lastEditedBy": mic.last_edited_by,
            "createdAt": _iso(mic.created_at),
            "updatedAt": _iso(mic.updated_at),
        }
    )
    return body


def audit_entry_to_dict(entry: MicAuditEntry) -> dict:
    return {
        "id": entry.id,
        "micId": entry.mic_id,
        "action": entry.action_type,
        VERSION_KEY: entry.edit_version,
        "changedBy": entry.changed_by,
        "changedAt": _iso(entry.changed_at),
        "data": entry.data,
    }


def _query_date(name: str) -> date | None:
    raw = request.args.get(name)
    try:
        return parse_date(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be YYYY-MM-DD, got {raw!r}") from e


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def _listing_fields(body: dict) -> dict:
    return {k: v for k, v in body.items() if k not in SERVER_KEYS}


def _parse_version(raw) -> int:
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    raise ValidationError(f"{VERSION_KEY} must be a non-negative integer.")


@bp.get("/mics")
def mics_list():
    start = _query_date("start")
    end = _query_date("end")
    s = db_session()
    mics = list_mics(s, start=start, end=end)
    return jsonify(
        {
            "mics": [mic_to_dict(m) for m in mics],
            "start": _iso(start),
            "end": _iso(end),
        }
    )


@bp.post("/mics")
@require_user
def mics_create():
    payload = _listing_fields(_json_body())
    s = db_session()
    mic = create_mic(s, payload, current_actor())
    return jsonify({"status": "ok", "mic": mic_to_dict(mic)}), 201


@bp.get("/mics/<mic_id>")
def mics_detail(mic_id: str):
    s = db_session()
    mic = get_mic(s, mic_id)
    return jsonify({"status": "ok", "mic": mic_to_dict(mic)})


@bp.put("/mics/<mic_id>")
@require_user
def mics_update(mic_id: str):
    body = _json_body()
    if VERSION_KEY not in body:
        raise ValidationError(f"{VERSION_KEY} is required; fetch the mic first.")
    expected_version = _parse_version(body[VERSION_KEY])
    payload = _listing_fields(body)
    s = db_session()
    mic = update_mic(s, mic_id, expected_version, payload, current_actor())
    return jsonify({"status": "ok", "mic": mic_to_dict(mic)})


@bp.delete("/mics/<mic_id>")
@require_user
def mics_delete(mic_id: str):
    body = request.get_json(silent=True) or {}
    raw = request.args.get(VERSION_KEY)
    if raw is None and isinstance(body, dict):
        raw = body.get(VERSION_KEY)
    expected_version = _parse_version(raw) if raw is not None else None
    s = db_session()
    delete_mic(s, mic_id, current_actor(), expected_version=expected_version)
    return jsonify({"status": "ok", "id": mic_id})


@bp.get("/mics/<mic_id>/audit")
def mics_audit(mic_id: str):
    s = db_session()
    entries = list_audit(s, mic_id)
    return jsonify({"status": "ok", "entries": [audit_entry_to_dict(e) for e in entries]})
