from __future__ import annotations

import copy

from apispec import APISpec
from apispec_webframeworks.flask import FlaskPlugin
from flask import Blueprint, Flask, current_app, jsonify

from app.openmics.auth import login_post, logout, me
from app.openmics.modules.mics import api as mics_api
from app.openmics.routes import health

bp = Blueprint("apidocs", __name__)

API_TITLE = "Open Mics API"
API_VERSION = "0.0.1"

MIC_SCHEMA = {
    "type": "object",
    "description": "Listing fields at the top level, plus server-owned keys.",
    "required": ["id", "name", "editVersion"],
    "properties": {
        "id": {"type": "string", "format": "uuid", "readOnly": True},
        "name": {"type": "string"},
        "location": {"type": "string"},
        "contactInfo": {"type": "string"},
        "recurrence": {"type": "string", "example": "FREQ=WEEKLY;BYDAY=MO"},
        "signupInstructions": {"type": "string"},
        "showTime": {"type": "string"},
        "startDate": {"type": "string", "format": "date"},
        "editVersion": {"type": "integer", "minimum": 0},
        "lastEditedBy": {"type": "string", "readOnly": True},
        "createdAt": {"type": "string", "format": "date-time", "readOnly": True},
        "updatedAt": {"type": "string", "format": "date-time", "readOnly": True},
    },
    "additionalProperties": True,
}

AUDIT_ENTRY_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "integer"},
        "micId": {"type": "string"},
        "action": {"type": "string", "enum": ["CREATE", "UPDATE", "DELETE"]},
        "editVersion": {"type": "integer"},
        "changedBy": {"type": "string"},
        "changedAt": {"type": "string", "format": "date-time"},
        "data": {"type": "object", "nullable": True},
    },
}

ERROR_SCHEMA = {
    "type": "object",
    "properties": {
        "error": {"type": "string", "example": "VersionConflict"},
        "message": {"type": "string"},
        "currentVersion": {"type": "integer"},
    },
}

MIC_ID_PARAM = {"in": "path", "name": "mic_id", "required": True, "schema": {"type": "string"}}


def _json(schema: dict) -> dict:
    return {"application/json": {"schema": schema}}


def _ref(name: str) -> dict:
    return {"$ref": f"#/components/schemas/{name}"}


def _error(description: str) -> dict:
    return {"description": description, "content": _json(_ref("Error"))}


def _mic_response(description: str) -> dict:
    body = {"type": "object", "properties": {"status": {"type": "string"}, "mic": _ref("Mic")}}
    return {"description": description, "content": _json(body)}


def _operations() -> list[tuple[object, dict]]:
    return [
        (health, {"get": {"summary": "Check API health status", "responses": {"200": {"description": "API is healthy"}}}}),
        (
            login_post,
            {
                "post": {
                    "summary": "Authenticate a user",
                    "requestBody": {
                        "required": True,
                        "content": _json(
                            {
                                "type": "object",
                                "required": ["email", "password"],
                                "properties": {"email": {"type": "string"}, "password": {"type": "string"}},
                            }
                        ),
                    },
                    "responses": {
                        "200": {"description": "Authentication successful"},
                        "401": _error("Invalid credentials"),
                        "429": _error("Too many attempts"),
                    },
                }
            },
        ),
        (logout, {"post": {"summary": "End the session", "responses": {"200": {"description": "Logged out"}}}}),
        (me, {"get": {"summary": "Current user", "responses": {"200": {"description": "Current user"}, "401": _error("Login required")}}}),
        (
            mics_api.mics_list,
            {
                "get": {
                    "summary": "Get all open mics within a date range",
                    "parameters": [
                        {"in": "query", "name": "start", "schema": {"type": "string", "format": "date"}},
                        {"in": "query", "name": "end", "schema": {"type": "string", "format": "date"}},
                    ],
                    "responses": {
                        "200": {
                            "description": "List of open mics",
                            "content": _json({"type": "object", "properties": {"mics": {"type": "array", "items": _ref("Mic")}}}),
                        },
                        "400": _error("Bad date"),
                    },
                }
            },
        ),
        (
            mics_api.mics_create,
            {
                "post": {
                    "summary": "Create a new open mic",
                    "requestBody": {"required": True, "content": _json(_ref("Mic"))},
                    "responses": {
                        "201": _mic_response("Open mic created"),
                        "400": _error("Malformed listing"),
                        "401": _error("Login required"),
                    },
                }
            },
        ),
        (
            mics_api.mics_detail,
            {
                "get": {
                    "summary": "Get a specific open mic by ID",
                    "parameters": [MIC_ID_PARAM],
                    "responses": {"200": _mic_response("Open mic details"), "404": _error("Open mic not found")},
                }
            },
        ),
        (
            mics_api.mics_update,
            {
                "put": {
                    "summary": "Update an existing open mic",
                    "description": "Send the listing back with the editVersion it was fetched at.",
                    "parameters": [MIC_ID_PARAM],
                    "requestBody": {"required": True, "content": _json(_ref("Mic"))},
                    "responses": {
                        "200": _mic_response("Open mic updated"),
                        "400": _error("Malformed listing or missing editVersion"),
                        "401": _error("Login required"),
                        "404": _error("Open mic not found"),
                        "409": _error("Stale editVersion"),
                    },
                }
            },
        ),
        (
            mics_api.mics_delete,
            {
                "delete": {
                    "summary": "Delete an open mic",
                    "parameters": [
                        MIC_ID_PARAM,
                        {"in": "query", "name": "editVersion", "schema": {"type": "integer", "minimum": 0}},
                    ],
                    "responses": {
                        "200": {"description": "Open mic deleted"},
                        "401": _error("Login required"),
                        "404": _error("Open mic not found"),
                        "409": _error("Stale editVersion"),
                    },
                }
            },
        ),
        (
            mics_api.mics_audit,
            {
                "get": {
                    "summary": "Change history of an open mic, oldest first",
                    "parameters": [MIC_ID_PARAM],
                    "responses": {
                        "200": {
                            "description": "Audit entries",
                            "content": _json(
                                {"type": "object", "properties": {"entries": {"type": "array", "items": _ref("AuditEntry")}}}
                            ),
                        }
                    },
                }
            },
        ),
    ]


def build_spec(app: Flask) -> APISpec:
    spec = APISpec(
        title=API_TITLE,
        version=API_VERSION,
        openapi_version="3.0.3",
        plugins=[FlaskPlugin()],
    )
    spec.components.schema("Mic", copy.deepcopy(MIC_SCHEMA))
    spec.components.schema("AuditEntry", copy.deepcopy(AUDIT_ENTRY_SCHEMA))
    spec.components.schema("Error", copy.deepcopy(ERROR_SCHEMA))
    for view, operations in _operations():
        spec.path(view=view, operations=copy.deepcopy(operations), app=app)
    return spec


@bp.get("/api-docs")
def api_docs():
    doc = current_app.extensions.get("openapi_spec")
    if doc is None:
        doc = build_spec(current_app._get_current_object()).to_dict()
        current_app.extensions["openapi_spec"] = doc
    return jsonify(doc)
