# Overview: JSON envelope helpers shared by every blueprint.

"""
Every API response uses one envelope:

    {"success": true,  "data": <payload>, "message": "..."}   # message optional
    {"success": false, "data": null,      "message": "<why>"}
"""
from __future__ import annotations

from typing import Any

from flask import current_app, jsonify, request

from .extensions import db
from .validation import error_status


def ok(data: Any = None, message: str | None = None, status: int = 200):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def fail(message: str, status: int = 400, data: Any = None):
    return jsonify({"success": False, "data": data, "message": message}), status


def service_error(exc: Exception):
    """Roll back and map a service exception to its envelope and status."""
    db.session.rollback()
    status = error_status(exc)
    if status == 500:
        current_app.logger.exception("Unexpected error")
        return fail("Internal server error", 500)
    return fail(str(exc), status)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
