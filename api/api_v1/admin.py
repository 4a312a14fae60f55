from __future__ import annotations

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from api.jobs.manager import import_job
from api.schemas.api_responses import (
    ImportTriggerRequest,
    ImportTriggerResponse,
    fail,
    ok,
)

admin_v1_bp = Blueprint("admin_v1", __name__, url_prefix="/admin")


@admin_v1_bp.post("/import")
def trigger_import():
    """Trigger a registry import.

    Body: ``{"mode": "full" | "test"}`` (default ``test``). A full import runs in
    the background; its outcome shows up in ``GET /admin/jobs`` and the logs.
    """

    try:
        body = ImportTriggerRequest(**(request.get_json(silent=True) or {}))
    except (TypeError, ValidationError):
        return jsonify(fail("mode must be 'full' or 'test'", code="invalid_mode")), 400

    accepted, payload = import_job.start(body.mode)
    data = ImportTriggerResponse(**payload).model_dump()
    if not accepted:
        return jsonify(fail(payload["message"], code="import_running", details=data)), 409
    return jsonify(ok(data)), 200


@admin_v1_bp.get("/jobs")
def get_jobs():
    """Return current background job state for the admin UI."""

    return jsonify(ok({"registry_import": import_job.get_state()}))
