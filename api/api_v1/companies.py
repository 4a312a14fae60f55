from __future__ import annotations

import re
import time

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

import db
from api.schemas.api_responses import (
    CompanySummaryOut,
    SearchParams,
    SearchResponse,
    StatsResponse,
    error_body,
)
from config import get_setting
from logging_utils import get_logger

logger = get_logger(__name__)

companies_v1_bp = Blueprint("companies_v1", __name__)


def _identifier_re() -> re.Pattern[str]:
    return re.compile(rf"^\d{{1,{int(get_setting('IDENTIFIER_WIDTH'))}}}$")


@companies_v1_bp.route("/search", methods=["GET"])
def search_companies():
    """Search companies by name or identifier.

    Query params:
    - q: 2-100 characters after trimming (all digits: identifier prefix search)
    - limit: optional, default 20, clamped to 1..50
    - includeInactive: "true" to include terminated companies
    """

    started = time.perf_counter()
    try:
        params = SearchParams(
            q=request.args.get("q") or "",
            limit=request.args.get("limit"),
            include_inactive=request.args.get("includeInactive"),
        )
    except ValidationError as e:
        too_long = any(err.get("type") == "string_too_long" for err in e.errors())
        if too_long:
            body = error_body(
                "query_too_long",
                f"Query must not exceed {get_setting('QUERY_MAX_LENGTH')} characters",
            )
        else:
            body = error_body(
                "invalid_query",
                f"Query must be at least {get_setting('QUERY_MIN_LENGTH')} characters",
            )
        return jsonify(body), 400

    service = current_app.extensions["company_search"]
    session = db.SessionLocal()
    try:
        results = service.search(
            session,
            params.q,
            limit=params.limit,
            include_inactive=params.include_inactive,
        )
    finally:
        session.close()

    payload = SearchResponse(
        results=[CompanySummaryOut(**r.as_dict()) for r in results],
        query=params.q,
        count=len(results),
        timing=int((time.perf_counter() - started) * 1000),
    )
    return jsonify(payload.model_dump(mode="json")), 200


@companies_v1_bp.route("/company/<identifier>", methods=["GET"])
def company_detail(identifier: str):
    """Company by identifier, enriched with RÚZ/RPO data where available."""

    ident = (identifier or "").strip()
    width = int(get_setting("IDENTIFIER_WIDTH"))
    if not _identifier_re().match(ident):
        return (
            jsonify(error_body("invalid_identifier", f"Identifier must be 1-{width} digits")),
            400,
        )

    padded = ident.zfill(width)
    service = current_app.extensions["company_detail"]
    session = db.SessionLocal()
    try:
        detail = service.get_detail(session, padded)
    finally:
        session.close()

    if detail is None:
        return (
            jsonify(error_body("not_found", f"Company with identifier {padded} not found")),
            404,
        )
    return jsonify(detail), 200


@companies_v1_bp.route("/stats", methods=["GET"])
def stats():
    service = current_app.extensions["company_search"]
    session = db.SessionLocal()
    try:
        counts = service.get_count(session)
    finally:
        session.close()
    return jsonify(StatsResponse(**counts).model_dump()), 200
