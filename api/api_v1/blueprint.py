from flask import Blueprint

from api.api_v1.admin import admin_v1_bp
from api.api_v1.companies import companies_v1_bp


def create_api_v1_blueprint(*, enable_admin: bool = True) -> Blueprint:
    """Create the /api/v1 blueprint and register sub-blueprints."""

    v1_bp = Blueprint("api_v1", __name__, url_prefix="/api/v1")
    v1_bp.register_blueprint(companies_v1_bp)
    if enable_admin:
        v1_bp.register_blueprint(admin_v1_bp)
    return v1_bp
