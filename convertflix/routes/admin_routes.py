"""Admin dashboard routes."""

from flask import Blueprint

from convertflix.services import admin_service

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

admin_bp.add_url_rule("/stats", endpoint="stats", view_func=admin_service.stats, methods=["GET"])
admin_bp.add_url_rule("/activities", endpoint="activities", view_func=admin_service.activities, methods=["GET"])
admin_bp.add_url_rule("/jobs", endpoint="jobs", view_func=admin_service.jobs, methods=["GET"])
admin_bp.add_url_rule("/settings", endpoint="get_settings", view_func=admin_service.get_settings, methods=["GET"])
admin_bp.add_url_rule("/settings", endpoint="update_settings", view_func=admin_service.update_settings, methods=["PUT"])
admin_bp.add_url_rule(
    "/retention/run",
    endpoint="run_retention",
    view_func=admin_service.run_retention,
    methods=["POST"],
)
admin_bp.add_url_rule("/stream", endpoint="stream", view_func=admin_service.stream, methods=["GET"])
