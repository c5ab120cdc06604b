"""Media tool routes: /api/tools/compress-<kind> and /api/tools/convert-<kind>."""

from flask import Blueprint

from convertflix.services import tool_service

tool_bp = Blueprint("tools", __name__, url_prefix="/api/tools")

tool_bp.add_url_rule("/compress-<kind>", endpoint="compress", view_func=tool_service.compress, methods=["POST"])
tool_bp.add_url_rule("/convert-<kind>", endpoint="convert", view_func=tool_service.convert, methods=["POST"])
tool_bp.add_url_rule(
    "/compress-<kind>",
    endpoint="compress_usage",
    view_func=tool_service.tool_usage,
    methods=["GET"],
    defaults={"operation": "compress"},
)
tool_bp.add_url_rule(
    "/convert-<kind>",
    endpoint="convert_usage",
    view_func=tool_service.tool_usage,
    methods=["GET"],
    defaults={"operation": "convert"},
)
