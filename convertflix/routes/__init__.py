"""Route blueprints."""

from convertflix.routes.admin_routes import admin_bp
from convertflix.routes.tool_routes import tool_bp
from convertflix.routes.web_routes import web_bp

__all__ = ["admin_bp", "tool_bp", "web_bp"]
