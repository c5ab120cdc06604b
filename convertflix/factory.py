"""Flask app factory."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from flask import Flask

from convertflix import bootstrap
from convertflix.config import load_runtime_config
from convertflix.core.settings import RuntimeSettings, describe_settings, get_runtime_settings
from convertflix.engine.candidates import KindEncoder
from convertflix.routes.admin_routes import admin_bp
from convertflix.routes.tool_routes import tool_bp
from convertflix.routes.web_routes import web_bp
from convertflix.services import runtime as runtime_service
from convertflix.services import tool_service

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[RuntimeSettings] = None,
    encoders: Optional[Dict[str, KindEncoder]] = None,
    start_background: bool = True,
) -> Flask:
    """Create and configure the Flask application.

    `settings` and `encoders` default to the environment and the native
    tools; tests pass their own.
    """
    app = Flask(__name__)

    settings = settings or get_runtime_settings()
    runtime_config = load_runtime_config(settings)
    app.config["MAX_CONTENT_LENGTH"] = runtime_config.max_content_length

    runtime = runtime_service.build_runtime(settings, encoders=encoders)
    runtime_service.attach(app, runtime)
    logger.info("Effective configuration: %s", describe_settings(settings))

    app.register_blueprint(web_bp)
    app.register_blueprint(tool_bp)
    app.register_blueprint(admin_bp)
    tool_service.register_error_handlers(app)

    if start_background:
        bootstrap.bootstrap_runtime(runtime)
    return app
