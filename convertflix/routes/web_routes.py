"""Health and download routes."""

from flask import Blueprint

from convertflix.services import admin_service, tool_service

web_bp = Blueprint("web", __name__)


@web_bp.get("/api/health")
def health():
    return admin_service.health()


@web_bp.get("/uploads/<filename>")
def download(filename):
    return tool_service.download(filename)
