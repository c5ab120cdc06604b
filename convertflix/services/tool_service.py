"""Flask views for the media tools: upload intake, job execution, downloads."""

import logging
import sys
from functools import wraps
from pathlib import Path
from typing import Optional, Tuple

from flask import jsonify, request, send_file, has_request_context
from werkzeug.exceptions import RequestEntityTooLarge, HTTPException, NotFound
from werkzeug.utils import secure_filename

from convertflix.core.exceptions import (
    FileTooLargeError,
    InvalidRequestError,
    MediaProcessingError,
    UnsupportedFormatError,
)
from convertflix.core.utils import safe_unlink, unique_upload_name
from convertflix.engine.presets import MEDIA_KINDS
from convertflix.services.runtime import get_runtime
from convertflix.workers.executor import COMPRESS, CONVERT, JobRequest

# Config
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

UPLOAD_FIELD = "file"
IMAGE_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff", ".avif", ".ico",
}


def register_error_handlers(app) -> None:
    """Register HTTP and framework error handlers."""
    app.register_error_handler(RequestEntityTooLarge, handle_large_file)
    app.register_error_handler(MediaProcessingError, handle_media_error)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_error)


def create_error_response(error: Exception, status_code: int = 500):
    """Create standardized error response.

    Returns both 'error' (for simple clients) and 'error_type'/'error_message'.
    """
    if isinstance(error, MediaProcessingError):
        return jsonify({
            "success": False,
            "error": error.message,
            "error_type": error.error_type,
            "error_message": error.message,
        }), status_code

    if isinstance(error, HTTPException):
        message = error.description or error.name
        error_type = error.name.replace(" ", "")
    else:
        message = "Internal server error"
        error_type = "UnknownError"
    return jsonify({
        "success": False,
        "error": message,
        "error_type": error_type,
        "error_message": message,
    }), status_code


def require_auth(f):
    """Decorator to require Bearer token authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_token = get_runtime().settings.api_token
        if not api_token:
            return f(*args, **kwargs)  # No token configured = open access

        auth_header = request.headers.get('Authorization')
        if not auth_header:
            logger.warning(f"Missing Authorization header on {request.path}")
            return jsonify({"success": False, "error": "Missing Authorization header"}), 401

        if not auth_header.startswith('Bearer '):
            logger.warning(f"Invalid Authorization format on {request.path}")
            return jsonify({"success": False, "error": "Authorization must use Bearer token format"}), 401

        if auth_header[7:] != api_token:
            logger.warning(f"Invalid token on {request.path}")
            return jsonify({"success": False, "error": "Invalid token"}), 403

        return f(*args, **kwargs)
    return decorated


def public_base_url() -> str:
    """BASE_URL when configured, else the current request's root (empty outside a request)."""
    base = get_runtime().settings.base_url
    if not base and has_request_context():
        base = request.url_root.rstrip('/')
    return base


def _check_kind(kind: str) -> None:
    if kind not in MEDIA_KINDS:
        raise UnsupportedFormatError.for_kind(kind)


def _save_upload(kind: str) -> Tuple[Path, str]:
    """Store the multipart upload under a collision-resistant name.

    Raises:
        InvalidRequestError: no file in the request.
        UnsupportedFormatError: an image route received a non-image extension.
        FileTooLargeError: the file exceeds the per-kind ceiling.
    """
    upload = request.files.get(UPLOAD_FIELD)
    if upload is None or not upload.filename:
        raise InvalidRequestError(f"No {kind} file uploaded. Send it in the '{UPLOAD_FIELD}' form field.")

    original_name = secure_filename(upload.filename) or f"upload.{kind}"
    suffix = Path(original_name).suffix.lower()
    if kind == "image" and suffix not in IMAGE_EXTENSIONS:
        raise UnsupportedFormatError("Only image files are allowed")

    settings = get_runtime().settings
    settings.upload_folder.mkdir(parents=True, exist_ok=True)
    upload_path = settings.upload_folder / unique_upload_name(suffix)
    upload.save(str(upload_path))

    size_mb = upload_path.stat().st_size / (1024 * 1024)
    limit_mb = settings.size_limits.for_kind(kind)
    if limit_mb and size_mb > limit_mb:
        safe_unlink(upload_path, retry_delay=settings.delete_retry_delay, label="upload")
        raise FileTooLargeError.for_kind(kind, size_mb, limit_mb)

    logger.info(f"[upload] Received {original_name} as {upload_path.name} ({size_mb:.2f}MB)")
    return upload_path, original_name


def _run_job(kind: str, operation: str, target_format: Optional[str] = None):
    runtime = get_runtime()
    upload_path, original_name = _save_upload(kind)
    job_request = JobRequest(
        input_path=upload_path,
        kind=kind,
        original_extension=upload_path.suffix.lower(),
        requested_preset=request.values.get("speed"),
        header_preset=request.headers.get("X-Speed-Preset"),
        size_bytes=upload_path.stat().st_size,
        operation=operation,
        target_format=target_format,
        original_name=original_name,
        user_id=request.headers.get("X-User-Id") or "anonymous",
    )
    try:
        result = runtime.executor.execute(job_request)
    except Exception:
        # a failed job has no deliverable; drop the upload with it
        safe_unlink(upload_path, retry_delay=runtime.settings.delete_retry_delay, label="upload")
        raise
    return jsonify(result.to_response(public_base_url()))


# Error handlers
def handle_large_file(e):
    message = "File too large"
    return jsonify({
        "success": False,
        "error": message,
        "error_type": "FileTooLarge",
        "error_message": message,
    }), 413


def handle_media_error(e):
    logger.warning("%s on %s %s: %s", e.error_type, request.method, request.path, e.message)
    return create_error_response(e, e.status_code)


def handle_http_exception(e):
    if isinstance(e, NotFound):
        logger.info("404 %s %s", request.method, request.path)
    else:
        logger.warning("HTTP %s on %s %s: %s", e.code, request.method, request.path, e.description)
    return create_error_response(e, e.code or 400)


def handle_error(e):
    logger.exception("Unhandled error")
    return create_error_response(e, 500)


# Routes
def compress(kind: str):
    """Compress one uploaded file.

    Accepts multipart/form-data with a 'file' field. The speed preset comes
    from the 'speed' form/query value, then the X-Speed-Preset header, then
    the server default.
    """
    _check_kind(kind)
    return _run_job(kind, COMPRESS)


def convert(kind: str):
    """Convert one uploaded file to the 'targetFormat' form value."""
    _check_kind(kind)
    target = (request.values.get("targetFormat") or "").strip().lower().lstrip(".")
    if not target:
        raise InvalidRequestError("Invalid target format")
    get_runtime().encoder.validate(kind, CONVERT, target)
    return _run_job(kind, CONVERT, target)


def tool_usage(kind: str, operation: str):
    """GET on a tool route: explain how to call it."""
    hint = f"POST multipart/form-data with a '{UPLOAD_FIELD}' field to /api/tools/{operation}-{kind}"
    if operation == CONVERT:
        hint += " and a 'targetFormat' field"
    return jsonify({
        "success": False,
        "error": "Method not allowed",
        "error_type": "MethodNotAllowed",
        "error_message": hint,
    }), 405


def download(filename: str):
    """Serve a processed file from the uploads folder."""
    upload_folder = get_runtime().settings.upload_folder

    # Security: Prevent path traversal attacks
    safe_filename = secure_filename(filename)
    if not safe_filename or safe_filename != filename:
        logger.warning(f"[download] Invalid filename rejected: {filename}")
        return jsonify({"success": False, "error": "Invalid filename"}), 400

    file_path = upload_folder / safe_filename
    try:
        file_path.resolve().relative_to(upload_folder.resolve())
    except ValueError:
        logger.warning(f"[download] Path traversal attempt blocked: {filename}")
        return jsonify({"success": False, "error": "Invalid filename"}), 400

    if not file_path.is_file():
        logger.info(f"[download] File not found: {safe_filename}")
        return jsonify({"success": False, "error": "File not found"}), 404

    logger.info(f"[download] Serving file: {file_path.name} ({file_path.stat().st_size / (1024*1024):.1f}MB)")
    return send_file(file_path, as_attachment=True, download_name=safe_filename)
