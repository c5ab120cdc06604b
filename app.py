"""Gunicorn entrypoint: `gunicorn app:app`."""

import logging
import os

from convertflix import create_app

logger = logging.getLogger(__name__)

app = create_app()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5005))
    logger.info(f"Starting server on port {port}")
    app.run(host='0.0.0.0', port=port, debug=False)
