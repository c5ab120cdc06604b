"""Flask-facing services and the realtime broker."""
