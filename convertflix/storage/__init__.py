"""JSON-backed metrics, activity feed, settings and retention."""
