"""Exceptions, environment helpers and runtime settings."""
