"""Admission control, job registry and job execution."""
