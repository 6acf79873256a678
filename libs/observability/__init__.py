"""Logging and request tracing helpers."""
