"""Pydantic schemas exchanged with the platform API."""
