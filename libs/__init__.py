"""Shared libraries for the customer portal services."""
