"""Customer portal service."""
