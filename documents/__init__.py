"""Document reference endpoints."""
