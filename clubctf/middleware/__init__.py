"""Application middleware."""
