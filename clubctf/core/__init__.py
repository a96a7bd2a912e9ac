"""Core configuration, database and request dependencies."""
