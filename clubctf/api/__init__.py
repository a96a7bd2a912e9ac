"""HTTP API routers."""
