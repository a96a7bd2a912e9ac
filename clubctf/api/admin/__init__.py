"""
Admin API Routes Package.

Aggregates all officer-only API endpoints:
- ops: Leaderboard freeze, challenge deactivation, live standings
"""

from fastapi import APIRouter

from clubctf.api.admin import ops

# Create main admin router
admin_router = APIRouter(prefix="/admin", tags=["Admin"])

admin_router.include_router(ops.router)

__all__ = ["admin_router"]
