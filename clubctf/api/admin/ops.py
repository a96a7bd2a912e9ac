"""
Admin Operations API Endpoints.

Officer-only operations:
- Leaderboard freeze switch
- Challenge soft-deletion
- Live standings at an arbitrary point in time
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from clubctf.api.leaderboard import LeaderboardEntryResponse
from clubctf.core.dependencies import AdminUser, DbSession, Leaderboard
from clubctf.services.challenge_service import challenge_to_dict, deactivate_challenge

router = APIRouter()
logger = logging.getLogger(__name__)


# ============== Request/Response Models ==============


class FreezeRequest(BaseModel):
    is_frozen: bool = Field(..., description="Desired freeze state")


class FreezeResponse(BaseModel):
    is_frozen: bool
    frozen_at: str | None


class LiveStandingsResponse(BaseModel):
    as_of: str | None
    entries: list[LeaderboardEntryResponse]


# ============== API Endpoints ==============


@router.post("/freeze", response_model=FreezeResponse)
async def set_freeze(
    request_data: FreezeRequest,
    session: DbSession,
    admin: AdminUser,
    leaderboard: Leaderboard,
) -> FreezeResponse:
    """
    Freeze or unfreeze the public leaderboard.

    Freezing again while frozen keeps the original ``frozen_at``.
    """
    state = await leaderboard.toggle_freeze(session, request_data.is_frozen)
    logger.info("Freeze set to %s by %s", state.is_frozen, admin.user_id)
    return FreezeResponse(
        is_frozen=state.is_frozen,
        frozen_at=state.frozen_at.isoformat() if state.frozen_at else None,
    )


@router.post("/challenges/{challenge_id}/deactivate")
async def deactivate(
    challenge_id: uuid.UUID,
    session: DbSession,
    admin: AdminUser,
    leaderboard: Leaderboard,
) -> dict[str, Any]:
    """Soft-delete a challenge. Points already scored on it are kept."""
    challenge = await deactivate_challenge(session, challenge_id)
    await leaderboard.invalidate_cache()
    return challenge_to_dict(challenge, privileged=True)


@router.get("/leaderboard", response_model=LiveStandingsResponse)
async def get_live_standings(
    session: DbSession,
    admin: AdminUser,
    leaderboard: Leaderboard,
    as_of: datetime | None = Query(None, description="Cutoff; defaults to the freeze rule"),
) -> LiveStandingsResponse:
    """Uncached standings at any point in time."""
    if as_of is not None and as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    entries = await leaderboard.compute_standings(session, as_of=as_of)
    return LiveStandingsResponse(
        as_of=as_of.isoformat() if as_of else None,
        entries=[LeaderboardEntryResponse(**entry.to_dict()) for entry in entries],
    )
