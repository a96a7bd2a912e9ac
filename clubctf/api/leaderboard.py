"""
Leaderboard API Endpoints for the ClubCTF engine.

Public views honour the freeze: while frozen they show the standings as of
``frozen_at``. The standings payload discloses when it was computed.
"""

import uuid
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel

from clubctf.core.dependencies import DbSession, Leaderboard

router = APIRouter(prefix="/leaderboard", tags=["Leaderboard"])


class LeaderboardEntryResponse(BaseModel):
    rank: int
    team_id: str
    team_name: str
    total_points: int
    solves_by_difficulty: dict[str, int]
    total_solves: int
    incorrect_attempts: int
    last_solve_at: str | None
    member_count: int
    members: list[str]


class StandingsResponse(BaseModel):
    """Ranked standings plus freshness and freeze information."""

    entries: list[LeaderboardEntryResponse]
    computed_at: str
    cutoff: str
    is_frozen: bool
    frozen_at: str | None
    cached: bool


class TeamDetailResponse(BaseModel):
    team_id: str
    team_name: str
    cutoff: str
    solved: list[dict[str, Any]]
    incorrect: list[dict[str, Any]]


class RecentSubmissionsResponse(BaseModel):
    submissions: list[dict[str, Any]]


@router.get("", response_model=StandingsResponse)
async def get_standings(
    session: DbSession,
    leaderboard: Leaderboard,
) -> StandingsResponse:
    """Current public standings."""
    snapshot = await leaderboard.get_public_standings(session)
    return StandingsResponse(**snapshot.to_dict())


@router.get("/teams/{team_id}", response_model=TeamDetailResponse)
async def get_team_detail(
    team_id: uuid.UUID,
    session: DbSession,
    leaderboard: Leaderboard,
) -> TeamDetailResponse:
    """Solved challenges and wrong attempts of one team, newest first."""
    detail = await leaderboard.team_detail(session, team_id)
    return TeamDetailResponse(**detail.to_dict())


@router.get("/recent", response_model=RecentSubmissionsResponse)
async def get_recent_submissions(
    session: DbSession,
    leaderboard: Leaderboard,
    limit: int = Query(50, ge=1, le=200),
) -> RecentSubmissionsResponse:
    """Latest submissions across all teams (flags are never shown)."""
    submissions = await leaderboard.recent_submissions(session, limit=limit)
    return RecentSubmissionsResponse(submissions=submissions)
