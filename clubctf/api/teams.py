"""
Team API Endpoints for the ClubCTF engine.

Handles team creation, the caller's team page, leaving, captaincy transfer,
member removal and invite regeneration.
"""

import uuid
from datetime import timedelta

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from clubctf.core.config import TEAM_NAME_MAX_LENGTH
from clubctf.core.dependencies import CurrentUser, DbSession, Invites, Teams
from clubctf.core.exceptions import NotCaptain, NotOnTeam
from clubctf.services.invite_service import build_invite_link
from clubctf.services.team_service import get_membership

router = APIRouter(prefix="/teams", tags=["Teams"])


# ============== Request/Response Models ==============


class CreateTeamRequest(BaseModel):
    """Team creation request."""

    name: str = Field(..., min_length=1, max_length=TEAM_NAME_MAX_LENGTH, description="Team name")


class TransferCaptainRequest(BaseModel):
    """Captaincy transfer request."""

    user_id: uuid.UUID = Field(..., description="Member who becomes captain")


class RegenerateInviteRequest(BaseModel):
    """Invite regeneration request."""

    expires_in_hours: int | None = Field(None, ge=1, description="Hours until expiry (null = never)")
    max_uses: int | None = Field(None, ge=1, description="Use limit (null = unlimited)")


class MemberResponse(BaseModel):
    user_id: str
    joined_at: str
    is_captain: bool


class InviteResponse(BaseModel):
    code: str
    link: str | None
    expires_at: str | None
    max_uses: int | None
    use_count: int
    uses_remaining: int | None


class TeamStatsResponse(BaseModel):
    total_points: int
    solved: int
    incorrect: int


class TeamResponse(BaseModel):
    """The caller's team."""

    id: str
    name: str
    captain_id: str
    created_at: str
    member_count: int
    members: list[MemberResponse]
    invite: InviteResponse | None
    stats: TeamStatsResponse


class MyTeamResponse(BaseModel):
    team: TeamResponse | None


class LeaveTeamResponse(BaseModel):
    message: str
    team_deleted: bool


# ============== API Endpoints ==============


async def _overview_response(session: DbSession, teams: Teams, user_id: uuid.UUID) -> TeamResponse:
    overview = await teams.get_team_for_user(session, user_id)
    if overview is None:
        raise NotOnTeam("You are not on a team")
    return TeamResponse(**overview.to_dict())


@router.post("", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    request_data: CreateTeamRequest,
    session: DbSession,
    user: CurrentUser,
    teams: Teams,
) -> TeamResponse:
    """Create a team with the caller as captain."""
    await teams.create_team(session, user.user_id, request_data.name)
    return await _overview_response(session, teams, user.user_id)


@router.get("/me", response_model=MyTeamResponse)
async def get_my_team(
    session: DbSession,
    user: CurrentUser,
    teams: Teams,
) -> MyTeamResponse:
    """Get the caller's team, members, current invite and stats."""
    overview = await teams.get_team_for_user(session, user.user_id)
    if overview is None:
        return MyTeamResponse(team=None)
    return MyTeamResponse(team=TeamResponse(**overview.to_dict()))


@router.post("/leave", response_model=LeaveTeamResponse)
async def leave_team(
    session: DbSession,
    user: CurrentUser,
    teams: Teams,
) -> LeaveTeamResponse:
    """
    Leave the caller's team.

    When the captain leaves, the whole team is deleted.
    """
    team_deleted = await teams.leave_team(session, user.user_id)
    message = "Team deleted" if team_deleted else "You left the team"
    return LeaveTeamResponse(message=message, team_deleted=team_deleted)


@router.post("/captain", response_model=TeamResponse)
async def transfer_captain(
    request_data: TransferCaptainRequest,
    session: DbSession,
    user: CurrentUser,
    teams: Teams,
) -> TeamResponse:
    """Hand captaincy to another member."""
    await teams.transfer_captain(session, user.user_id, request_data.user_id)
    return await _overview_response(session, teams, user.user_id)


@router.delete("/members/{user_id}", response_model=TeamResponse)
async def remove_member(
    user_id: uuid.UUID,
    session: DbSession,
    user: CurrentUser,
    teams: Teams,
) -> TeamResponse:
    """Remove a member from the caller's team (captain only)."""
    await teams.remove_member(session, user.user_id, user_id)
    return await _overview_response(session, teams, user.user_id)


@router.post("/invite", response_model=InviteResponse)
async def regenerate_invite(
    request_data: RegenerateInviteRequest,
    session: DbSession,
    user: CurrentUser,
    teams: Teams,
    invites: Invites,
) -> InviteResponse:
    """
    Replace the team's invite link (captain only).

    The previous code stops working immediately.
    """
    membership = await get_membership(session, user.user_id)
    if membership is None:
        raise NotCaptain()

    expires_in = (
        timedelta(hours=request_data.expires_in_hours)
        if request_data.expires_in_hours
        else None
    )
    token = await invites.regenerate_token(
        session,
        user.user_id,
        membership.team_id,
        expires_in=expires_in,
        max_uses=request_data.max_uses,
    )
    return InviteResponse(
        code=token.code,
        link=build_invite_link(teams.invite_origin, token.code),
        expires_at=token.expires_at.isoformat() if token.expires_at else None,
        max_uses=token.max_uses,
        use_count=token.use_count,
        uses_remaining=token.uses_remaining,
    )
