"""
Invite API Endpoints for the ClubCTF engine.

Backs the ``/join/<code>`` page: preview a code, then redeem it.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from clubctf.api.teams import TeamResponse
from clubctf.core.dependencies import CurrentUser, DbSession, Invites, Teams

router = APIRouter(prefix="/invites", tags=["Invites"])


class InvitePreviewResponse(BaseModel):
    """What the join page shows before joining."""

    code: str
    team_id: str
    team_name: str
    member_count: int
    member_cap: int
    expires_at: str | None
    uses_remaining: int | None
    usable: bool
    reason: str | None


@router.get("/{code}", response_model=InvitePreviewResponse)
async def preview_invite(
    code: str,
    session: DbSession,
    invites: Invites,
) -> InvitePreviewResponse:
    """
    Describe an invite without consuming it.

    Unusable codes (expired, exhausted, full team) still preview, with
    ``usable`` false and the reason; unknown or replaced codes are 404.
    """
    preview = await invites.preview(session, code)
    return InvitePreviewResponse(**preview.to_dict())


@router.post("/{code}/redeem", response_model=TeamResponse)
async def redeem_invite(
    code: str,
    session: DbSession,
    user: CurrentUser,
    invites: Invites,
    teams: Teams,
) -> TeamResponse:
    """Join the team behind an invite code."""
    await invites.redeem(session, code, user.user_id)
    overview = await teams.get_team_for_user(session, user.user_id)
    return TeamResponse(**overview.to_dict())
