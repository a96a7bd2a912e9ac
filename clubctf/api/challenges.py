"""
Challenge API Endpoints for the ClubCTF engine.

Handles the challenge list and flag submission.
"""

import uuid

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, Field

from clubctf.core.dependencies import CurrentUser, DbSession, Submissions
from clubctf.core.exceptions import NotOnTeam
from clubctf.middleware.security import rate_limit_submit
from clubctf.services.challenge_service import (
    challenge_to_dict,
    get_team_solved_challenge_ids,
    list_challenges,
)
from clubctf.services.team_service import get_membership

router = APIRouter(prefix="/challenges", tags=["Challenges"])


# ============== Request/Response Models ==============


class FlagSubmissionRequest(BaseModel):
    """Flag submission request."""

    flag: str = Field(..., min_length=1, max_length=500, description="Flag to submit")


class FlagSubmissionResponse(BaseModel):
    """Flag submission response."""

    is_correct: bool
    points_awarded: int
    already_solved: bool


class ChallengeResponse(BaseModel):
    """Challenge data for the board. Flag and active switch are officer-only."""

    id: str
    title: str
    description: str
    category: str
    difficulty: str
    points: int
    solved: bool = False
    flag: str | None = None
    is_active: bool | None = None


class ChallengeListResponse(BaseModel):
    challenges: list[ChallengeResponse]
    solved_count: int
    total_count: int


# ============== API Endpoints ==============


@router.get("", response_model=ChallengeListResponse, response_model_exclude_none=True)
async def get_challenges(
    session: DbSession,
    user: CurrentUser,
) -> ChallengeListResponse:
    """
    List challenges, easiest first, marking the ones the caller's team solved.

    Officers also see inactive challenges and their flags.
    """
    challenges = await list_challenges(session, privileged=user.is_privileged)

    solved_ids: set[uuid.UUID] = set()
    membership = await get_membership(session, user.user_id)
    if membership is not None:
        solved_ids = await get_team_solved_challenge_ids(session, membership.team_id)

    items = [
        ChallengeResponse(
            **challenge_to_dict(challenge, privileged=user.is_privileged),
            solved=challenge.id in solved_ids,
        )
        for challenge in challenges
    ]
    return ChallengeListResponse(
        challenges=items,
        solved_count=sum(1 for item in items if item.solved),
        total_count=len(items),
    )


@router.post(
    "/{challenge_id}/submit",
    response_model=FlagSubmissionResponse,
    status_code=status.HTTP_200_OK,
)
@rate_limit_submit()
async def submit_challenge_flag(
    request: Request,
    challenge_id: uuid.UUID,
    request_data: FlagSubmissionRequest,
    session: DbSession,
    user: CurrentUser,
    submissions: Submissions,
) -> FlagSubmissionResponse:
    """
    Submit a flag on behalf of the caller's team.

    Every attempt is logged. A correct flag scores once per team; later
    correct submissions report ``already_solved`` with zero points.
    """
    membership = await get_membership(session, user.user_id)
    if membership is None:
        raise NotOnTeam("Join a team before submitting flags")

    outcome = await submissions.submit_flag(
        session,
        user_id=user.user_id,
        team_id=membership.team_id,
        challenge_id=challenge_id,
        raw_flag=request_data.flag,
    )
    return FlagSubmissionResponse(**outcome.to_dict())
