"""
Challenge catalog access for the ClubCTF engine.

The catalog itself is authored elsewhere; this module only looks entries up,
projects them for non-privileged callers and soft-deletes them.
"""

import hmac
import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubctf.core.database import atomic
from clubctf.core.exceptions import ChallengeInactive, ChallengeNotFound
from clubctf.models.challenge import Challenge, Difficulty, Submission

logger = logging.getLogger(__name__)

DIFFICULTY_ORDER = {difficulty.value: rank for rank, difficulty in enumerate(Difficulty)}


def challenge_to_dict(challenge: Challenge, privileged: bool = False) -> dict[str, Any]:
    """
    Serialize a challenge.

    The flag and the active switch are only included for privileged callers.
    """
    data = {
        "id": str(challenge.id),
        "title": challenge.title,
        "description": challenge.description,
        "category": challenge.category,
        "difficulty": challenge.difficulty,
        "points": challenge.points,
    }
    if privileged:
        data["flag"] = challenge.flag
        data["is_active"] = challenge.is_active
    return data


def match_flag(challenge: Challenge, submitted_flag: str) -> bool:
    """
    Exact comparison of a trimmed submission against the stored flag.

    Args:
        challenge: Challenge holding the secret
        submitted_flag: Raw user input

    Returns:
        True if the flag matches
    """
    candidate = submitted_flag.strip()
    return hmac.compare_digest(candidate.encode("utf-8"), challenge.flag.encode("utf-8"))


async def get_challenge(session: AsyncSession, challenge_id: uuid.UUID) -> Challenge | None:
    """Look up a challenge by id, active or not."""
    result = await session.execute(
        select(Challenge).where(Challenge.id == challenge_id)
    )
    return result.scalar_one_or_none()


async def require_active_challenge(session: AsyncSession, challenge_id: uuid.UUID) -> Challenge:
    """
    Look up a challenge that can still accept submissions.

    Raises:
        ChallengeNotFound: No such challenge
        ChallengeInactive: Challenge was soft-deleted
    """
    challenge = await get_challenge(session, challenge_id)
    if challenge is None:
        raise ChallengeNotFound()
    if not challenge.is_active:
        raise ChallengeInactive()
    return challenge


async def list_challenges(session: AsyncSession, privileged: bool = False) -> list[Challenge]:
    """
    List catalog entries, easiest first.

    Non-privileged callers only see active challenges.
    """
    query = select(Challenge)
    if not privileged:
        query = query.where(Challenge.is_active == True)  # noqa: E712
    result = await session.execute(query)
    challenges = list(result.scalars().all())
    challenges.sort(
        key=lambda c: (DIFFICULTY_ORDER.get(c.difficulty, len(DIFFICULTY_ORDER)), c.points, c.title)
    )
    return challenges


async def deactivate_challenge(session: AsyncSession, challenge_id: uuid.UUID) -> Challenge:
    """
    Soft-delete a challenge.

    Submissions referencing it stay in place and keep resolving to its
    points and difficulty for the leaderboard.

    Raises:
        ChallengeNotFound: No such challenge
    """
    async with atomic(session):
        challenge = await get_challenge(session, challenge_id)
        if challenge is None:
            raise ChallengeNotFound()
        challenge.is_active = False

    logger.info("Challenge %s (%s) deactivated", challenge.id, challenge.title)
    return challenge


async def get_team_solved_challenge_ids(
    session: AsyncSession,
    team_id: uuid.UUID,
) -> set[uuid.UUID]:
    """
    Get set of challenge IDs the team has scored.

    Args:
        session: Database session
        team_id: Team ID

    Returns:
        Set of solved challenge IDs
    """
    result = await session.execute(
        select(Submission.challenge_id)
        .where(Submission.team_id == team_id)
        .where(Submission.is_scored == True)  # noqa: E712
    )
    return {row[0] for row in result.all()}
