"""
Submission Service for the ClubCTF engine.

Verifies flags, logs every attempt and awards points at most once per
(team, challenge). The "at most once" part is the partial unique index on
scored submissions: when two members submit the correct flag together, the
losing insert is rejected by the database and recorded again as an
unscored, already-solved attempt.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubctf.core.database import atomic
from clubctf.core.exceptions import NotOnTeam
from clubctf.models.base import utcnow
from clubctf.models.challenge import Submission
from clubctf.models.team import TeamMember
from clubctf.services.challenge_service import match_flag, require_active_challenge

logger = logging.getLogger(__name__)


@dataclass
class SubmissionOutcome:
    """Result of one flag submission."""

    is_correct: bool
    points_awarded: int
    already_solved: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_correct": self.is_correct,
            "points_awarded": self.points_awarded,
            "already_solved": self.already_solved,
        }


class SubmissionProcessor:
    """Flag verification and exactly-once scoring."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    async def submit_flag(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        team_id: uuid.UUID,
        challenge_id: uuid.UUID,
        raw_flag: str,
    ) -> SubmissionOutcome:
        """
        Process a flag submission.

        Args:
            session: Database session
            user_id: Submitting user
            team_id: Team the user claims to submit for
            challenge_id: Challenge ID
            raw_flag: Flag as typed; surrounding whitespace is ignored

        Returns:
            SubmissionOutcome

        Raises:
            NotOnTeam: The user's membership is not ``team_id``
            ChallengeNotFound / ChallengeInactive: Challenge unavailable
        """
        flag = raw_flag.strip()
        now = self._clock()
        already_solved = False

        async with atomic(session):
            result = await session.execute(
                select(TeamMember.team_id).where(TeamMember.user_id == user_id)
            )
            member_team_id = result.scalar_one_or_none()
            if member_team_id is None or member_team_id != team_id:
                raise NotOnTeam()

            challenge = await require_active_challenge(session, challenge_id)
            points = challenge.points
            is_correct = match_flag(challenge, flag)

            attempt = Submission(
                team_id=team_id,
                challenge_id=challenge_id,
                submitted_by=user_id,
                submitted_flag=flag,
                is_correct=is_correct,
                is_scored=is_correct,
                points_awarded=points if is_correct else 0,
                submitted_at=now,
            )
            if is_correct:
                # Only the savepoint is undone when the team already holds the scored row
                try:
                    async with session.begin_nested():
                        session.add(attempt)
                except IntegrityError:
                    already_solved = True
                    session.add(
                        Submission(
                            team_id=team_id,
                            challenge_id=challenge_id,
                            submitted_by=user_id,
                            submitted_flag=flag,
                            is_correct=True,
                            is_scored=False,
                            points_awarded=0,
                            submitted_at=now,
                        )
                    )
            else:
                session.add(attempt)

        if already_solved:
            logger.info("Team %s re-solved challenge %s; recorded without points", team_id, challenge_id)
            return SubmissionOutcome(is_correct=True, points_awarded=0, already_solved=True)

        if is_correct:
            logger.info(
                "Team %s solved challenge %s (+%d, by %s)",
                team_id,
                challenge_id,
                points,
                user_id,
            )
            return SubmissionOutcome(is_correct=True, points_awarded=points, already_solved=False)

        return SubmissionOutcome(is_correct=False, points_awarded=0, already_solved=False)


def get_submission_processor() -> SubmissionProcessor:
    """Build the submission processor."""
    return SubmissionProcessor()
