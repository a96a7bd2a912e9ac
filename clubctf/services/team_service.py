"""
Team Service for the ClubCTF engine.

Rules:
- One team per user (unique membership row per user)
- The captain is always a member; captaincy moves only by explicit transfer
- A captain leaving deletes the team, its memberships and invite tokens;
  submissions are kept for auditing
- While the competition window is active, captains cannot remove members
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import case, delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubctf.core.config import TEAM_NAME_MAX_LENGTH, get_settings
from clubctf.core.database import atomic
from clubctf.core.exceptions import (
    AlreadyOnTeam,
    CannotRemoveSelf,
    CompetitionLocked,
    EngineError,
    InvalidTeamName,
    NotCaptain,
    NotMember,
    NotOnTeam,
    TransientFailure,
)
from clubctf.models.base import utcnow
from clubctf.models.challenge import Submission
from clubctf.models.invite import InviteToken
from clubctf.models.team import Team, TeamMember
from clubctf.services.invite_service import InviteManager, build_invite_link, get_invite_manager

logger = logging.getLogger(__name__)


async def get_membership(session: AsyncSession, user_id: uuid.UUID) -> TeamMember | None:
    """Get a user's membership (if any)."""
    result = await session.execute(
        select(TeamMember).where(TeamMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_team_members(session: AsyncSession, team_id: uuid.UUID) -> list[TeamMember]:
    """All members of a team, longest-serving first."""
    result = await session.execute(
        select(TeamMember)
        .where(TeamMember.team_id == team_id)
        .order_by(TeamMember.joined_at.asc())
    )
    return list(result.scalars().all())


@dataclass
class TeamOverview:
    """Everything the team page shows for the viewer's own team."""

    team: Team
    members: list[TeamMember]
    invite: InviteToken | None
    invite_link: str | None
    total_points: int
    solved_count: int
    incorrect_count: int

    def to_dict(self) -> dict[str, Any]:
        invite = None
        if self.invite is not None:
            invite = {
                "code": self.invite.code,
                "link": self.invite_link,
                "expires_at": self.invite.expires_at.isoformat() if self.invite.expires_at else None,
                "max_uses": self.invite.max_uses,
                "use_count": self.invite.use_count,
                "uses_remaining": self.invite.uses_remaining,
            }
        return {
            "id": str(self.team.id),
            "name": self.team.name,
            "captain_id": str(self.team.captain_id),
            "created_at": self.team.created_at.isoformat(),
            "member_count": len(self.members),
            "members": [
                {
                    "user_id": str(member.user_id),
                    "joined_at": member.joined_at.isoformat(),
                    "is_captain": member.user_id == self.team.captain_id,
                }
                for member in self.members
            ],
            "invite": invite,
            "stats": {
                "total_points": self.total_points,
                "solved": self.solved_count,
                "incorrect": self.incorrect_count,
            },
        }


class TeamRegistry:
    """Team lifecycle: creation, membership, captaincy, deletion."""

    def __init__(
        self,
        invites: InviteManager,
        competition_locked: bool = False,
        name_max_length: int = TEAM_NAME_MAX_LENGTH,
        invite_origin: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.invites = invites
        self.competition_locked = competition_locked
        self.name_max_length = name_max_length
        self.invite_origin = invite_origin
        self._clock = clock

    def _clean_name(self, name: str) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise InvalidTeamName()
        if len(cleaned) > self.name_max_length:
            raise InvalidTeamName(
                f"Team name must be at most {self.name_max_length} characters"
            )
        return cleaned

    async def create_team(self, session: AsyncSession, user_id: uuid.UUID, name: str) -> Team:
        """
        Create a team with the caller as captain.

        The team, its first invite token and the captain's membership are
        written in one transaction. The unique membership index is the final
        guard against a user creating two teams concurrently.

        Raises:
            InvalidTeamName: Empty or over-long name
            AlreadyOnTeam: The user already has a membership
        """
        cleaned = self._clean_name(name)
        now = self._clock()

        async with atomic(session):
            if await get_membership(session, user_id) is not None:
                raise AlreadyOnTeam()

            team = Team(
                name=cleaned,
                captain_id=user_id,
                member_count=1,
                created_at=now,
                updated_at=now,
            )
            session.add(team)
            await session.flush()

            await self.invites.issue_default_token(session, team)

            session.add(TeamMember(team_id=team.id, user_id=user_id, joined_at=now))
            try:
                await session.flush()
            except IntegrityError as exc:
                raise AlreadyOnTeam() from exc

        logger.info("Team created: %s (id=%s, captain=%s)", cleaned, team.id, user_id)
        return team

    async def leave_team(self, session: AsyncSession, user_id: uuid.UUID) -> bool:
        """
        Leave the user's current team.

        Returns:
            True if the team was deleted because its captain left

        Raises:
            NotOnTeam: The user has no membership
        """
        async with atomic(session):
            membership = await get_membership(session, user_id)
            if membership is None:
                raise NotOnTeam("You are not on a team")
            team_id = membership.team_id

            team = await session.get(Team, team_id)
            is_captain = team is not None and team.captain_id == user_id

            if is_captain:
                # Team row first: concurrent joins serialize on it and then find nothing
                removed = await session.execute(
                    delete(Team)
                    .where(Team.id == team_id)
                    .where(Team.captain_id == user_id)
                )
                if removed.rowcount != 1:
                    raise TransientFailure("The team changed while leaving, please retry")
                await session.execute(
                    delete(TeamMember).where(TeamMember.team_id == team_id)
                )
                await session.execute(
                    delete(InviteToken).where(InviteToken.team_id == team_id)
                )
            else:
                await self._delete_membership(session, team_id, user_id, missing=NotOnTeam)

        if is_captain:
            logger.info("Team %s deleted after captain %s left", team_id, user_id)
        else:
            logger.info("User %s left team %s", user_id, team_id)
        return is_captain

    async def _delete_membership(
        self,
        session: AsyncSession,
        team_id: uuid.UUID,
        user_id: uuid.UUID,
        missing: type[EngineError] = NotMember,
    ) -> None:
        removed = await session.execute(
            delete(TeamMember)
            .where(TeamMember.team_id == team_id)
            .where(TeamMember.user_id == user_id)
        )
        if removed.rowcount != 1:
            raise missing()
        await session.execute(
            update(Team)
            .where(Team.id == team_id)
            .values(member_count=Team.member_count - 1, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )

    async def _require_captain(self, session: AsyncSession, user_id: uuid.UUID) -> Team:
        membership = await get_membership(session, user_id)
        if membership is None:
            raise NotCaptain()
        team = await session.get(Team, membership.team_id)
        if team is None or team.captain_id != user_id:
            raise NotCaptain()
        return team

    async def transfer_captain(
        self,
        session: AsyncSession,
        acting_user_id: uuid.UUID,
        target_user_id: uuid.UUID,
    ) -> Team:
        """
        Hand captaincy to another member. Memberships are unchanged.

        Raises:
            NotCaptain: Acting user is not the current captain
            NotMember: Target is not on the captain's team
        """
        async with atomic(session):
            team = await self._require_captain(session, acting_user_id)
            if target_user_id == acting_user_id:
                return team

            target = await get_membership(session, target_user_id)
            if target is None or target.team_id != team.id:
                raise NotMember()

            target_is_member = exists().where(
                TeamMember.team_id == team.id,
                TeamMember.user_id == target_user_id,
            )
            moved = await session.execute(
                update(Team)
                .where(Team.id == team.id)
                .where(Team.captain_id == acting_user_id)
                .where(target_is_member)
                .values(captain_id=target_user_id, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                raise NotMember()

        await session.refresh(team)
        logger.info("Team %s captaincy moved %s -> %s", team.id, acting_user_id, target_user_id)
        return team

    async def remove_member(
        self,
        session: AsyncSession,
        acting_user_id: uuid.UUID,
        target_user_id: uuid.UUID,
    ) -> None:
        """
        Captain removes a member from the team.

        Raises:
            NotCaptain: Acting user is not the captain
            CannotRemoveSelf: Target is the captain
            CompetitionLocked: Rosters are locked for the competition window
            NotMember: Target is not on the captain's team
        """
        async with atomic(session):
            team = await self._require_captain(session, acting_user_id)
            if target_user_id == team.captain_id:
                raise CannotRemoveSelf()
            if self.competition_locked:
                raise CompetitionLocked()
            await self._delete_membership(session, team.id, target_user_id)

        logger.info("Captain %s removed user %s from team %s", acting_user_id, target_user_id, team.id)

    async def get_team_for_user(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
    ) -> TeamOverview | None:
        """The user's team with members, current invite and stats, or None."""
        membership = await get_membership(session, user_id)
        if membership is None:
            return None
        team = await session.get(Team, membership.team_id)
        if team is None:
            return None

        members = await get_team_members(session, team.id)
        invite = await self.invites.get_current_token(session, team)

        stats = await session.execute(
            select(
                func.coalesce(func.sum(Submission.points_awarded), 0),
                func.count(case((Submission.is_scored.is_(True), 1))),
                func.count(case((Submission.is_correct.is_(False), 1))),
            ).where(Submission.team_id == team.id)
        )
        total_points, solved_count, incorrect_count = stats.one()

        return TeamOverview(
            team=team,
            members=members,
            invite=invite,
            invite_link=build_invite_link(self.invite_origin, invite.code) if invite else None,
            total_points=int(total_points),
            solved_count=int(solved_count),
            incorrect_count=int(incorrect_count),
        )


def get_team_registry() -> TeamRegistry:
    """Build a TeamRegistry from settings."""
    settings = get_settings()
    return TeamRegistry(
        invites=get_invite_manager(),
        competition_locked=settings.competition_locked,
        name_max_length=settings.team_name_max_length,
        invite_origin=settings.invite_origin,
    )
