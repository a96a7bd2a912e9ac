"""
Invite Service for the ClubCTF engine.

Issues, previews and redeems team invite tokens. Redemption is the
race-sensitive path: the use-count and capacity checks are repeated as
conditional UPDATEs inside the same transaction as the membership INSERT,
so concurrent joins cannot overshoot the cap or the use limit.
"""

import logging
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubctf.core.config import get_settings
from clubctf.core.database import atomic
from clubctf.core.exceptions import (
    AlreadyOnTeam,
    EngineError,
    InvalidInvite,
    InviteExhausted,
    InviteExpired,
    NotCaptain,
    TeamFull,
    TeamNotFound,
)
from clubctf.models.base import utcnow
from clubctf.models.invite import InviteToken
from clubctf.models.team import Team, TeamMember

logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud
INVITE_CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_GENERATION_ATTEMPTS = 10


def generate_invite_code(length: int = 8) -> str:
    """Generate a cryptographically random invite code."""
    return "".join(secrets.choice(INVITE_CHARSET) for _ in range(length))


def normalize_invite_code(code: str) -> str:
    """Normalize a user-supplied code for lookup."""
    return code.strip().upper()


def build_invite_link(origin: str, code: str) -> str:
    """Shareable join link for a code."""
    return f"{origin.rstrip('/')}/join/{code}"


@dataclass
class InvitePreview:
    """What the join page shows before anything is consumed."""

    code: str
    team_id: uuid.UUID
    team_name: str
    member_count: int
    member_cap: int
    expires_at: datetime | None
    uses_remaining: int | None
    usable: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "team_id": str(self.team_id),
            "team_name": self.team_name,
            "member_count": self.member_count,
            "member_cap": self.member_cap,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "uses_remaining": self.uses_remaining,
            "usable": self.usable,
            "reason": self.reason,
        }


class InviteManager:
    """Invite token lifecycle: issue, replace, preview, redeem."""

    def __init__(
        self,
        member_cap: int = 4,
        code_length: int = 8,
        default_expires_in: timedelta | None = None,
        default_max_uses: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.member_cap = member_cap
        self.code_length = code_length
        self.default_expires_in = default_expires_in
        self.default_max_uses = default_max_uses
        self._clock = clock

    async def _generate_unique_code(self, session: AsyncSession) -> str:
        """Generate a code that no token, current or replaced, already uses."""
        for _ in range(CODE_GENERATION_ATTEMPTS):
            code = generate_invite_code(self.code_length)
            existing = await session.execute(
                select(InviteToken.id).where(InviteToken.code == code)
            )
            if existing.first() is None:
                return code
        raise RuntimeError(
            f"Failed to generate unique invite code after {CODE_GENERATION_ATTEMPTS} attempts"
        )

    async def issue_token(
        self,
        session: AsyncSession,
        team: Team,
        expires_in: timedelta | None = None,
        max_uses: int | None = None,
    ) -> InviteToken:
        """
        Create a token and make it the team's current one.

        Runs inside the caller's transaction; nothing is committed here.
        """
        if max_uses is not None and max_uses < 1:
            raise ValueError("max_uses must be positive or None")

        now = self._clock()
        token = InviteToken(
            code=await self._generate_unique_code(session),
            team_id=team.id,
            expires_at=now + expires_in if expires_in is not None else None,
            max_uses=max_uses,
            use_count=0,
            created_at=now,
            updated_at=now,
        )
        session.add(token)
        team.invite_code = token.code
        await session.flush()
        return token

    async def issue_default_token(self, session: AsyncSession, team: Team) -> InviteToken:
        """Token issued at team creation, using the configured default policy."""
        return await self.issue_token(
            session,
            team,
            expires_in=self.default_expires_in,
            max_uses=self.default_max_uses,
        )

    async def get_current_token(self, session: AsyncSession, team: Team) -> InviteToken | None:
        """The team's active token record, if any."""
        if team.invite_code is None:
            return None
        result = await session.execute(
            select(InviteToken).where(InviteToken.code == team.invite_code)
        )
        return result.scalar_one_or_none()

    async def regenerate_token(
        self,
        session: AsyncSession,
        acting_user_id: uuid.UUID,
        team_id: uuid.UUID,
        expires_in: timedelta | None = None,
        max_uses: int | None = None,
    ) -> InviteToken:
        """
        Replace the team's invite token (captain only).

        The previous code stops working immediately, whatever its own
        expiry or remaining uses.
        """
        async with atomic(session):
            team = await session.get(Team, team_id)
            if team is None:
                raise TeamNotFound()
            if team.captain_id != acting_user_id:
                raise NotCaptain("Only the team captain can regenerate the invite link")

            token = await self.issue_token(session, team, expires_in=expires_in, max_uses=max_uses)

        logger.info(
            "Invite regenerated for team %s (expires_at=%s, max_uses=%s)",
            team_id,
            token.expires_at,
            token.max_uses,
        )
        return token

    async def _lookup(self, session: AsyncSession, code: str) -> tuple[InviteToken, Team] | None:
        """Find a token by code, only if it is still its team's current token."""
        result = await session.execute(
            select(InviteToken, Team)
            .join(Team, Team.id == InviteToken.team_id)
            .where(InviteToken.code == code)
            .where(Team.invite_code == code)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]

    async def preview(self, session: AsyncSession, code: str) -> InvitePreview:
        """
        Describe an invite without consuming it.

        Raises:
            InvalidInvite: If the code is unknown or has been replaced
        """
        code = normalize_invite_code(code)
        found = await self._lookup(session, code)
        if found is None:
            raise InvalidInvite()
        token, team = found

        reason = None
        if token.is_expired(self._clock()):
            reason = InviteExpired.code
        elif token.is_exhausted():
            reason = InviteExhausted.code
        elif team.member_count >= self.member_cap:
            reason = TeamFull.code

        return InvitePreview(
            code=code,
            team_id=team.id,
            team_name=team.name,
            member_count=team.member_count,
            member_cap=self.member_cap,
            expires_at=token.expires_at,
            uses_remaining=token.uses_remaining,
            usable=reason is None,
            reason=reason,
        )

    async def redeem(self, session: AsyncSession, code: str, user_id: uuid.UUID) -> Team:
        """
        Join a team through an invite code.

        All checks and writes happen in one transaction. The read-time checks
        give precise errors; the conditional UPDATEs re-validate use count,
        expiry and capacity at commit time.

        Raises:
            InvalidInvite, InviteExpired, InviteExhausted, TeamFull, AlreadyOnTeam
        """
        code = normalize_invite_code(code)
        now = self._clock()

        async with atomic(session):
            found = await self._lookup(session, code)
            if found is None:
                raise InvalidInvite()
            token, team = found

            if token.is_expired(now):
                raise InviteExpired()
            if token.is_exhausted():
                raise InviteExhausted()
            if team.member_count >= self.member_cap:
                raise TeamFull(f"This team is full ({self.member_cap} members maximum)")

            existing = await session.execute(
                select(TeamMember.id).where(TeamMember.user_id == user_id)
            )
            if existing.first() is not None:
                raise AlreadyOnTeam()

            # Team row first, matching the lock order of leave_team
            seated = await session.execute(
                update(Team)
                .where(Team.id == team.id)
                .where(Team.invite_code == code)
                .where(Team.member_count < self.member_cap)
                .values(member_count=Team.member_count + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if seated.rowcount != 1:
                logger.warning("Invite %s lost a redemption race (capacity)", code)
                raise await self._classify_capacity_conflict(session, code, team.id)

            consumed = await session.execute(
                update(InviteToken)
                .where(InviteToken.code == code)
                .where(or_(InviteToken.max_uses.is_(None), InviteToken.use_count < InviteToken.max_uses))
                .where(or_(InviteToken.expires_at.is_(None), InviteToken.expires_at >= now))
                .values(use_count=InviteToken.use_count + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if consumed.rowcount != 1:
                logger.warning("Invite %s lost a redemption race (use limit)", code)
                raise await self._classify_token_conflict(session, code, now)

            session.add(TeamMember(team_id=team.id, user_id=user_id, joined_at=now))
            try:
                await session.flush()
            except IntegrityError as exc:
                raise AlreadyOnTeam() from exc

        await session.refresh(team)
        logger.info("User %s joined team %s via invite %s", user_id, team.id, code)
        return team

    async def _classify_token_conflict(
        self,
        session: AsyncSession,
        code: str,
        now: datetime,
    ) -> EngineError:
        """Name the invariant that made the use-count write match no row."""
        found = await self._lookup(session, code)
        if found is None:
            return InvalidInvite()
        token, _ = found
        if token.is_expired(now):
            return InviteExpired()
        return InviteExhausted()

    async def _classify_capacity_conflict(
        self,
        session: AsyncSession,
        code: str,
        team_id: uuid.UUID,
    ) -> EngineError:
        """Name the invariant that made the member-count write match no row."""
        result = await session.execute(
            select(Team.invite_code).where(Team.id == team_id)
        )
        current_code = result.scalar_one_or_none()
        if current_code != code:
            return InvalidInvite()
        return TeamFull(f"This team is full ({self.member_cap} members maximum)")


def get_invite_manager() -> InviteManager:
    """Build an InviteManager from settings."""
    settings = get_settings()
    expires_in = (
        timedelta(hours=settings.invite_default_expires_hours)
        if settings.invite_default_expires_hours
        else None
    )
    return InviteManager(
        member_cap=settings.team_member_cap,
        code_length=settings.invite_code_length,
        default_expires_in=expires_in,
        default_max_uses=settings.invite_default_max_uses,
    )
