"""
Leaderboard Service for the ClubCTF engine.

Standings are derived from the submission log up to a cutoff:
an explicit ``as_of``, else the freeze timestamp while frozen, else now.
Freezing only moves the cutoff; submissions keep being recorded.

Ranking: total points descending, then earliest last solve. Team creation
time and id break any remaining tie so the order is stable.

The public (no ``as_of``) standings are cached in Redis for a few seconds;
the payload carries ``computed_at`` so clients can show how fresh it is.
"""

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clubctf.core.config import get_settings
from clubctf.core.database import atomic
from clubctf.core.exceptions import TeamNotFound
from clubctf.models.base import utcnow
from clubctf.models.challenge import Challenge, Difficulty, Submission
from clubctf.models.freeze_state import SINGLETON_PK, FreezeState
from clubctf.models.team import Team, TeamMember

logger = logging.getLogger(__name__)

settings = get_settings()

# Redis key for the cached public standings
STANDINGS_CACHE_KEY = "leaderboard:standings"

DIFFICULTY_BUCKETS = [difficulty.value for difficulty in Difficulty]

# Redis connection pool
_redis_pool: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Get or create Redis connection pool."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_pool


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class LeaderboardEntry:
    """One ranked row of the standings."""

    team_id: uuid.UUID
    team_name: str
    total_points: int = 0
    solves_by_difficulty: dict[str, int] = field(
        default_factory=lambda: {bucket: 0 for bucket in DIFFICULTY_BUCKETS}
    )
    total_solves: int = 0
    incorrect_attempts: int = 0
    last_solve_at: datetime | None = None
    member_count: int = 0
    members: list[uuid.UUID] = field(default_factory=list)
    team_created_at: datetime | None = None
    rank: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "team_id": str(self.team_id),
            "team_name": self.team_name,
            "total_points": self.total_points,
            "solves_by_difficulty": dict(self.solves_by_difficulty),
            "total_solves": self.total_solves,
            "incorrect_attempts": self.incorrect_attempts,
            "last_solve_at": _iso(self.last_solve_at),
            "member_count": self.member_count,
            "members": [str(user_id) for user_id in self.members],
            "team_created_at": _iso(self.team_created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeaderboardEntry":
        return cls(
            team_id=uuid.UUID(data["team_id"]),
            team_name=data["team_name"],
            total_points=data["total_points"],
            solves_by_difficulty=dict(data["solves_by_difficulty"]),
            total_solves=data["total_solves"],
            incorrect_attempts=data["incorrect_attempts"],
            last_solve_at=_parse(data["last_solve_at"]),
            member_count=data["member_count"],
            members=[uuid.UUID(user_id) for user_id in data.get("members", [])],
            team_created_at=_parse(data.get("team_created_at")),
            rank=data["rank"],
        )


def rank_entries(entries: list[LeaderboardEntry]) -> list[LeaderboardEntry]:
    """
    Order entries and assign 1-based ranks.

    Points descending, then earliest last solve (teams without solves last),
    then team creation time and id.
    """
    ordered = sorted(
        entries,
        key=lambda e: (
            -e.total_points,
            e.last_solve_at is None,
            e.last_solve_at.timestamp() if e.last_solve_at else 0.0,
            e.team_created_at.timestamp() if e.team_created_at else 0.0,
            str(e.team_id),
        ),
    )
    for position, entry in enumerate(ordered, start=1):
        entry.rank = position
    return ordered


@dataclass
class StandingsSnapshot:
    """Public standings plus the facts needed to disclose staleness."""

    entries: list[LeaderboardEntry]
    computed_at: datetime
    cutoff: datetime
    is_frozen: bool
    frozen_at: datetime | None
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "computed_at": _iso(self.computed_at),
            "cutoff": _iso(self.cutoff),
            "is_frozen": self.is_frozen,
            "frozen_at": _iso(self.frozen_at),
            "cached": self.cached,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StandingsSnapshot":
        return cls(
            entries=[LeaderboardEntry.from_dict(item) for item in data["entries"]],
            computed_at=_parse(data["computed_at"]),
            cutoff=_parse(data["cutoff"]),
            is_frozen=data["is_frozen"],
            frozen_at=_parse(data["frozen_at"]),
            cached=data.get("cached", False),
        )


@dataclass
class TeamDetail:
    """Solved challenges and failed attempts of one team, newest first."""

    team_id: uuid.UUID
    team_name: str
    cutoff: datetime
    solved: list[dict[str, Any]]
    incorrect: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "team_id": str(self.team_id),
            "team_name": self.team_name,
            "cutoff": _iso(self.cutoff),
            "solved": self.solved,
            "incorrect": self.incorrect,
        }


class LeaderboardService:
    """Standings, team breakdowns and the freeze switch."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        cache_ttl: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._redis = redis_client
        self.cache_ttl = cache_ttl
        self._clock = clock

    @property
    def cache_enabled(self) -> bool:
        return self._redis is not None and self.cache_ttl > 0

    async def resolve_cutoff(
        self,
        session: AsyncSession,
        as_of: datetime | None = None,
    ) -> datetime:
        """
        Pick the submission cutoff.

        Args:
            session: Database session
            as_of: Explicit point in time, wins over the freeze

        Returns:
            ``as_of``, else ``frozen_at`` while frozen, else now
        """
        if as_of is not None:
            return as_of
        state = await FreezeState.get(session)
        if state.is_frozen and state.frozen_at is not None:
            return state.frozen_at
        return self._clock()

    async def compute_standings(
        self,
        session: AsyncSession,
        as_of: datetime | None = None,
    ) -> list[LeaderboardEntry]:
        """
        Ranked standings for every existing team.

        Args:
            session: Database session
            as_of: Optional explicit cutoff

        Returns:
            Entries ordered by rank
        """
        cutoff = await self.resolve_cutoff(session, as_of)
        return await self._standings_at(session, cutoff)

    async def _standings_at(self, session: AsyncSession, cutoff: datetime) -> list[LeaderboardEntry]:
        teams_result = await session.execute(
            select(Team.id, Team.name, Team.member_count, Team.created_at)
        )
        entries: dict[uuid.UUID, LeaderboardEntry] = {
            team_id: LeaderboardEntry(
                team_id=team_id,
                team_name=name,
                member_count=member_count,
                team_created_at=created_at,
            )
            for team_id, name, member_count, created_at in teams_result.all()
        }

        roster = await session.execute(
            select(TeamMember.team_id, TeamMember.user_id).order_by(TeamMember.joined_at, TeamMember.id)
        )
        for team_id, user_id in roster.all():
            entry = entries.get(team_id)
            if entry is not None:
                entry.members.append(user_id)

        totals = await session.execute(
            select(
                Submission.team_id,
                func.coalesce(func.sum(Submission.points_awarded), 0),
                func.count(case((Submission.is_scored == True, 1))),  # noqa: E712
                func.count(case((Submission.is_correct == False, 1))),  # noqa: E712
                func.max(case((Submission.is_scored == True, Submission.submitted_at))),  # noqa: E712
            )
            .where(Submission.submitted_at <= cutoff)
            .group_by(Submission.team_id)
        )
        for team_id, points, solves, incorrect, last_solve_at in totals.all():
            entry = entries.get(team_id)
            if entry is None:
                # Team was deleted; its submissions are kept but not ranked
                continue
            entry.total_points = int(points)
            entry.total_solves = int(solves)
            entry.incorrect_attempts = int(incorrect)
            entry.last_solve_at = last_solve_at

        buckets = await session.execute(
            select(Submission.team_id, Challenge.difficulty, func.count(Submission.id))
            .join(Challenge, Challenge.id == Submission.challenge_id)
            .where(Submission.is_scored == True)  # noqa: E712
            .where(Submission.submitted_at <= cutoff)
            .group_by(Submission.team_id, Challenge.difficulty)
        )
        for team_id, difficulty, count in buckets.all():
            entry = entries.get(team_id)
            if entry is not None and difficulty in entry.solves_by_difficulty:
                entry.solves_by_difficulty[difficulty] = int(count)

        return rank_entries(list(entries.values()))

    async def get_public_standings(self, session: AsyncSession) -> StandingsSnapshot:
        """
        Standings as the public sees them: honours the freeze, served from
        cache when a fresh copy exists.
        """
        if self.cache_enabled:
            try:
                cached = await self._redis.get(STANDINGS_CACHE_KEY)
            except RedisError as exc:
                logger.warning("Leaderboard cache read failed: %s", exc)
                cached = None
            if cached:
                snapshot = StandingsSnapshot.from_dict(json.loads(cached))
                snapshot.cached = True
                return snapshot

        state = await FreezeState.get(session)
        computed_at = self._clock()
        cutoff = state.frozen_at if state.is_frozen and state.frozen_at else computed_at
        snapshot = StandingsSnapshot(
            entries=await self._standings_at(session, cutoff),
            computed_at=computed_at,
            cutoff=cutoff,
            is_frozen=state.is_frozen,
            frozen_at=state.frozen_at,
        )

        if self.cache_enabled:
            current = await FreezeState.get(session)
            if (current.is_frozen, current.frozen_at) != (snapshot.is_frozen, snapshot.frozen_at):
                logger.info("Freeze toggled while standings were computed; not caching")
                return snapshot
            try:
                await self._redis.set(
                    STANDINGS_CACHE_KEY,
                    json.dumps(snapshot.to_dict()),
                    ex=self.cache_ttl,
                )
            except RedisError as exc:
                logger.warning("Leaderboard cache write failed: %s", exc)

        return snapshot

    async def invalidate_cache(self) -> None:
        """Drop the cached public standings."""
        if not self.cache_enabled:
            return
        try:
            await self._redis.delete(STANDINGS_CACHE_KEY)
        except RedisError as exc:
            logger.warning("Leaderboard cache invalidation failed: %s", exc)

    async def team_detail(
        self,
        session: AsyncSession,
        team_id: uuid.UUID,
        as_of: datetime | None = None,
    ) -> TeamDetail:
        """
        Solved challenges and incorrect submissions for one team.

        Both lists are most-recent-first and bounded by the same cutoff rule
        as the standings.

        Raises:
            TeamNotFound: Team does not exist (or was deleted)
        """
        team = await session.get(Team, team_id)
        if team is None:
            raise TeamNotFound()
        cutoff = await self.resolve_cutoff(session, as_of)

        result = await session.execute(
            select(Submission, Challenge.title, Challenge.difficulty, Challenge.category)
            .outerjoin(Challenge, Challenge.id == Submission.challenge_id)
            .where(Submission.team_id == team_id)
            .where(Submission.submitted_at <= cutoff)
            .order_by(Submission.submitted_at.desc(), Submission.id)
        )

        solved: list[dict[str, Any]] = []
        incorrect: list[dict[str, Any]] = []
        for submission, title, difficulty, category in result.all():
            if submission.is_scored:
                solved.append({
                    "challenge_id": str(submission.challenge_id),
                    "title": title,
                    "category": category,
                    "difficulty": difficulty,
                    "points": submission.points_awarded,
                    "solved_at": submission.submitted_at.isoformat(),
                    "solved_by": str(submission.submitted_by),
                })
            elif not submission.is_correct:
                incorrect.append({
                    "submission_id": str(submission.id),
                    "challenge_id": str(submission.challenge_id),
                    "title": title,
                    "difficulty": difficulty,
                    "submitted_at": submission.submitted_at.isoformat(),
                    "submitted_by": str(submission.submitted_by),
                })

        return TeamDetail(
            team_id=team.id,
            team_name=team.name,
            cutoff=cutoff,
            solved=solved,
            incorrect=incorrect,
        )

    async def recent_submissions(
        self,
        session: AsyncSession,
        limit: int = 50,
        as_of: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """
        Activity feed, newest first. Submitted flags are never included.

        Args:
            session: Database session
            limit: Maximum number of entries to return
            as_of: Optional explicit cutoff

        Returns:
            List of feed entries
        """
        cutoff = await self.resolve_cutoff(session, as_of)
        result = await session.execute(
            select(Submission, Team.name, Challenge.title, Challenge.difficulty)
            .join(Team, Team.id == Submission.team_id)
            .outerjoin(Challenge, Challenge.id == Submission.challenge_id)
            .where(Submission.submitted_at <= cutoff)
            .order_by(Submission.submitted_at.desc(), Submission.id)
            .limit(limit)
        )
        return [
            {
                "submission_id": str(submission.id),
                "team_id": str(submission.team_id),
                "team_name": team_name,
                "challenge_id": str(submission.challenge_id),
                "challenge_title": title,
                "difficulty": difficulty,
                "is_correct": submission.is_correct,
                "points_awarded": submission.points_awarded,
                "submitted_at": submission.submitted_at.isoformat(),
            }
            for submission, team_name, title, difficulty in result.all()
        ]

    async def toggle_freeze(self, session: AsyncSession, is_frozen: bool) -> FreezeState:
        """
        Switch the public leaderboard freeze.

        Turning it on stamps ``frozen_at`` only if it was not already frozen;
        turning it off clears the stamp. Callers must be privileged.

        Args:
            session: Database session
            is_frozen: Desired state

        Returns:
            The updated FreezeState
        """
        state = await FreezeState.get(session)
        now = self._clock()

        async with atomic(session):
            if is_frozen:
                await session.execute(
                    update(FreezeState)
                    .where(FreezeState.singleton_pk == SINGLETON_PK)
                    .where(FreezeState.is_frozen == False)  # noqa: E712
                    .values(is_frozen=True, frozen_at=now)
                    .execution_options(synchronize_session=False)
                )
            else:
                await session.execute(
                    update(FreezeState)
                    .where(FreezeState.singleton_pk == SINGLETON_PK)
                    .values(is_frozen=False, frozen_at=None)
                    .execution_options(synchronize_session=False)
                )

        await session.refresh(state)
        await self.invalidate_cache()
        logger.info("Leaderboard freeze set to %s (frozen_at=%s)", state.is_frozen, state.frozen_at)
        return state


# Global service instance
_leaderboard_service: LeaderboardService | None = None


def get_leaderboard_service() -> LeaderboardService:
    """Get or create the leaderboard service singleton."""
    global _leaderboard_service
    if _leaderboard_service is None:
        redis_client = get_redis() if settings.leaderboard_cache_ttl > 0 else None
        _leaderboard_service = LeaderboardService(
            redis_client=redis_client,
            cache_ttl=settings.leaderboard_cache_ttl,
        )
    return _leaderboard_service
