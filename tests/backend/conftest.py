"""
Shared fixtures for the ClubCTF backend tests.

Each test gets its own SQLite file so that concurrent sessions really use
separate connections.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from clubctf.core.database import build_engine, build_session_factory
from clubctf.models import Base, Category, Challenge, Difficulty
from clubctf.services.invite_service import InviteManager
from clubctf.services.leaderboard import LeaderboardService
from clubctf.services.submission_service import SubmissionProcessor
from clubctf.services.team_service import TeamRegistry


class FakeClock:
    """Manually advanced clock handed to the services."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'clubctf.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def invites(clock):
    return InviteManager(member_cap=4, clock=clock)


@pytest.fixture
def registry(invites, clock):
    return TeamRegistry(invites=invites, invite_origin="https://ctf.example.org", clock=clock)


@pytest.fixture
def locked_registry(invites, clock):
    return TeamRegistry(invites=invites, competition_locked=True, clock=clock)


@pytest.fixture
def processor(clock):
    return SubmissionProcessor(clock=clock)


@pytest.fixture
def leaderboard(clock):
    return LeaderboardService(redis_client=None, clock=clock)


@pytest.fixture
def make_challenge(session):
    """Factory inserting a catalog entry."""

    async def _make(
        title: str | None = None,
        points: int = 100,
        difficulty: Difficulty = Difficulty.EASY,
        flag: str = "flag{test}",
        is_active: bool = True,
        category: Category = Category.MISC,
    ) -> Challenge:
        challenge = Challenge(
            title=title or f"challenge-{uuid.uuid4().hex[:6]}",
            description="",
            points=points,
            difficulty=difficulty.value,
            category=category.value,
            flag=flag,
            is_active=is_active,
        )
        session.add(challenge)
        await session.commit()
        return challenge

    return _make
