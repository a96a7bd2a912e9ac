"""
Leaderboard tests for the ClubCTF engine.

Tests for:
- Ranking and tie-breaking
- Difficulty breakdown and incorrect attempts
- Freeze snapshot semantics
- Team detail and the recent submissions feed
- Redis caching of public standings
"""

import json
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from clubctf.core.exceptions import TeamNotFound
from clubctf.models import Difficulty
from clubctf.services.challenge_service import deactivate_challenge
from clubctf.services.leaderboard import (
    STANDINGS_CACHE_KEY,
    LeaderboardEntry,
    LeaderboardService,
    rank_entries,
)


async def _team(session, registry, name):
    captain = uuid.uuid4()
    team = await registry.create_team(session, captain, name)
    return team, captain


# ============== Ranking ==============

class TestRankEntries:
    """Tests for the pure ranking function."""

    def test_points_then_last_solve(self):
        """Test points win, then the earlier last solve."""
        t0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        early = LeaderboardEntry(team_id=uuid.uuid4(), team_name="early", total_points=300, last_solve_at=t0)
        late = LeaderboardEntry(
            team_id=uuid.uuid4(), team_name="late", total_points=300, last_solve_at=t0 + timedelta(minutes=5)
        )
        top = LeaderboardEntry(
            team_id=uuid.uuid4(), team_name="top", total_points=500, last_solve_at=t0 + timedelta(hours=1)
        )
        idle = LeaderboardEntry(team_id=uuid.uuid4(), team_name="idle")

        ranked = rank_entries([idle, late, early, top])

        assert [e.team_name for e in ranked] == ["top", "early", "late", "idle"]
        assert [e.rank for e in ranked] == [1, 2, 3, 4]

    def test_full_tie_is_deterministic(self):
        """Test identical scores fall back to creation time."""
        t0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        older = LeaderboardEntry(team_id=uuid.uuid4(), team_name="older", team_created_at=t0)
        newer = LeaderboardEntry(team_id=uuid.uuid4(), team_name="newer", team_created_at=t0 + timedelta(days=1))

        assert [e.team_name for e in rank_entries([newer, older])] == ["older", "newer"]


class TestComputeStandings:
    """Tests for LeaderboardService.compute_standings."""

    @pytest.mark.asyncio
    async def test_tie_broken_by_earlier_last_solve(self, session, clock, registry, processor, leaderboard, make_challenge):
        """Test equal points rank the team that finished first higher."""
        slow, slow_captain = await _team(session, registry, "Slow")
        fast, fast_captain = await _team(session, registry, "Fast")
        idle, _ = await _team(session, registry, "Idle")
        challenge = await make_challenge(points=100, flag="flag{a}")

        clock.advance(minutes=1)
        await processor.submit_flag(session, fast_captain, fast.id, challenge.id, "flag{a}")
        clock.advance(minutes=1)
        await processor.submit_flag(session, slow_captain, slow.id, challenge.id, "flag{a}")
        clock.advance(minutes=1)

        standings = await leaderboard.compute_standings(session)

        assert [e.team_name for e in standings] == ["Fast", "Slow", "Idle"]
        assert standings[0].total_points == standings[1].total_points == 100
        assert standings[2].total_points == 0
        assert standings[2].last_solve_at is None

    @pytest.mark.asyncio
    async def test_breakdown_and_incorrect_attempts(self, session, clock, registry, processor, leaderboard, make_challenge):
        """Test solves are bucketed by difficulty and wrong attempts counted."""
        team, captain = await _team(session, registry, "Breakdown")
        easy = await make_challenge(points=100, difficulty=Difficulty.EASY, flag="flag{e}")
        beast = await make_challenge(points=500, difficulty=Difficulty.BEAST, flag="flag{b}")

        clock.advance(minutes=1)
        await processor.submit_flag(session, captain, team.id, easy.id, "flag{x}")
        await processor.submit_flag(session, captain, team.id, easy.id, "flag{e}")
        await processor.submit_flag(session, captain, team.id, beast.id, "flag{b}")
        clock.advance(minutes=1)

        (entry,) = await leaderboard.compute_standings(session)

        assert entry.total_points == 600
        assert entry.total_solves == 2
        assert entry.incorrect_attempts == 1
        assert entry.solves_by_difficulty == {"easy": 1, "medium": 0, "hard": 0, "beast": 1}
        assert entry.member_count == 1

    @pytest.mark.asyncio
    async def test_inactive_challenges_still_count(self, session, clock, registry, processor, leaderboard, make_challenge):
        """Test points survive challenge deactivation."""
        team, captain = await _team(session, registry, "Keepers")
        challenge = await make_challenge(points=300, difficulty=Difficulty.HARD, flag="flag{k}")
        await processor.submit_flag(session, captain, team.id, challenge.id, "flag{k}")
        await deactivate_challenge(session, challenge.id)
        clock.advance(minutes=1)

        (entry,) = await leaderboard.compute_standings(session)

        assert entry.total_points == 300
        assert entry.solves_by_difficulty["hard"] == 1

    @pytest.mark.asyncio
    async def test_deleted_teams_excluded(self, session, clock, registry, processor, leaderboard, make_challenge):
        """Test a deleted team disappears from the standings."""
        gone, gone_captain = await _team(session, registry, "Gone")
        await _team(session, registry, "Stays")
        challenge = await make_challenge(points=100, flag="flag{g}")
        await processor.submit_flag(session, gone_captain, gone.id, challenge.id, "flag{g}")
        await registry.leave_team(session, gone_captain)
        clock.advance(minutes=1)

        standings = await leaderboard.compute_standings(session)

        assert [e.team_name for e in standings] == ["Stays"]

    @pytest.mark.asyncio
    async def test_entries_list_members_in_join_order(self, session, clock, registry, invites, leaderboard):
        """Test each entry carries its roster, captain first."""
        team, captain = await _team(session, registry, "Roster")
        code = team.invite_code
        first, second = uuid.uuid4(), uuid.uuid4()
        clock.advance(minutes=1)
        await invites.redeem(session, code, first)
        clock.advance(minutes=1)
        await invites.redeem(session, code, second)

        (entry,) = await leaderboard.compute_standings(session)

        assert entry.members == [captain, first, second]
        assert entry.member_count == 3
        restored = LeaderboardEntry.from_dict(entry.to_dict())
        assert restored.members == [captain, first, second]

    @pytest.mark.asyncio
    async def test_as_of_bounds_submissions(self, session, clock, registry, processor, leaderboard, make_challenge):
        """Test an explicit cutoff ignores later submissions."""
        team, captain = await _team(session, registry, "Historic")
        first = await make_challenge(points=100, flag="flag{1}")
        second = await make_challenge(points=200, flag="flag{2}")

        clock.advance(minutes=1)
        await processor.submit_flag(session, captain, team.id, first.id, "flag{1}")
        cutoff = clock.advance(minutes=1)
        clock.advance(minutes=1)
        await processor.submit_flag(session, captain, team.id, second.id, "flag{2}")

        (entry,) = await leaderboard.compute_standings(session, as_of=cutoff)

        assert entry.total_points == 100


# ============== Freeze ==============

class TestFreeze:
    """Freeze snapshot semantics."""

    @pytest.mark.asyncio
    async def test_frozen_standings_ignore_later_solves(
        self, session, clock, registry, processor, leaderboard, make_challenge
    ):
        """Test solves after the freeze are recorded but hidden until unfreeze."""
        team, captain = await _team(session, registry, "Frozen")
        before = await make_challenge(points=100, flag="flag{before}")
        after = await make_challenge(points=200, flag="flag{after}")

        clock.advance(minutes=1)
        await processor.submit_flag(session, captain, team.id, before.id, "flag{before}")
        clock.advance(minutes=1)
        state = await leaderboard.toggle_freeze(session, True)
        frozen_at = state.frozen_at
        clock.advance(minutes=1)
        await processor.submit_flag(session, captain, team.id, after.id, "flag{after}")
        clock.advance(minutes=1)

        snapshot = await leaderboard.get_public_standings(session)
        assert snapshot.is_frozen is True
        assert snapshot.cutoff == frozen_at
        assert snapshot.entries[0].total_points == 100

        frozen = await leaderboard.compute_standings(session)
        pinned = await leaderboard.compute_standings(session, as_of=frozen_at)
        assert [e.to_dict() for e in frozen] == [e.to_dict() for e in pinned]

        live = await leaderboard.compute_standings(session, as_of=clock())
        assert live[0].total_points == 300

        await leaderboard.toggle_freeze(session, False)
        snapshot = await leaderboard.get_public_standings(session)
        assert snapshot.is_frozen is False
        assert snapshot.entries[0].total_points == 300

    @pytest.mark.asyncio
    async def test_refreezing_keeps_timestamp(self, session, clock, leaderboard):
        """Test freezing twice does not move frozen_at."""
        first = await leaderboard.toggle_freeze(session, True)
        stamped = first.frozen_at
        clock.advance(hours=1)

        second = await leaderboard.toggle_freeze(session, True)

        assert second.is_frozen is True
        assert second.frozen_at == stamped

    @pytest.mark.asyncio
    async def test_unfreeze_clears_timestamp(self, session, leaderboard):
        """Test unfreezing clears frozen_at."""
        await leaderboard.toggle_freeze(session, True)
        state = await leaderboard.toggle_freeze(session, False)

        assert state.is_frozen is False
        assert state.frozen_at is None


# ============== Team Detail & Feed ==============

class TestTeamDetail:
    """Tests for LeaderboardService.team_detail."""

    @pytest.mark.asyncio
    async def test_detail_lists_newest_first(self, session, clock, registry, processor, leaderboard, make_challenge):
        """Test solved and incorrect lists are most-recent-first."""
        team, captain = await _team(session, registry, "Detailed")
        first = await make_challenge(title="First", points=100, flag="flag{1}")
        second = await make_challenge(title="Second", points=200, flag="flag{2}")

        clock.advance(minutes=1)
        await processor.submit_flag(session, captain, team.id, first.id, "flag{1}")
        clock.advance(minutes=1)
        await processor.submit_flag(session, captain, team.id, second.id, "nope")
        clock.advance(minutes=1)
        await processor.submit_flag(session, captain, team.id, second.id, "flag{2}")
        clock.advance(minutes=1)

        detail = await leaderboard.team_detail(session, team.id)

        assert [s["title"] for s in detail.solved] == ["Second", "First"]
        assert [s["points"] for s in detail.solved] == [200, 100]
        assert [a["title"] for a in detail.incorrect] == ["Second"]

    @pytest.mark.asyncio
    async def test_unknown_team(self, session, leaderboard):
        """Test details of a missing team."""
        with pytest.raises(TeamNotFound):
            await leaderboard.team_detail(session, uuid.uuid4())


class TestRecentSubmissions:
    """Tests for LeaderboardService.recent_submissions."""

    @pytest.mark.asyncio
    async def test_feed_is_newest_first_without_flags(
        self, session, clock, registry, processor, leaderboard, make_challenge
    ):
        """Test the feed order, limit, and that flags never leak."""
        team, captain = await _team(session, registry, "Feed")
        challenge = await make_challenge(title="Feedable", points=100, flag="flag{feed}")

        for guess in ("a", "b", "flag{feed}"):
            clock.advance(minutes=1)
            await processor.submit_flag(session, captain, team.id, challenge.id, guess)
        clock.advance(minutes=1)

        feed = await leaderboard.recent_submissions(session, limit=2)

        assert len(feed) == 2
        assert feed[0]["is_correct"] is True
        assert feed[0]["points_awarded"] == 100
        assert feed[0]["team_name"] == "Feed"
        assert feed[0]["challenge_title"] == "Feedable"
        assert feed[1]["is_correct"] is False
        assert all("flag" not in key for entry in feed for key in entry)


# ============== Caching ==============

class TestStandingsCache:
    """Redis caching of public standings."""

    @pytest.mark.asyncio
    async def test_miss_computes_and_stores(self, session, clock, registry):
        """Test a cache miss writes the snapshot with the configured TTL."""
        await _team(session, registry, "Cached")
        redis_client = AsyncMock()
        redis_client.get.return_value = None
        service = LeaderboardService(redis_client=redis_client, cache_ttl=30, clock=clock)

        snapshot = await service.get_public_standings(session)

        assert snapshot.cached is False
        assert snapshot.computed_at == clock()
        redis_client.set.assert_awaited_once()
        args, kwargs = redis_client.set.call_args
        assert args[0] == STANDINGS_CACHE_KEY
        assert kwargs["ex"] == 30
        assert json.loads(args[1])["entries"][0]["team_name"] == "Cached"

    @pytest.mark.asyncio
    async def test_hit_returns_cached_snapshot(self, session, clock, registry):
        """Test a cache hit is served as-is and marked cached."""
        await _team(session, registry, "Cached")
        redis_client = AsyncMock()
        redis_client.get.return_value = None
        service = LeaderboardService(redis_client=redis_client, cache_ttl=30, clock=clock)
        first = await service.get_public_standings(session)
        redis_client.get.return_value = redis_client.set.call_args.args[1]

        clock.advance(seconds=10)
        second = await service.get_public_standings(session)

        assert second.cached is True
        assert second.computed_at == first.computed_at
        assert [e.team_id for e in second.entries] == [e.team_id for e in first.entries]
        assert redis_client.set.await_count == 1

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back(self, session, clock, registry):
        """Test an unavailable cache does not break the leaderboard."""
        await _team(session, registry, "Resilient")
        redis_client = AsyncMock()
        redis_client.get.side_effect = RedisConnectionError("down")
        redis_client.set.side_effect = RedisConnectionError("down")
        service = LeaderboardService(redis_client=redis_client, cache_ttl=30, clock=clock)

        snapshot = await service.get_public_standings(session)

        assert [e.team_name for e in snapshot.entries] == ["Resilient"]

    @pytest.mark.asyncio
    async def test_freeze_invalidates_cache(self, session, clock):
        """Test toggling the freeze drops the cached standings."""
        redis_client = AsyncMock()
        service = LeaderboardService(redis_client=redis_client, cache_ttl=30, clock=clock)

        await service.toggle_freeze(session, True)

        redis_client.delete.assert_awaited_once_with(STANDINGS_CACHE_KEY)

    @pytest.mark.asyncio
    async def test_snapshot_not_cached_when_freeze_flips_mid_compute(self, session, session_factory, clock, registry):
        """Test a snapshot computed before a freeze toggle is never written back."""
        await _team(session, registry, "Caught Out")
        redis_client = AsyncMock()
        redis_client.get.return_value = None
        service = LeaderboardService(redis_client=redis_client, cache_ttl=30, clock=clock)
        compute = service._standings_at

        async def compute_then_freeze(s, cutoff):
            entries = await compute(s, cutoff)
            async with session_factory() as other:
                await service.toggle_freeze(other, True)
            return entries

        service._standings_at = compute_then_freeze
        snapshot = await service.get_public_standings(session)

        assert snapshot.is_frozen is False
        redis_client.delete.assert_awaited_once_with(STANDINGS_CACHE_KEY)
        redis_client.set.assert_not_awaited()
