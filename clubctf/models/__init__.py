"""
ClubCTF Models Package

All SQLAlchemy models for the ClubCTF engine.
"""

from clubctf.models.base import Base
from clubctf.models.challenge import Category, Challenge, Difficulty, Submission
from clubctf.models.freeze_state import FreezeState
from clubctf.models.invite import InviteToken
from clubctf.models.team import Team, TeamMember

__all__ = [
    # Base
    "Base",
    # Teams
    "Team",
    "TeamMember",
    "InviteToken",
    # Challenges
    "Category",
    "Challenge",
    "Difficulty",
    "Submission",
    # Leaderboard
    "FreezeState",
]
