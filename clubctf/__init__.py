"""
ClubCTF engine: teams, invites, flag scoring and the leaderboard.
"""

__version__ = "1.0.0"
