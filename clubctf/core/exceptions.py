"""
Domain errors for the ClubCTF engine.

Every error names the invariant that blocked the operation. All of them are
recoverable: the HTTP layer renders them as ``{"detail", "code"}`` and the
client may retry with corrected input.
"""

from fastapi import status


class EngineError(Exception):
    """Base class for engine errors."""

    code = "engine_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AlreadyOnTeam(EngineError):
    code = "already_on_team"
    status_code = status.HTTP_409_CONFLICT
    default_message = "You are already on a team. Leave it first."


class NotOnTeam(EngineError):
    code = "not_on_team"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not on this team"


class NotCaptain(EngineError):
    code = "not_captain"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Only the team captain can do that"


class NotMember(EngineError):
    code = "not_member"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "That user is not a member of your team"


class CannotRemoveSelf(EngineError):
    code = "cannot_remove_self"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "The captain cannot be removed. Transfer captaincy or leave instead."


class CompetitionLocked(EngineError):
    code = "competition_locked"
    status_code = status.HTTP_423_LOCKED
    default_message = "Team rosters are locked while the competition is active"


class TeamFull(EngineError):
    code = "team_full"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This team is full"


class InvalidInvite(EngineError):
    code = "invalid_invite"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "This invite link is invalid"


class InviteExpired(EngineError):
    code = "invite_expired"
    status_code = status.HTTP_410_GONE
    default_message = "This invite link has expired. Ask the team captain for a new one."


class InviteExhausted(EngineError):
    code = "invite_exhausted"
    status_code = status.HTTP_410_GONE
    default_message = "This invite link has reached its maximum number of uses"


class ChallengeNotFound(EngineError):
    code = "challenge_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Challenge not found"


class ChallengeInactive(EngineError):
    code = "challenge_inactive"
    status_code = status.HTTP_410_GONE
    default_message = "Challenge is no longer active"


class InvalidTeamName(EngineError):
    code = "invalid_team_name"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Team name must not be empty"


class TeamNotFound(EngineError):
    code = "team_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Team not found"


class TransientFailure(EngineError):
    """Opaque storage failure. Nothing was applied; safe to retry."""

    code = "transient_failure"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Temporary failure, please try again"
