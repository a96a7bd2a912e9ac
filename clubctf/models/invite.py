"""
Invite token model for the ClubCTF engine.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from clubctf.models.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin


class InviteToken(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    Redeemable code granting one join per use to a specific team.

    A token is only honoured while it is the team's current ``invite_code``.
    Replaced tokens are kept for reference but never match again.
    """

    __tablename__ = "invite_tokens"

    code: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        index=True,
        nullable=False,
    )
    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Null = never expires",
    )
    max_uses: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Null = unlimited",
    )
    use_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("max_uses IS NULL OR max_uses > 0", name="ck_invite_tokens_max_uses_positive"),
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.use_count >= self.max_uses

    @property
    def uses_remaining(self) -> int | None:
        if self.max_uses is None:
            return None
        return max(self.max_uses - self.use_count, 0)

    def __repr__(self) -> str:
        return f"<InviteToken(code={self.code}, team={self.team_id}, uses={self.use_count}/{self.max_uses})>"
