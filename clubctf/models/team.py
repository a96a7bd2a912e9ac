"""
Team and membership models for the ClubCTF engine.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clubctf.core.config import TEAM_NAME_MAX_LENGTH
from clubctf.models.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, utcnow


class Team(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A capped group of users competing jointly."""

    __tablename__ = "teams"

    name: Mapped[str] = mapped_column(
        String(TEAM_NAME_MAX_LENGTH),
        nullable=False,
        index=True,
    )

    # Captain (always a current member)
    captain_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
    )

    # Code of the current invite token; older tokens stop matching immediately
    invite_code: Mapped[str | None] = mapped_column(
        String(32),
        unique=True,
        nullable=True,
    )

    # Maintained by conditional UPDATEs so capacity is checked at commit time
    member_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Relationships
    members: Mapped[list["TeamMember"]] = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.joined_at",
    )

    __table_args__ = (
        CheckConstraint("member_count >= 0", name="ck_teams_member_count_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name={self.name}, members={self.member_count})>"


class TeamMember(UUIDPrimaryKeyMixin, Base):
    """Membership of one user in one team."""

    __tablename__ = "team_members"

    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Unique across all teams: a user is on at most one team
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        unique=True,
    )
    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )

    team: Mapped["Team"] = relationship("Team", back_populates="members")

    __table_args__ = (
        Index("ix_team_members_team_joined", "team_id", "joined_at"),
    )

    def __repr__(self) -> str:
        return f"<TeamMember(team={self.team_id}, user={self.user_id})>"
