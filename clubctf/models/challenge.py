"""
Challenge and Submission models for the ClubCTF engine.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clubctf.models.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, utcnow


class Difficulty(str, Enum):
    """Challenge difficulty tiers, easiest first."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    BEAST = "beast"


class Category(str, Enum):
    """Challenge categories."""

    WEB = "web"
    CRYPTO = "crypto"
    FORENSICS = "forensics"
    PWN = "pwn"
    REVERSE = "reverse"
    OSINT = "osint"
    MISC = "misc"


class Challenge(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Catalog entry for a CTF challenge. Read-only to the scoring engine."""

    __tablename__ = "challenges"

    # Basic Info
    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )
    points: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100,
    )

    # Categorization
    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="web, crypto, forensics, pwn, reverse, osint, misc",
    )
    difficulty: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Difficulty.EASY.value,
        comment="easy, medium, hard, beast",
    )

    # Flag (never returned to non-privileged callers)
    flag: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    # Soft-delete switch; submissions keep resolving against inactive rows
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_challenges_category_difficulty", "category", "difficulty"),
    )

    def __repr__(self) -> str:
        return f"<Challenge(id={self.id}, title={self.title}, points={self.points})>"


class Submission(UUIDPrimaryKeyMixin, Base):
    """
    Append-only log of flag attempts.

    ``team_id`` is deliberately not a foreign key: rows outlive team deletion
    and stay attributable for auditing. The partial unique index allows at
    most one scored row per (team, challenge).
    """

    __tablename__ = "submissions"

    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    challenge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    submitted_by: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    submitted_flag: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    is_correct: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
    )
    is_scored: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="True only on the single row that counted for the team",
    )
    points_awarded: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    submitted_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index(
            "uix_submissions_team_challenge_scored",
            "team_id",
            "challenge_id",
            unique=True,
            postgresql_where=text("is_scored"),
            sqlite_where=text("is_scored = 1"),
        ),
        Index("ix_submissions_team_submitted", "team_id", "submitted_at"),
        Index("ix_submissions_challenge_correct", "challenge_id", "is_correct"),
    )

    def __repr__(self) -> str:
        return (
            f"<Submission(team={self.team_id}, challenge={self.challenge_id}, "
            f"correct={self.is_correct}, points={self.points_awarded})>"
        )
