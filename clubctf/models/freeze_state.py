"""
Leaderboard freeze state for the ClubCTF engine.
Singleton row read by the leaderboard to pick its submission cutoff.
"""

from datetime import datetime

from sqlalchemy import Boolean, Integer, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from clubctf.models.base import Base, UTCDateTime

SINGLETON_PK = 1


class FreezeState(Base):
    """
    Freeze state singleton.

    Use FreezeState.get() to retrieve the singleton instance.
    """

    __tablename__ = "freeze_state"

    singleton_pk: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        default=SINGLETON_PK,
        nullable=False,
    )
    is_frozen: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    frozen_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Stamped once when the freeze is switched on",
    )

    @classmethod
    async def get(cls, session: AsyncSession) -> "FreezeState":
        """
        Get or create the singleton freeze row.

        Args:
            session: Async database session

        Returns:
            FreezeState: The singleton instance
        """
        result = await session.execute(
            select(cls)
            .where(cls.singleton_pk == SINGLETON_PK)
            .execution_options(populate_existing=True)
        )
        state = result.scalar_one_or_none()

        if state is None:
            session.add(cls(singleton_pk=SINGLETON_PK, is_frozen=False, frozen_at=None))
            try:
                await session.commit()
            except IntegrityError:
                # Another request created it first
                await session.rollback()
            result = await session.execute(select(cls).where(cls.singleton_pk == SINGLETON_PK))
            state = result.scalar_one()

        return state

    def __repr__(self) -> str:
        return f"<FreezeState(frozen={self.is_frozen}, frozen_at={self.frozen_at})>"
