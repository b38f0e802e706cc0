from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import DateTime, Double, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.boards.models import Base


class Board(Base):
    """A container of cards. The ordering engine only needs its id."""

    __tablename__ = "boards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    cards: Mapped[list["Card"]] = relationship(
        "Card",
        back_populates="board",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Card(Base):
    __tablename__ = "cards"
    __table_args__ = (
        Index("idx_cards_board_position", "board_id", "position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    board_id: Mapped[int] = mapped_column(ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Must stay double precision: a narrower column runs out of midpoints
    # long before the allocator notices. NULL = created but not yet placed.
    position: Mapped[float | None] = mapped_column(Double(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    board: Mapped[Board] = relationship("Board", back_populates="cards")
    closure: Mapped[CardClosure | None] = relationship(
        "CardClosure",
        back_populates="card",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def state(self) -> "Open | Closed":
        if self.closure is None:
            return Open()
        return Closed(by_user_id=self.closure.closed_by_user_id, at=self.closure.closed_at)


class CardClosure(Base):
    """Presence of this row is what makes a card closed."""

    __tablename__ = "card_closures"

    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True)
    closed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    card: Mapped[Card] = relationship("Card", back_populates="closure")


@dataclass(frozen=True)
class Open:
    pass


@dataclass(frozen=True)
class Closed:
    by_user_id: int | None
    at: datetime
