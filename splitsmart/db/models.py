from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from splitsmart.services.types import EventStatus, SplitType, new_id, utc_now


class Base(DeclarativeBase):
    pass


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, name="event_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=EventStatus.ACTIVE,
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    memberships: Mapped[list[EventParticipant]] = relationship(back_populates="event", cascade="all, delete-orphan")
    expenses: Mapped[list[Expense]] = relationship(back_populates="event", cascade="all, delete-orphan")
    settlements: Mapped[list[Settlement]] = relationship(back_populates="event", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == EventStatus.ACTIVE


class Participant(Base):
    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class EventParticipant(Base):
    __tablename__ = "event_participants"
    __table_args__ = (
        UniqueConstraint("event_id", "participant_id", name="uq_event_participant"),
        Index("ix_event_participants_event_id", "event_id"),
    )

    # Autoincrement id doubles as the membership insertion order.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(32), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    participant_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    event: Mapped[Event] = relationship(back_populates="memberships")
    participant: Mapped[Participant] = relationship()


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (Index("ix_expenses_event_id", "event_id"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    event_id: Mapped[str] = mapped_column(String(32), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    payer_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("participants.id", ondelete="RESTRICT"),
        nullable=False,
    )
    # Minor units (cents) of the event currency.
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    event: Mapped[Event] = relationship(back_populates="expenses")
    splits: Mapped[list[Split]] = relationship(back_populates="expense", cascade="all, delete-orphan")


class Split(Base):
    __tablename__ = "splits"
    __table_args__ = (
        Index("ix_splits_expense_id", "expense_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    expense_id: Mapped[str] = mapped_column(String(32), ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False)
    participant_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    type: Mapped[SplitType] = mapped_column(
        Enum(SplitType, name="split_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SplitType.EQUAL,
    )

    expense: Mapped[Expense] = relationship(back_populates="splits")


class Settlement(Base):
    __tablename__ = "settlements"
    __table_args__ = (
        Index("ix_settlements_event_id", "event_id"),
        Index("ix_settlements_event_paid", "event_id", "is_paid"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    event_id: Mapped[str] = mapped_column(String(32), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    from_participant_id: Mapped[str] = mapped_column(String(32), ForeignKey("participants.id"), nullable=False)
    from_participant_name: Mapped[str] = mapped_column(String(255), nullable=False)
    to_participant_id: Mapped[str] = mapped_column(String(32), ForeignKey("participants.id"), nullable=False)
    to_participant_name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Status of the owning event when the row was created or last touched.
    event_status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, name="event_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=EventStatus.ACTIVE,
    )
    receipt_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    event: Mapped[Event] = relationship(back_populates="settlements")
