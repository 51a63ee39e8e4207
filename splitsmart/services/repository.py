from __future__ import annotations

import functools
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any, Optional, Protocol, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from splitsmart.db.models import Event, EventParticipant, EventStatus, Expense, Participant, Settlement, Split
from splitsmart.services.errors import PersistenceError

T = TypeVar("T")


class LedgerRepository(Protocol):
    """What the lifecycle manager needs from storage."""

    async def get_event(self, event_id: str) -> Optional[Event]: ...

    async def get_expenses_by_event(self, event_id: str) -> list[Expense]: ...

    async def get_splits_by_event(self, event_id: str) -> list[Split]: ...

    async def get_event_participants(self, event_id: str) -> list[Participant]: ...

    async def get_settlements_by_event(self, event_id: str) -> list[Settlement]: ...

    async def get_settlement_by_id(self, settlement_id: str) -> Optional[Settlement]: ...

    async def create_settlement(self, settlement: Settlement) -> Settlement: ...

    async def delete_unpaid_settlements_by_event(self, event_id: str) -> int: ...

    async def update_settlement(self, settlement_id: str, **changes: Any) -> Optional[Settlement]: ...

    async def update_event(self, event_id: str, **changes: Any) -> Optional[Event]: ...

    async def update_settlements_event_status(self, event_id: str, status: EventStatus) -> None: ...

    async def reset_settlement_payments(self, event_id: str) -> None: ...


RepositoryFactory = Callable[[], Any]  # returns an async context manager yielding a LedgerRepository


def _db_errors(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as e:
            raise PersistenceError(f"{fn.__name__} failed: {e}") from e

    return wrapper


class SqlLedgerRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # events / participants

    @_db_errors
    async def get_event(self, event_id: str) -> Optional[Event]:
        return await self.session.get(Event, event_id)

    @_db_errors
    async def update_event(self, event_id: str, **changes: Any) -> Optional[Event]:
        event = await self.session.get(Event, event_id)
        if event is None:
            return None
        for key, value in changes.items():
            setattr(event, key, value)
        await self.session.flush()
        return event

    @_db_errors
    async def get_participant(self, participant_id: str) -> Optional[Participant]:
        return await self.session.get(Participant, participant_id)

    @_db_errors
    async def get_event_participants(self, event_id: str) -> list[Participant]:
        res = await self.session.scalars(
            select(Participant)
            .join(EventParticipant, EventParticipant.participant_id == Participant.id)
            .where(EventParticipant.event_id == event_id)
            .order_by(EventParticipant.id.asc())
        )
        return list(res)

    @_db_errors
    async def get_membership(self, event_id: str, participant_id: str) -> Optional[EventParticipant]:
        return await self.session.scalar(
            select(EventParticipant).where(
                EventParticipant.event_id == event_id,
                EventParticipant.participant_id == participant_id,
            )
        )

    # expenses / splits

    @_db_errors
    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        return await self.session.get(Expense, expense_id)

    @_db_errors
    async def get_expenses_by_event(self, event_id: str) -> list[Expense]:
        res = await self.session.scalars(
            select(Expense).where(Expense.event_id == event_id).order_by(Expense.date.asc(), Expense.created_at.asc())
        )
        return list(res)

    @_db_errors
    async def get_splits_by_event(self, event_id: str) -> list[Split]:
        res = await self.session.scalars(
            select(Split).join(Expense, Expense.id == Split.expense_id).where(Expense.event_id == event_id)
        )
        return list(res)

    @_db_errors
    async def get_splits_by_expense(self, expense_id: str) -> list[Split]:
        res = await self.session.scalars(select(Split).where(Split.expense_id == expense_id))
        return list(res)

    @_db_errors
    async def count_expenses_paid_by(self, event_id: str, participant_id: str) -> int:
        res = await self.session.scalars(
            select(Expense.id).where(Expense.event_id == event_id, Expense.payer_id == participant_id)
        )
        return len(res.all())

    @_db_errors
    async def delete_splits_by_expense(self, expense_id: str) -> None:
        await self.session.execute(delete(Split).where(Split.expense_id == expense_id))

    @_db_errors
    async def add_all(self, rows: Sequence[Any]) -> None:
        self.session.add_all(rows)
        await self.session.flush()

    @_db_errors
    async def delete(self, row: Any) -> None:
        await self.session.delete(row)
        await self.session.flush()

    # settlements

    @_db_errors
    async def get_settlements_by_event(self, event_id: str) -> list[Settlement]:
        res = await self.session.scalars(
            select(Settlement).where(Settlement.event_id == event_id).order_by(Settlement.created_at.asc())
        )
        return list(res)

    @_db_errors
    async def get_settlement_by_id(self, settlement_id: str) -> Optional[Settlement]:
        return await self.session.get(Settlement, settlement_id)

    @_db_errors
    async def create_settlement(self, settlement: Settlement) -> Settlement:
        self.session.add(settlement)
        await self.session.flush()
        return settlement

    @_db_errors
    async def delete_unpaid_settlements_by_event(self, event_id: str) -> int:
        res = await self.session.execute(
            delete(Settlement).where(Settlement.event_id == event_id, Settlement.is_paid.is_(False))
        )
        return int(res.rowcount or 0)

    @_db_errors
    async def update_settlement(self, settlement_id: str, **changes: Any) -> Optional[Settlement]:
        settlement = await self.session.get(Settlement, settlement_id)
        if settlement is None:
            return None
        for key, value in changes.items():
            setattr(settlement, key, value)
        await self.session.flush()
        return settlement

    @_db_errors
    async def update_settlements_event_status(self, event_id: str, status: EventStatus) -> None:
        await self.session.execute(
            update(Settlement).where(Settlement.event_id == event_id).values(event_status=status)
        )

    @_db_errors
    async def reset_settlement_payments(self, event_id: str) -> None:
        await self.session.execute(
            update(Settlement)
            .where(Settlement.event_id == event_id)
            .values(is_paid=False, paid_at=None, receipt_image=None, notes=None, event_status=EventStatus.ACTIVE)
        )


@asynccontextmanager
async def ledger_scope(sessionmaker: async_sessionmaker[AsyncSession]) -> AsyncIterator[SqlLedgerRepository]:
    """One unit of work: commit when the block finishes, roll back on any error."""

    async with sessionmaker() as session:
        try:
            yield SqlLedgerRepository(session)
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise PersistenceError(f"unit of work failed: {e}") from e
        except Exception:
            await session.rollback()
            raise
