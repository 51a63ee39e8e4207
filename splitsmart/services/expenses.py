from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime
from typing import Optional

from splitsmart.db.models import Event, EventParticipant, Expense, Participant, Split
from splitsmart.services.errors import EventFrozenError, NotFoundError, ValidationError
from splitsmart.services.lifecycle import SettlementLifecycleManager
from splitsmart.services.money import Amount, from_cents, to_cents
from splitsmart.services.repository import RepositoryFactory
from splitsmart.services.splits import SplitShare, calculate_equal_split, ensure_split_matches

logger = logging.getLogger(__name__)


async def _require_active_event(repo, event_id: str) -> Event:
    event = await repo.get_event(event_id)
    if event is None:
        raise NotFoundError("Event", event_id)
    if not event.is_active:
        raise EventFrozenError(event_id, event.status.value)
    return event


async def _require_members(repo, event_id: str, participant_ids: set[str]) -> list[Participant]:
    members = await repo.get_event_participants(event_id)
    missing = participant_ids - {m.id for m in members}
    if missing:
        raise ValidationError(f"Participants {sorted(missing)} are not part of event {event_id!r}")
    return members


def _split_rows(expense_id: str, shares: Sequence[SplitShare]) -> list[Split]:
    return [
        Split(
            expense_id=expense_id,
            participant_id=s.participant_id,
            amount_cents=s.amount_cents,
            percentage=float(s.percentage) if s.percentage is not None else None,
            type=s.type,
        )
        for s in shares
    ]


class LedgerMutations:
    """
    Changes to an event's ledger. Every change that can move a balance runs
    in the same unit of work as the settlement rebuild it triggers, so either
    both land or neither does.
    """

    def __init__(self, *, repository_factory: RepositoryFactory, lifecycle: SettlementLifecycleManager) -> None:
        self._scope = repository_factory
        self._lifecycle = lifecycle

    async def create_event(self, name: str, *, currency: str = "USD") -> Event:
        name = name.strip()
        if not name:
            raise ValidationError("Event name must not be empty")
        async with self._scope() as repo:
            event = Event(name=name, currency=currency.upper())
            await repo.add_all([event])
            return event

    async def create_participant(self, name: str) -> Participant:
        name = name.strip()
        if not name:
            raise ValidationError("Participant name must not be empty")
        async with self._scope() as repo:
            participant = Participant(name=name)
            await repo.add_all([participant])
            return participant

    async def add_participant_to_event(self, event_id: str, participant_id: str, *, role: str = "member") -> None:
        async with self._lifecycle.event_unit_of_work(event_id) as repo:
            await _require_active_event(repo, event_id)
            if await repo.get_participant(participant_id) is None:
                raise NotFoundError("Participant", participant_id)
            if await repo.get_membership(event_id, participant_id) is not None:
                return
            await repo.add_all([EventParticipant(event_id=event_id, participant_id=participant_id, role=role)])
            await self._lifecycle.recalculate_in(repo, event_id)

    async def create_expense(
        self,
        event_id: str,
        *,
        payer_id: str,
        amount: Amount,
        shares: Sequence[SplitShare],
        description: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> Expense:
        amount_cents = to_cents(amount)
        if amount_cents <= 0:
            raise ValidationError(f"Expense amount must be positive, got {amount}")
        if not shares:
            raise ValidationError("An expense needs at least one split")
        ensure_split_matches(amount_cents, shares)

        async with self._lifecycle.event_unit_of_work(event_id) as repo:
            await _require_active_event(repo, event_id)
            await _require_members(repo, event_id, {payer_id} | {s.participant_id for s in shares})

            expense = Expense(
                event_id=event_id,
                payer_id=payer_id,
                amount_cents=amount_cents,
                description=(description.strip() if description and description.strip() else None),
            )
            if date is not None:
                expense.date = date
            await repo.add_all([expense])
            await repo.add_all(_split_rows(expense.id, shares))
            await self._lifecycle.recalculate_in(repo, event_id)
            logger.info("Expense %s created in event %s", expense.id, event_id)
            return expense

    async def _event_of_expense(self, expense_id: str) -> str:
        async with self._scope() as repo:
            expense = await repo.get_expense(expense_id)
            if expense is None:
                raise NotFoundError("Expense", expense_id)
            return expense.event_id

    async def update_expense(
        self,
        expense_id: str,
        *,
        amount: Optional[Amount] = None,
        payer_id: Optional[str] = None,
        description: Optional[str] = None,
        date: Optional[datetime] = None,
        shares: Optional[Sequence[SplitShare]] = None,
    ) -> Expense:
        event_id = await self._event_of_expense(expense_id)

        async with self._lifecycle.event_unit_of_work(event_id) as repo:
            await _require_active_event(repo, event_id)
            expense = await repo.get_expense(expense_id)
            if expense is None:
                raise NotFoundError("Expense", expense_id)

            if amount is not None:
                amount_cents = to_cents(amount)
                if amount_cents <= 0:
                    raise ValidationError(f"Expense amount must be positive, got {amount}")
                expense.amount_cents = amount_cents
            if payer_id is not None:
                await _require_members(repo, event_id, {payer_id})
                expense.payer_id = payer_id
            if description is not None:
                expense.description = description.strip() or None
            if date is not None:
                expense.date = date

            if shares is not None:
                if not shares:
                    raise ValidationError("An expense needs at least one split")
                await _require_members(repo, event_id, {s.participant_id for s in shares})
                ensure_split_matches(expense.amount_cents, shares)
                # Splits are replaced wholesale, never patched.
                await repo.delete_splits_by_expense(expense_id)
                await repo.add_all(_split_rows(expense_id, shares))
            else:
                ensure_split_matches(expense.amount_cents, await repo.get_splits_by_expense(expense_id))

            await self._lifecycle.recalculate_in(repo, event_id)
            return expense

    async def delete_expense(self, expense_id: str) -> None:
        event_id = await self._event_of_expense(expense_id)

        async with self._lifecycle.event_unit_of_work(event_id) as repo:
            await _require_active_event(repo, event_id)
            expense = await repo.get_expense(expense_id)
            if expense is None:
                raise NotFoundError("Expense", expense_id)
            await repo.delete_splits_by_expense(expense_id)
            await repo.delete(expense)
            await self._lifecycle.recalculate_in(repo, event_id)
            logger.info("Expense %s deleted from event %s", expense_id, event_id)

    async def remove_participant_from_event(self, event_id: str, participant_id: str) -> None:
        """
        Drop a participant from an event.

        Someone who paid for anything in the event, or who sent or received
        a settled payment, cannot be removed. Every expense they were
        splitting is divided again equally among the other participants of
        that expense, replacing whatever split it had before.
        """

        async with self._lifecycle.event_unit_of_work(event_id) as repo:
            await _require_active_event(repo, event_id)
            membership = await repo.get_membership(event_id, participant_id)
            if membership is None:
                raise NotFoundError("EventParticipant", f"{event_id}/{participant_id}")
            if await repo.count_expenses_paid_by(event_id, participant_id) > 0:
                raise ValidationError(
                    "Cannot remove a participant who paid expenses in this event; change the payer of those expenses first"
                )
            settled = [
                s
                for s in await repo.get_settlements_by_event(event_id)
                if s.is_paid and participant_id in (s.from_participant_id, s.to_participant_id)
            ]
            if settled:
                raise ValidationError(
                    f"Cannot remove a participant with {len(settled)} settled payment(s) in this event; "
                    "unmark those payments first"
                )

            members = await repo.get_event_participants(event_id)
            order = {m.id: i for i, m in enumerate(members)}
            expenses = {e.id: e for e in await repo.get_expenses_by_event(event_id)}

            by_expense: dict[str, list[Split]] = defaultdict(list)
            for s in await repo.get_splits_by_event(event_id):
                by_expense[s.expense_id].append(s)

            for expense_id, rows in by_expense.items():
                if not any(s.participant_id == participant_id for s in rows):
                    continue
                remaining = sorted(
                    (s.participant_id for s in rows if s.participant_id != participant_id),
                    key=lambda pid: order.get(pid, len(order)),
                )
                if not remaining:
                    raise ValidationError(
                        f"Participant {participant_id!r} is the only one splitting expense {expense_id!r}"
                    )
                shares = calculate_equal_split(from_cents(expenses[expense_id].amount_cents), remaining)
                await repo.delete_splits_by_expense(expense_id)
                await repo.add_all(_split_rows(expense_id, shares))

            await repo.delete(membership)
            await self._lifecycle.recalculate_in(repo, event_id)
            logger.info("Participant %s removed from event %s", participant_id, event_id)
