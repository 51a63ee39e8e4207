from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Optional

from splitsmart.db.models import Event, EventStatus, Settlement, utc_now
from splitsmart.services.consolidation import ConsolidationAssignment, ConsolidationResult, consolidate
from splitsmart.services.errors import NotFoundError
from splitsmart.services.ledger import Balance, calculate_balances, calculate_optimal_settlements
from splitsmart.services.money import EPSILON_CENTS, from_cents
from splitsmart.services.notifications import Notifier
from splitsmart.services.repository import LedgerRepository, RepositoryFactory

logger = logging.getLogger(__name__)


class SettlementLifecycleManager:
    """
    Keeps the persisted settlements of an event in step with its ledger.

    While an event is ACTIVE its unpaid settlements are derived state and are
    rebuilt after every change to expenses, splits or membership. Paid
    settlements are payment records and are never touched by a rebuild. Once
    the event leaves ACTIVE the settlement set is frozen and only payment
    metadata can change.

    At most one unit of work runs per event at a time; different events do
    not wait on each other.
    """

    def __init__(self, *, repository_factory: RepositoryFactory, notifier: Optional[Notifier] = None) -> None:
        self._scope = repository_factory
        self._notifier = notifier
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, event_id: str) -> asyncio.Lock:
        lock = self._locks.get(event_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[event_id] = lock
        return lock

    @asynccontextmanager
    async def event_unit_of_work(self, event_id: str) -> AsyncIterator[LedgerRepository]:
        async with self._lock(event_id):
            async with self._scope() as repo:
                yield repo

    async def recalculate_settlements_for_event(self, event_id: str) -> list[Settlement]:
        async with self.event_unit_of_work(event_id) as repo:
            return await self.recalculate_in(repo, event_id)

    async def recalculate_in(self, repo: LedgerRepository, event_id: str) -> list[Settlement]:
        """Rebuild unpaid settlements using ``repo``. The caller owns the event lock and the transaction."""

        event = await repo.get_event(event_id)
        if event is None:
            logger.warning("Recalculation skipped: event %s not found", event_id)
            return []
        if not event.is_active:
            logger.info("Recalculation skipped: event %s is %s", event_id, event.status.value)
            return []

        expenses = await repo.get_expenses_by_event(event_id)
        if not expenses:
            removed = await repo.delete_unpaid_settlements_by_event(event_id)
            logger.info("Event %s has no expenses, removed %d unpaid settlement(s)", event_id, removed)
            return []

        splits = await repo.get_splits_by_event(event_id)
        participants = await repo.get_event_participants(event_id)
        paid = [s for s in await repo.get_settlements_by_event(event_id) if s.is_paid]

        # A paid settlement is the payment record: applied once here, never regenerated.
        balances = calculate_balances(participants, expenses, splits, paid)
        transfers = calculate_optimal_settlements(balances)

        await repo.delete_unpaid_settlements_by_event(event_id)

        created: list[Settlement] = []
        for t in transfers:
            if t.amount_cents <= EPSILON_CENTS:
                continue
            row = Settlement(
                event_id=event_id,
                from_participant_id=t.from_participant_id,
                from_participant_name=t.from_participant_name,
                to_participant_id=t.to_participant_id,
                to_participant_name=t.to_participant_name,
                amount_cents=t.amount_cents,
                is_paid=False,
                paid_at=None,
                event_status=event.status,
            )
            created.append(await repo.create_settlement(row))

        logger.info(
            "Event %s recalculated: %d unpaid settlement(s), %d paid kept",
            event_id,
            len(created),
            len(paid),
        )
        return created

    async def set_event_status(self, event_id: str, status: EventStatus) -> Event:
        async with self.event_unit_of_work(event_id) as repo:
            event = await repo.get_event(event_id)
            if event is None:
                raise NotFoundError("Event", event_id)
            previous = event.status
            if previous == status:
                return event

            changes: dict = {"status": status}
            if status == EventStatus.CLOSED:
                changes["closed_at"] = utc_now()
            elif status == EventStatus.COMPLETED:
                changes["completed_at"] = utc_now()
            event = await repo.update_event(event_id, **changes)

            if status == EventStatus.ACTIVE:
                if previous == EventStatus.ARCHIVED:
                    await repo.reset_settlement_payments(event_id)
                    logger.info("Event %s reopened from archive, payments reset", event_id)
                await repo.update_settlements_event_status(event_id, status)
                await self.recalculate_in(repo, event_id)
            else:
                await repo.update_settlements_event_status(event_id, status)

            logger.info("Event %s status %s -> %s", event_id, previous.value, status.value)
            return event

    async def mark_settlement_paid(
        self,
        settlement_id: str,
        *,
        is_paid: bool = True,
        receipt_image: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[Settlement]:
        async with self._scope() as repo:
            found = await repo.get_settlement_by_id(settlement_id)
            if found is None:
                return None
            event_id = found.event_id

        async with self.event_unit_of_work(event_id) as repo:
            changes: dict = {"is_paid": is_paid, "paid_at": utc_now() if is_paid else None}
            if receipt_image is not None:
                changes["receipt_image"] = receipt_image
            if notes is not None:
                changes["notes"] = notes
            settlement = await repo.update_settlement(settlement_id, **changes)
            if settlement is None:
                # Removed by a recalculation between the lookup and the lock.
                return None

            event = await repo.get_event(event_id)
            if event is not None and is_paid and event.status == EventStatus.CLOSED:
                settlements = await repo.get_settlements_by_event(event_id)
                if all(s.is_paid for s in settlements):
                    await repo.update_event(event_id, status=EventStatus.COMPLETED, completed_at=utc_now())
                    await repo.update_settlements_event_status(event_id, EventStatus.COMPLETED)
                    logger.info("Event %s completed: every settlement is paid", event_id)
            elif event is not None and not is_paid and event.is_active:
                await self.recalculate_in(repo, event_id)

        if is_paid:
            await self._notify_paid(settlement, event)
        return settlement

    async def _notify_paid(self, settlement: Settlement, event: Optional[Event]) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.payment_confirmed(settlement, event)
        except Exception:
            logger.exception(
                "Payment notification failed for settlement %s (%s)",
                settlement.id,
                from_cents(settlement.amount_cents),
            )

    async def get_settlements(self, event_id: str) -> list[Settlement]:
        async with self._scope() as repo:
            return await repo.get_settlements_by_event(event_id)

    async def get_balances(self, event_id: str) -> list[Balance]:
        async with self._scope() as repo:
            participants = await repo.get_event_participants(event_id)
            expenses = await repo.get_expenses_by_event(event_id)
            splits = await repo.get_splits_by_event(event_id)
            paid = [s for s in await repo.get_settlements_by_event(event_id) if s.is_paid]
        return calculate_balances(participants, expenses, splits, paid)

    async def get_consolidated_settlements(
        self,
        event_id: str,
        assignments: Sequence[ConsolidationAssignment],
    ) -> ConsolidationResult:
        scoped = [a for a in assignments if a.event_id is None or a.event_id == event_id]
        unpaid = [s for s in await self.get_settlements(event_id) if not s.is_paid]
        return consolidate(unpaid, scoped)
