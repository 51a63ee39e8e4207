from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from splitsmart.services.money import EPSILON_CENTS, from_cents


@dataclass(frozen=True)
class Payment:
    from_participant_id: str
    to_participant_id: str
    amount_cents: int
    is_confirmed: bool = True


@dataclass(frozen=True)
class Balance:
    participant_id: str
    participant_name: str
    total_paid_cents: int
    total_owed_cents: int
    balance_cents: int  # positive owes, negative is owed

    @property
    def balance(self) -> Decimal:
        return from_cents(self.balance_cents)

    @property
    def total_paid(self) -> Decimal:
        return from_cents(self.total_paid_cents)

    @property
    def total_owed(self) -> Decimal:
        return from_cents(self.total_owed_cents)


@dataclass(frozen=True)
class Transfer:
    from_participant_id: str  # debtor
    from_participant_name: str
    to_participant_id: str  # creditor
    to_participant_name: str
    amount_cents: int

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)


@dataclass(frozen=True)
class EventStats:
    total_expenses_cents: int
    average_expense_cents: int
    average_per_person_cents: int
    max_debt_cents: int
    max_credit_cents: int
    participant_count: int
    expense_count: int
    balances_settled: bool


def _is_confirmed(payment: Any) -> bool:
    # Settlement rows carry is_paid, standalone payments carry is_confirmed.
    return bool(getattr(payment, "is_paid", False) or getattr(payment, "is_confirmed", False))


def calculate_balances(
    participants: Iterable[Any],
    expenses: Iterable[Any],
    splits: Iterable[Any],
    payments: Iterable[Any] = (),
) -> list[Balance]:
    """
    Net position of every participant.

    Balance sign:
      positive -> owes
      negative -> is owed

    Expenses, splits and payments that reference someone outside
    ``participants`` are ignored. The result follows the order of
    ``participants``.
    """

    names: dict[str, str] = {}
    paid: dict[str, int] = {}
    owed: dict[str, int] = {}
    for p in participants:
        names[p.id] = p.name
        paid[p.id] = 0
        owed[p.id] = 0

    for e in expenses:
        if e.payer_id in paid:
            paid[e.payer_id] += int(e.amount_cents)

    for s in splits:
        if s.participant_id in owed:
            owed[s.participant_id] += int(s.amount_cents)

    balances = {pid: owed[pid] - paid[pid] for pid in names}

    for pay in payments:
        if not _is_confirmed(pay):
            continue
        frm, to = pay.from_participant_id, pay.to_participant_id
        if frm in balances and to in balances:
            balances[frm] -= int(pay.amount_cents)
            balances[to] += int(pay.amount_cents)

    return [
        Balance(
            participant_id=pid,
            participant_name=names[pid],
            total_paid_cents=paid[pid],
            total_owed_cents=owed[pid],
            balance_cents=balances[pid],
        )
        for pid in names
    ]


def calculate_optimal_settlements(balances: Sequence[Balance]) -> list[Transfer]:
    """
    Greedy debtor/creditor matching.

    Largest debtor pays largest creditor until one side is exhausted. Ties
    keep input order, so the same balances always give the same transfers.
    Not globally optimal, but never more than debtors + creditors - 1 rows.

    No transfer is ever EPSILON_CENTS or smaller. A leftover cent that would
    need such a transfer is rounded up to the smallest payable amount when
    the other side still has more than a cent open, otherwise it stays
    where it is. Either way every participant ends within one cent of zero.
    """

    names = {b.participant_id: b.participant_name for b in balances}
    debtors: list[list] = []  # [participant_id, to_pay]
    creditors: list[list] = []  # [participant_id, to_receive]

    for b in balances:
        if b.balance_cents > EPSILON_CENTS:
            debtors.append([b.participant_id, b.balance_cents])
        elif b.balance_cents < -EPSILON_CENTS:
            creditors.append([b.participant_id, -b.balance_cents])

    debtors.sort(key=lambda x: x[1], reverse=True)
    creditors.sort(key=lambda x: x[1], reverse=True)

    out: list[Transfer] = []
    i = 0
    j = 0
    while i < len(debtors) and j < len(creditors):
        d_id, owe = debtors[i]
        c_id, recv = creditors[j]
        if owe <= EPSILON_CENTS and recv <= EPSILON_CENTS:
            i += 1
            j += 1
            continue

        amt = min(owe, recv)
        if amt <= EPSILON_CENTS:
            amt = EPSILON_CENTS + 1
        out.append(
            Transfer(
                from_participant_id=d_id,
                from_participant_name=names[d_id],
                to_participant_id=c_id,
                to_participant_name=names[c_id],
                amount_cents=amt,
            )
        )
        owe -= amt
        recv -= amt
        debtors[i][1] = owe
        creditors[j][1] = recv
        if owe <= 0:
            i += 1
        if recv <= 0:
            j += 1
    return out


def calculate_event_stats(
    participants: Sequence[Any],
    expenses: Sequence[Any],
    splits: Iterable[Any],
) -> EventStats:
    total = sum(int(e.amount_cents) for e in expenses)
    balances = calculate_balances(participants, expenses, splits)
    return EventStats(
        total_expenses_cents=total,
        average_expense_cents=round(total / len(expenses)) if expenses else 0,
        average_per_person_cents=round(total / len(participants)) if participants else 0,
        max_debt_cents=max((max(0, b.balance_cents) for b in balances), default=0),
        max_credit_cents=max((max(0, -b.balance_cents) for b in balances), default=0),
        participant_count=len(participants),
        expense_count=len(expenses),
        balances_settled=all(abs(b.balance_cents) < EPSILON_CENTS for b in balances),
    )
