from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace as NS

from splitsmart.services.ledger import (
    Balance,
    Payment,
    calculate_balances,
    calculate_event_stats,
    calculate_optimal_settlements,
)

A = NS(id="A", name="Alice")
B = NS(id="B", name="Bob")
C = NS(id="C", name="Carol")
PEOPLE = [A, B, C]


def expense(eid, payer, cents):
    return NS(id=eid, payer_id=payer, amount_cents=cents)


def split(eid, pid, cents):
    return NS(expense_id=eid, participant_id=pid, amount_cents=cents)


def equal_splits(eid, cents_each, *pids):
    return [split(eid, pid, cents_each) for pid in pids]


def by_id(balances):
    return {b.participant_id: b.balance_cents for b in balances}


def route(transfers):
    return [(t.from_participant_id, t.to_participant_id, t.amount_cents) for t in transfers]


def apply(balances, transfers):
    after = by_id(balances)
    for t in transfers:
        after[t.from_participant_id] -= t.amount_cents
        after[t.to_participant_id] += t.amount_cents
    return after


def test_single_expense_split_three_ways():
    balances = calculate_balances(PEOPLE, [expense("e1", "A", 15000)], equal_splits("e1", 5000, "A", "B", "C"))

    assert by_id(balances) == {"A": -10000, "B": 5000, "C": 5000}
    assert balances[0].total_paid == Decimal("150.00")
    assert balances[0].total_owed == Decimal("50.00")
    assert route(calculate_optimal_settlements(balances)) == [("B", "A", 5000), ("C", "A", 5000)]


def test_second_expense_changes_settlements():
    expenses = [expense("e1", "A", 15000), expense("e2", "B", 6000)]
    splits = equal_splits("e1", 5000, "A", "B", "C") + equal_splits("e2", 2000, "A", "B", "C")

    balances = calculate_balances(PEOPLE, expenses, splits)

    assert by_id(balances) == {"A": -8000, "B": 1000, "C": 7000}
    assert route(calculate_optimal_settlements(balances)) == [("C", "A", 7000), ("B", "A", 1000)]


def test_balances_sum_to_zero_without_payments():
    expenses = [expense("e1", "A", 1000), expense("e2", "C", 4567), expense("e3", "B", 99)]
    splits = [
        split("e1", "A", 334),
        split("e1", "B", 333),
        split("e1", "C", 333),
        split("e2", "B", 4000),
        split("e2", "C", 567),
        split("e3", "A", 99),
    ]

    assert sum(b.balance_cents for b in calculate_balances(PEOPLE, expenses, splits)) == 0


def test_result_does_not_depend_on_input_order():
    expenses = [expense("e1", "A", 1000), expense("e2", "C", 4567)]
    splits = [split("e1", "B", 1000), split("e2", "A", 2000), split("e2", "B", 2567)]

    forward = calculate_balances(PEOPLE, expenses, splits)
    backward = calculate_balances(PEOPLE, list(reversed(expenses)), list(reversed(splits)))

    assert forward == backward


def test_only_confirmed_payments_move_balances():
    payments = [
        Payment("B", "A", 3000, is_confirmed=True),
        Payment("C", "A", 5000, is_confirmed=False),
        NS(from_participant_id="C", to_participant_id="A", amount_cents=1000, is_paid=True),
    ]
    balances = calculate_balances(PEOPLE, [expense("e1", "A", 15000)], equal_splits("e1", 5000, "A", "B", "C"), payments)

    assert by_id(balances) == {"A": -6000, "B": 2000, "C": 4000}


def test_idle_participant_and_unknown_rows():
    dave = NS(id="D", name="Dave")
    balances = calculate_balances(
        [A, B, dave],
        [expense("e1", "A", 1000), expense("e2", "X", 500)],
        [split("e1", "B", 1000), split("e2", "X", 500)],
        [Payment("X", "A", 100)],
    )

    assert by_id(balances) == {"A": -1000, "B": 1000, "D": 0}
    assert [b.participant_id for b in balances] == ["A", "B", "D"]


def test_settlements_zero_every_participant():
    balances = [
        Balance("A", "Alice", 0, 0, 4321),
        Balance("B", "Bob", 0, 0, -1000),
        Balance("C", "Carol", 0, 0, 2679),
        Balance("D", "Dave", 0, 0, -5000),
        Balance("E", "Eve", 0, 0, -1000),
    ]
    transfers = calculate_optimal_settlements(balances)

    assert all(v == 0 for v in apply(balances, transfers).values())
    assert all(t.amount_cents > 1 for t in transfers)
    assert all(t.from_participant_id != t.to_participant_id for t in transfers)
    assert len(transfers) <= 2 + 3 - 1


def test_one_cent_positions_are_left_alone():
    balances = [
        Balance("A", "Alice", 0, 0, 1),
        Balance("B", "Bob", 0, 0, -1),
        Balance("C", "Carol", 0, 0, 500),
        Balance("D", "Dave", 0, 0, -500),
    ]

    assert route(calculate_optimal_settlements(balances)) == [("C", "D", 500)]


def test_ties_keep_input_order():
    balances = [
        Balance("B", "Bob", 0, 0, 5000),
        Balance("A", "Alice", 0, 0, 5000),
        Balance("C", "Carol", 0, 0, -10000),
    ]

    assert route(calculate_optimal_settlements(balances)) == [("B", "C", 5000), ("A", "C", 5000)]


def test_transfer_names_come_from_balances():
    balances = [Balance("A", "Alice", 0, 0, 250), Balance("B", "Bob", 0, 0, -250)]
    (t,) = calculate_optimal_settlements(balances)

    assert (t.from_participant_name, t.to_participant_name, t.amount) == ("Alice", "Bob", Decimal("2.50"))


def test_nothing_to_settle():
    assert calculate_optimal_settlements([]) == []
    assert calculate_optimal_settlements([Balance("A", "Alice", 0, 0, 0)]) == []


def test_event_stats():
    expenses = [expense("e1", "A", 15000), expense("e2", "B", 6000)]
    splits = equal_splits("e1", 5000, "A", "B", "C") + equal_splits("e2", 2000, "A", "B", "C")

    stats = calculate_event_stats(PEOPLE, expenses, splits)

    assert stats.total_expenses_cents == 21000
    assert stats.average_expense_cents == 10500
    assert stats.average_per_person_cents == 7000
    assert stats.max_debt_cents == 7000
    assert stats.max_credit_cents == 8000
    assert stats.expense_count == 2
    assert stats.participant_count == 3
    assert stats.balances_settled is False
    assert calculate_event_stats(PEOPLE, [], []).balances_settled is True


def test_leftover_cents_do_not_pile_up_on_one_creditor():
    balances = [
        Balance("D1", "Dana", 0, 0, 101),
        Balance("D2", "Dino", 0, 0, 98),
        Balance("D3", "Dora", 0, 0, 1),
        Balance("C1", "Cleo", 0, 0, -100),
        Balance("C2", "Cyril", 0, 0, -100),
    ]

    transfers = calculate_optimal_settlements(balances)

    assert route(transfers) == [("D1", "C1", 100), ("D1", "C2", 2), ("D2", "C2", 98)]
    assert all(abs(v) <= 1 for v in apply(balances, transfers).values())
