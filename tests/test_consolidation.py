from __future__ import annotations

import logging
from types import SimpleNamespace as NS

import pytest

from splitsmart.services.consolidation import (
    ConsolidationAssignment,
    apply_consolidations,
    consolidate,
    summarize_consolidation,
    validate_consolidations,
)
from splitsmart.services.errors import ValidationError
from splitsmart.services.ledger import Balance, calculate_optimal_settlements

NAMES = {"A": "Alice", "B": "Bob", "C": "Carol", "D": "Dave"}


def settlement(sid, frm, to, cents, is_paid=False):
    return NS(
        id=sid,
        event_id="ev1",
        from_participant_id=frm,
        from_participant_name=NAMES[frm],
        to_participant_id=to,
        to_participant_name=NAMES[to],
        amount_cents=cents,
        is_paid=is_paid,
    )


def assign(debtor, payer):
    return ConsolidationAssignment(debtor_id=debtor, payer_id=payer, debtor_name=NAMES[debtor], payer_name=NAMES[payer])


def test_payer_takes_over_and_transfers_merge():
    c_to_a = settlement("s1", "C", "A", 7000)
    b_to_a = settlement("s2", "B", "A", 1000)

    (merged,) = apply_consolidations([c_to_a, b_to_a], [assign("C", "B")])

    assert (merged.from_participant_id, merged.to_participant_id, merged.amount_cents) == ("B", "A", 8000)
    assert merged.from_participant_name == "Bob"
    assert merged.is_consolidated and not merged.is_paid
    assert merged.original_settlements == [c_to_a, b_to_a]
    assert [a.debtor_id for a in merged.consolidation_assignments] == ["C"]
    assert merged.event_id == "ev1"


def test_debt_paid_to_oneself_is_forgiven():
    result = consolidate([settlement("s1", "B", "A", 1000)], [assign("B", "A")])

    assert result.settlements == []
    assert result.forgiven_total_cents == 1000
    assert result.forgiven[0].participant_id == "A"


def test_amounts_are_conserved_and_no_self_payments():
    settlements = [
        settlement("s1", "B", "A", 1234),
        settlement("s2", "C", "A", 5000),
        settlement("s3", "C", "D", 250),
        settlement("s4", "D", "B", 999),
    ]
    result = consolidate(settlements, [assign("C", "B"), assign("D", "A"), assign("B", "D")])

    assert result.consolidated_total_cents + result.forgiven_total_cents == 1234 + 5000 + 250 + 999
    assert result.original_total_cents == 1234 + 5000 + 250 + 999
    assert all(s.from_participant_id != s.to_participant_id for s in result.settlements)


def test_groups_follow_first_seen_order():
    settlements = [
        settlement("s1", "C", "D", 300),
        settlement("s2", "B", "A", 100),
        settlement("s3", "C", "A", 200),
    ]
    result = apply_consolidations(settlements, [assign("C", "B")])

    assert [(s.from_participant_id, s.to_participant_id, s.amount_cents) for s in result] == [
        ("B", "D", 300),
        ("B", "A", 300),
    ]


def test_duplicates_are_dropped(caplog):
    first = settlement("s1", "B", "A", 1000)
    dup = settlement("s2", "B", "A", 1000)

    with caplog.at_level(logging.WARNING, logger="splitsmart.services.consolidation"):
        result = consolidate([first, dup, settlement("s3", "C", "A", 500)], [assign("C", "B")])

    assert result.duplicates_removed == [dup]
    assert result.original_total_cents == 1500
    assert [s.amount_cents for s in result.settlements] == [1500]
    assert "Duplicate settlement removed" in caplog.text


def test_without_assignments_settlements_pass_through():
    rows = [settlement("s1", "B", "A", 1000), settlement("s2", "C", "A", 500, is_paid=True)]

    result = apply_consolidations(rows, [])

    assert [r.id for r in result] == ["s1", "s2"]
    assert [r.is_paid for r in result] == [False, True]
    assert not any(r.is_consolidated for r in result)


def test_unknown_participant_in_assignment_is_rejected():
    with pytest.raises(ValidationError, match="absent"):
        apply_consolidations([settlement("s1", "B", "A", 1000)], [assign("D", "B")])


def test_mutual_assignment_is_reported_but_not_blocked():
    settlements = [settlement("s1", "A", "C", 1000), settlement("s2", "B", "C", 2000)]
    assignments = [assign("A", "B"), assign("B", "A")]

    validation = validate_consolidations(assignments, settlements)
    result = apply_consolidations(settlements, assignments)

    assert not validation.is_valid
    assert len(validation.errors) == 2
    assert all("Loop detected" in e for e in validation.errors)
    assert [(s.from_participant_id, s.amount_cents) for s in result] == [("B", 1000), ("A", 2000)]


def test_validation_reports_unknown_participants():
    validation = validate_consolidations([assign("D", "B")], [settlement("s1", "B", "A", 1000)])

    assert validation.errors == ["Debtor Dave not found in settlements"]


def test_valid_assignments():
    validation = validate_consolidations([assign("C", "B")], [settlement("s1", "C", "A", 10), settlement("s2", "B", "A", 10)])

    assert validation.is_valid and validation.errors == []


def test_optimizer_output_can_be_consolidated_directly():
    transfers = calculate_optimal_settlements(
        [Balance("A", "Alice", 0, 0, -8000), Balance("B", "Bob", 0, 0, 1000), Balance("C", "Carol", 0, 0, 7000)]
    )

    (merged,) = apply_consolidations(transfers, [assign("C", "B")])

    assert (merged.from_participant_id, merged.amount_cents) == ("B", 8000)
    assert merged.event_id == ""


def test_summary_lists_merged_and_unchanged_rows():
    original = [settlement("s1", "C", "A", 7000), settlement("s2", "B", "A", 1000), settlement("s3", "D", "C", 300)]
    consolidated = apply_consolidations(original, [assign("C", "B")])

    summary = summarize_consolidation(original, consolidated)

    assert summary.original_count == 3
    assert summary.consolidated_count == 2
    assert summary.total_amount_cents == 8300
    assert [c.type for c in summary.changes] == ["consolidated", "unchanged"]
    assert "2 payments consolidated" in summary.changes[0].description


def test_assignment_name_does_not_rename_creditor():
    rows = [settlement("s1", "C", "A", 1000), settlement("s2", "D", "B", 300)]
    nickname = ConsolidationAssignment(debtor_id="C", payer_id="B", debtor_name="Carol", payer_name="Bobby")

    result = consolidate(rows, [nickname])

    assert [(s.from_participant_name, s.to_participant_name, s.amount_cents) for s in result.settlements] == [
        ("Bobby", "Alice", 1000),
        ("Dave", "Bob", 300),
    ]
