from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from splitsmart.services.errors import ValidationError
from splitsmart.services.money import from_cents
from splitsmart.services.types import new_id, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsolidationAssignment:
    debtor_id: str
    payer_id: str
    debtor_name: str = ""
    payer_name: str = ""
    event_id: Optional[str] = None


@dataclass
class ConsolidatedSettlement:
    id: str
    event_id: str
    from_participant_id: str
    from_participant_name: str
    to_participant_id: str
    to_participant_name: str
    amount_cents: int
    is_paid: bool
    is_consolidated: bool
    original_settlements: list[Any] = field(default_factory=list)
    consolidation_assignments: list[ConsolidationAssignment] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)


@dataclass(frozen=True)
class ForgivenDebt:
    participant_id: str
    participant_name: str
    amount_cents: int
    settlements: tuple[Any, ...]


@dataclass
class ConsolidationResult:
    settlements: list[ConsolidatedSettlement]
    forgiven: list[ForgivenDebt]
    duplicates_removed: list[Any]
    original_total_cents: int

    @property
    def consolidated_total_cents(self) -> int:
        return sum(s.amount_cents for s in self.settlements)

    @property
    def forgiven_total_cents(self) -> int:
        return sum(f.amount_cents for f in self.forgiven)


@dataclass(frozen=True)
class ConsolidationValidation:
    is_valid: bool
    errors: list[str]


@dataclass(frozen=True)
class ConsolidationChange:
    type: str  # "consolidated" or "unchanged"
    description: str
    amount_cents: int


@dataclass(frozen=True)
class ConsolidationSummary:
    original_count: int
    consolidated_count: int
    total_amount_cents: int
    changes: list[ConsolidationChange]


def _dedupe(settlements: Sequence[Any]) -> tuple[list[Any], list[Any]]:
    seen: set[tuple[str, str, int]] = set()
    kept: list[Any] = []
    removed: list[Any] = []
    for s in settlements:
        key = (s.from_participant_id, s.to_participant_id, int(s.amount_cents))
        if key in seen:
            logger.warning(
                "Duplicate settlement removed: %s -> %s %s",
                s.from_participant_name,
                s.to_participant_name,
                from_cents(s.amount_cents),
            )
            removed.append(s)
            continue
        seen.add(key)
        kept.append(s)
    return kept, removed


def _participant_ids(settlements: Sequence[Any]) -> set[str]:
    ids: set[str] = set()
    for s in settlements:
        ids.add(s.from_participant_id)
        ids.add(s.to_participant_id)
    return ids


def _payer_names(settlements: Sequence[Any], assignments: Sequence[ConsolidationAssignment]) -> dict[str, str]:
    names: dict[str, str] = {}
    for s in settlements:
        names.setdefault(s.from_participant_id, s.from_participant_name)
    for s in settlements:
        names.setdefault(s.to_participant_id, s.to_participant_name)
    for a in assignments:
        if a.payer_name:
            names[a.payer_id] = a.payer_name
        if a.debtor_name:
            names.setdefault(a.debtor_id, a.debtor_name)
    return names


def _creditor_names(settlements: Sequence[Any]) -> dict[str, str]:
    names: dict[str, str] = {}
    for s in settlements:
        names.setdefault(s.to_participant_id, s.to_participant_name)
    return names


def _passthrough(s: Any) -> ConsolidatedSettlement:
    return ConsolidatedSettlement(
        id=getattr(s, "id", None) or new_id(),
        event_id=getattr(s, "event_id", ""),
        from_participant_id=s.from_participant_id,
        from_participant_name=s.from_participant_name,
        to_participant_id=s.to_participant_id,
        to_participant_name=s.to_participant_name,
        amount_cents=int(s.amount_cents),
        is_paid=bool(getattr(s, "is_paid", False)),
        is_consolidated=False,
        original_settlements=[s],
    )


def consolidate(
    settlements: Sequence[Any],
    assignments: Sequence[ConsolidationAssignment],
) -> ConsolidationResult:
    """
    Reassign who pays, merge what ends up going the same way, forgive what
    ends up being paid to oneself.

    ``assignments`` map a debtor to the participant who pays on their behalf.
    Every settlement is routed through that map, grouped by (actual payer,
    creditor) and summed. A group whose actual payer is also its creditor is
    dropped and its amount recorded under ``forgiven``.

    Mutual assignments (A pays for B, B pays for A) are not rejected here,
    see ``validate_consolidations``.
    """

    deduped, removed = _dedupe(settlements)
    if removed:
        logger.warning("Deduplication: %d -> %d settlements", len(settlements), len(deduped))
    original_total = sum(int(s.amount_cents) for s in deduped)

    if not assignments:
        return ConsolidationResult(
            settlements=[_passthrough(s) for s in deduped],
            forgiven=[],
            duplicates_removed=removed,
            original_total_cents=original_total,
        )

    known = _participant_ids(deduped)
    for a in assignments:
        missing = [pid for pid in (a.debtor_id, a.payer_id) if pid not in known]
        if missing:
            raise ValidationError(
                f"Assignment {a.debtor_id!r} -> {a.payer_id!r} references participants "
                f"absent from the settlements: expected one of {sorted(known)}, got {missing}"
            )

    payer_for: dict[str, str] = {}
    for a in assignments:
        if a.debtor_id in payer_for and payer_for[a.debtor_id] != a.payer_id:
            logger.warning(
                "Debtor %s reassigned from %s to %s; the last assignment wins",
                a.debtor_id,
                payer_for[a.debtor_id],
                a.payer_id,
            )
        payer_for[a.debtor_id] = a.payer_id

    # payer -> creditor -> contributing settlements, both levels in first-seen order.
    groups: dict[str, dict[str, list[Any]]] = {}
    for s in deduped:
        payer = payer_for.get(s.from_participant_id, s.from_participant_id)
        groups.setdefault(payer, {}).setdefault(s.to_participant_id, []).append(s)

    payer_names = _payer_names(deduped, assignments)
    creditor_names = _creditor_names(deduped)
    event_id = getattr(deduped[0], "event_id", "") if deduped else ""
    out: list[ConsolidatedSettlement] = []
    forgiven: list[ForgivenDebt] = []

    for payer, by_creditor in groups.items():
        for creditor, contributing in by_creditor.items():
            total = sum(int(s.amount_cents) for s in contributing)
            if payer == creditor:
                logger.info(
                    "Forgiven: %s would pay themselves %s (%d settlement(s))",
                    payer_names.get(payer, payer),
                    from_cents(total),
                    len(contributing),
                )
                forgiven.append(
                    ForgivenDebt(
                        participant_id=payer,
                        participant_name=payer_names.get(payer, "Unknown"),
                        amount_cents=total,
                        settlements=tuple(contributing),
                    )
                )
                continue

            debtors = {s.from_participant_id for s in contributing}
            out.append(
                ConsolidatedSettlement(
                    id=f"consolidated_{payer}_to_{creditor}_{new_id()[:9]}",
                    event_id=event_id,
                    from_participant_id=payer,
                    from_participant_name=payer_names.get(payer, "Unknown"),
                    to_participant_id=creditor,
                    to_participant_name=creditor_names.get(creditor, "Unknown"),
                    amount_cents=total,
                    is_paid=False,
                    is_consolidated=True,
                    original_settlements=list(contributing),
                    consolidation_assignments=[a for a in assignments if a.debtor_id in debtors],
                )
            )

    result = ConsolidationResult(
        settlements=out,
        forgiven=forgiven,
        duplicates_removed=removed,
        original_total_cents=original_total,
    )
    logger.info(
        "Consolidation: %d -> %d settlements, original %s, consolidated %s, forgiven %s",
        len(deduped),
        len(out),
        from_cents(original_total),
        from_cents(result.consolidated_total_cents),
        from_cents(result.forgiven_total_cents),
    )
    return result


def apply_consolidations(
    settlements: Sequence[Any],
    assignments: Sequence[ConsolidationAssignment],
) -> list[ConsolidatedSettlement]:
    return consolidate(settlements, assignments).settlements


def validate_consolidations(
    assignments: Sequence[ConsolidationAssignment],
    settlements: Sequence[Any],
) -> ConsolidationValidation:
    errors: list[str] = []

    for a in assignments:
        if any(b.payer_id == a.debtor_id and b.debtor_id == a.payer_id for b in assignments):
            errors.append(
                f"Loop detected: {a.payer_name or a.payer_id} and {a.debtor_name or a.debtor_id} pay for each other"
            )

    known = _participant_ids(settlements)
    for a in assignments:
        if a.payer_id not in known:
            errors.append(f"Payer {a.payer_name or a.payer_id} not found in settlements")
        if a.debtor_id not in known:
            errors.append(f"Debtor {a.debtor_name or a.debtor_id} not found in settlements")

    return ConsolidationValidation(is_valid=not errors, errors=errors)


def summarize_consolidation(
    original: Sequence[Any],
    consolidated: Sequence[ConsolidatedSettlement],
) -> ConsolidationSummary:
    changes: list[ConsolidationChange] = []
    for cs in consolidated:
        if not cs.is_consolidated:
            continue
        route = f"{cs.from_participant_name} → {cs.to_participant_name}"
        if len(cs.original_settlements) > 1:
            changes.append(
                ConsolidationChange(
                    type="consolidated",
                    description=f"{route} ({len(cs.original_settlements)} payments consolidated)",
                    amount_cents=cs.amount_cents,
                )
            )
        else:
            changes.append(ConsolidationChange(type="unchanged", description=route, amount_cents=cs.amount_cents))

    return ConsolidationSummary(
        original_count=len(original),
        consolidated_count=len(consolidated),
        total_amount_cents=sum(int(s.amount_cents) for s in original),
        changes=changes,
    )
