from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from splitsmart.services.errors import ValidationError
from splitsmart.services.money import EPSILON_CENTS, Amount, format_amount, to_cents
from splitsmart.services.types import SplitType

HUNDRED = Decimal(100)
PERCENT_TOLERANCE = Decimal("0.01")
PERCENT_PLACES = Decimal("0.0001")


@dataclass(frozen=True)
class SplitShare:
    participant_id: str
    amount_cents: int
    percentage: Optional[Decimal]
    type: SplitType


@dataclass(frozen=True)
class CustomSplitPart:
    participant_id: str
    type: SplitType  # EQUAL, FIXED or PERCENTAGE
    value: Optional[Amount] = None  # amount for FIXED, percent for PERCENTAGE


@dataclass(frozen=True)
class SplitValidation:
    is_valid: bool
    total_amount_cents: int
    total_percentage: Decimal
    error: Optional[str] = None


def _percent_of(part_cents: int, total_cents: int) -> Decimal:
    if total_cents == 0:
        return Decimal(0)
    return (Decimal(part_cents) * HUNDRED / Decimal(total_cents)).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def _spread(amounts: list[int], diff: int) -> list[int]:
    # Push the rounding remainder one cent at a time onto the first shares.
    step = 1 if diff > 0 else -1
    for i in range(abs(diff)):
        amounts[i % len(amounts)] += step
    return amounts


def _require_positive(amount_cents: int) -> None:
    if amount_cents <= 0:
        raise ValidationError(f"Expense amount must be positive, got {format_amount(amount_cents)}")


def calculate_equal_split(amount: Amount, participant_ids: Sequence[str]) -> list[SplitShare]:
    """
    Integer split:
      share = amount // n
      remainder = amount % n
      +1 cent distributed to the first ``remainder`` participants in the given order.
    """

    amount_cents = to_cents(amount)
    _require_positive(amount_cents)
    if not participant_ids:
        raise ValidationError("An equal split needs at least one participant")

    n = len(participant_ids)
    share, rem = divmod(amount_cents, n)
    out = []
    for i, pid in enumerate(participant_ids):
        cents = share + (1 if i < rem else 0)
        out.append(SplitShare(pid, cents, _percent_of(cents, amount_cents), SplitType.EQUAL))
    return out


def calculate_percentage_split(amount: Amount, percentages: Mapping[str, Amount]) -> list[SplitShare]:
    amount_cents = to_cents(amount)
    _require_positive(amount_cents)
    pcts = {pid: Decimal(str(p)) for pid, p in percentages.items()}
    total_pct = sum(pcts.values(), Decimal(0))
    if abs(total_pct - HUNDRED) > PERCENT_TOLERANCE:
        raise ValidationError(f"Percentages must sum to 100%, got {total_pct}%")
    if any(p < 0 for p in pcts.values()):
        raise ValidationError("Percentages cannot be negative")

    ids = list(pcts)
    raw = [
        int((Decimal(amount_cents) * pcts[pid] / HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP))
        for pid in ids
    ]
    amounts = _spread(raw, amount_cents - sum(raw))
    return [SplitShare(pid, cents, pcts[pid], SplitType.PERCENTAGE) for pid, cents in zip(ids, amounts)]


def calculate_fixed_split(amount: Amount, amounts: Mapping[str, Amount]) -> list[SplitShare]:
    amount_cents = to_cents(amount)
    _require_positive(amount_cents)
    cents = {pid: to_cents(a) for pid, a in amounts.items()}
    total = sum(cents.values())
    if abs(total - amount_cents) > EPSILON_CENTS:
        raise ValidationError(
            f"Fixed amounts must sum to expense total {format_amount(amount_cents)}, got {format_amount(total)}"
        )
    return [SplitShare(pid, c, _percent_of(c, amount_cents), SplitType.FIXED) for pid, c in cents.items()]


def calculate_custom_split(amount: Amount, parts: Sequence[CustomSplitPart]) -> list[SplitShare]:
    """
    Mixed split. Fixed and percentage parts are taken off the top, whatever
    is left is divided equally among the EQUAL parts.
    """

    amount_cents = to_cents(amount)
    _require_positive(amount_cents)

    fixed: dict[str, int] = {}
    equal_ids: list[str] = []
    for part in parts:
        if part.type == SplitType.FIXED and part.value is not None:
            fixed[part.participant_id] = to_cents(part.value)
        elif part.type == SplitType.PERCENTAGE and part.value is not None:
            pct = Decimal(str(part.value))
            fixed[part.participant_id] = int(
                (Decimal(amount_cents) * pct / HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)
            )
        elif part.type == SplitType.EQUAL:
            equal_ids.append(part.participant_id)
        else:
            raise ValidationError(f"Custom split part for {part.participant_id!r} has no usable value")

    remaining = amount_cents - sum(fixed.values())
    if remaining < -EPSILON_CENTS:
        raise ValidationError(
            f"Custom split exceeds expense total {format_amount(amount_cents)} by {format_amount(-remaining)}"
        )

    shares = dict(fixed)
    if equal_ids:
        share, rem = divmod(max(remaining, 0), len(equal_ids))
        for i, pid in enumerate(equal_ids):
            shares[pid] = share + (1 if i < rem else 0)
    elif abs(remaining) > EPSILON_CENTS:
        raise ValidationError(
            f"Custom split leaves {format_amount(remaining)} of {format_amount(amount_cents)} unassigned"
        )

    order = [p.participant_id for p in parts]
    return [SplitShare(pid, shares[pid], _percent_of(shares[pid], amount_cents), SplitType.CUSTOM) for pid in order]


def validate_split(amount_cents: int, splits: Sequence[Any]) -> SplitValidation:
    total = sum(int(s.amount_cents) for s in splits)
    pcts = [s.percentage for s in splits]
    total_pct = sum((Decimal(str(p)) for p in pcts if p is not None), Decimal(0))

    if abs(total - amount_cents) > EPSILON_CENTS:
        return SplitValidation(
            is_valid=False,
            total_amount_cents=total,
            total_percentage=total_pct,
            error=f"Split amounts ({format_amount(total)}) don't match expense total ({format_amount(amount_cents)})",
        )
    # Percentages are authoritative only when the split was made by percentage.
    by_percentage = bool(splits) and all(getattr(s, "type", None) == SplitType.PERCENTAGE for s in splits)
    if by_percentage and abs(total_pct - HUNDRED) > PERCENT_TOLERANCE:
        return SplitValidation(
            is_valid=False,
            total_amount_cents=total,
            total_percentage=total_pct,
            error=f"Split percentages ({total_pct:.2f}%) don't sum to 100%",
        )
    return SplitValidation(is_valid=True, total_amount_cents=total, total_percentage=total_pct)


def ensure_split_matches(amount_cents: int, splits: Sequence[Any]) -> None:
    result = validate_split(amount_cents, splits)
    if not result.is_valid:
        raise ValidationError(result.error)
