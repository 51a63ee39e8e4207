from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer, field_validator

from splitsmart.db.models import Settlement
from splitsmart.services.errors import ValidationError
from splitsmart.services.money import EPSILON_CENTS, from_cents, to_cents


class SettlementRecord(BaseModel):
    """Export/import shape of a settlement row."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    event_id: str = Field(alias="eventId")
    from_participant_id: str = Field(alias="fromParticipantId")
    from_participant_name: str = Field(alias="fromParticipantName")
    to_participant_id: str = Field(alias="toParticipantId")
    to_participant_name: str = Field(alias="toParticipantName")
    amount: Decimal
    is_paid: bool = Field(False, alias="isPaid")
    paid_at: Optional[datetime] = Field(None, alias="paidAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @field_validator("amount")
    @classmethod
    def _two_decimals(cls, v: Decimal) -> Decimal:
        cents = to_cents(v)
        if from_cents(cents) != v:
            raise ValueError(f"settlement amount must have at most 2 decimals, expected {from_cents(cents)}, got {v}")
        if cents <= EPSILON_CENTS:
            raise ValueError(f"settlement amount must be greater than 0.01, got {v}")
        return from_cents(cents)

    @field_serializer("amount")
    def _amount_as_number(self, v: Decimal) -> float:
        return float(v)


_records = TypeAdapter(list[SettlementRecord])


def settlement_to_record(settlement: Settlement) -> SettlementRecord:
    return SettlementRecord(
        id=settlement.id,
        event_id=settlement.event_id,
        from_participant_id=settlement.from_participant_id,
        from_participant_name=settlement.from_participant_name,
        to_participant_id=settlement.to_participant_id,
        to_participant_name=settlement.to_participant_name,
        amount=from_cents(settlement.amount_cents),
        is_paid=settlement.is_paid,
        paid_at=settlement.paid_at,
        created_at=settlement.created_at,
        updated_at=settlement.updated_at,
    )


def record_to_settlement(record: SettlementRecord) -> Settlement:
    return Settlement(
        id=record.id,
        event_id=record.event_id,
        from_participant_id=record.from_participant_id,
        from_participant_name=record.from_participant_name,
        to_participant_id=record.to_participant_id,
        to_participant_name=record.to_participant_name,
        amount_cents=to_cents(record.amount),
        is_paid=record.is_paid,
        paid_at=record.paid_at if record.is_paid else None,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def dump_settlements(settlements: Iterable[Settlement]) -> str:
    return _records.dump_json([settlement_to_record(s) for s in settlements], by_alias=True).decode()


def load_settlements(payload: str | bytes) -> list[Settlement]:
    try:
        records = _records.validate_json(payload)
    except ValueError as e:
        raise ValidationError(f"Invalid settlement payload: {e}") from e
    return [record_to_settlement(r) for r in records]
