from __future__ import annotations

from splitsmart.app import open_services
from splitsmart.config import Settings
from splitsmart.services.splits import calculate_equal_split


async def test_services_run_a_ledger_end_to_end():
    settings = Settings(_env_file=None, DATABASE_URL="sqlite+aiosqlite://", LOG_LEVEL="WARNING")

    async with open_services(settings) as services:
        assert services.notifier is None

        event = await services.mutations.create_event("Dinner")
        alice = await services.mutations.create_participant("Alice")
        bob = await services.mutations.create_participant("Bob")
        for p in (alice, bob):
            await services.mutations.add_participant_to_event(event.id, p.id)
        await services.mutations.create_expense(
            event.id,
            payer_id=bob.id,
            amount="80.50",
            shares=calculate_equal_split("80.50", [alice.id, bob.id]),
        )

        (settlement,) = await services.lifecycle.get_settlements(event.id)

    assert (settlement.from_participant_name, settlement.to_participant_name) == ("Alice", "Bob")
    assert settlement.amount_cents == 4025
