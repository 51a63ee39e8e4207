from __future__ import annotations

from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from splitsmart.db.session import create_sessionmaker, init_models
from splitsmart.services.expenses import LedgerMutations
from splitsmart.services.lifecycle import SettlementLifecycleManager
from splitsmart.services.repository import ledger_scope


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return create_sessionmaker(engine)


@pytest.fixture
def scope(sessionmaker):
    return lambda: ledger_scope(sessionmaker)


@pytest.fixture
def lifecycle(scope):
    return SettlementLifecycleManager(repository_factory=scope)


@pytest.fixture
def mutations(scope, lifecycle):
    return LedgerMutations(repository_factory=scope, lifecycle=lifecycle)


@pytest_asyncio.fixture
async def trip(mutations):
    """An active event with Alice, Bob and Carol, in that order."""
    event = await mutations.create_event("Weekend trip")
    people = {}
    for key, name in (("a", "Alice"), ("b", "Bob"), ("c", "Carol")):
        p = await mutations.create_participant(name)
        await mutations.add_participant_to_event(event.id, p.id)
        people[key] = p
    return SimpleNamespace(event=event, **people)
