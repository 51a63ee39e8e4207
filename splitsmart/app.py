from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from splitsmart.config import Settings, settings as default_settings
from splitsmart.db.session import create_engine, create_sessionmaker, init_models
from splitsmart.logging import configure_logging
from splitsmart.services.expenses import LedgerMutations
from splitsmart.services.lifecycle import SettlementLifecycleManager
from splitsmart.services.notifications import TelegramNotifier, build_notifier
from splitsmart.services.repository import ledger_scope

logger = logging.getLogger(__name__)


@dataclass
class Services:
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    lifecycle: SettlementLifecycleManager
    mutations: LedgerMutations
    notifier: Optional[TelegramNotifier]


@asynccontextmanager
async def open_services(settings: Optional[Settings] = None) -> AsyncIterator[Services]:
    """
    Wire the ledger up from settings: engine, tables, notifier, manager.

    Everything opened here is closed again when the block exits.
    """

    settings = settings or default_settings
    configure_logging(settings.log_level)

    engine = create_engine(settings.database_url, echo=settings.sql_echo)
    notifier = build_notifier(settings)
    try:
        await init_models(engine)
        sessionmaker = create_sessionmaker(engine)

        def scope():
            return ledger_scope(sessionmaker)

        lifecycle = SettlementLifecycleManager(repository_factory=scope, notifier=notifier)
        mutations = LedgerMutations(repository_factory=scope, lifecycle=lifecycle)
        logger.info(
            "Ledger ready on %s (notifications %s)",
            engine.url.render_as_string(hide_password=True),
            "on" if notifier is not None else "off",
        )
        yield Services(
            engine=engine,
            sessionmaker=sessionmaker,
            lifecycle=lifecycle,
            mutations=mutations,
            notifier=notifier,
        )
    finally:
        if notifier is not None:
            await notifier.close()
        await engine.dispose()
