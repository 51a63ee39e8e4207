from __future__ import annotations

import html
import logging
from typing import TYPE_CHECKING, Optional, Protocol

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from splitsmart.config import Settings
from splitsmart.services.money import format_amount

if TYPE_CHECKING:
    from splitsmart.db.models import Event, Settlement

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def payment_confirmed(self, settlement: Settlement, event: Optional[Event]) -> None: ...


def _esc(s: str) -> str:
    return html.escape(s, quote=False)


def render_payment_confirmed(settlement: Settlement, event: Optional[Event]) -> str:
    currency = event.currency if event is not None else ""
    lines = [
        "✅ <b>Payment received</b>",
        f"{_esc(settlement.from_participant_name)} → {_esc(settlement.to_participant_name)}: "
        f"<b>{format_amount(settlement.amount_cents, currency)}</b>",
    ]
    if event is not None:
        lines.append(f"<i>{_esc(event.name)}</i>")
    if settlement.notes:
        lines.append(_esc(settlement.notes))
    return "\n".join(lines)[:4096]


class TelegramNotifier:
    def __init__(self, *, bot: Bot, chat_id: int) -> None:
        self._bot = bot
        self._chat_id = chat_id

    async def payment_confirmed(self, settlement: Settlement, event: Optional[Event]) -> None:
        try:
            await self._bot.send_message(
                chat_id=self._chat_id,
                text=render_payment_confirmed(settlement, event),
                parse_mode=ParseMode.HTML,
                disable_web_page_preview=True,
            )
        except (TelegramBadRequest, TelegramForbiddenError) as e:
            logger.warning("Telegram refused payment notification for chat %s: %s", self._chat_id, e)

    async def close(self) -> None:
        await self._bot.session.close()


def build_notifier(settings: Settings) -> Optional[TelegramNotifier]:
    if not settings.telegram_bot_token or settings.notify_chat_id is None:
        return None
    bot = Bot(
        token=settings.telegram_bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    return TelegramNotifier(bot=bot, chat_id=settings.notify_chat_id)
