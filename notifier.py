# notifier.py
"""
Mensajes de estado y de venta. Siempre se loguean; si hay token + chat de
Telegram configurados también se envían con telegram.Bot.
"""

from __future__ import annotations

import html
import logging
from datetime import datetime
from typing import Any, Optional

from telegram import Bot

from models import CalculatedPNL, HoldingRecord, ProfitLossRecord

logger = logging.getLogger(__name__)


def format_current_state(holding: HoldingRecord, pnl: CalculatedPNL) -> str:
    icon = "🟢" if pnl.pnl_percent >= 0 else "🔴"
    hr_time = datetime.now().strftime("%H:%M:%S")
    sl = pnl.current_stop_loss_strategy
    tp = pnl.current_take_profit_strategy
    return (
        f"{icon} {hr_time} <b>{html.escape(pnl.bot_name)}</b> | "
        f"{html.escape(holding.token_name)}\n"
        f"Token: <code>{holding.token}</code>\n"
        f"Precio: {pnl.initial_price_usdc:.10f} → {pnl.current_price_usdc:.10f} USD "
        f"({pnl.price_diff_percent_usdc:+.2f}%)\n"
        f"Valor: {pnl.current_value_usdc:.4f} USD / coste {pnl.total_investment_usdc:.4f} USD\n"
        f"PnL: {pnl.pnl_usd:+.4f} USD ({pnl.pnl_percent:+.2f}%)"
        f"{' (con fees)' if pnl.is_include_fee else ''}\n"
        f"SL activo: {sl.tier_id if sl else '-'} | TP activo: {tp.tier_id if tp else '-'}\n"
        f"https://solscan.io/token/{holding.token}"
    )


def format_sell(holding: HoldingRecord, record: ProfitLossRecord) -> str:
    icon = "🟢🟢🟢" if record.is_take_profit else "🔴🔴🔴"
    action = "Take profit" if record.is_take_profit else "Stop loss"
    return (
        f"{icon} <b>{action}</b> {html.escape(holding.token_name)} "
        f"({html.escape(record.bot_name)})\n"
        f"Vendido: {record.exit_balance:.4f} tokens → {record.exit_sol_received:.6f} SOL\n"
        f"PnL: {record.profit_loss_usdc:+.4f} USD | ROI {record.roi_percentage:.2f}%\n"
        f"PnL con fees: {record.profit_loss_usdc_with_fees:+.4f} USD | "
        f"ROI {record.roi_percentage_with_fees:.2f}%\n"
        f"Fees: {record.total_sol_fees:.6f} SOL | Holding: {record.holding_time_seconds}s\n"
        f"https://solscan.io/tx/{record.tx_id}"
    )


class Notifier:
    def __init__(self, bot: Optional[Any] = None, chat_id: Optional[int] = None) -> None:
        # bot: telegram.Bot (o cualquier cosa con send_message async)
        self.bot = bot
        self.chat_id = chat_id

    @classmethod
    def from_token(cls, token: str, chat_id: Optional[int]) -> "Notifier":
        if not token or chat_id is None:
            return cls()
        return cls(bot=Bot(token=token), chat_id=chat_id)

    @property
    def enabled(self) -> bool:
        return self.bot is not None and self.chat_id is not None

    async def send(self, message: str) -> bool:
        if not self.enabled:
            return False
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=message,
                parse_mode="HTML",
                disable_web_page_preview=True,
            )
            return True
        except Exception as exc:
            logger.error("[Notifier] Error enviando a Telegram: %r", exc)
            return False

    async def current_state(self, holding: HoldingRecord, pnl: CalculatedPNL) -> None:
        message = format_current_state(holding, pnl)
        logger.info("[Notifier] %s", message.replace("\n", " | "))

    async def sell(self, holding: HoldingRecord, record: ProfitLossRecord) -> None:
        message = format_sell(holding, record)
        logger.info("[Notifier] %s", message.replace("\n", " | "))
        await self.send(message)
