# telegram_bot.py
import asyncio
import logging

from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
)

from config import BotConfig
from tracker import TrackerBot


logger = logging.getLogger(__name__)


def _fmt(value, spec: str, suffix: str = "") -> str:
    if value is None:
        return "-"
    return f"{value:{spec}}{suffix}"


class TelegramController:
    def __init__(self, config: BotConfig, tracker: TrackerBot) -> None:
        self.config = config
        self.tracker = tracker

    # --------- handlers ---------

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        txt = (
            "📈 *Tracker Bot*\n\n"
            f"Bot: `{self.config.bot_name}`\n"
            f"Modo: `{self.config.mode}`\n"
            f"Auto-sell: `{self.tracker.is_active()}`\n\n"
            "Comandos:\n"
            "• /status – estado del bot\n"
            "• /holdings – posiciones abiertas con PnL\n"
            "• /stats – rendimiento realizado\n"
            "• /strategy – próximo tramo SL/TP por posición\n"
            "• /activate – activar auto-sell\n"
            "• /deactivate – pausar auto-sell\n"
            "• /mode – mostrar modo (SIM/REAL)\n"
        )
        await update.message.reply_text(txt, parse_mode="Markdown")

    async def status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        stats = await asyncio.to_thread(self.tracker.get_stats_snapshot)
        txt = (
            f"📊 *Status Bot*\n\n"
            f"Modo: `{stats['mode']}`\n"
            f"Auto-sell: `{stats['active']}`\n"
            f"Holdings abiertos: `{stats['num_holdings']}`\n"
            f"Ciclos: `{stats['cycles']}`\n"
            f"SOL: `{_fmt(stats['sol_price'], '.2f', ' USD')}`\n"
            f"Trades cerrados: `{stats['total_trades']}`\n"
            f"Win rate: `{stats['win_rate']:.1f}%`\n"
            f"P&L realizado: `{stats['total_realized_pnl_usdc']:.4f} USD`\n"
        )
        await update.message.reply_text(txt, parse_mode="Markdown")

    async def holdings(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if not await self._is_authorized(update):
            return

        holdings = await asyncio.to_thread(self.tracker.get_holdings_snapshot)
        if not holdings:
            await update.message.reply_text("No hay holdings abiertos.")
            return

        lines = ["🏹 *Holdings:*", ""]
        for h in holdings:
            lines.append(
                f"• `{h['token_name']}`{' (skipped)' if h['is_skipped'] else ''}\n"
                f"  Mint: `{h['token']}`\n"
                f"  Balance: `{h['balance']:.4f}`\n"
                f"  Entrada: `{h['entry_price_usdc']:.10f} USD`\n"
                f"  Último: `{_fmt(h['current_price_usdc'], '.10f', ' USD')}`\n"
                f"  PnL: `{_fmt(h['pnl_percent'], '.2f', '%')}`\n"
                f"  Intentos de venta: `{h['sell_attempts']}`\n"
            )

        await update.message.reply_text("\n".join(lines), parse_mode="Markdown")

    async def stats(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self.status(update, context)

    async def strategy(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        preview = await asyncio.to_thread(self.tracker.preview_next_tiers)
        if not preview:
            await update.message.reply_text("No hay holdings abiertos.")
            return

        lines = ["🎯 *Próximos tramos:*", ""]
        for p in preview:
            sl = p["next_stop_loss"]
            tp = p["next_take_profit"]
            lines.append(
                f"• `{p['token_name']}`\n"
                f"  SL: `{_describe_tier(sl)}`\n"
                f"  TP: `{_describe_tier(tp)}`\n"
            )
        await update.message.reply_text("\n".join(lines), parse_mode="Markdown")

    async def activate(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return
        self.tracker.set_active(True)
        await update.message.reply_text("✅ Auto-sell activado.")

    async def deactivate(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if not await self._is_authorized(update):
            return
        self.tracker.set_active(False)
        await update.message.reply_text("⏸ Auto-sell pausado (solo seguimiento de PnL).")

    async def mode(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return
        await update.message.reply_text(
            f"Modo actual: `{self.config.mode}`", parse_mode="Markdown"
        )

    # --------- auth ---------

    async def _is_authorized(self, update: Update) -> bool:
        if self.config.telegram_chat_id is None:
            # primera vez: fijamos chat como dueño
            if update.effective_chat:
                self.config.telegram_chat_id = update.effective_chat.id
                return True
            return False

        if update.effective_chat and update.effective_chat.id == self.config.telegram_chat_id:
            return True

        # ignorar mensajes de otros chats
        logger.warning(
            "Mensaje de chat no autorizado: %s",
            update.effective_chat.id if update.effective_chat else None,
        )
        return False


def _describe_tier(tier) -> str:
    if not tier:
        return "ninguno"
    unit = "%" if tier["threshold_unit"] == "percent" else " USD"
    amount_unit = "%" if tier["sellAmount_unit"] == "percent" else " tokens"
    return (
        f"#{tier['order']} umbral {tier['threshold']}{unit} → "
        f"vender {tier['sellAmount']}{amount_unit}"
    )


async def build_application(config: BotConfig, tracker: TrackerBot) -> Application:
    app = Application.builder().token(config.telegram_bot_token).build()

    ctrl = TelegramController(config, tracker)

    app.add_handler(CommandHandler("start", ctrl.start))
    app.add_handler(CommandHandler("status", ctrl.status))
    app.add_handler(CommandHandler("holdings", ctrl.holdings))
    app.add_handler(CommandHandler("stats", ctrl.stats))
    app.add_handler(CommandHandler("strategy", ctrl.strategy))
    app.add_handler(CommandHandler("activate", ctrl.activate))
    app.add_handler(CommandHandler("deactivate", ctrl.deactivate))
    app.add_handler(CommandHandler("mode", ctrl.mode))

    return app
