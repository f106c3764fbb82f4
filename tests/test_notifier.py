"""Tests for the Telegram notifier and command controller (fake bot / updates)."""

import asyncio
from dataclasses import replace
from types import SimpleNamespace

from factories import SOL_PRICE, make_holding, make_quote
from models import SwapEventDetails, TokenTransfer, TradeStrategy
from notifier import Notifier, format_current_state, format_sell
from pnl_engine import calculate_pnl
from settlement import settle
from swap_executor import DryRunSwapExecutor
from telegram_bot import TelegramController, _describe_tier
from tracker import TrackerBot


class FakeBot:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    async def send_message(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.sent.append(kwargs)


def _pnl(holding):
    return calculate_pnl(holding, make_quote(), TradeStrategy(), False, SOL_PRICE).data


def _record(holding):
    swap = SwapEventDetails(
        token_inputs=(),
        token_outputs=(TokenTransfer(mint="So1", token_amount=0.02),),
        fee=0.000005,
        slot=1,
        timestamp=0,
    )
    return settle(holding, _pnl(holding), swap, "sell-tx", now=1_700_000_600).data


class TestNotifier:
    def test_disabled_without_bot(self):
        n = Notifier()
        assert n.enabled is False
        assert asyncio.run(n.send("hola")) is False

    def test_from_token_without_chat(self):
        assert Notifier.from_token("123:abc", None).enabled is False

    def test_sell_message_sent(self):
        holding = make_holding(token_name="<PEPE>")
        bot = FakeBot()
        asyncio.run(Notifier(bot=bot, chat_id=42).sell(holding, _record(holding)))
        [msg] = bot.sent
        assert msg["chat_id"] == 42
        assert msg["parse_mode"] == "HTML"
        assert "&lt;PEPE&gt;" in msg["text"]
        assert "https://solscan.io/tx/sell-tx" in msg["text"]

    def test_current_state_is_log_only(self):
        holding = make_holding()
        bot = FakeBot()
        asyncio.run(Notifier(bot=bot, chat_id=42).current_state(holding, _pnl(holding)))
        assert bot.sent == []

    def test_send_error_is_swallowed(self):
        n = Notifier(bot=FakeBot(error=RuntimeError("telegram caído")), chat_id=1)
        assert asyncio.run(n.send("x")) is False

    def test_formats(self):
        holding = make_holding()
        state = format_current_state(holding, _pnl(holding))
        assert "+50.00%" in state
        assert holding.token in state
        sell = format_sell(holding, _record(holding))
        assert "Take profit" in sell


def _update(chat_id):
    replies = []

    async def reply_text(text, **kwargs):
        replies.append(text)

    update = SimpleNamespace(
        effective_chat=SimpleNamespace(id=chat_id),
        message=SimpleNamespace(reply_text=reply_text),
    )
    return update, replies


class _NoQuotes:
    async def get_token_quotes(self, token, amount_raw, slippage_bps):
        raise AssertionError("no debería pedirse quote")


async def _no_price():
    return None


def _controller(bot_config, store, chat_id=7):
    config = replace(bot_config, telegram_chat_id=chat_id)
    tracker = TrackerBot(
        config=config,
        store=store,
        quotes=_NoQuotes(),
        price_source=_no_price,
        executor=DryRunSwapExecutor(),
    )
    return TelegramController(config, tracker), tracker


class TestTelegramController:
    def test_activate_deactivate(self, bot_config, store):
        ctrl, tracker = _controller(bot_config, store)
        update, replies = _update(7)
        asyncio.run(ctrl.deactivate(update, None))
        assert tracker.is_active() is False
        asyncio.run(ctrl.activate(update, None))
        assert tracker.is_active() is True
        assert len(replies) == 2

    def test_unauthorized_chat_ignored(self, bot_config, store):
        ctrl, tracker = _controller(bot_config, store)
        update, replies = _update(999)
        asyncio.run(ctrl.deactivate(update, None))
        assert tracker.is_active() is True
        assert replies == []

    def test_first_chat_becomes_owner(self, bot_config, store):
        ctrl, _ = _controller(bot_config, store, chat_id=None)
        update, replies = _update(55)
        asyncio.run(ctrl.mode(update, None))
        assert ctrl.config.telegram_chat_id == 55
        assert "simulation" in replies[0]

    def test_holdings_and_status(self, bot_config, store):
        store.insert_holding(make_holding())
        ctrl, _ = _controller(bot_config, store)
        update, replies = _update(7)
        asyncio.run(ctrl.holdings(update, None))
        asyncio.run(ctrl.status(update, None))
        assert "PEPE2" in replies[0]
        assert "Holdings abiertos: `1`" in replies[1]

    def test_describe_tier(self):
        assert _describe_tier(None) == "ninguno"
        text = _describe_tier({
            "order": 2, "threshold": 0.01, "threshold_unit": "price",
            "sellAmount": 500, "sellAmount_unit": "amount",
        })
        assert text == "#2 umbral 0.01 USD → vender 500 tokens"
