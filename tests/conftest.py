"""Shared fixtures for the tracker / PnL engine tests."""

from __future__ import annotations

import pytest

from config import BotConfig
from factories import make_holding, make_quote, make_tier
from holding_store import HoldingStore
from models import HoldingRecord, QuoteResponse, TradeStrategy


@pytest.fixture
def holding() -> HoldingRecord:
    return make_holding()


@pytest.fixture
def quote() -> QuoteResponse:
    return make_quote()


@pytest.fixture
def take_profit_only() -> TradeStrategy:
    return TradeStrategy(
        stop_loss=(),
        take_profit=(make_tier(threshold=20, sell_amount=50),),
    )


@pytest.fixture
def store(tmp_path) -> HoldingStore:
    s = HoldingStore(str(tmp_path / "data" / "holdings.db"))
    s.init_db()
    return s


@pytest.fixture
def bot_config(tmp_path) -> BotConfig:
    return BotConfig(
        mode="simulation",
        bot_name="tracker-bot",
        wallet_public_key="Wallet11111111111111111111111111111111111",
        db_path=str(tmp_path / "data" / "holdings.db"),
        check_interval=1.0,
        max_sell_attempts=2,
        slippage_bps=400,
        auto_sell=True,
        include_fees_in_pnl=False,
        jupiter_api_url="https://lite-api.jup.ag",
        jupiter_api_key=None,
        helius_tx_url=None,
        telegram_bot_token="",
        telegram_chat_id=None,
        health_port=8080,
        log_level="INFO",
        strategy=TradeStrategy(),
    )
