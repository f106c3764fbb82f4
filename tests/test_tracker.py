"""End-to-end tracker cycles over a real SQLite store and the dry-run executor."""

import asyncio
import threading
from dataclasses import replace

import pytest

from factories import make_holding, make_quote, make_tier
from holding_store import HoldingStore
from models import (
    WSOL_MINT,
    ErrorCode,
    Result,
    SellResult,
    SwapEventDetails,
    TierKind,
    TokenTransfer,
    TradeStrategy,
)
from swap_executor import DryRunSwapExecutor
from tracker import TrackerBot

SL = TierKind.STOP_LOSS
TP = TierKind.TAKE_PROFIT
SOL_PRICE = 150.0

LADDER = TradeStrategy(
    stop_loss=(make_tier(SL, threshold=20, sell_amount=100),),
    take_profit=(
        make_tier(TP, threshold=50, sell_amount=50, order=1),
        make_tier(TP, threshold=80, sell_amount=100, order=2),
    ),
)


class FakeQuotes:
    def __init__(self, swap_usd_value="2.0", fail=False, error=None, **overrides):
        self.swap_usd_value = swap_usd_value
        self.overrides = overrides
        self.fail = fail
        self.error = error
        self.calls = []

    async def get_token_quotes(self, token, amount_raw, slippage_bps):
        self.calls.append((token, amount_raw, slippage_bps))
        if self.error is not None:
            raise self.error
        if self.fail:
            return Result.fail(ErrorCode.MALFORMED_QUOTE, "sin ruta")
        return Result.ok(
            make_quote(
                outAmount="2000000000",
                otherAmountThreshold="1900000000",
                swapUsdValue=self.swap_usd_value,
                **self.overrides,
            )
        )


class FailingExecutor:
    async def sell(self, holding, quote, amount_tokens):
        return SellResult(success=False, msg="tx expirada")


class NoDetailsExecutor:
    async def sell(self, holding, quote, amount_tokens):
        return SellResult(success=True, tx="sig-without-details")


def _price(value=SOL_PRICE):
    async def source():
        return value

    return source


def _tracker(config, store, quotes, executor=None, price=SOL_PRICE, **kw):
    return TrackerBot(
        config=config,
        store=store,
        quotes=quotes,
        price_source=_price(price),
        executor=executor or DryRunSwapExecutor(),
        **kw,
    )


@pytest.fixture
def ladder_config(bot_config):
    return replace(bot_config, strategy=LADDER)


@pytest.fixture
def position(store):
    # coste 150 USD; con swapUsdValue 2.0 y SOL a 150 vale 300 USD (+100%)
    return store.insert_holding(make_holding(sol_paid_usdc=150.0, sol_paid=1.0))


class TestLadder:
    def test_partial_then_full_exit(self, ladder_config, store, position):
        tracker = _tracker(ladder_config, store, FakeQuotes("2.0"))

        assert asyncio.run(tracker.run_once()) == 1
        rest = store.get_holding(position)
        assert rest.balance == pytest.approx(500.0)
        assert rest.sol_paid_usdc == pytest.approx(75.0)
        assert rest.executed_tiers == {"take_profit:1"}

        [first] = store.get_profit_loss_records()
        assert first.exit_balance == pytest.approx(500.0)
        assert first.exit_sol_received == pytest.approx(0.95)
        assert first.profit_loss_usdc == pytest.approx(0.95 * SOL_PRICE - 75.0)
        assert first.exit_tier_kind == TP

        [preview] = tracker.preview_next_tiers()
        assert preview["next_take_profit"]["order"] == 2

        # +300% sobre el remanente: dispara el tramo 2 y cierra todo
        assert asyncio.run(tracker.run_once()) == 1
        assert store.get_holding(position) is None
        assert len(store.get_profit_loss_records()) == 2
        assert store.count_transactions() == 2

        stats = tracker.get_stats_snapshot()
        assert stats["cycles"] == 2
        assert stats["sells"] == 2
        assert stats["total_trades"] == 2
        assert stats["num_holdings"] == 0
        assert stats["transactions"] == 2

    def test_quote_requested_for_full_balance(self, ladder_config, store, position):
        quotes = FakeQuotes("1.6")
        tracker = _tracker(replace(ladder_config, auto_sell=False), store, quotes)
        asyncio.run(tracker.run_once())
        [(token, amount_raw, slippage)] = quotes.calls
        assert amount_raw == "1000000000"
        assert slippage == 400

    def test_stop_loss_closes_position(self, ladder_config, store, position):
        # 0.5 * 150 = 75 USD contra 150 USD: -50%
        tracker = _tracker(ladder_config, store, FakeQuotes("0.5"))
        assert asyncio.run(tracker.run_once()) == 1
        assert store.get_holding(position) is None
        [record] = store.get_profit_loss_records()
        assert record.exit_tier_kind == SL
        assert record.exit_balance == pytest.approx(1000.0)
        assert record.is_take_profit is False

    def test_no_trigger_keeps_position(self, ladder_config, store, position):
        # +10%: dentro de la banda
        tracker = _tracker(ladder_config, store, FakeQuotes("1.1"))
        assert asyncio.run(tracker.run_once()) == 0
        assert store.get_holding(position).balance == 1000.0
        [snap] = tracker.get_holdings_snapshot()
        assert snap["pnl_percent"] == pytest.approx(10.0)


class TestGuards:
    def test_missing_sol_price_skips_cycle(self, ladder_config, store, position):
        quotes = FakeQuotes("2.0")
        tracker = _tracker(ladder_config, store, quotes, price=None)
        assert asyncio.run(tracker.run_once()) == 0
        assert quotes.calls == []
        assert store.get_holding(position).balance == 1000.0
        assert tracker.get_stats_snapshot()["sol_price"] is None

    def test_auto_sell_off(self, ladder_config, store, position):
        tracker = _tracker(ladder_config, store, FakeQuotes("2.0"))
        tracker.set_active(False)
        assert asyncio.run(tracker.run_once()) == 0
        assert store.get_holding(position).executed_tiers == frozenset()
        assert store.get_profit_loss_records() == []

    def test_failed_quotes_skip_holding(self, ladder_config, store, position):
        tracker = _tracker(ladder_config, store, FakeQuotes(fail=True))
        asyncio.run(tracker.run_once())
        assert store.get_holding(position).sell_attempts == 1
        asyncio.run(tracker.run_once())
        h = store.get_holding(position)
        assert h.is_skipped is True
        assert tracker.get_stats_snapshot()["num_holdings"] == 0

    def test_failed_sell_counts_attempt(self, ladder_config, store, position):
        tracker = _tracker(ladder_config, store, FakeQuotes("2.0"), FailingExecutor())
        assert asyncio.run(tracker.run_once()) == 0
        h = store.get_holding(position)
        assert h.sell_attempts == 1
        assert h.balance == 1000.0

    def test_sell_without_swap_details(self, ladder_config, store, position):
        tracker = _tracker(ladder_config, store, FakeQuotes("2.0"), NoDetailsExecutor())
        assert asyncio.run(tracker.run_once()) == 1
        # la venta se aplica al holding, pero no se inventa un cierre
        assert store.get_holding(position).executed_tiers == {"take_profit:1"}
        assert store.get_profit_loss_records() == []

    def test_swap_details_source_used(self, ladder_config, store, position):
        async def details(tx):
            assert tx == "sig-without-details"
            return SwapEventDetails(
                token_inputs=(),
                token_outputs=(TokenTransfer(mint="So1", token_amount=1.2),),
                fee=0.000005,
                slot=1,
                timestamp=0,
            )

        tracker = _tracker(
            ladder_config, store, FakeQuotes("2.0"), NoDetailsExecutor(),
            swap_details_source=details,
        )
        assert asyncio.run(tracker.run_once()) == 1
        [record] = store.get_profit_loss_records()
        assert record.exit_sol_received == pytest.approx(1.2)

    def test_error_in_one_holding_does_not_stop_cycle(self, ladder_config, store, position):
        tracker = _tracker(ladder_config, store, FakeQuotes(error=RuntimeError("boom")))
        assert asyncio.run(tracker.run_once()) == 0
        assert tracker.get_stats_snapshot()["cycles"] == 1

    def test_other_wallet_ignored(self, ladder_config, store):
        store.insert_holding(make_holding(wallet_public_key="SomeoneElse", sol_paid_usdc=150.0))
        quotes = FakeQuotes("2.0")
        tracker = _tracker(ladder_config, store, quotes)
        assert asyncio.run(tracker.run_once()) == 0
        assert quotes.calls == []


class TestUnits:
    def test_quote_fees_settled_in_sol(self, ladder_config, store, position):
        quotes = FakeQuotes(
            "2.0",
            platformFee={"amount": "2000000", "feeBps": 10},
            routePlan=[
                {"swapInfo": {"ammKey": "a", "label": "Raydium", "feeAmount": "5000000",
                              "feeMint": WSOL_MINT}, "percent": 100},
            ],
        )
        tracker = _tracker(replace(ladder_config, include_fees_in_pnl=True), store, quotes)
        assert asyncio.run(tracker.run_once()) == 1

        [record] = store.get_profit_loss_records()
        # mitad de la fee de compra + red + ruta 0.005 + plataforma 0.002
        expected_fees = 0.00015 + 0.000005 + 0.005 + 0.002
        assert record.exit_sol_received == pytest.approx(0.95)
        assert record.total_sol_fees == pytest.approx(expected_fees)
        assert record.profit_loss_usdc_with_fees == pytest.approx(
            0.95 * SOL_PRICE - 75.0 - expected_fees * SOL_PRICE
        )

    def test_raw_balance_follows_partial_sell(self, ladder_config, store):
        # token de 9 decimales sin Decimals guardado: solo el balance crudo sirve
        hid = store.insert_holding(
            make_holding(
                sol_paid_usdc=150.0,
                sol_paid=1.0,
                lamports_balance="1000000000000",
                decimals=None,
            )
        )
        quotes = FakeQuotes("2.0")
        tracker = _tracker(ladder_config, store, quotes)

        asyncio.run(tracker.run_once())
        assert store.get_holding(hid).lamports_balance == "500000000000"

        asyncio.run(tracker.run_once())
        assert [amount for _, amount, _ in quotes.calls] == ["1000000000000", "500000000000"]


class ThreadRecordingStore(HoldingStore):
    """Anota desde qué hilo se abre cada conexión sqlite."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.threads = set()

    def _conn(self):
        self.threads.add(threading.get_ident())
        return super()._conn()


class TestEventLoop:
    def test_sqlite_runs_off_loop_thread(self, ladder_config, tmp_path):
        store = ThreadRecordingStore(str(tmp_path / "loop.db"))
        store.init_db()
        store.insert_holding(make_holding(sol_paid_usdc=150.0, sol_paid=1.0))
        store.threads.clear()
        tracker = _tracker(ladder_config, store, FakeQuotes("2.0"))

        async def cycle():
            return threading.get_ident(), await tracker.run_once()

        loop_thread, sells = asyncio.run(cycle())
        assert sells == 1
        # lectura de holdings + update parcial + profit_loss + transacción
        assert store.threads
        assert loop_thread not in store.threads

    def test_failed_attempt_off_loop_thread(self, ladder_config, tmp_path):
        store = ThreadRecordingStore(str(tmp_path / "loop.db"))
        store.init_db()
        hid = store.insert_holding(make_holding())
        store.threads.clear()
        tracker = _tracker(ladder_config, store, FakeQuotes(fail=True))

        async def cycle():
            return threading.get_ident(), await tracker.run_once()

        loop_thread, _ = asyncio.run(cycle())
        assert loop_thread not in store.threads
        assert store.get_holding(hid).sell_attempts == 1
