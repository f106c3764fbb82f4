# tracker.py
from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from config import BotConfig
from holding_store import HoldingStore
from jupiter_client import to_raw_amount
from models import (
    CalculatedPNL,
    HoldingRecord,
    QuoteResponse,
    Result,
    SwapEventDetails,
)
from notifier import Notifier
from pnl_engine import calculate_pnl
from settlement import build_sell_transaction, settle
from strategy import apply_execution_state, mark_executed, select_active_tiers
from swap_executor import SwapExecutor

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_DECIMALS = 6
# por debajo de esto el remanente de una venta parcial se da por cerrado
DUST_RATIO = 1e-9


class QuoteProvider(Protocol):
    async def get_token_quotes(
        self, token: str, amount_raw: str, slippage_bps: int
    ) -> Result[QuoteResponse]:
        ...


PriceSource = Callable[[], Awaitable[Optional[float]]]
SwapDetailsSource = Callable[[str], Awaitable[Optional[SwapEventDetails]]]


class TrackerBot:
    """
    Motor del tracker.

    - Cada ciclo: precio de SOL → holdings abiertos → quote → PnL.
    - Si un tramo dispara (y auto-sell está activo) vende vía executor.
    - Venta confirmada → registro de cierre + TX, y el holding se borra
      (salida total) o se guarda el remanente con el tramo marcado.
    - Fallos de quote/venta suman intentos; al máximo el holding se salta.
    """

    def __init__(
        self,
        config: BotConfig,
        store: HoldingStore,
        quotes: QuoteProvider,
        price_source: PriceSource,
        executor: SwapExecutor,
        notifier: Optional[Notifier] = None,
        swap_details_source: Optional[SwapDetailsSource] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.quotes = quotes
        self.price_source = price_source
        self.executor = executor
        self.notifier = notifier or Notifier()
        self.swap_details_source = swap_details_source

        self._lock = threading.Lock()

        # holding id -> último PnL calculado
        self._last_pnl: Dict[int, CalculatedPNL] = {}

        self._cycles: int = 0
        self._last_cycle_at: Optional[float] = None
        self._last_sol_price: Optional[float] = None
        self._sells: int = 0

        # bandera de auto-sell (Telegram /activate /deactivate)
        self.active: bool = config.auto_sell

    # -------------------------------------------------------------------------
    # Ciclo principal
    # -------------------------------------------------------------------------

    async def run_once(self) -> int:
        """Un ciclo completo. Devuelve cuántas ventas se confirmaron."""
        sol_price = await self.price_source()

        with self._lock:
            self._last_sol_price = sol_price

        if sol_price is None:
            logger.warning("[Tracker] Sin precio de SOL, se salta este ciclo.")
            return 0

        # sqlite es bloqueante: fuera del event loop
        holdings = await asyncio.to_thread(
            self.store.get_all_holdings,
            wallet_public_key=self.config.wallet_public_key or None,
            only_not_skipped=True,
        )
        logger.info(
            "[Tracker] %s holdings para %s (SOL=%.4f USD)",
            len(holdings), self.config.bot_name, sol_price,
        )

        sells = 0
        for holding in holdings:
            try:
                if await self.process_holding(holding, sol_price):
                    sells += 1
            except Exception:
                # un holding roto no frena a los demás
                logger.exception("[Tracker] Error procesando %s", holding.token)

        with self._lock:
            self._cycles += 1
            self._last_cycle_at = time.time()
            self._sells += sells

        return sells

    async def run_forever(self) -> None:
        logger.info(
            "[Tracker] Iniciado bucle (cada %ss, modo=%s)",
            self.config.check_interval, self.config.mode,
        )
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("[Tracker] Cancelado, saliendo del bucle.")
                raise
            except Exception as exc:
                logger.exception("[Tracker] Error en ciclo: %r", exc)
            await asyncio.sleep(self.config.check_interval)

    # -------------------------------------------------------------------------
    # Holding individual
    # -------------------------------------------------------------------------

    async def process_holding(self, holding: HoldingRecord, sol_price: float) -> bool:
        decimals = holding.decimals if holding.decimals is not None else DEFAULT_TOKEN_DECIMALS
        amount_raw = holding.lamports_balance or to_raw_amount(holding.balance, decimals)

        quote_res = await self.quotes.get_token_quotes(
            holding.token, amount_raw, self.config.slippage_bps
        )
        if not quote_res.success:
            logger.warning(
                "[Tracker] Sin quote para %s: %s", holding.token, quote_res.msg
            )
            await self._register_failed_attempt(holding)
            return False

        quote = quote_res.data
        strategy = apply_execution_state(self.config.strategy, holding.executed_tiers)

        pnl_res = calculate_pnl(
            holding,
            quote,
            strategy,
            include_fees=self.config.include_fees_in_pnl,
            solana_price=sol_price,
            bot_name=self.config.bot_name,
        )
        if not pnl_res.success:
            logger.warning(
                "[Tracker] PnL no calculado para %s: %s", holding.token, pnl_res.msg
            )
            return False

        pnl = pnl_res.data
        with self._lock:
            if holding.id is not None:
                self._last_pnl[holding.id] = pnl

        await self.notifier.current_state(holding, pnl)

        if not pnl.should_sell:
            return False

        if not self.is_active():
            logger.info(
                "[Tracker] %s dispararía %s pero auto-sell está desactivado",
                holding.token_name, pnl.fired_tier.tier_id,
            )
            return False

        return await self._sell(holding, quote, pnl)

    async def _sell(
        self, holding: HoldingRecord, quote: QuoteResponse, pnl: CalculatedPNL
    ) -> bool:
        amount = min(pnl.amount_to_sell, holding.balance)
        fired = pnl.fired_tier

        logger.info(
            "[Tracker] %s %s: vendiendo %.6f de %.6f tokens (PnL %.2f%%)",
            fired.tier_id, holding.token_name, amount, holding.balance, pnl.pnl_percent,
        )

        result = await self.executor.sell(holding, quote, amount)
        if not result.success or not result.tx:
            logger.warning(
                "[Tracker] Venta fallida de %s: %s (intento %s/%s)",
                holding.token, result.msg, holding.sell_attempts + 1,
                self.config.max_sell_attempts,
            )
            await self._register_failed_attempt(holding)
            return False

        swap = result.swap_details
        if swap is None and self.swap_details_source is not None:
            swap = await self.swap_details_source(result.tx)

        full_exit = amount >= holding.balance * (1 - DUST_RATIO)
        sold = holding if full_exit else holding.slice(amount)

        # la venta ya está on-chain: primero actualizamos el holding para no
        # volver a vender lo mismo en el siguiente ciclo
        if holding.id is not None:
            if full_exit:
                await asyncio.to_thread(self.store.remove_holding, holding.id)
            else:
                remaining = mark_executed(holding.remainder(amount), fired)
                await asyncio.to_thread(
                    self.store.update_holding_after_partial_sell, remaining
                )
            with self._lock:
                self._last_pnl.pop(holding.id, None)

        record_res = settle(sold, pnl, swap, result.tx)
        if not record_res.success:
            logger.error(
                "[Tracker] Venta %s confirmada pero sin cierre registrado (%s). "
                "Revisar manualmente: https://solscan.io/tx/%s",
                result.tx, record_res.msg, result.tx,
            )
            return True

        record = record_res.data
        await asyncio.to_thread(self.store.insert_profit_loss, record)

        tx_res = build_sell_transaction(sold, pnl, swap, result.tx)
        if tx_res.success:
            await asyncio.to_thread(self.store.insert_transaction, tx_res.data)

        await self.notifier.sell(sold, record)
        return True

    async def _register_failed_attempt(self, holding: HoldingRecord) -> None:
        if holding.id is None:
            return
        await asyncio.to_thread(
            self.store.update_sell_attempts, holding.id, self.config.max_sell_attempts
        )

    # -------------------------------------------------------------------------
    # Snapshots para Telegram / health server
    # -------------------------------------------------------------------------

    def get_holdings_snapshot(self) -> List[Dict[str, Any]]:
        holdings = self.store.get_all_holdings(
            wallet_public_key=self.config.wallet_public_key or None,
            only_not_skipped=False,
        )
        with self._lock:
            last_pnl = dict(self._last_pnl)

        out: List[Dict[str, Any]] = []
        for h in holdings:
            pnl = last_pnl.get(h.id) if h.id is not None else None
            out.append(
                {
                    "id": h.id,
                    "token": h.token,
                    "token_name": h.token_name,
                    "balance": h.balance,
                    "entry_price_usdc": h.per_token_paid_usdc,
                    "current_price_usdc": pnl.current_price_usdc if pnl else None,
                    "pnl_usd": pnl.pnl_usd if pnl else None,
                    "pnl_percent": pnl.pnl_percent if pnl else None,
                    "sell_attempts": h.sell_attempts,
                    "is_skipped": h.is_skipped,
                    "executed_tiers": sorted(h.executed_tiers),
                }
            )
        return out

    def preview_next_tiers(self) -> List[Dict[str, Any]]:
        """Qué tramo dispararía después en cada holding abierto."""
        out: List[Dict[str, Any]] = []
        for h in self.store.get_all_holdings(
            wallet_public_key=self.config.wallet_public_key or None,
            only_not_skipped=True,
        ):
            tiers = select_active_tiers(
                apply_execution_state(self.config.strategy, h.executed_tiers)
            )
            out.append(
                {
                    "id": h.id,
                    "token": h.token,
                    "token_name": h.token_name,
                    "next_stop_loss": (
                        tiers.active_stop_loss.to_dict() if tiers.active_stop_loss else None
                    ),
                    "next_take_profit": (
                        tiers.active_take_profit.to_dict() if tiers.active_take_profit else None
                    ),
                }
            )
        return out

    def get_stats_snapshot(self) -> Dict[str, Any]:
        stats = self.store.stats(self.config.bot_name)
        with self._lock:
            stats.update(
                {
                    "mode": self.config.mode,
                    "active": self.active,
                    "cycles": self._cycles,
                    "sells": self._sells,
                    "last_cycle_at": self._last_cycle_at,
                    "sol_price": self._last_sol_price,
                }
            )
        stats["num_holdings"] = len(
            self.store.get_all_holdings(
                wallet_public_key=self.config.wallet_public_key or None,
                only_not_skipped=True,
            )
        )
        stats["transactions"] = self.store.count_transactions()
        return stats

    # -------------------------------------------------------------------------
    # Control desde Telegram
    # -------------------------------------------------------------------------

    def set_active(self, value: bool) -> None:
        with self._lock:
            self.active = value

    def is_active(self) -> bool:
        with self._lock:
            return self.active
