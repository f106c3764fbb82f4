# pnl_engine.py
"""
Cálculo de PnL de una posición abierta contra un quote fresco de Jupiter.

No toca la BD ni manda notificaciones: recibe valores, devuelve un reporte.
"""

from __future__ import annotations

from typing import Optional

from models import (
    LAMPORTS_PER_SOL,
    WSOL_MINT,
    CalculatedPNL,
    ErrorCode,
    HoldingRecord,
    PnlFees,
    QuoteResponse,
    Result,
    TradeStrategy,
)
from strategy import evaluate, select_active_tiers


def _to_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _lamports_to_sol(value) -> float:
    return _to_float(value) / LAMPORTS_PER_SOL


def _route_fees_sol(quote: QuoteResponse) -> float:
    # solo las fees cobradas en WSOL se pueden sumar en SOL
    total = 0.0
    for item in quote.route_plan:
        if item.fee_amount and item.fee_mint == WSOL_MINT:
            total += _lamports_to_sol(item.fee_amount)
    return total


def calculate_pnl(
    holding: HoldingRecord,
    quote: QuoteResponse,
    strategy: TradeStrategy,
    include_fees: bool,
    solana_price: Optional[float],
    bot_name: str = "",
) -> Result[CalculatedPNL]:
    """
    Devuelve el reporte de PnL + decisión de venta.

    `strategy` debe ser el snapshot de la posición (ver
    strategy.apply_execution_state), no la estrategia compartida.
    """
    if solana_price is None or solana_price <= 0:
        return Result.fail(
            ErrorCode.INVALID_INPUT,
            f"precio de SOL no disponible ({solana_price!r}), no se evalúa {holding.token}",
        )

    out_amount = _to_float(quote.out_amount)
    if out_amount <= 0:
        return Result.fail(ErrorCode.MALFORMED_QUOTE, "outAmount debe ser > 0")

    other_amount_threshold = _to_float(quote.other_amount_threshold)

    # precio realizable por token según el propio quote
    current_price = _to_float(quote.swap_usd_value) / out_amount

    if include_fees:
        # salida mínima garantizada tras slippage (pesimista)
        current_sol = other_amount_threshold * current_price
    else:
        current_sol = out_amount * current_price

    current_value_usdc = current_sol * solana_price

    total_cost_usdc = holding.sol_paid_usdc
    if include_fees:
        total_cost_usdc += holding.sol_fee_paid_usdc

    pnl_usd = current_value_usdc - total_cost_usdc
    pnl_percent = (pnl_usd / total_cost_usdc) * 100.0 if total_cost_usdc != 0 else 0.0

    entry_price = holding.per_token_paid_usdc
    price_diff_usd = current_price - entry_price
    price_diff_percent = (
        (current_price - entry_price) / entry_price * 100.0 if entry_price != 0 else 0.0
    )

    route_fees = _route_fees_sol(quote) if include_fees else 0.0

    tiers = select_active_tiers(strategy)
    stop_loss = evaluate(
        tiers.active_stop_loss, current_price, pnl_percent, holding.balance, False
    )
    take_profit = evaluate(
        tiers.active_take_profit, current_price, pnl_percent, holding.balance, True
    )

    # importes del quote en lamports (la salida es WSOL)
    exit_fee_sol = (other_amount_threshold - out_amount) / LAMPORTS_PER_SOL
    platform_fee_sol = (
        _lamports_to_sol(quote.platform_fee.amount) if quote.platform_fee else 0.0
    )

    report = CalculatedPNL(
        bot_name=bot_name or holding.bot_name,
        token_name=holding.token_name,
        token_address=holding.token,
        token_balance=holding.balance,
        initial_price_usdc=entry_price,
        current_price_usdc=current_price,
        price_diff_usd=price_diff_usd,
        price_diff_percent_usdc=price_diff_percent,
        is_include_fee=include_fees,
        total_investment_usdc=total_cost_usdc,
        current_value_usdc=current_value_usdc,
        pnl_usd=pnl_usd,
        pnl_percent=pnl_percent,
        solana_price=solana_price,
        price_impact=_to_float(quote.price_impact_pct),
        slippage_bps=quote.slippage_bps,
        slippage_percent=quote.slippage_bps / 100.0 if quote.slippage_bps else 0.0,
        fees=PnlFees(
            entry_fee_usdc=holding.sol_fee_paid_usdc,
            exit_fee_usdc=exit_fee_sol * solana_price,
            entry_fee_sol=holding.sol_fee_paid,
            exit_fee_sol=exit_fee_sol,
            route_fees_sol=route_fees,
            platform_fee_sol=platform_fee_sol,
        ),
        bot_strategy=strategy,
        current_stop_loss_strategy=tiers.active_stop_loss,
        current_take_profit_strategy=tiers.active_take_profit,
        should_stop_loss=stop_loss.should_sell,
        should_take_profit=take_profit.should_sell,
        # stop loss gana si (raro) disparan los dos
        amount_to_sell=(
            stop_loss.amount_to_sell if stop_loss.should_sell else take_profit.amount_to_sell
        ),
    )
    return Result.ok(report)
