# settlement.py
"""
Cierre de una posición tras confirmarse la venta on-chain.

Compara lo realmente recibido (swap confirmado) contra el coste de entrada
en una sola base USD. Si la TX no trae el evento de swap esperado, falla:
no inventamos ceros que luego acaban en la contabilidad.
"""

from __future__ import annotations

import time
from typing import Optional

from models import (
    CalculatedPNL,
    ErrorCode,
    HoldingRecord,
    ProfitLossRecord,
    Result,
    SwapEventDetails,
    TransactionRecord,
)


def _exit_sol(swap: Optional[SwapEventDetails]) -> Optional[float]:
    if swap is None or not swap.token_outputs:
        return None
    # la última salida del swap es el SOL que llega a la wallet
    return swap.token_outputs[-1].token_amount


def _check_inputs(
    pnl: CalculatedPNL, swap: Optional[SwapEventDetails]
) -> Optional[Result]:
    if _exit_sol(swap) is None:
        return Result.fail(
            ErrorCode.MALFORMED_SWAP, "la TX de venta no trae salidas de swap"
        )
    if not pnl.solana_price or pnl.solana_price <= 0:
        return Result.fail(ErrorCode.INVALID_INPUT, "reporte de PnL sin precio de SOL")
    return None


def settle(
    holding: HoldingRecord,
    pnl: CalculatedPNL,
    swap: Optional[SwapEventDetails],
    tx_id: str,
    now: Optional[float] = None,
) -> Result[ProfitLossRecord]:
    error = _check_inputs(pnl, swap)
    if error is not None:
        return error

    now = time.time() if now is None else now
    sol_price = pnl.solana_price
    exit_sol = _exit_sol(swap)

    exit_usdc = exit_sol * sol_price
    entry_usdc = holding.sol_paid_usdc

    profit_loss_usdc = exit_usdc - entry_usdc
    roi = exit_usdc / entry_usdc * 100.0 if entry_usdc != 0 else 0.0

    total_sol_fees = (
        holding.sol_fee_paid
        + swap.fee
        + pnl.fees.route_fees_sol
        + pnl.fees.platform_fee_sol
    )
    fees_usdc = total_sol_fees * sol_price

    profit_loss_sol = exit_sol - holding.sol_paid
    profit_loss_sol_with_fees = profit_loss_sol - total_sol_fees
    profit_loss_usdc_with_fees = profit_loss_usdc - fees_usdc
    roi_with_fees = (
        (exit_usdc - fees_usdc) / entry_usdc * 100.0 if entry_usdc != 0 else 0.0
    )

    fired = pnl.fired_tier

    record = ProfitLossRecord(
        time=int(now),
        entry_time=holding.time,
        token=holding.token,
        token_name=holding.token_name,
        entry_balance=round(holding.balance, 8),
        exit_balance=round(holding.balance, 8),
        entry_sol_paid=round(holding.sol_paid, 8),
        exit_sol_received=round(exit_sol, 8),
        total_sol_fees=total_sol_fees,
        profit_loss_sol=round(profit_loss_sol, 8),
        profit_loss_usdc=round(profit_loss_usdc, 8),
        roi_percentage=round(roi, 2),
        profit_loss_sol_with_fees=round(profit_loss_sol_with_fees, 8),
        profit_loss_usdc_with_fees=round(profit_loss_usdc_with_fees, 8),
        roi_percentage_with_fees=round(roi_with_fees, 2),
        entry_price_usdc=round(pnl.initial_price_usdc, 8),
        exit_price_usdc=round(pnl.current_price_usdc, 8),
        holding_time_seconds=max(int(now - holding.time), 0),
        slot=swap.slot or holding.slot,
        program=holding.program,
        bot_name=holding.bot_name,
        # clasificación por signo, no por el tramo que disparó
        is_take_profit=profit_loss_usdc >= 0,
        wallet_public_key=holding.wallet_public_key,
        tx_id=tx_id,
        config_take_profit=pnl.current_take_profit_strategy,
        config_stop_loss=pnl.current_stop_loss_strategy,
        exit_tier_kind=fired.kind if fired else None,
    )
    return Result.ok(record)


def build_sell_transaction(
    holding: HoldingRecord,
    pnl: CalculatedPNL,
    swap: Optional[SwapEventDetails],
    tx_id: str,
    now: Optional[float] = None,
) -> Result[TransactionRecord]:
    error = _check_inputs(pnl, swap)
    if error is not None:
        return error

    now = time.time() if now is None else now
    exit_sol = _exit_sol(swap)
    total_usdc = exit_sol * pnl.solana_price

    return Result.ok(
        TransactionRecord(
            time=int(now),
            token=holding.token,
            token_name=holding.token_name,
            transaction_type="SELL",
            token_amount=holding.balance,
            sol_amount=exit_sol,
            sol_fee=swap.fee,
            price_per_token_usdc=total_usdc / holding.balance if holding.balance else 0.0,
            total_usdc=total_usdc,
            slot=swap.slot or holding.slot,
            program=holding.program,
            bot_name=holding.bot_name,
            wallet_public_key=holding.wallet_public_key,
            tx_id=tx_id,
        )
    )
