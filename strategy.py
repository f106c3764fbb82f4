# strategy.py
"""
Estrategia de salida por tramos (stop loss / take profit).

- select_active_tiers: el siguiente tramo NO ejecutado de cada tipo.
- evaluate: decide si un tramo dispara y cuánto vender.
- parse_strategy / default_strategy: construyen la estrategia desde config.
- apply_execution_state / mark_executed: el estado "executed" vive en la
  posición, nunca en la estrategia compartida.
"""

from __future__ import annotations

import json
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Union

from models import (
    NO_SELL,
    ActiveTiers,
    HoldingRecord,
    SellAmountUnit,
    SellDecision,
    StrategyAction,
    ThresholdUnit,
    TierKind,
    TradeStrategy,
)


def _next_tier(tiers: Iterable[StrategyAction]) -> Optional[StrategyAction]:
    pending = sorted((t for t in tiers if not t.executed), key=lambda t: t.order)
    return pending[0] if pending else None


def select_active_tiers(strategy: TradeStrategy) -> ActiveTiers:
    """
    Solo un tramo de cada tipo está "vivo": el de menor `order` sin ejecutar.
    Si el precio salta dos umbrales a la vez, igual se evalúa solo el siguiente.
    """
    return ActiveTiers(
        active_stop_loss=_next_tier(strategy.stop_loss),
        active_take_profit=_next_tier(strategy.take_profit),
    )


def evaluate(
    tier: Optional[StrategyAction],
    current_price: float,
    pnl_percent: float,
    balance: float,
    is_profit_tier: bool,
) -> SellDecision:
    if tier is None:
        return NO_SELL

    # un take profit nunca dispara en pérdida, ni un stop loss en ganancia
    correct_direction = pnl_percent > 0 if is_profit_tier else pnl_percent < 0
    if not correct_direction:
        return NO_SELL

    if tier.threshold_unit == ThresholdUnit.PERCENT:
        should_sell = abs(pnl_percent) > tier.threshold
    elif is_profit_tier:
        should_sell = current_price > tier.threshold
    else:
        should_sell = current_price < tier.threshold

    if not should_sell:
        return NO_SELL

    if tier.sell_amount_unit == SellAmountUnit.PERCENT:
        amount = balance * tier.sell_amount / 100.0
    else:
        amount = min(tier.sell_amount, balance)

    return SellDecision(should_sell=True, amount_to_sell=amount)


# -----------------------------------------------------------------------------
# Estado de ejecución por posición
# -----------------------------------------------------------------------------


def apply_execution_state(
    strategy: TradeStrategy, executed_tiers: Iterable[str]
) -> TradeStrategy:
    """Snapshot de la estrategia con los tramos ya disparados de una posición."""
    done = frozenset(executed_tiers)
    if not done:
        return strategy

    def _apply(tiers):
        return tuple(
            replace(t, executed=True) if t.tier_id in done else t for t in tiers
        )

    return TradeStrategy(
        stop_loss=_apply(strategy.stop_loss),
        take_profit=_apply(strategy.take_profit),
    )


def mark_executed(holding: HoldingRecord, tier: StrategyAction) -> HoldingRecord:
    return replace(holding, executed_tiers=holding.executed_tiers | {tier.tier_id})


# -----------------------------------------------------------------------------
# Construcción desde config
# -----------------------------------------------------------------------------


def _parse_tier(raw: Dict[str, Any], kind: TierKind) -> StrategyAction:
    declared = raw.get("type")
    if declared and declared != kind.value:
        raise ValueError(f"tramo de tipo '{declared}' dentro de la lista '{kind.value}'")

    try:
        return StrategyAction(
            kind=kind,
            threshold=float(raw["threshold"]),
            threshold_unit=ThresholdUnit(raw.get("threshold_unit", "percent")),
            sell_amount=float(raw.get("sellAmount", 100)),
            sell_amount_unit=SellAmountUnit(raw.get("sellAmount_unit", "percent")),
            order=int(raw.get("order", 1)),
            executed=bool(raw.get("executed", False)),
        )
    except KeyError as exc:
        raise ValueError(f"tramo {kind.value} sin campo {exc}") from exc


def _parse_tiers(items: List[Dict[str, Any]], kind: TierKind) -> tuple:
    tiers = tuple(_parse_tier(item, kind) for item in items or [])
    orders = [t.order for t in tiers]
    if len(orders) != len(set(orders)):
        raise ValueError(f"'order' duplicado en los tramos {kind.value}: {orders}")
    return tiers


def parse_strategy(data: Union[str, Dict[str, Any]]) -> TradeStrategy:
    """
    Acepta el formato JSON de siempre:
      {"stop_loss": [{"threshold": 20, "threshold_unit": "percent", ...}],
       "take_profit": [...]}
    """
    if isinstance(data, str):
        data = json.loads(data)
    if not isinstance(data, dict):
        raise ValueError("la estrategia debe ser un objeto JSON")

    return TradeStrategy(
        stop_loss=_parse_tiers(data.get("stop_loss") or [], TierKind.STOP_LOSS),
        take_profit=_parse_tiers(data.get("take_profit") or [], TierKind.TAKE_PROFIT),
    )


def default_strategy(stop_loss_percent: float, take_profit_percent: float) -> TradeStrategy:
    return TradeStrategy(
        stop_loss=(
            StrategyAction(
                kind=TierKind.STOP_LOSS,
                threshold=stop_loss_percent,
                threshold_unit=ThresholdUnit.PERCENT,
                sell_amount=100,
                sell_amount_unit=SellAmountUnit.PERCENT,
                order=1,
            ),
        ),
        take_profit=(
            StrategyAction(
                kind=TierKind.TAKE_PROFIT,
                threshold=take_profit_percent,
                threshold_unit=ThresholdUnit.PERCENT,
                sell_amount=100,
                sell_amount_unit=SellAmountUnit.PERCENT,
                order=1,
            ),
        ),
    )
