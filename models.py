# models.py
from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")

# WSOL mint en Solana mainnet
WSOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000


class TierKind(str, Enum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class ThresholdUnit(str, Enum):
    PERCENT = "percent"
    PRICE = "price"


class SellAmountUnit(str, Enum):
    PERCENT = "percent"
    AMOUNT = "amount"


class ErrorCode(str, Enum):
    INVALID_INPUT = "invalid_input"
    MALFORMED_QUOTE = "malformed_quote"
    MALFORMED_SWAP = "malformed_swap"


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Resultado explícito de las funciones del core.

    - success=True  → `data` contiene el valor.
    - success=False → `error` + `msg` explican por qué no hay valor.
    """

    success: bool
    data: Optional[T] = None
    msg: Optional[str] = None
    error: Optional[ErrorCode] = None

    @classmethod
    def ok(cls, data: T) -> "Result[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ErrorCode, msg: str) -> "Result[T]":
        return cls(success=False, error=error, msg=msg)


# -----------------------------------------------------------------------------
# Estrategia (tramos de stop loss / take profit)
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyAction:
    kind: TierKind
    threshold: float
    threshold_unit: ThresholdUnit
    sell_amount: float
    sell_amount_unit: SellAmountUnit
    order: int
    executed: bool = False

    @property
    def tier_id(self) -> str:
        return f"{self.kind.value}:{self.order}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "threshold": self.threshold,
            "threshold_unit": self.threshold_unit.value,
            "sellAmount": self.sell_amount,
            "sellAmount_unit": self.sell_amount_unit.value,
            "order": self.order,
            "executed": self.executed,
        }


@dataclass(frozen=True)
class TradeStrategy:
    stop_loss: Tuple[StrategyAction, ...] = ()
    take_profit: Tuple[StrategyAction, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stop_loss": [t.to_dict() for t in self.stop_loss],
            "take_profit": [t.to_dict() for t in self.take_profit],
        }


@dataclass(frozen=True)
class ActiveTiers:
    active_stop_loss: Optional[StrategyAction]
    active_take_profit: Optional[StrategyAction]


@dataclass(frozen=True)
class SellDecision:
    should_sell: bool
    amount_to_sell: float


NO_SELL = SellDecision(should_sell=False, amount_to_sell=0.0)


# -----------------------------------------------------------------------------
# Holding (posición abierta)
# -----------------------------------------------------------------------------


@dataclass
class HoldingRecord:
    token: str
    token_name: str
    balance: float                # tokens en unidades decimales
    sol_paid: float               # SOL pagado en la compra
    sol_fee_paid: float           # fee de red de la compra (SOL)
    sol_paid_usdc: float          # coste de la compra en USD
    sol_fee_paid_usdc: float      # fee de la compra en USD
    per_token_paid_usdc: float    # precio de entrada por token (USD)
    slot: int
    program: str
    bot_name: str
    wallet_public_key: str
    tx_id: str
    time: int = field(default_factory=lambda: int(time.time()))
    id: Optional[int] = None

    sell_attempts: int = 0
    is_skipped: bool = False
    last_attempt_time: Optional[int] = None

    # ids de tramos ya ejecutados para ESTA posición ("stop_loss:1", ...)
    executed_tiers: FrozenSet[str] = frozenset()

    lamports_balance: Optional[str] = None
    decimals: Optional[int] = None

    def slice(self, amount: float) -> "HoldingRecord":
        """Copia proporcional a `amount` tokens (la parte que se vende)."""
        ratio = _ratio(amount, self.balance)
        return replace(
            self,
            balance=amount,
            sol_paid=self.sol_paid * ratio,
            sol_fee_paid=self.sol_fee_paid * ratio,
            sol_paid_usdc=self.sol_paid_usdc * ratio,
            sol_fee_paid_usdc=self.sol_fee_paid_usdc * ratio,
            lamports_balance=_scale_raw(self.lamports_balance, ratio),
        )

    def remainder(self, amount: float) -> "HoldingRecord":
        """Lo que queda abierto tras vender `amount` tokens."""
        left = max(self.balance - amount, 0.0)
        ratio = _ratio(left, self.balance)
        return replace(
            self,
            balance=left,
            sol_paid=self.sol_paid * ratio,
            sol_fee_paid=self.sol_fee_paid * ratio,
            sol_paid_usdc=self.sol_paid_usdc * ratio,
            sol_fee_paid_usdc=self.sol_fee_paid_usdc * ratio,
            lamports_balance=_scale_raw(self.lamports_balance, ratio),
        )


def _ratio(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return min(part / whole, 1.0)


def _scale_raw(raw: Optional[str], ratio: float) -> Optional[str]:
    # balance en unidades enteras del token (string, como lo da la RPC)
    if raw is None:
        return None
    return str(int(int(raw) * ratio))


# -----------------------------------------------------------------------------
# Quote de Jupiter
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RoutePlanItem:
    amm_key: str
    label: str
    input_mint: str
    output_mint: str
    in_amount: str
    out_amount: str
    fee_amount: Optional[str]
    fee_mint: Optional[str]
    percent: float = 100.0

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "RoutePlanItem":
        info = item.get("swapInfo") or {}
        return cls(
            amm_key=info.get("ammKey", ""),
            label=info.get("label", ""),
            input_mint=info.get("inputMint", ""),
            output_mint=info.get("outputMint", ""),
            in_amount=str(info.get("inAmount", "0")),
            out_amount=str(info.get("outAmount", "0")),
            fee_amount=info.get("feeAmount"),
            fee_mint=info.get("feeMint"),
            percent=float(item.get("percent") or 0),
        )


@dataclass(frozen=True)
class PlatformFee:
    amount: str
    fee_bps: int


@dataclass(frozen=True)
class QuoteResponse:
    input_mint: str
    in_amount: str
    output_mint: str
    out_amount: str
    swap_usd_value: str
    other_amount_threshold: str
    slippage_bps: int
    swap_mode: str = "ExactIn"
    platform_fee: Optional[PlatformFee] = None
    price_impact_pct: Any = 0
    route_plan: Tuple[RoutePlanItem, ...] = ()
    context_slot: Optional[int] = None
    time_taken: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Result["QuoteResponse"]:
        """
        Parsea la respuesta de /swap/v1/quote. Si faltan campos clave
        devolvemos un Result fallido en vez de un quote a medias.
        """
        if not data:
            return Result.fail(ErrorCode.MALFORMED_QUOTE, "quote vacío")

        missing = [
            k
            for k in ("outAmount", "swapUsdValue", "otherAmountThreshold")
            if data.get(k) in (None, "")
        ]
        if missing:
            return Result.fail(
                ErrorCode.MALFORMED_QUOTE,
                f"quote sin campos: {', '.join(missing)}",
            )

        try:
            out_amount = float(data["outAmount"])
            float(data["swapUsdValue"])
            float(data["otherAmountThreshold"])
        except (TypeError, ValueError):
            return Result.fail(ErrorCode.MALFORMED_QUOTE, "quote con importes no numéricos")

        if out_amount <= 0:
            return Result.fail(ErrorCode.MALFORMED_QUOTE, "outAmount debe ser > 0")

        platform_fee = None
        pf = data.get("platformFee")
        if pf:
            platform_fee = PlatformFee(
                amount=str(pf.get("amount") or "0"),
                fee_bps=int(pf.get("feeBps") or 0),
            )

        try:
            slippage_bps = int(data.get("slippageBps") or 0)
        except (TypeError, ValueError):
            slippage_bps = 0

        return Result.ok(
            cls(
                input_mint=data.get("inputMint", ""),
                in_amount=str(data.get("inAmount", "0")),
                output_mint=data.get("outputMint", ""),
                out_amount=str(data["outAmount"]),
                swap_usd_value=str(data["swapUsdValue"]),
                other_amount_threshold=str(data["otherAmountThreshold"]),
                slippage_bps=slippage_bps,
                swap_mode=data.get("swapMode", "ExactIn"),
                platform_fee=platform_fee,
                price_impact_pct=data.get("priceImpactPct", 0),
                route_plan=tuple(
                    RoutePlanItem.from_api(r) for r in data.get("routePlan") or []
                ),
                context_slot=data.get("contextSlot"),
                time_taken=data.get("timeTaken"),
                raw=dict(data),
            )
        )


# -----------------------------------------------------------------------------
# Detalles de la TX de venta (Helius parsed transactions)
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenTransfer:
    mint: str
    token_amount: float
    from_user_account: str = ""
    to_user_account: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TokenTransfer":
        return cls(
            mint=data.get("mint", ""),
            token_amount=float(data.get("tokenAmount") or 0),
            from_user_account=data.get("fromUserAccount", ""),
            to_user_account=data.get("toUserAccount", ""),
        )


@dataclass(frozen=True)
class SwapEventDetails:
    token_inputs: Tuple[TokenTransfer, ...]
    token_outputs: Tuple[TokenTransfer, ...]
    fee: float                    # fee de red en SOL
    slot: int
    timestamp: int
    program_info: Dict[str, Any] = field(default_factory=dict)
    description: str = ""


# -----------------------------------------------------------------------------
# Reporte de PnL y registros de cierre
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PnlFees:
    entry_fee_usdc: float
    exit_fee_usdc: float
    entry_fee_sol: float
    exit_fee_sol: float
    route_fees_sol: float
    platform_fee_sol: float


@dataclass(frozen=True)
class CalculatedPNL:
    bot_name: str
    token_name: str
    token_address: str
    token_balance: float
    initial_price_usdc: float
    current_price_usdc: float
    price_diff_usd: float
    price_diff_percent_usdc: float
    is_include_fee: bool
    total_investment_usdc: float
    current_value_usdc: float
    pnl_usd: float
    pnl_percent: float
    solana_price: float
    price_impact: float
    slippage_bps: int
    slippage_percent: float
    fees: PnlFees
    bot_strategy: TradeStrategy
    current_stop_loss_strategy: Optional[StrategyAction]
    current_take_profit_strategy: Optional[StrategyAction]
    should_stop_loss: bool
    should_take_profit: bool
    amount_to_sell: float

    @property
    def should_sell(self) -> bool:
        return self.should_stop_loss or self.should_take_profit

    @property
    def fired_tier(self) -> Optional[StrategyAction]:
        if self.should_stop_loss:
            return self.current_stop_loss_strategy
        if self.should_take_profit:
            return self.current_take_profit_strategy
        return None


@dataclass(frozen=True)
class ProfitLossRecord:
    time: int
    entry_time: int
    token: str
    token_name: str
    entry_balance: float
    exit_balance: float
    entry_sol_paid: float
    exit_sol_received: float
    total_sol_fees: float
    profit_loss_sol: float
    profit_loss_usdc: float
    roi_percentage: float
    profit_loss_sol_with_fees: float
    profit_loss_usdc_with_fees: float
    roi_percentage_with_fees: float
    entry_price_usdc: float
    exit_price_usdc: float
    holding_time_seconds: int
    slot: int
    program: str
    bot_name: str
    is_take_profit: bool
    wallet_public_key: str
    tx_id: str
    config_take_profit: Optional[StrategyAction]
    config_stop_loss: Optional[StrategyAction]
    exit_tier_kind: Optional[TierKind] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class TransactionRecord:
    time: int
    token: str
    token_name: str
    transaction_type: str
    token_amount: float
    sol_amount: float
    sol_fee: float
    price_per_token_usdc: float
    total_usdc: float
    slot: int
    program: str
    bot_name: str
    wallet_public_key: str
    tx_id: str
    id: Optional[int] = None


@dataclass(frozen=True)
class SellResult:
    success: bool
    tx: Optional[str] = None
    msg: Optional[str] = None
    swap_details: Optional[SwapEventDetails] = None
