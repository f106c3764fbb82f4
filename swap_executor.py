# swap_executor.py
from __future__ import annotations

import time
import uuid
from typing import Protocol

from models import (
    LAMPORTS_PER_SOL,
    WSOL_MINT,
    HoldingRecord,
    QuoteResponse,
    SellResult,
    SwapEventDetails,
    TokenTransfer,
)

# fee base de una firma en Solana
BASE_NETWORK_FEE_SOL = 0.000005


class SwapExecutor(Protocol):
    """
    Vende `amount_tokens` del holding contra SOL usando el quote dado.

    La implementación real (firma + envío) queda fuera de este repo; el
    tracker solo depende de este contrato.
    """

    async def sell(
        self, holding: HoldingRecord, quote: QuoteResponse, amount_tokens: float
    ) -> SellResult:
        ...


class DryRunSwapExecutor:
    """
    MODE=simulation: no manda nada a la red. Devuelve una TX sintética y
    unos detalles de swap construidos con la salida mínima garantizada del
    quote (proporcional a la cantidad vendida).
    """

    def __init__(self, network_fee_sol: float = BASE_NETWORK_FEE_SOL) -> None:
        self.network_fee_sol = network_fee_sol

    async def sell(
        self, holding: HoldingRecord, quote: QuoteResponse, amount_tokens: float
    ) -> SellResult:
        if amount_tokens <= 0:
            return SellResult(success=False, msg="amount_tokens debe ser > 0")

        ratio = min(amount_tokens / holding.balance, 1.0) if holding.balance > 0 else 0.0
        sol_out = float(quote.other_amount_threshold) / LAMPORTS_PER_SOL * ratio

        details = SwapEventDetails(
            token_inputs=(
                TokenTransfer(
                    mint=holding.token,
                    token_amount=amount_tokens,
                    from_user_account=holding.wallet_public_key,
                ),
            ),
            token_outputs=(
                TokenTransfer(
                    mint=WSOL_MINT,
                    token_amount=sol_out,
                    to_user_account=holding.wallet_public_key,
                ),
            ),
            fee=self.network_fee_sol,
            slot=quote.context_slot or holding.slot,
            timestamp=int(time.time()),
            program_info={"source": "DRY_RUN"},
            description="simulated sell",
        )
        return SellResult(
            success=True,
            tx=f"SIM-{uuid.uuid4().hex}",
            swap_details=details,
        )
