# helius_client.py
"""
Detalles de la TX de venta desde la API de transacciones parseadas de Helius
(POST {url} {"transactions": [sig]}).

Si la TX no trae events.swap.innerSwaps devolvemos None: el cierre de la
posición no se registra con datos inventados.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from models import LAMPORTS_PER_SOL, SwapEventDetails, TokenTransfer

logger = logging.getLogger(__name__)


def parse_swap_event(tx: Dict[str, Any]) -> Optional[SwapEventDetails]:
    swap = (tx.get("events") or {}).get("swap") or {}
    inner: List[Dict[str, Any]] = swap.get("innerSwaps") or []
    if not inner:
        return None

    first, last = inner[0], inner[-1]
    return SwapEventDetails(
        program_info=first.get("programInfo") or {},
        token_inputs=tuple(TokenTransfer.from_api(t) for t in first.get("tokenInputs") or []),
        token_outputs=tuple(TokenTransfer.from_api(t) for t in last.get("tokenOutputs") or []),
        fee=float(tx.get("fee") or 0) / LAMPORTS_PER_SOL,
        slot=int(tx.get("slot") or 0),
        timestamp=int(tx.get("timestamp") or 0),
        description=tx.get("description") or "",
    )


async def get_transaction_details(
    client: httpx.AsyncClient,
    url: str,
    tx: str,
    max_retries: int = 5,
    base_delay: float = 2.0,
) -> Optional[SwapEventDetails]:
    """
    Helius a veces tarda en indexar la TX recién confirmada: reintentamos
    con backoff mientras la respuesta venga vacía.
    """
    for attempt in range(max_retries):
        try:
            resp = await client.post(url, json={"transactions": [tx]}, timeout=10)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "[Helius] Detalles de %s intento %s/%s fallaron: %r",
                tx, attempt + 1, max_retries, exc,
            )
            data = None

        if data:
            details = parse_swap_event(data[0])
            if details is None:
                logger.warning(
                    "[Helius] TX sin detalles de swap, revisar: https://solscan.io/tx/%s", tx
                )
            return details

        if attempt + 1 < max_retries:
            await asyncio.sleep(min(base_delay * (1.5 ** attempt), 15.0))

    logger.error("[Helius] Sin datos para la TX %s tras %s intentos", tx, max_retries)
    return None
