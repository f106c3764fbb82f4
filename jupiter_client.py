# jupiter_client.py
"""
Cliente de quotes de Jupiter (swap/v1/quote) sobre httpx.

Solo pide el quote token → WSOL para saber cuánto recuperaríamos al vender.
La firma/envío de la TX no vive aquí.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from models import WSOL_MINT, ErrorCode, QuoteResponse, Result

logger = logging.getLogger(__name__)

NO_ROUTE_ERROR = "COULD_NOT_FIND_ANY_ROUTE"


class JupiterClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://lite-api.jup.ag",
        api_key: Optional[str] = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        self.client = client
        self.quote_url = base_url.rstrip("/") + "/swap/v1/quote"
        self.api_key = api_key
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _backoff(self, attempt: int) -> float:
        return min(self.base_delay * (1.5 ** attempt), 15.0)

    async def get_token_quotes(
        self,
        token: str,
        amount_raw: str,
        slippage_bps: int,
    ) -> Result[QuoteResponse]:
        """
        Quote para vender `amount_raw` (unidades enteras del token) contra SOL.
        Reintenta con backoff salvo cuando Jupiter dice que no hay ruta.
        """
        params: Dict[str, Any] = {
            "inputMint": token,
            "outputMint": WSOL_MINT,
            "amount": str(amount_raw),
            "slippageBps": str(slippage_bps),
            "restrictIntermediateTokens": "true",
        }

        last_msg = "sin respuesta"
        for attempt in range(self.max_retries):
            try:
                resp = await self.client.get(
                    self.quote_url,
                    params=params,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            except httpx.HTTPError as exc:
                last_msg = f"error de red: {exc!r}"
                logger.warning(
                    "[Jupiter] Quote %s intento %s/%s falló: %r",
                    token, attempt + 1, self.max_retries, exc,
                )
            else:
                if resp.status_code == 200:
                    try:
                        data = resp.json()
                    except ValueError:
                        return Result.fail(ErrorCode.MALFORMED_QUOTE, "JSON inválido")
                    logger.debug("[Jupiter] Quote recibido para %s", token)
                    return QuoteResponse.from_api(data)

                body: Dict[str, Any] = {}
                try:
                    body = resp.json() or {}
                except ValueError:
                    pass

                if resp.status_code == 400 and body.get("errorCode") == NO_ROUTE_ERROR:
                    return Result.fail(
                        ErrorCode.MALFORMED_QUOTE, body.get("error") or NO_ROUTE_ERROR
                    )

                last_msg = f"status {resp.status_code}"
                logger.warning(
                    "[Jupiter] Quote %s intento %s/%s status %s",
                    token, attempt + 1, self.max_retries, resp.status_code,
                )

            if attempt + 1 < self.max_retries:
                await asyncio.sleep(self._backoff(attempt))

        return Result.fail(ErrorCode.MALFORMED_QUOTE, f"quote no disponible ({last_msg})")


def to_raw_amount(balance: float, decimals: int) -> str:
    """1.23 tokens con 6 decimales → "1230000"."""
    d = min(max(int(decimals), 0), 12)
    return str(int(round(balance * (10 ** d))))
