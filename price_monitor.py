# price_monitor.py
"""
Precio de SOL en USD para el cálculo de PnL.

- Intenta primero Jupiter Price API v3: {base}/price/v3?ids=So111...
- Si falla, fallback a DexScreener: el par SOL/stable con más liquidez.
- Si ninguna fuente responde devuelve None: nunca reutilizamos un precio
  viejo para decidir una venta.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from models import WSOL_MINT

logger = logging.getLogger(__name__)

DEXSCREENER_TOKENS_URL = "https://api.dexscreener.com/latest/dex/tokens"
STABLE_SYMBOLS = ("USDC", "USDT")


def _positive_float(value) -> Optional[float]:
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


async def _fetch_sol_price_from_jupiter(
    client: httpx.AsyncClient,
    base_url: str,
) -> Optional[float]:
    url = f"{base_url.rstrip('/')}/price/v3"
    try:
        resp = await client.get(url, params={"ids": WSOL_MINT}, timeout=8)
    except httpx.HTTPError as exc:
        logger.debug("[PriceMonitor] Jupiter error de red: %r", exc)
        return None

    if resp.status_code != 200:
        logger.debug("[PriceMonitor] Jupiter status %s", resp.status_code)
        return None

    try:
        data = resp.json()
    except ValueError as exc:
        logger.debug("[PriceMonitor] Jupiter JSON inválido: %r", exc)
        return None

    sol_info = (data or {}).get(WSOL_MINT)
    if not sol_info:
        return None
    return _positive_float(sol_info.get("usdPrice"))


async def _fetch_sol_price_from_dexscreener(
    client: httpx.AsyncClient,
) -> Optional[float]:
    url = f"{DEXSCREENER_TOKENS_URL}/{WSOL_MINT}"
    try:
        resp = await client.get(url, timeout=8)
    except httpx.HTTPError as exc:
        logger.debug("[PriceMonitor] DexScreener error de red: %r", exc)
        return None

    if resp.status_code != 200:
        logger.debug("[PriceMonitor] DexScreener status %s", resp.status_code)
        return None

    try:
        data = resp.json()
    except ValueError as exc:
        logger.debug("[PriceMonitor] DexScreener JSON inválido: %r", exc)
        return None

    pairs = [
        p
        for p in (data or {}).get("pairs") or []
        if p.get("chainId") == "solana"
        and p.get("baseToken", {}).get("address") == WSOL_MINT
        and p.get("quoteToken", {}).get("symbol") in STABLE_SYMBOLS
    ]
    if not pairs:
        return None

    # Elegir el par con mayor liquidez en USD
    def _liq_usd(pair: dict) -> float:
        return _positive_float((pair.get("liquidity") or {}).get("usd")) or 0.0

    best_pair = max(pairs, key=_liq_usd)
    return _positive_float(best_pair.get("priceUsd"))


async def fetch_sol_price_usd(
    client: httpx.AsyncClient,
    jupiter_base_url: str,
) -> Optional[float]:
    price = await _fetch_sol_price_from_jupiter(client, jupiter_base_url)
    if price is not None:
        return price

    price = await _fetch_sol_price_from_dexscreener(client)
    if price is None:
        logger.warning("[PriceMonitor] Sin precio de SOL (Jupiter+DexScreener)")
    return price
