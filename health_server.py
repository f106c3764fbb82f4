#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
🏥 HEALTH CHECK SERVER
======================
Servidor HTTP ligero para healthchecks y monitoreo del tracker.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tracker import TrackerBot

logger = logging.getLogger(__name__)


def create_app(tracker: TrackerBot) -> FastAPI:
    started_at = datetime.now()

    app = FastAPI(
        title="Solana Tracker Bot",
        version="1.0",
        docs_url=None,  # Desactivar docs para producción
        redoc_url=None,
    )

    @app.get("/")
    async def root():
        return {
            "message": "📈 Solana Tracker Bot",
            "bot": tracker.config.bot_name,
            "endpoints": {
                "health": "/health",
                "status": "/status",
                "holdings": "/holdings",
                "next_tiers": "/strategy/next",
            },
        }

    @app.get("/health")
    async def health_check():
        """
        Healthcheck principal.
        IMPORTANTE: Retorna 200 SIEMPRE para evitar reinicios
        """
        stats = await asyncio.to_thread(tracker.get_stats_snapshot)
        last_cycle = stats["last_cycle_at"]
        return JSONResponse(
            status_code=200,
            content={
                "status": "healthy",
                "uptime_seconds": int((datetime.now() - started_at).total_seconds()),
                "cycles": stats["cycles"],
                "last_cycle": (
                    datetime.fromtimestamp(last_cycle).isoformat() if last_cycle else None
                ),
                "mode": stats["mode"],
                "timestamp": datetime.now().isoformat(),
            },
        )

    @app.get("/status")
    async def get_status():
        stats = await asyncio.to_thread(tracker.get_stats_snapshot)
        return JSONResponse(
            {
                "bot": {
                    "name": tracker.config.bot_name,
                    "mode": stats["mode"],
                    "auto_sell": stats["active"],
                    "sol_price": stats["sol_price"],
                },
                "activity": {
                    "cycles": stats["cycles"],
                    "sells": stats["sells"],
                    "open_holdings": stats["num_holdings"],
                    "transactions": stats["transactions"],
                },
                "performance": {
                    "total_trades": stats["total_trades"],
                    "win_rate": round(stats["win_rate"], 2),
                    "total_pnl_usdc": round(stats["total_realized_pnl_usdc"], 4),
                    "total_pnl_sol": round(stats["total_realized_pnl_sol"], 6),
                },
            }
        )

    @app.get("/holdings")
    async def get_holdings():
        holdings = await asyncio.to_thread(tracker.get_holdings_snapshot)
        return JSONResponse(holdings)

    @app.get("/strategy/next")
    async def get_next_tiers():
        """Qué tramo SL/TP se evaluaría a continuación en cada holding."""
        preview = await asyncio.to_thread(tracker.preview_next_tiers)
        return JSONResponse(
            {
                "strategy": tracker.config.strategy.to_dict(),
                "holdings": preview,
            }
        )

    @app.get("/ping")
    async def ping():
        return {"ping": "pong", "timestamp": datetime.now().isoformat()}

    return app


async def start_health_server(tracker: TrackerBot, port: Optional[int] = None):
    port = port or tracker.config.health_port
    try:
        config = uvicorn.Config(
            create_app(tracker),
            host="0.0.0.0",
            port=port,
            log_level="info",
            access_log=False,
            timeout_keep_alive=60,
        )
        server = uvicorn.Server(config)

        logger.info(f"✅ Health server iniciado en puerto {port}")
        logger.info(f"🏥 Healthcheck disponible en: http://0.0.0.0:{port}/health")

        await server.serve()

    except Exception as e:
        logger.error(f"❌ Error iniciando health server: {e}")
        raise
