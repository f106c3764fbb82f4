# main.py
import asyncio
import logging

import httpx
from dotenv import load_dotenv

from config import load_config
from health_server import start_health_server
from helius_client import get_transaction_details
from holding_store import HoldingStore
from jupiter_client import JupiterClient
from notifier import Notifier
from price_monitor import fetch_sol_price_usd
from swap_executor import DryRunSwapExecutor
from telegram_bot import build_application
from tracker import TrackerBot


def main() -> None:
    # Localmente lee .env; en Railway usas variables de entorno directas
    load_dotenv()

    config = load_config()

    # Logging global
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger("main")

    if not config.is_simulation:
        # la firma/envío de ventas reales no vive en este repo
        raise RuntimeError(
            "MODE=real necesita un SwapExecutor con firma; usa MODE=simulation"
        )
    if not config.wallet_public_key:
        logger.warning("WALLET_PUBLIC_KEY vacío: se siguen holdings de todas las wallets")

    store = HoldingStore(config.db_path)
    store.init_db()

    async def run() -> None:
        async with httpx.AsyncClient() as client:
            jupiter = JupiterClient(
                client,
                base_url=config.jupiter_api_url,
                api_key=config.jupiter_api_key,
            )

            async def sol_price():
                return await fetch_sol_price_usd(client, config.jupiter_api_url)

            swap_details_source = None
            if config.helius_tx_url:
                async def swap_details_source(tx: str):
                    return await get_transaction_details(client, config.helius_tx_url, tx)

            tracker = TrackerBot(
                config=config,
                store=store,
                quotes=jupiter,
                price_source=sol_price,
                executor=DryRunSwapExecutor(),
                notifier=Notifier.from_token(
                    config.telegram_bot_token, config.telegram_chat_id
                ),
                swap_details_source=swap_details_source,
            )

            tasks = [
                asyncio.create_task(tracker.run_forever()),
                asyncio.create_task(start_health_server(tracker)),
            ]

            if config.telegram_bot_token:
                app = await build_application(config, tracker)
                async with app:
                    await app.start()
                    await app.updater.start_polling(drop_pending_updates=True)
                    logger.info("✅ Telegram bot (polling) + Tracker activo...")
                    try:
                        await asyncio.gather(*tasks)
                    finally:
                        await app.updater.stop()
                        await app.stop()
            else:
                logger.info("✅ Tracker activo (sin Telegram)...")
                await asyncio.gather(*tasks)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("⏹️  Bot detenido por el usuario (Ctrl+C).")


if __name__ == "__main__":
    main()
