# config.py
import os
from dataclasses import dataclass, field

from models import TradeStrategy
from strategy import default_strategy, parse_strategy


def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_float(name: str, default: float) -> float:
    v = _get_env(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _get_env_int(name: str, default: int) -> int:
    v = _get_env(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _get_env_bool(name: str, default: bool = False) -> bool:
    v = _get_env(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


@dataclass
class BotConfig:
    mode: str
    bot_name: str
    wallet_public_key: str

    db_path: str
    check_interval: float
    max_sell_attempts: int

    slippage_bps: int
    auto_sell: bool
    include_fees_in_pnl: bool

    jupiter_api_url: str
    jupiter_api_key: str | None
    helius_tx_url: str | None

    telegram_bot_token: str
    telegram_chat_id: int | None

    health_port: int
    log_level: str

    strategy: TradeStrategy = field(default_factory=TradeStrategy)

    @property
    def is_simulation(self) -> bool:
        return self.mode == "simulation"


def load_config() -> BotConfig:
    mode = _get_env("MODE", "simulation").lower()
    if mode not in ("simulation", "real"):
        mode = "simulation"

    telegram_chat_id_str = _get_env("TELEGRAM_CHAT_ID")
    telegram_chat_id = int(telegram_chat_id_str) if telegram_chat_id_str else None

    # TRADE_STRATEGY (JSON) manda; si no, un tramo de SL y otro de TP al 100%
    raw_strategy = _get_env("TRADE_STRATEGY")
    if raw_strategy:
        strategy = parse_strategy(raw_strategy)
    else:
        strategy = default_strategy(
            stop_loss_percent=_get_env_float("STOP_LOSS_PERCENT", 20.0),
            take_profit_percent=_get_env_float("TAKE_PROFIT_PERCENT", 50.0),
        )

    return BotConfig(
        mode=mode,
        bot_name=_get_env("BOT_NAME", "tracker-bot") or "tracker-bot",
        wallet_public_key=_get_env("WALLET_PUBLIC_KEY", "") or "",

        db_path=_get_env("DB_PATH", os.path.join("data", "holdings.db")),
        check_interval=_get_env_float("CHECK_INTERVAL", 60.0),
        max_sell_attempts=_get_env_int("MAX_SELL_ATTEMPTS", 5),

        slippage_bps=_get_env_int("SLIPPAGE_BPS", 400),
        auto_sell=_get_env_bool("AUTO_SELL", True),
        include_fees_in_pnl=_get_env_bool("INCLUDE_FEES_IN_PNL", False),

        jupiter_api_url=_get_env("JUPITER_API_URL", "https://lite-api.jup.ag"),
        jupiter_api_key=_get_env("JUPITER_API_KEY"),
        helius_tx_url=_get_env("HELIUS_TX_URL"),

        telegram_bot_token=_get_env("TELEGRAM_BOT_TOKEN", "") or "",
        telegram_chat_id=telegram_chat_id,

        health_port=_get_env_int("HEALTH_PORT", 8080),
        log_level=_get_env("LOG_LEVEL", "INFO"),

        strategy=strategy,
    )
