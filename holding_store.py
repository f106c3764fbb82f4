# holding_store.py
# SQLite-backed storage for holdings, closed positions and the SELL ledger.

from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from models import (
    HoldingRecord,
    ProfitLossRecord,
    SellAmountUnit,
    StrategyAction,
    ThresholdUnit,
    TierKind,
    TransactionRecord,
)

logger = logging.getLogger(__name__)


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _tier_to_json(tier: Optional[StrategyAction]) -> Optional[str]:
    return json.dumps(tier.to_dict()) if tier else None


def _tier_from_json(raw: Optional[str]) -> Optional[StrategyAction]:
    if not raw:
        return None
    d = json.loads(raw)
    return StrategyAction(
        kind=TierKind(d["type"]),
        threshold=float(d["threshold"]),
        threshold_unit=ThresholdUnit(d["threshold_unit"]),
        sell_amount=float(d["sellAmount"]),
        sell_amount_unit=SellAmountUnit(d["sellAmount_unit"]),
        order=int(d["order"]),
        executed=bool(d.get("executed", False)),
    )


class HoldingStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        parent = os.path.dirname(db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        with self._conn() as c:
            c.execute("""
            CREATE TABLE IF NOT EXISTS holdings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                Time INTEGER NOT NULL,
                TimeDate TEXT NOT NULL,
                Token TEXT NOT NULL,
                TokenName TEXT NOT NULL,
                Balance REAL NOT NULL,
                SolPaid REAL NOT NULL,
                SolFeePaid REAL NOT NULL,
                SolPaidUSDC REAL NOT NULL,
                SolFeePaidUSDC REAL NOT NULL,
                PerTokenPaidUSDC REAL NOT NULL,
                Slot INTEGER NOT NULL,
                Program TEXT NOT NULL,
                BotName TEXT NOT NULL,
                WalletPublicKey TEXT NOT NULL,
                TxId TEXT,
                SellAttempts INTEGER DEFAULT 0,
                IsSkipped INTEGER DEFAULT 0,
                LastAttemptTime INTEGER,
                LastAttemptTimeDate TEXT,
                ExecutedTiers TEXT DEFAULT '[]',
                LamportsBalance TEXT,
                Decimals INTEGER,
                UNIQUE (Token, WalletPublicKey, BotName)
            )""")
            c.execute("""
            CREATE TABLE IF NOT EXISTS profit_loss (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                Time INTEGER NOT NULL,
                TimeDate TEXT,
                EntryTime INTEGER NOT NULL,
                EntryTimeDate TEXT,
                Token TEXT NOT NULL,
                TokenName TEXT NOT NULL,
                EntryBalance REAL NOT NULL,
                ExitBalance REAL NOT NULL,
                EntrySolPaid REAL NOT NULL,
                ExitSolReceived REAL NOT NULL,
                TotalSolFees REAL NOT NULL,
                ProfitLossSOL REAL NOT NULL,
                ProfitLossUSDC REAL NOT NULL,
                ROIPercentage REAL NOT NULL,
                ProfitLossSOLWithFees REAL NOT NULL,
                ProfitLossUSDCWithFees REAL NOT NULL,
                ROIPercentageWithFees REAL NOT NULL,
                EntryPriceUSDC REAL NOT NULL,
                ExitPriceUSDC REAL NOT NULL,
                HoldingTimeSeconds INTEGER NOT NULL,
                Slot INTEGER NOT NULL,
                Program TEXT NOT NULL,
                BotName TEXT NOT NULL,
                IsTakeProfit INTEGER NOT NULL,
                WalletPublicKey TEXT NOT NULL,
                TxId TEXT NOT NULL,
                ConfigTakeProfit TEXT,
                ConfigStopLoss TEXT,
                ExitTierKind TEXT
            )""")
            c.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                Time INTEGER NOT NULL,
                TimeDate TEXT,
                Token TEXT NOT NULL,
                TokenName TEXT NOT NULL,
                TransactionType TEXT NOT NULL,
                TokenAmount REAL NOT NULL,
                SolAmount REAL NOT NULL,
                SolFee REAL NOT NULL,
                PricePerTokenUSDC REAL NOT NULL,
                TotalUSDC REAL NOT NULL,
                Slot INTEGER NOT NULL,
                Program TEXT NOT NULL,
                BotName TEXT NOT NULL,
                WalletPublicKey TEXT NOT NULL,
                TxId TEXT NOT NULL
            )""")
        logger.info("[Store] Tablas verificadas en %s", self.db_path)

    # -------------------------------------------------------------------------
    # holdings
    # -------------------------------------------------------------------------

    def insert_holding(self, h: HoldingRecord) -> int:
        with self._conn() as c:
            cur = c.execute(
                """
                INSERT INTO holdings (
                    Time, TimeDate, Token, TokenName, Balance, SolPaid, SolFeePaid,
                    SolPaidUSDC, SolFeePaidUSDC, PerTokenPaidUSDC, Slot, Program,
                    BotName, WalletPublicKey, TxId, SellAttempts, IsSkipped,
                    ExecutedTiers, LamportsBalance, Decimals
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    h.time, _iso(h.time), h.token, h.token_name, h.balance,
                    h.sol_paid, h.sol_fee_paid, h.sol_paid_usdc, h.sol_fee_paid_usdc,
                    h.per_token_paid_usdc, h.slot, h.program, h.bot_name,
                    h.wallet_public_key, h.tx_id, h.sell_attempts, int(h.is_skipped),
                    json.dumps(sorted(h.executed_tiers)), h.lamports_balance, h.decimals,
                ),
            )
            return int(cur.lastrowid)

    @staticmethod
    def _row_to_holding(row: sqlite3.Row) -> HoldingRecord:
        return HoldingRecord(
            id=row["id"],
            time=row["Time"],
            token=row["Token"],
            token_name=row["TokenName"],
            balance=row["Balance"],
            sol_paid=row["SolPaid"],
            sol_fee_paid=row["SolFeePaid"],
            sol_paid_usdc=row["SolPaidUSDC"],
            sol_fee_paid_usdc=row["SolFeePaidUSDC"],
            per_token_paid_usdc=row["PerTokenPaidUSDC"],
            slot=row["Slot"],
            program=row["Program"],
            bot_name=row["BotName"],
            wallet_public_key=row["WalletPublicKey"],
            tx_id=row["TxId"] or "",
            sell_attempts=row["SellAttempts"] or 0,
            is_skipped=bool(row["IsSkipped"]),
            last_attempt_time=row["LastAttemptTime"],
            executed_tiers=frozenset(json.loads(row["ExecutedTiers"] or "[]")),
            lamports_balance=row["LamportsBalance"],
            decimals=row["Decimals"],
        )

    def get_holding(self, holding_id: int) -> Optional[HoldingRecord]:
        with self._conn() as c:
            row = c.execute("SELECT * FROM holdings WHERE id = ?", (holding_id,)).fetchone()
        return self._row_to_holding(row) if row else None

    def get_all_holdings(
        self,
        wallet_public_key: Optional[str] = None,
        only_not_skipped: bool = True,
    ) -> List[HoldingRecord]:
        query = "SELECT * FROM holdings WHERE 1 = 1"
        params: List[Any] = []
        if wallet_public_key:
            query += " AND WalletPublicKey = ?"
            params.append(wallet_public_key)
        if only_not_skipped:
            query += " AND IsSkipped = 0"
        query += " ORDER BY Time ASC"
        with self._conn() as c:
            rows = c.execute(query, params).fetchall()
        return [self._row_to_holding(r) for r in rows]

    def update_holding_after_partial_sell(self, h: HoldingRecord) -> bool:
        """Guarda el remanente (balance, coste y tramos ejecutados) de una venta parcial."""
        with self._conn() as c:
            cur = c.execute(
                """
                UPDATE holdings
                SET Balance = ?, SolPaid = ?, SolFeePaid = ?, SolPaidUSDC = ?,
                    SolFeePaidUSDC = ?, ExecutedTiers = ?, LamportsBalance = ?,
                    SellAttempts = 0
                WHERE id = ?
                """,
                (
                    h.balance, h.sol_paid, h.sol_fee_paid, h.sol_paid_usdc,
                    h.sol_fee_paid_usdc, json.dumps(sorted(h.executed_tiers)),
                    h.lamports_balance, h.id,
                ),
            )
            return cur.rowcount > 0

    def update_sell_attempts(self, holding_id: int, max_attempts: int) -> bool:
        """
        Suma un intento de venta. Al llegar a `max_attempts` la posición queda
        marcada como skipped y el tracker deja de evaluarla.
        """
        now = int(time.time())
        with self._conn() as c:
            cur = c.execute(
                """
                UPDATE holdings
                SET SellAttempts = SellAttempts + 1,
                    LastAttemptTime = ?,
                    LastAttemptTimeDate = ?,
                    IsSkipped = CASE WHEN SellAttempts + 1 >= ? THEN 1 ELSE IsSkipped END
                WHERE id = ?
                """,
                (now, _iso(now), max_attempts, holding_id),
            )
            updated = cur.rowcount > 0
        if not updated:
            logger.warning("[Store] Holding %s no encontrado al sumar intento de venta", holding_id)
        return updated

    def remove_holding(self, holding_id: int) -> bool:
        with self._conn() as c:
            cur = c.execute("DELETE FROM holdings WHERE id = ?", (holding_id,))
            return cur.rowcount > 0

    # -------------------------------------------------------------------------
    # profit_loss / transactions
    # -------------------------------------------------------------------------

    def insert_profit_loss(self, r: ProfitLossRecord) -> int:
        with self._conn() as c:
            cur = c.execute(
                """
                INSERT INTO profit_loss (
                    Time, TimeDate, EntryTime, EntryTimeDate, Token, TokenName,
                    EntryBalance, ExitBalance, EntrySolPaid, ExitSolReceived,
                    TotalSolFees, ProfitLossSOL, ProfitLossUSDC, ROIPercentage,
                    ProfitLossSOLWithFees, ProfitLossUSDCWithFees, ROIPercentageWithFees,
                    EntryPriceUSDC, ExitPriceUSDC, HoldingTimeSeconds, Slot, Program,
                    BotName, IsTakeProfit, WalletPublicKey, TxId, ConfigTakeProfit,
                    ConfigStopLoss, ExitTierKind
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    r.time, _iso(r.time), r.entry_time, _iso(r.entry_time), r.token,
                    r.token_name, r.entry_balance, r.exit_balance, r.entry_sol_paid,
                    r.exit_sol_received, r.total_sol_fees, r.profit_loss_sol,
                    r.profit_loss_usdc, r.roi_percentage, r.profit_loss_sol_with_fees,
                    r.profit_loss_usdc_with_fees, r.roi_percentage_with_fees,
                    r.entry_price_usdc, r.exit_price_usdc, r.holding_time_seconds,
                    r.slot, r.program, r.bot_name, int(r.is_take_profit),
                    r.wallet_public_key, r.tx_id, _tier_to_json(r.config_take_profit),
                    _tier_to_json(r.config_stop_loss),
                    r.exit_tier_kind.value if r.exit_tier_kind else None,
                ),
            )
            return int(cur.lastrowid)

    def get_profit_loss_records(
        self, bot_name: Optional[str] = None, limit: int = 100
    ) -> List[ProfitLossRecord]:
        query = "SELECT * FROM profit_loss"
        params: List[Any] = []
        if bot_name:
            query += " WHERE BotName = ?"
            params.append(bot_name)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._conn() as c:
            rows = c.execute(query, params).fetchall()
        return [
            ProfitLossRecord(
                id=row["id"],
                time=row["Time"],
                entry_time=row["EntryTime"],
                token=row["Token"],
                token_name=row["TokenName"],
                entry_balance=row["EntryBalance"],
                exit_balance=row["ExitBalance"],
                entry_sol_paid=row["EntrySolPaid"],
                exit_sol_received=row["ExitSolReceived"],
                total_sol_fees=row["TotalSolFees"],
                profit_loss_sol=row["ProfitLossSOL"],
                profit_loss_usdc=row["ProfitLossUSDC"],
                roi_percentage=row["ROIPercentage"],
                profit_loss_sol_with_fees=row["ProfitLossSOLWithFees"],
                profit_loss_usdc_with_fees=row["ProfitLossUSDCWithFees"],
                roi_percentage_with_fees=row["ROIPercentageWithFees"],
                entry_price_usdc=row["EntryPriceUSDC"],
                exit_price_usdc=row["ExitPriceUSDC"],
                holding_time_seconds=row["HoldingTimeSeconds"],
                slot=row["Slot"],
                program=row["Program"],
                bot_name=row["BotName"],
                is_take_profit=bool(row["IsTakeProfit"]),
                wallet_public_key=row["WalletPublicKey"],
                tx_id=row["TxId"],
                config_take_profit=_tier_from_json(row["ConfigTakeProfit"]),
                config_stop_loss=_tier_from_json(row["ConfigStopLoss"]),
                exit_tier_kind=TierKind(row["ExitTierKind"]) if row["ExitTierKind"] else None,
            )
            for row in rows
        ]

    def insert_transaction(self, t: TransactionRecord) -> int:
        with self._conn() as c:
            cur = c.execute(
                """
                INSERT INTO transactions (
                    Time, TimeDate, Token, TokenName, TransactionType, TokenAmount,
                    SolAmount, SolFee, PricePerTokenUSDC, TotalUSDC, Slot, Program,
                    BotName, WalletPublicKey, TxId
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    t.time, _iso(t.time), t.token, t.token_name, t.transaction_type,
                    t.token_amount, t.sol_amount, t.sol_fee, t.price_per_token_usdc,
                    t.total_usdc, t.slot, t.program, t.bot_name, t.wallet_public_key,
                    t.tx_id,
                ),
            )
            return int(cur.lastrowid)

    def count_transactions(self) -> int:
        with self._conn() as c:
            row = c.execute("SELECT COUNT(*) AS n FROM transactions").fetchone()
        return int(row["n"])

    def stats(self, bot_name: Optional[str] = None) -> Dict[str, Any]:
        query = """
            SELECT COUNT(*) AS trades,
                   COALESCE(SUM(IsTakeProfit), 0) AS wins,
                   COALESCE(SUM(ProfitLossUSDC), 0) AS pnl_usdc,
                   COALESCE(SUM(ProfitLossSOL), 0) AS pnl_sol
            FROM profit_loss
        """
        params: List[Any] = []
        if bot_name:
            query += " WHERE BotName = ?"
            params.append(bot_name)
        with self._conn() as c:
            row = c.execute(query, params).fetchone()
        trades = int(row["trades"])
        wins = int(row["wins"])
        return {
            "total_trades": trades,
            "wins": wins,
            "losses": trades - wins,
            "win_rate": (wins / trades * 100.0) if trades else 0.0,
            "total_realized_pnl_usdc": float(row["pnl_usdc"]),
            "total_realized_pnl_sol": float(row["pnl_sol"]),
        }
