"""
GEMMINES - Ledger Adapter

The engine never holds balances itself. It talks to a Ledger:

  debit(player, amount)   pull the stake from the player into escrow
  credit(player, amount)  mint winnings to the player
  refund(player, amount)  return an escrowed stake that opened no game

SQLiteLedger is the reference implementation used for local play and tests.
It models the credit token: balances, spender allowances, an escrow account,
and a transaction log.

Usage:
    from tools.ledger import SQLiteLedger
    ledger = SQLiteLedger(db_path="ledger.db")
    ledger.mint("alice", 500 * CREDIT)
    ledger.approve("alice", 500 * CREDIT)
"""

import logging
import time
from abc import ABC, abstractmethod

from config.database import init_schema, open_db
from config.settings import GameConfig
from game_engine.errors import InsufficientAuthorization, InsufficientFunds

logger = logging.getLogger("gemmines.ledger")


class Ledger(ABC):
    """Boundary between the engine and the credit token."""

    @abstractmethod
    def debit(self, player: str, amount: int):
        """Move `amount` from the player into escrow.

        Raises InsufficientFunds or InsufficientAuthorization and moves nothing.
        """

    @abstractmethod
    def credit(self, player: str, amount: int):
        """Mint `amount` to the player."""

    @abstractmethod
    def refund(self, player: str, amount: int):
        """Return an escrowed stake to the player when no game was opened for it."""


# Amounts are TEXT for the same reason as in the game store.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS balances (
    account TEXT PRIMARY KEY,
    amount TEXT NOT NULL DEFAULT '0'
);

CREATE TABLE IF NOT EXISTS allowances (
    owner TEXT NOT NULL,
    spender TEXT NOT NULL,
    amount TEXT NOT NULL DEFAULT '0',
    PRIMARY KEY (owner, spender)
);

CREATE TABLE IF NOT EXISTS ledger_tx (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    kind TEXT NOT NULL,
    account TEXT NOT NULL,
    amount TEXT NOT NULL,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tx_account ON ledger_tx(account);
"""


class SQLiteLedger(Ledger):
    """Token-style ledger on SQLite. All amounts are integer base units."""

    def __init__(self, db_path: str = None, escrow_account: str = "escrow",
                 engine_spender: str = "mines_engine"):
        self.db_path = db_path or GameConfig.LEDGER_DB_PATH
        self.escrow_account = escrow_account
        self.engine_spender = engine_spender
        init_schema(self.db_path, SCHEMA_SQL)

    # ─── helpers ──────────────────────────────────────────────

    @staticmethod
    def _balance(db, account: str) -> int:
        row = db.execute("SELECT amount FROM balances WHERE account=?", [account]).fetchone()
        return int(row["amount"]) if row else 0

    @staticmethod
    def _set_balance(db, account: str, amount: int):
        db.execute(
            """INSERT INTO balances (account, amount) VALUES (?, ?)
               ON CONFLICT(account) DO UPDATE SET amount=excluded.amount""",
            [account, str(amount)],
        )

    def _allowance(self, db, owner: str) -> int:
        row = db.execute(
            "SELECT amount FROM allowances WHERE owner=? AND spender=?",
            [owner, self.engine_spender],
        ).fetchone()
        return int(row["amount"]) if row else 0

    def _set_allowance(self, db, owner: str, amount: int):
        db.execute(
            """INSERT INTO allowances (owner, spender, amount) VALUES (?, ?, ?)
               ON CONFLICT(owner, spender) DO UPDATE SET amount=excluded.amount""",
            [owner, self.engine_spender, str(amount)],
        )

    @staticmethod
    def _log_tx(db, kind: str, account: str, amount: int):
        db.execute(
            "INSERT INTO ledger_tx (kind, account, amount, created_at) VALUES (?, ?, ?, ?)",
            [kind, account, str(amount), time.time()],
        )

    @staticmethod
    def _check_amount(amount: int):
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise ValueError(f"Amount must be a non-negative int, got {amount!r}")

    # ─── Ledger interface ─────────────────────────────────────

    def debit(self, player: str, amount: int):
        self._check_amount(amount)
        with open_db(self.db_path) as db:
            balance = self._balance(db, player)
            if balance < amount:
                raise InsufficientFunds(
                    f"{player} holds {balance}, needs {amount}")
            allowance = self._allowance(db, player)
            if allowance < amount:
                raise InsufficientAuthorization(
                    f"{player} approved {allowance} for {self.engine_spender}, needs {amount}")
            self._set_balance(db, player, balance - amount)
            self._set_allowance(db, player, allowance - amount)
            self._set_balance(db, self.escrow_account,
                              self._balance(db, self.escrow_account) + amount)
            self._log_tx(db, "debit", player, amount)
        logger.info(f"Debit {amount} from {player} into escrow")

    def credit(self, player: str, amount: int):
        self._check_amount(amount)
        with open_db(self.db_path) as db:
            self._set_balance(db, player, self._balance(db, player) + amount)
            self._log_tx(db, "credit", player, amount)
        logger.info(f"Credit {amount} to {player}")

    def refund(self, player: str, amount: int):
        self._check_amount(amount)
        with open_db(self.db_path) as db:
            escrow = self._balance(db, self.escrow_account)
            if escrow < amount:
                raise ValueError(f"Escrow holds {escrow}, cannot refund {amount}")
            self._set_balance(db, self.escrow_account, escrow - amount)
            self._set_balance(db, player, self._balance(db, player) + amount)
            self._set_allowance(db, player, self._allowance(db, player) + amount)
            self._log_tx(db, "refund", player, amount)
        logger.warning(f"Refund {amount} from escrow to {player}")

    # ─── Token operations ─────────────────────────────────────

    def mint(self, account: str, amount: int):
        """Fund an account (faucet / purchase stand-in)."""
        self._check_amount(amount)
        with open_db(self.db_path) as db:
            self._set_balance(db, account, self._balance(db, account) + amount)
            self._log_tx(db, "mint", account, amount)

    def approve(self, owner: str, amount: int):
        """Set how much the engine may pull from `owner`. Replaces the old value."""
        self._check_amount(amount)
        with open_db(self.db_path) as db:
            self._set_allowance(db, owner, amount)
            self._log_tx(db, "approve", owner, amount)

    def balance_of(self, account: str) -> int:
        with open_db(self.db_path) as db:
            return self._balance(db, account)

    def allowance(self, owner: str) -> int:
        with open_db(self.db_path) as db:
            return self._allowance(db, owner)

    def escrow_balance(self) -> int:
        return self.balance_of(self.escrow_account)

    def transactions(self, account: str = None) -> list:
        with open_db(self.db_path) as db:
            if account:
                rows = db.execute(
                    "SELECT * FROM ledger_tx WHERE account=? ORDER BY id", [account],
                ).fetchall()
            else:
                rows = db.execute("SELECT * FROM ledger_tx ORDER BY id").fetchall()
        return [dict(r, amount=int(r["amount"])) for r in rows]
