#!/usr/bin/env python3
"""
Tests for the reference ledger (tools/ledger.py)

Validates:
1.  mint / balance_of / allowance start from zero and accumulate
2.  debit moves the stake into escrow and spends the allowance
3.  debit checks balance before allowance
4.  a failed debit moves nothing
5.  credit mints to the player without touching escrow
6.  amounts far beyond 64-bit survive storage
7.  negative or non-int amounts are rejected
8.  every movement lands in the transaction log
9.  Ledger is abstract
10. refund returns an escrowed stake and its allowance
"""

import os
import shutil
import sys
import tempfile
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import GameConfig
from game_engine.errors import InsufficientAuthorization, InsufficientFunds
from tools.ledger import Ledger, SQLiteLedger

CREDIT = GameConfig.CREDIT


@pytest.fixture
def ledger():
    tmpdir = tempfile.mkdtemp()
    yield SQLiteLedger(os.path.join(tmpdir, "ledger.db"))
    shutil.rmtree(tmpdir, ignore_errors=True)


# ============================================================
# Tests
# ============================================================

def test_fresh_accounts_are_empty(ledger):
    assert ledger.balance_of("alice") == 0
    assert ledger.allowance("alice") == 0
    assert ledger.escrow_balance() == 0


def test_mint_accumulates(ledger):
    ledger.mint("alice", 5 * CREDIT)
    ledger.mint("alice", 7 * CREDIT)
    assert ledger.balance_of("alice") == 12 * CREDIT


def test_approve_replaces(ledger):
    ledger.approve("alice", 10 * CREDIT)
    ledger.approve("alice", 3 * CREDIT)
    assert ledger.allowance("alice") == 3 * CREDIT


def test_debit_moves_into_escrow(ledger):
    ledger.mint("alice", 100 * CREDIT)
    ledger.approve("alice", 60 * CREDIT)
    ledger.debit("alice", 40 * CREDIT)
    assert ledger.balance_of("alice") == 60 * CREDIT
    assert ledger.allowance("alice") == 20 * CREDIT
    assert ledger.escrow_balance() == 40 * CREDIT


def test_debit_checks_balance_first(ledger):
    ledger.approve("alice", 10 * CREDIT)
    with pytest.raises(InsufficientFunds):
        ledger.debit("alice", 10 * CREDIT)


def test_debit_needs_allowance(ledger):
    ledger.mint("alice", 10 * CREDIT)
    ledger.approve("alice", 10 * CREDIT - 1)
    with pytest.raises(InsufficientAuthorization):
        ledger.debit("alice", 10 * CREDIT)
    assert ledger.balance_of("alice") == 10 * CREDIT
    assert ledger.allowance("alice") == 10 * CREDIT - 1
    assert ledger.escrow_balance() == 0


def test_credit_mints(ledger):
    ledger.credit("alice", 108 * CREDIT)
    assert ledger.balance_of("alice") == 108 * CREDIT
    assert ledger.escrow_balance() == 0


def test_large_amounts(ledger):
    huge = 21_850_000 * CREDIT + 1
    assert huge > 2 ** 63
    ledger.credit("whale", huge)
    ledger.credit("whale", huge)
    assert ledger.balance_of("whale") == 2 * huge


def test_bad_amounts(ledger):
    for bad in (-1, 1.5, "10", True):
        with pytest.raises(ValueError):
            ledger.mint("alice", bad)


def test_transaction_log(ledger):
    ledger.mint("alice", 10 * CREDIT)
    ledger.approve("alice", 10 * CREDIT)
    ledger.debit("alice", 4 * CREDIT)
    ledger.credit("alice", 2 * CREDIT)
    txs = ledger.transactions("alice")
    assert [t["kind"] for t in txs] == ["mint", "approve", "debit", "credit"]
    assert txs[2]["amount"] == 4 * CREDIT
    assert len(ledger.transactions()) == 4


def test_ledger_is_abstract():
    with pytest.raises(TypeError):
        Ledger()


def test_custom_accounts():
    tmpdir = tempfile.mkdtemp()
    try:
        ledger = SQLiteLedger(os.path.join(tmpdir, "l.db"),
                              escrow_account="vault", engine_spender="engine-2")
        ledger.mint("bob", 5 * CREDIT)
        ledger.approve("bob", 5 * CREDIT)
        ledger.debit("bob", 5 * CREDIT)
        assert ledger.balance_of("vault") == 5 * CREDIT
        assert ledger.escrow_balance() == 5 * CREDIT
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def test_refund_returns_escrowed_stake(ledger):
    ledger.mint("alice", 10 * CREDIT)
    ledger.approve("alice", 10 * CREDIT)
    ledger.debit("alice", 4 * CREDIT)
    ledger.refund("alice", 4 * CREDIT)
    assert ledger.balance_of("alice") == 10 * CREDIT
    assert ledger.allowance("alice") == 10 * CREDIT
    assert ledger.escrow_balance() == 0
    assert ledger.transactions("alice")[-1]["kind"] == "refund"


def test_refund_cannot_exceed_escrow(ledger):
    with pytest.raises(ValueError):
        ledger.refund("alice", 1)
    assert ledger.balance_of("alice") == 0
