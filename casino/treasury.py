"""
Treasury. Host balances, the two pools, and the transaction ledger.

Every balance mutation produces Transactions. The treasury is the
single source of truth for who holds how much.

The treasury does NOT know about games, handles, or yield. It just
knows: accounts have balances, transfers move them, and nothing goes
negative.

Invariant: sum(account.balance) == total_minted()

atomic() is the transactional boundary the host would otherwise
provide: every mutation inside it is rolled back if the block raises.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from casino.errors import AccountNotFound, InsufficientFunds, MinimumBet
from casino.models import Account, Transaction, PRIMARY, BACKSTOP
from casino.payout_math import checked_add

logger = logging.getLogger(__name__)


class Treasury:

    def __init__(self):
        self.accounts: dict[str, Account] = {}
        self.transactions: list[Transaction] = []
        for pool in (PRIMARY, BACKSTOP):
            self.create_account(pool)

    def create_account(self, account_id: str, balance: int = 0) -> Account:
        if account_id in self.accounts:
            raise ValueError(f"account {account_id} already exists")
        acc = Account(id=account_id, balance=balance)
        self.accounts[account_id] = acc
        return acc

    def get_account(self, account_id: str) -> Account:
        acc = self.accounts.get(account_id)
        if acc is None:
            raise AccountNotFound(f"account {account_id} not found")
        return acc

    @property
    def primary(self) -> Account:
        return self.accounts[PRIMARY]

    @property
    def backstop(self) -> Account:
        return self.accounts[BACKSTOP]

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def mint(self, account_id: str, amount: int) -> Transaction:
        """Create funds from nothing. The only way money enters."""
        if amount <= 0:
            raise MinimumBet("mint amount must be positive")
        acc = self.accounts.get(account_id) or self.create_account(account_id)
        acc.balance = checked_add(acc.balance, amount)
        tx = Transaction.new(account_id=account_id, delta=amount,
                             reason="mint")
        self.transactions.append(tx)
        return tx

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(self, from_id: str, to_id: str, amount: int, reason: str,
                 bet_id: Optional[int] = None
                 ) -> tuple[Transaction, Transaction]:
        """
        Move funds between two accounts.
        Raises InsufficientFunds if the source balance is short.
        """
        if amount < 0:
            raise ValueError(f"negative transfer: {amount}")
        src = self.get_account(from_id)
        dst = self.get_account(to_id)
        if src.balance < amount:
            raise InsufficientFunds(
                f"account {from_id}: need {amount}, have {src.balance}")
        new_dst = checked_add(dst.balance, amount)
        src.balance -= amount
        dst.balance = new_dst
        debit = Transaction.new(account_id=from_id, delta=-amount,
                                reason=reason, bet_id=bet_id)
        credit = Transaction.new(account_id=to_id, delta=amount,
                                 reason=reason, bet_id=bet_id)
        self.transactions.extend((debit, credit))
        return debit, credit

    @contextmanager
    def atomic(self):
        """Roll back every balance and ledger change if the block raises."""
        balances = {acc_id: acc.balance
                    for acc_id, acc in self.accounts.items()}
        n_txs = len(self.transactions)
        try:
            yield self
        except Exception:
            logger.debug("rolling back %d transactions",
                         len(self.transactions) - n_txs)
            for acc_id in list(self.accounts):
                if acc_id not in balances:
                    del self.accounts[acc_id]
                else:
                    self.accounts[acc_id].balance = balances[acc_id]
            del self.transactions[n_txs:]
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance(self, account_id: str) -> int:
        return self.get_account(account_id).balance

    def total(self) -> int:
        return sum(acc.balance for acc in self.accounts.values())

    def total_minted(self) -> int:
        """Sum of all mint transactions. The total money in the system."""
        return sum(tx.delta for tx in self.transactions
                   if tx.reason == "mint")

    def transactions_for_bet(self, bet_id: int) -> list[Transaction]:
        return [tx for tx in self.transactions if tx.bet_id == bet_id]
