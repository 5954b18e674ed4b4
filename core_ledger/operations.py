"""
Ledger Operations Module

Units of work for the ledger: seeding accounts, reading a balance and
transferring funds. Each factory captures its parameters and returns a
closure that the executor calls once per attempt with a fresh transaction.
"""

from decimal import Decimal
from typing import Dict, Union
import logging

from .accounts import Account, load_account, save_account
from .results import UnitOfWork, declined


logger = logging.getLogger("ledger.operations")

Amount = Union[Decimal, int, str]


def _to_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, float):
        raise ValueError("Use Decimal, int or str for monetary amounts, not float")
    return amount if isinstance(amount, Decimal) else Decimal(str(amount))


def add_accounts(balances: Dict[int, Amount]) -> UnitOfWork:
    """
    Create (or reset) accounts with the given opening balances.

    Args:
        balances: Mapping of account id to opening balance

    Returns:
        Unit of work returning the number of accounts written
    """
    accounts = [Account(id=account_id, balance=_to_decimal(balance))
                for account_id, balance in balances.items()]

    def work(tx) -> int:
        for account in accounts:
            save_account(tx, account)
        logger.info(f"addAccounts() --> {len(accounts)}", extra={"action": "add_accounts"})
        return len(accounts)

    return work


def get_account_balance(account_id: int) -> UnitOfWork:
    """Unit of work returning the current balance of an account"""

    def work(tx) -> Decimal:
        balance = load_account(tx, account_id).balance
        logger.info(f"getAccountBalance({account_id}) --> {balance:.2f}",
                    extra={"action": "get_balance", "resource": f"account:{account_id}"})
        return balance

    return work


def transfer_funds(from_id: int, to_id: int, amount: Amount) -> UnitOfWork:
    """
    Move ``amount`` from one account to another.

    The unit of work declines, leaving both accounts untouched, when the
    source balance is smaller than the amount. On success it returns the
    amount transferred.

    Raises:
        ValueError: amount is not positive or both ids are the same account
    """
    amount = _to_decimal(amount)
    if amount <= 0:
        raise ValueError("Transfer amount must be positive")
    if from_id == to_id:
        raise ValueError("Cannot transfer funds to the same account")

    def work(tx):
        from_account = load_account(tx, from_id)
        to_account = load_account(tx, to_id)

        if amount > from_account.balance:
            logger.info(
                f"transferFunds({from_id}, {to_id}, {amount:.2f}) declined: "
                f"insufficient funds ({from_account.balance:.2f})",
                extra={"action": "transfer", "resource": f"account:{from_id}"}
            )
            return declined(f"Insufficient funds in account {from_id}")

        from_account.balance -= amount
        to_account.balance += amount
        save_account(tx, from_account)
        save_account(tx, to_account)
        logger.info(f"transferFunds({from_id}, {to_id}, {amount:.2f}) --> {amount:.2f}",
                    extra={"action": "transfer", "resource": f"account:{from_id}"})
        return amount

    return work
