"""
Account Module

The Account record and its mapping onto the store's table/record interface.
Balances are exact Decimals stored as strings.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import AccountNotFoundError
from .storage import TransactionHandle


ACCOUNTS_TABLE = "accounts"


@dataclass
class Account:
    """
    Ledger account
    """
    id: int
    balance: Decimal

    def __post_init__(self):
        if not isinstance(self.balance, Decimal):
            self.balance = Decimal(str(self.balance))
        if self.balance < 0:
            raise ValueError(f"Account {self.id} balance cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {"id": self.id, "balance": str(self.balance)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create instance from dictionary"""
        return cls(id=int(data["id"]), balance=Decimal(data["balance"]))


def find_account(tx: TransactionHandle, account_id: int) -> Optional[Account]:
    """Read an account inside a transaction, None if absent"""
    data = tx.get(ACCOUNTS_TABLE, str(account_id))
    if data is None:
        return None
    return Account.from_dict(data)


def load_account(tx: TransactionHandle, account_id: int) -> Account:
    """Read an account inside a transaction"""
    account = find_account(tx, account_id)
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


def save_account(tx: TransactionHandle, account: Account) -> None:
    """Write an account inside a transaction"""
    tx.put(ACCOUNTS_TABLE, str(account.id), account.to_dict())
