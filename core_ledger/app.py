"""
Application Flow Module

Wires configuration, logging, storage and the retry executor together and
runs the demonstration flow: seed accounts, read balances, transfer funds and
read the balances again.
"""

from decimal import Decimal
from typing import Dict, Optional, Tuple

from .config import LedgerConfig, get_config
from .executor import RetryableTransactionExecutor
from .logging_config import setup_logging, get_logger, log_action
from .operations import add_accounts, get_account_balance, transfer_funds
from .results import TransactionResult
from .storage import StorageInterface, create_storage


DEFAULT_ACCOUNTS: Dict[int, Decimal] = {
    1: Decimal("1000.00"),
    2: Decimal("250.00"),
    3: Decimal("314159.00"),
}


class LedgerApp:
    """Business operations on top of a retryable transaction executor"""

    def __init__(self, executor: RetryableTransactionExecutor):
        self.executor = executor

    @classmethod
    def from_config(cls, config: LedgerConfig,
                    storage: Optional[StorageInterface] = None) -> 'LedgerApp':
        storage = storage or create_storage(
            config.database_url, sqlite_busy_timeout=config.sqlite_busy_timeout_seconds
        )
        return cls(RetryableTransactionExecutor.from_config(storage, config))

    def seed_accounts(self, balances: Optional[Dict[int, Decimal]] = None) -> TransactionResult:
        if balances is None:
            balances = DEFAULT_ACCOUNTS
        return self.executor.run(add_accounts(balances))

    def balance(self, account_id: int) -> TransactionResult:
        return self.executor.run(get_account_balance(account_id))

    def balances(self, *account_ids: int) -> Optional[Tuple[Decimal, ...]]:
        """Balances of several accounts, or None if any lookup failed"""
        results = [self.balance(account_id) for account_id in account_ids]
        if not all(result.is_committed for result in results):
            return None
        return tuple(result.value for result in results)

    def transfer(self, from_id: int, to_id: int, amount: Decimal) -> TransactionResult:
        result = self.executor.run(transfer_funds(from_id, to_id, amount))
        log_action(
            get_logger("ledger.app"), "warning" if result.is_failed else "info",
            f"Transfer {result.outcome.value}",
            action="transfer", resource=f"account:{from_id}->account:{to_id}",
            attempt=result.attempts, extra={"amount": str(amount)}
        )
        return result

    def close(self) -> None:
        self.executor.storage.close()


def run_demo(app: LedgerApp, from_id: int = 1, to_id: int = 2,
             amount: Decimal = Decimal("100.00")) -> bool:
    """Run the seed / balance / transfer flow, printing progress. True on success."""
    seeded = app.seed_accounts()
    if not seeded.is_committed:
        print(f"❌ Could not seed accounts: {seeded.cause}")
        return False
    print(f"✅ Seeded {seeded.value} accounts")

    before = app.balances(from_id, to_id)
    if before is not None:
        print(f"💰 Account {from_id}: {before[0]:.2f}  Account {to_id}: {before[1]:.2f}")

    result = app.transfer(from_id, to_id, amount)
    if result.is_declined:
        print(f"⛔ Transfer declined: {result.reason}")
        return True
    if result.is_failed:
        print(f"❌ Transfer failed after {result.attempts} attempt(s): {result.cause}")
        return False

    print(f"🔁 Transferred {result.value:.2f} from {from_id} to {to_id} "
          f"in {result.attempts} attempt(s)")
    after = app.balances(from_id, to_id)
    if after is not None:
        print(f"💰 Account {from_id}: {after[0]:.2f}  Account {to_id}: {after[1]:.2f}")
    return True


def main(config: Optional[LedgerConfig] = None) -> int:
    """Entry point; returns a process exit code"""
    config = config or get_config()
    setup_logging(config.log_level, fmt=config.log_format)
    logger = get_logger("ledger")
    logger.info(f"Starting ledger against {config.database_url.split('@')[-1]}")

    app = LedgerApp.from_config(config)
    try:
        return 0 if run_demo(app) else 1
    finally:
        app.close()
