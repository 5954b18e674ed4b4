"""
Test suite for ledger operations

Validates seeding, balance lookups and transfers run through the executor,
including the conservation of money and insufficient-funds declines.
"""

import pytest
from decimal import Decimal

from core_ledger.accounts import Account, find_account, load_account, save_account
from core_ledger.backoff import BackoffPolicy
from core_ledger.errors import AccountNotFoundError
from core_ledger.executor import RetryableTransactionExecutor
from core_ledger.operations import add_accounts, get_account_balance, transfer_funds
from core_ledger.storage import InMemoryStorage


SEED = {1: Decimal("1000.00"), 2: Decimal("250.00"), 3: Decimal("314159.00")}


class TestAccount:
    """Test the account record"""

    def test_to_and_from_dict(self):
        account = Account(id=1, balance=Decimal("1000.00"))
        data = account.to_dict()

        assert data == {"id": 1, "balance": "1000.00"}
        assert Account.from_dict(data) == account

    def test_balance_coerced_to_decimal(self):
        account = Account(id=2, balance="250.50")
        assert account.balance == Decimal("250.50")
        assert isinstance(account.balance, Decimal)

    def test_negative_balance_rejected(self):
        with pytest.raises(ValueError):
            Account(id=1, balance=Decimal("-0.01"))

    def test_find_and_load(self):
        storage = InMemoryStorage()
        with storage.atomic() as tx:
            save_account(tx, Account(id=5, balance=Decimal("1.00")))

        with storage.atomic() as tx:
            assert find_account(tx, 5).balance == Decimal("1.00")
            assert find_account(tx, 6) is None
            with pytest.raises(AccountNotFoundError):
                load_account(tx, 6)


class TestLedgerOperations:
    """Test operations through the retry executor"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.executor = RetryableTransactionExecutor(
            self.storage, backoff=BackoffPolicy(base_delay_millis=1, jitter_window_millis=0)
        )
        seeded = self.executor.run(add_accounts(SEED))
        assert seeded.is_committed
        assert seeded.value == 3

    def balance(self, account_id):
        result = self.executor.run(get_account_balance(account_id))
        assert result.is_committed
        return result.value

    def test_seeded_balances(self):
        assert self.balance(1) == Decimal("1000.00")
        assert self.balance(2) == Decimal("250.00")
        assert self.balance(3) == Decimal("314159.00")

    def test_transfer_then_overdraft_scenario(self):
        """Transfer 100 from 1 to 2, then decline 100000 from 2 to 1"""
        result = self.executor.run(transfer_funds(1, 2, Decimal("100.00")))

        assert result.is_committed
        assert result.value == Decimal("100.00")
        assert self.balance(1) == Decimal("900.00")
        assert self.balance(2) == Decimal("350.00")

        result = self.executor.run(transfer_funds(2, 1, Decimal("100000.00")))

        assert result.is_declined
        assert "Insufficient funds" in result.reason
        assert self.balance(1) == Decimal("900.00")
        assert self.balance(2) == Decimal("350.00")

    @pytest.mark.parametrize("from_id,to_id,amount", [
        (1, 2, Decimal("0.01")),
        (1, 3, Decimal("999.99")),
        (3, 2, Decimal("314159.00")),
        (2, 1, "250.00"),
        (1, 2, 7),
    ])
    def test_transfer_conserves_money(self, from_id, to_id, amount):
        amount = Decimal(str(amount))
        from_before, to_before = self.balance(from_id), self.balance(to_id)

        result = self.executor.run(transfer_funds(from_id, to_id, amount))

        assert result.is_committed
        assert self.balance(from_id) == from_before - amount
        assert self.balance(to_id) == to_before + amount
        assert self.balance(from_id) + self.balance(to_id) == from_before + to_before

    @pytest.mark.parametrize("amount", [Decimal("1000.01"), Decimal("5000"), Decimal("1000000")])
    def test_overdraft_is_declined(self, amount):
        result = self.executor.run(transfer_funds(1, 2, amount))

        assert result.is_declined
        assert result.attempts == 1
        assert self.balance(1) == Decimal("1000.00")
        assert self.balance(2) == Decimal("250.00")

    def test_transfer_of_entire_balance(self):
        result = self.executor.run(transfer_funds(2, 1, Decimal("250.00")))

        assert result.is_committed
        assert self.balance(2) == Decimal("0")

    def test_missing_account_fails(self):
        result = self.executor.run(transfer_funds(1, 99, Decimal("1.00")))

        assert result.is_failed
        assert isinstance(result.cause, AccountNotFoundError)
        assert result.attempts == 1
        assert self.balance(1) == Decimal("1000.00")

    def test_missing_account_balance_fails(self):
        result = self.executor.run(get_account_balance(42))

        assert result.is_failed
        assert isinstance(result.cause, AccountNotFoundError)

    def test_balance_reads_fresh_state(self):
        """The same unit of work sees updates made between runs"""
        lookup = get_account_balance(1)
        assert self.executor.run(lookup).value == Decimal("1000.00")

        self.executor.run(transfer_funds(1, 2, Decimal("10.00")))

        assert self.executor.run(lookup).value == Decimal("990.00")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValueError):
            transfer_funds(1, 2, amount)

    def test_same_account_rejected(self):
        with pytest.raises(ValueError):
            transfer_funds(1, 1, Decimal("1.00"))

    def test_float_amount_rejected(self):
        with pytest.raises(ValueError):
            transfer_funds(1, 2, 10.5)

    def test_negative_seed_rejected(self):
        with pytest.raises(ValueError):
            add_accounts({4: Decimal("-1.00")})
