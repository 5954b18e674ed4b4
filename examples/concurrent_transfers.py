#!/usr/bin/env python3
"""
Example: Concurrent transfers with automatic conflict retries

Several threads move money around the same few accounts. Overlapping
transactions lose races against each other; the executor rolls them back and
retries with backoff until every transfer has committed or been declined.

Uses LEDGER_DATABASE_URL (memory://, sqlite:///path or postgresql://...).
"""

import os
import sys
import random
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

# Add the core ledger module to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from core_ledger.app import LedgerApp, DEFAULT_ACCOUNTS
from core_ledger.config import LedgerConfig
from core_ledger.events import EventDispatcher, PhaseOutcome, TransactionPhase
from core_ledger.executor import RetryableTransactionExecutor
from core_ledger.logging_config import setup_logging
from core_ledger.storage import create_storage


def main():
    print("🏦 Core Ledger - Concurrent Transfers Example")
    print("=" * 60)

    config = LedgerConfig()
    setup_logging("WARNING", fmt="text")
    print(f"\n1. 💾 Storage: {config.database_url.split('@')[-1]}")
    storage = create_storage(config.database_url, sqlite_busy_timeout=config.sqlite_busy_timeout_seconds)

    # 2. Count phases through the event dispatcher
    phases = Counter()
    phases_lock = threading.Lock()

    def count_phase(event):
        with phases_lock:
            phases[(event.phase.value, event.outcome.value)] += 1

    longest_sleep = [0.0]

    def track_sleep(event):
        if event.delay is not None:
            with phases_lock:
                longest_sleep[0] = max(longest_sleep[0], event.delay)

    dispatcher = EventDispatcher()
    dispatcher.subscribe_all(count_phase)
    dispatcher.subscribe(TransactionPhase.RETRY_SLEEP, track_sleep)

    executor = RetryableTransactionExecutor.from_config(storage, config, hook=dispatcher.publish)
    app = LedgerApp(executor)

    print("\n2. 🌱 Seeding accounts")
    app.seed_accounts()
    total_before = sum(app.balances(*DEFAULT_ACCOUNTS))
    print(f"   Total money: {total_before:.2f}")

    print("\n3. ⚡ Running 50 transfers on 8 threads")
    rng = random.Random(42)
    jobs = []
    for _ in range(50):
        from_id, to_id = rng.sample(sorted(DEFAULT_ACCOUNTS), 2)
        jobs.append((from_id, to_id, Decimal(rng.randint(1, 500))))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda job: app.transfer(*job), jobs))

    outcomes = Counter(result.outcome.value for result in results)
    print(f"   Outcomes: {dict(outcomes)}")
    print(f"   Conflict retries: {phases[(TransactionPhase.RETRY_SLEEP.value, PhaseOutcome.CONFLICT.value)]}")
    print(f"   Longest backoff sleep: {longest_sleep[0] * 1000:.0f} ms")

    total_after = sum(app.balances(*DEFAULT_ACCOUNTS))
    print(f"\n4. 🧮 Total money after: {total_after:.2f} "
          f"({'conserved' if total_after == total_before else 'MISMATCH'})")

    app.close()
    print("=" * 60)


if __name__ == "__main__":
    main()
