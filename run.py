#!/usr/bin/env python3
"""
Core Ledger Entry Point

Seeds the demo accounts, transfers funds between them and prints the
balances, retrying transactions on serialization conflicts.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from core_ledger.app import main


if __name__ == "__main__":
    print("🏦 Starting Core Ledger...")
    print("🔁 Transactions retry on serialization conflicts")
    print("💰 All balances use Decimal precision")
    print()

    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n👋 Shutting down Core Ledger...")
    except Exception as e:
        print(f"❌ Error running ledger: {e}")
        sys.exit(1)
