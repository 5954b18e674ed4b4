"""
Core Ledger

Financial ledger operations (account creation, balance lookup, fund transfer)
run through a retryable transaction executor that restarts work aborted by
serialization conflicts, with exponential backoff and jitter.
"""

__version__ = "1.0.0"
