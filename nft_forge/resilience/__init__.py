"""
Resilient operation executor: retry, balance assurance, visibility polling
and bounded batch fan-out.
"""

from .retry import Backoff, RetryPolicy, RetryExecutor, retry_operation, Sleeper
from .balance import BalanceAssurance, BalanceCheck, FundingThreshold, ensure_funded
from .visibility import wait_for_visibility
from .batch import BatchResult, FailureMode, run_batch
from .mailbox import AccountMailbox
from .unit import run_unit

__all__ = [
    "Backoff",
    "RetryPolicy",
    "RetryExecutor",
    "retry_operation",
    "Sleeper",
    "BalanceAssurance",
    "BalanceCheck",
    "FundingThreshold",
    "ensure_funded",
    "wait_for_visibility",
    "BatchResult",
    "FailureMode",
    "run_batch",
    "AccountMailbox",
    "run_unit",
]
