"""
Balance assurance: top up an account before an operation that spends from it.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from ..core.exceptions import InsufficientFundsError, ValidationError
from .retry import RetryExecutor, RetryPolicy, Backoff, Sleeper


logger = structlog.get_logger(__name__)

BalanceQuery = Callable[[], Awaitable[float]]
FundingOperation = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class FundingThreshold:
    """
    Soft target and hard floor for an account balance.

    Funding is attempted below `min_balance`; after funding only a balance
    below `hard_floor` counts as failure, so a partial top-up that still
    covers the next operation is accepted.
    """
    min_balance: float
    top_up_amount: float
    hard_floor: float = 0.01

    def __post_init__(self):
        if self.top_up_amount < 0 or self.min_balance < 0 or self.hard_floor < 0:
            raise ValidationError(
                "Funding threshold values must not be negative",
                {
                    "min_balance": self.min_balance,
                    "top_up_amount": self.top_up_amount,
                    "hard_floor": self.hard_floor,
                }
            )
        if self.hard_floor > self.min_balance:
            raise ValidationError(
                "hard_floor must not exceed min_balance",
                {"min_balance": self.min_balance, "hard_floor": self.hard_floor}
            )


@dataclass
class BalanceCheck:
    """Outcome of one balance assurance run."""
    initial: float
    final: float
    funded: bool


class BalanceAssurance:
    """Checks a balance and funds the account when it is below target."""

    def __init__(
        self,
        query_balance: BalanceQuery,
        fund: FundingOperation,
        threshold: FundingThreshold,
        funding_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleeper] = None,
        account: str = "account",
    ):
        self.query_balance = query_balance
        self.fund = fund
        self.threshold = threshold
        self.account = account
        self.executor = RetryExecutor(
            funding_policy or RetryPolicy(3, 5.0, Backoff.LINEAR),
            sleep=sleep
        )
        self.logger = logger.bind(service="balance_assurance", account=account)

    async def ensure(self) -> BalanceCheck:
        threshold = self.threshold
        current = await self.query_balance()
        self.logger.info(
            "Balance checked",
            balance=round(current, 6),
            min_balance=threshold.min_balance
        )

        if current >= threshold.min_balance:
            self.logger.info("Balance sufficient, no funding needed")
            return BalanceCheck(initial=current, final=current, funded=False)

        self.logger.info(
            "Balance below target, funding",
            balance=round(current, 6),
            amount=threshold.top_up_amount
        )
        await self.executor.run(
            lambda: self.fund(threshold.top_up_amount),
            name=f"fund {self.account}"
        )

        new_balance = await self.query_balance()
        self.logger.info("Balance after funding", balance=round(new_balance, 6))

        if new_balance < threshold.hard_floor:
            self.logger.error(
                "Insufficient balance after funding",
                balance=new_balance,
                hard_floor=threshold.hard_floor
            )
            raise InsufficientFundsError(threshold.hard_floor, new_balance, self.account)

        return BalanceCheck(initial=current, final=new_balance, funded=True)


async def ensure_funded(
    query_balance: BalanceQuery,
    fund: FundingOperation,
    threshold: FundingThreshold,
    funding_policy: Optional[RetryPolicy] = None,
    sleep: Optional[Sleeper] = None,
    account: str = "account",
) -> BalanceCheck:
    """Run balance assurance once with the given capabilities."""
    assurance = BalanceAssurance(
        query_balance, fund, threshold,
        funding_policy=funding_policy, sleep=sleep, account=account
    )
    return await assurance.ensure()
