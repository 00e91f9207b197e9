"""
Reward Policy Module

Pure functions converting a deposit amount and its elapsed lock time into a
reward, and an amount into an early-exit penalty. All arithmetic is integer
and truncating: an amount below ``rate_denominator / base_rate`` earns a
reward of 0 at maturity. That truncation is intentional and is not rounded
up here; the ledger may refuse such deposits through ``min_deposit_amount``.

Reward inputs are only accepted as a keyword-only ``RewardInputs`` value so
that amount and elapsed time can never be transposed by position.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RewardParameters:
    """Immutable reward policy parameters (token units and seconds)"""
    min_lock_period: int
    bonus_period: int
    base_rate: int
    bonus_rate: int
    penalty_rate: int
    rate_denominator: int

    def __post_init__(self):
        if self.min_lock_period <= 0 or self.bonus_period <= 0:
            raise ValueError("Lock and bonus periods must be positive")
        if self.rate_denominator <= 0:
            raise ValueError("Rate denominator must be positive")
        if min(self.base_rate, self.bonus_rate, self.penalty_rate) < 0:
            raise ValueError("Rates cannot be negative")
        if self.penalty_rate > self.rate_denominator:
            raise ValueError("Penalty rate cannot exceed the rate denominator")


@dataclass(frozen=True, kw_only=True)
class RewardInputs:
    """Named inputs to the reward computation"""
    amount: int
    elapsed: int  # seconds since the deposit started

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError("Amount cannot be negative")
        if self.elapsed < 0:
            raise ValueError("Elapsed time cannot be negative")


@dataclass(frozen=True)
class PayoutQuote:
    """What a deposit would pay out if withdrawn with the given inputs"""
    matured: bool
    principal_paid: int
    reward_or_penalty: int  # reward when matured, penalty retained otherwise
    payout: int


class RewardPolicy:
    """Stateless reward and penalty calculator"""

    def __init__(self, parameters: RewardParameters):
        self.parameters = parameters

    def is_matured(self, elapsed: int) -> bool:
        """Check if the minimum lock period has passed"""
        return elapsed >= self.parameters.min_lock_period

    def reward(self, inputs: RewardInputs) -> int:
        """
        Calculate the reward owed for a deposit

        Args:
            inputs: Deposit amount and elapsed lock time

        Returns:
            Reward in token units, 0 before the minimum lock period

        Raises:
            TypeError: If inputs is not a RewardInputs value
        """
        if not isinstance(inputs, RewardInputs):
            raise TypeError("reward() requires RewardInputs(amount=..., elapsed=...)")

        p = self.parameters
        if not self.is_matured(inputs.elapsed):
            return 0

        base = inputs.amount * p.base_rate // p.rate_denominator
        bonus_periods = (inputs.elapsed - p.min_lock_period) // p.bonus_period
        bonus = inputs.amount * p.bonus_rate * bonus_periods // p.rate_denominator
        return base + bonus

    def penalty(self, amount: int) -> int:
        """Calculate the early-exit penalty for an amount"""
        if amount < 0:
            raise ValueError("Amount cannot be negative")
        return amount * self.parameters.penalty_rate // self.parameters.rate_denominator

    def quote(self, inputs: RewardInputs) -> PayoutQuote:
        """
        Calculate the full withdrawal payout for a deposit

        Matured deposits pay principal plus reward; earlier withdrawals pay
        principal minus the penalty.
        """
        if not isinstance(inputs, RewardInputs):
            raise TypeError("quote() requires RewardInputs(amount=..., elapsed=...)")

        if self.is_matured(inputs.elapsed):
            reward = self.reward(inputs)
            return PayoutQuote(
                matured=True,
                principal_paid=inputs.amount,
                reward_or_penalty=reward,
                payout=inputs.amount + reward
            )

        penalty = self.penalty(inputs.amount)
        return PayoutQuote(
            matured=False,
            principal_paid=inputs.amount - penalty,
            reward_or_penalty=penalty,
            payout=inputs.amount - penalty
        )
