"""
Tests for the Reward Policy Module

Validates reward and penalty arithmetic, integer truncation, and that reward
inputs are bound by name rather than by position.
"""

import pytest

from timelock_savings.rewards import RewardParameters, RewardInputs, RewardPolicy, PayoutQuote


DAY = 24 * 60 * 60


@pytest.fixture
def policy():
    """Policy with a 30-day lock, 2% base, 1% per 30-day bonus, 10% penalty"""
    return RewardPolicy(RewardParameters(
        min_lock_period=30 * DAY,
        bonus_period=30 * DAY,
        base_rate=2,
        bonus_rate=1,
        penalty_rate=10,
        rate_denominator=100
    ))


class TestRewardParameters:
    """Test parameter validation"""

    def test_rejects_non_positive_periods(self):
        """Test that lock and bonus periods must be positive"""
        with pytest.raises(ValueError, match="periods must be positive"):
            RewardParameters(min_lock_period=0, bonus_period=DAY, base_rate=2,
                             bonus_rate=1, penalty_rate=10, rate_denominator=100)

    def test_rejects_zero_denominator(self):
        """Test that the rate denominator must be positive"""
        with pytest.raises(ValueError, match="denominator must be positive"):
            RewardParameters(min_lock_period=DAY, bonus_period=DAY, base_rate=2,
                             bonus_rate=1, penalty_rate=10, rate_denominator=0)

    def test_rejects_penalty_above_denominator(self):
        """Test that a penalty can never exceed the principal"""
        with pytest.raises(ValueError, match="Penalty rate cannot exceed"):
            RewardParameters(min_lock_period=DAY, bonus_period=DAY, base_rate=2,
                             bonus_rate=1, penalty_rate=101, rate_denominator=100)

    def test_parameters_are_immutable(self, policy):
        """Test that parameters cannot change after creation"""
        with pytest.raises(AttributeError):
            policy.parameters.base_rate = 50


class TestReward:
    """Test reward computation"""

    def test_no_reward_before_minimum_lock(self, policy):
        """Test that nothing accrues before the lock matures"""
        assert policy.reward(RewardInputs(amount=1000, elapsed=30 * DAY - 1)) == 0
        assert policy.reward(RewardInputs(amount=1000, elapsed=0)) == 0

    def test_base_reward_at_exact_maturity(self, policy):
        """Test reward at elapsed == min lock period is amount * base / denominator"""
        assert policy.reward(RewardInputs(amount=1000, elapsed=30 * DAY)) == 1000 * 2 // 100

    def test_bonus_periods_are_floored(self, policy):
        """Test that partial bonus periods earn nothing extra"""
        # 59 days after maturity is one full bonus period
        assert policy.reward(RewardInputs(amount=1000, elapsed=89 * DAY)) == 20 + 10
        assert policy.reward(RewardInputs(amount=1000, elapsed=90 * DAY)) == 20 + 20

    def test_reward_against_independent_reference(self, policy):
        """Test a long lock against a hand-computed value"""
        # 365 days: base 2% of 12345 = 246, bonus periods (335 // 30) = 11,
        # bonus = 12345 * 11 // 100 = 1357
        assert policy.reward(RewardInputs(amount=12345, elapsed=365 * DAY)) == 246 + 1357

    def test_truncation_to_zero_for_small_amounts(self, policy):
        """Test that amounts below denominator / base rate earn 0 at maturity"""
        assert policy.reward(RewardInputs(amount=49, elapsed=30 * DAY)) == 0
        assert policy.reward(RewardInputs(amount=50, elapsed=30 * DAY)) == 1


class TestNamedBinding:
    """Test that amount and elapsed can never be transposed by position"""

    def test_keyword_order_does_not_matter(self, policy):
        """Test that naming the fields in either order gives the same reward"""
        forward = RewardInputs(amount=1000, elapsed=90 * DAY)
        reversed_order = RewardInputs(elapsed=90 * DAY, amount=1000)

        assert forward == reversed_order
        assert policy.reward(forward) == policy.reward(reversed_order) == 40

    def test_positional_inputs_rejected(self):
        """Test that RewardInputs cannot be built positionally"""
        with pytest.raises(TypeError):
            RewardInputs(1000, 90 * DAY)

    def test_raw_arguments_rejected(self, policy):
        """Test that reward() refuses anything but RewardInputs"""
        with pytest.raises(TypeError):
            policy.reward(1000, 90 * DAY)
        with pytest.raises(TypeError, match="requires RewardInputs"):
            policy.reward((1000, 90 * DAY))
        with pytest.raises(TypeError, match="requires RewardInputs"):
            policy.quote({"amount": 1000, "elapsed": 90 * DAY})

    def test_negative_inputs_rejected(self):
        """Test that negative amounts or durations are refused"""
        with pytest.raises(ValueError):
            RewardInputs(amount=-1, elapsed=0)
        with pytest.raises(ValueError):
            RewardInputs(amount=1, elapsed=-1)


class TestPenaltyAndQuote:
    """Test penalty computation and payout quotes"""

    def test_penalty(self, policy):
        """Test penalty is amount * penalty rate / denominator"""
        assert policy.penalty(100) == 10
        assert policy.penalty(9) == 0

    def test_early_quote_deducts_penalty(self, policy):
        """Test that an early exit pays principal minus penalty"""
        quote = policy.quote(RewardInputs(amount=100, elapsed=10 * DAY))

        assert quote == PayoutQuote(matured=False, principal_paid=90, reward_or_penalty=10, payout=90)

    def test_matured_quote_adds_reward(self, policy):
        """Test that a matured exit pays principal plus reward"""
        quote = policy.quote(RewardInputs(amount=1000, elapsed=30 * DAY))

        assert quote == PayoutQuote(matured=True, principal_paid=1000, reward_or_penalty=20, payout=1020)
