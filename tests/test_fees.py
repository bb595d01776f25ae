"""Tests for the fee engine and fee setters."""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from bondvault.engine.errors import AccessControlError, ValidationError
from bondvault.engine.fees import SERVICE_FEE_DIVISOR, FeeSchedule, fee
from bondvault.simulation.environment import build_environment


class TestFeeFunction:
    """Basis-point fee arithmetic."""

    def test_fee_is_floor_of_rate(self):
        assert fee(1000, 50, 10000) == 5
        assert fee(199, 50, 10000) == 0
        assert fee(1_000_000, 50, 10000) == 5000
        assert fee(10 ** 12, 100, 10000) == 10 ** 10

    def test_fee_rounds_down(self):
        assert fee(19_999, 50, 10000) == 99

    def test_zero_rate(self):
        assert fee(123_456_789, 0, SERVICE_FEE_DIVISOR) == 0

    def test_negative_amount_rejected(self):
        with pytest.raises(ArithmeticError):
            fee(-1, 50, 10000)


class TestFeeSchedule:
    """Caps and validation on configured rates."""

    def test_defaults(self):
        schedule = FeeSchedule(service_fee=50, withdrawal_fee=100)
        assert schedule.service_fee_cap == 300
        assert schedule.withdrawal_fee_cap == 100
        assert schedule.service_fee_on(10 ** 12) == 5 * 10 ** 9
        assert schedule.withdrawal_fee_on(10 ** 12) == 10 ** 10

    def test_service_fee_above_cap(self):
        schedule = FeeSchedule(service_fee=50, withdrawal_fee=100)
        with pytest.raises(ValidationError) as exc:
            schedule.set_service_fee(301)
        assert exc.value.reason == "!cap"
        assert schedule.service_fee == 50

    def test_service_fee_at_cap(self):
        schedule = FeeSchedule(service_fee=50, withdrawal_fee=100)
        schedule.set_service_fee(300)
        assert schedule.service_fee == 300

    def test_withdrawal_fee_above_cap(self):
        schedule = FeeSchedule(service_fee=50, withdrawal_fee=100)
        with pytest.raises(ValidationError) as exc:
            schedule.set_withdrawal_fee(101)
        assert exc.value.reason == "!cap"

    def test_negative_rate(self):
        schedule = FeeSchedule(service_fee=50, withdrawal_fee=100)
        with pytest.raises(ValidationError) as exc:
            schedule.set_service_fee(-1)
        assert exc.value.reason == "!fee"

    def test_construction_checks_caps(self):
        with pytest.raises(ValidationError):
            FeeSchedule(service_fee=500, withdrawal_fee=100)


class TestFeeSetters:
    """Manager-gated fee setters on the strategy."""

    def test_keeper_sets_service_fee(self):
        env = build_environment()
        env.strategy.set_service_fee(120, sender=env.keeper)
        assert env.strategy.fees.service_fee == 120
        event = env.events.last("NewServiceFee")
        assert event.args == (120,)

    def test_owner_sets_withdrawal_fee(self):
        env = build_environment()
        env.strategy.set_withdrawal_fee(25, sender=env.owner)
        assert env.strategy.fees.withdrawal_fee == 25
        assert env.events.last("NewWithdrawalFee").args == (25,)

    def test_stranger_cannot_set_fee(self):
        env = build_environment()
        with pytest.raises(AccessControlError) as exc:
            env.strategy.set_service_fee(10, sender="depositor_1")
        assert exc.value.reason == "!manager"
        assert env.strategy.fees.service_fee == 50

    def test_setter_above_cap_leaves_no_event(self):
        env = build_environment()
        before = len(env.events)
        with pytest.raises(ValidationError) as exc:
            env.strategy.set_service_fee(301, sender=env.keeper)
        assert exc.value.reason == "!cap"
        assert len(env.events) == before
