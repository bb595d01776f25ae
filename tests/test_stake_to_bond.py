"""Tests for entering bonds: validation order, fees, sizing and rollback."""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from bondvault.config.loader import config_with_overrides, load_config
from bondvault.engine.errors import (
    AccessControlError,
    CollaboratorError,
    PolicyError,
    ValidationError,
)
from bondvault.simulation.environment import build_environment
from bondvault.venues.tokens import UNIT, price_to_scaled, to_units

DEPOSITOR = "depositor_1"
DAI_ROUTE = ["SPA", "DAI"]


def make_env(overrides=None):
    config = load_config()
    if overrides:
        config = config_with_overrides(config, overrides)
    return build_environment(config)


def deposit(env, amount, depositor=DEPOSITOR):
    return env.vault.deposit(to_units(amount), sender=depositor)


def observable_state(env):
    """Everything a failed call must leave untouched."""
    return (
        env.strategy.snapshot(),
        env.router.get_reserves("SPA", "DAI"),
        env.tokens.balance_of("sSPA", env.config.roles.service_fee_recipient),
        env.bonds["DAI_BOND"].bond_info(env.strategy.address),
        env.strategy.current_bond(),
        len(env.events),
    )


class TestSingleAssetBond:
    """Happy-path single-asset bonding."""

    def test_bond_with_fee(self):
        """Service fee is staked for the recipient and the rest is bonded."""
        env = make_env()
        deposit(env, 1000)
        payout = env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)

        expected_fee = to_units(1000) * 50 // 10000
        assert env.tokens.balance_of("sSPA", "dev") == expected_fee
        assert env.strategy.is_bonding() is True
        assert env.strategy.current_bond() == "DAI_BOND"
        assert env.strategy.unstaked_rebasing() == 0
        assert env.strategy.staked_rebasing() == 0
        assert payout == env.bonds["DAI_BOND"].bond_info("strategy").payout
        assert env.strategy.rebase_bonded() == payout
        assert env.strategy.total_balance() == payout
        assert env.vault.balance() == payout

    def test_bond_event(self):
        env = make_env()
        deposit(env, 1000)
        payout = env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)

        event = env.events.last("Bond")
        service_fee = to_units(1000) * 50 // 10000
        assert event.args == (to_units(1000) - service_fee, service_fee, payout, "DAI_BOND")
        assert event.source == "strategy"

    def test_active_bond_record(self):
        env = make_env()
        deposit(env, 1000)
        assert env.strategy.active_bond() is None
        payout = env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)

        bond = env.strategy.active_bond()
        assert bond.venue == "DAI_BOND"
        assert bond.opened_at_block == env.chain.block
        assert bond.principal == to_units(1000) - to_units(1000) * 50 // 10000
        assert bond.payout == payout

    def test_discounted_bond_grows_position(self):
        """A bond priced below market pays out more rebase token than it costs."""
        env = make_env()
        deposit(env, 1000)
        payout = env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert payout > to_units(1000)

    def test_multi_hop_route(self):
        env = make_env()
        deposit(env, 1000)
        env.strategy.stake_to_bond_single_all("WFTM_BOND", ["SPA", "DAI", "WFTM"], sender=env.keeper)
        assert env.strategy.current_bond() == "WFTM_BOND"
        assert env.tokens.balance_of("WFTM", "strategy") == 0
        assert env.tokens.balance_of("DAI", "strategy") == 0

    def test_partial_amount_leaves_rest_staked(self):
        env = make_env()
        deposit(env, 1000)
        env.strategy.stake_to_bond_single(to_units(400), "DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert env.strategy.staked_rebasing() == to_units(600)
        snapshot = env.strategy.snapshot()
        assert snapshot.validate_conservation(env.vault.balance()) == (True, None)

    def test_bond_capped_by_max_bond_size(self):
        env = make_env()
        deposit(env, 9000)
        size = env.strategy.max_bond_size("DAI_BOND")
        assert size < to_units(9000)

        env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)
        bonded, service_fee = env.events.last("Bond").args[:2]
        assert bonded + service_fee == size
        assert env.strategy.staked_rebasing() == to_units(9000) - size

    def test_max_bond_size_formula(self):
        env = make_env()
        depository = env.bonds["DAI_BOND"]
        price = env.strategy.rebase_token_price_in_usd(UNIT)
        expected = depository.bond_price_in_usd() * depository.max_payout() // price
        assert env.strategy.max_bond_size("DAI_BOND") == expected


class TestBondValidation:
    """Each precondition fails with its own reason and changes nothing."""

    def test_not_manager(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(AccessControlError) as exc:
            env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=DEPOSITOR)
        assert exc.value.reason == "!manager"

    def test_zero_amount(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_single(0, "DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "amount <= 0!"

    def test_nothing_to_bond(self):
        env = make_env()
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "amount <= 0!"

    def test_route_must_start_with_rebase_token(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_single_all("DAI_BOND", ["DAI", "SPA"], sender=env.keeper)
        assert exc.value.reason == "Route must start with rebaseToken!"

    def test_route_must_end_with_principle(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_single_all("WFTM_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "Route must end with bond principle!"

    def test_route_checked_before_approval(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_single_all("NOT_A_BOND", ["DAI"], sender=env.keeper)
        assert exc.value.reason == "Route must start with rebaseToken!"

    def test_unknown_venue(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_single_all("NOT_A_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "Unapproved bond!"

    def test_removed_venue(self):
        env = make_env()
        deposit(env, 1000)
        env.strategy.remove_bond("DAI_BOND", sender=env.owner)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "Unapproved bond!"

    def test_bond_not_positive(self):
        env = make_env()
        deposit(env, 1000)
        env.bonds["DAI_BOND"].set_bond_price_usd(price_to_scaled(60))
        assert env.strategy.is_bond_positive("DAI_BOND") is False
        with pytest.raises(PolicyError) as exc:
            env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "!bondIsPositive"
        assert env.strategy.is_bonding() is False

    def test_paused(self):
        env = make_env()
        deposit(env, 1000)
        env.strategy.pause(sender=env.owner)
        with pytest.raises(PolicyError) as exc:
            env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "Pausable: paused"

    def test_second_bond_rejected(self):
        """Opening a bond while one is open fails and leaves state unchanged."""
        env = make_env()
        deposit(env, 1000)
        env.strategy.stake_to_bond_single(to_units(500), "DAI_BOND", DAI_ROUTE, sender=env.keeper)
        before = observable_state(env)

        for venue, route in (("DAI_BOND", DAI_ROUTE), ("WFTM_BOND", ["SPA", "DAI", "WFTM"])):
            with pytest.raises(PolicyError) as exc:
                env.strategy.stake_to_bond_single_all(venue, route, sender=env.keeper)
            assert exc.value.reason == "Already bonding!"

        assert observable_state(env) == before
        assert env.strategy.current_bond() == "DAI_BOND"


class TestBondRollback:
    """A venue or router failure reverts every earlier change of the call."""

    def test_venue_capacity_failure_rolls_back_swap_and_fee(self):
        env = make_env({'bonds.0.max_debt': 1})
        deposit(env, 1000)
        before = observable_state(env)

        with pytest.raises(CollaboratorError) as exc:
            env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "Max capacity reached"

        assert observable_state(env) == before
        assert env.strategy.staked_rebasing() == to_units(1000)
        assert env.tokens.balance_of("sSPA", "dev") == 0
        assert env.tokens.balance_of("DAI", "strategy") == 0

    def test_bond_too_small_rolls_back(self):
        env = make_env()
        deposit(env, 0.0001)
        before = observable_state(env)

        with pytest.raises(CollaboratorError) as exc:
            env.strategy.stake_to_bond_single_all("DAI_BOND", DAI_ROUTE, sender=env.keeper)
        assert exc.value.reason == "Bond too small"
        assert observable_state(env) == before


class TestLiquidityBond:
    """Two-sided bonds through the pool."""

    def test_lp_bond(self):
        env = make_env()
        deposit(env, 1000)
        payout = env.strategy.stake_to_bond_lp_all(
            "SPA_DAI_BOND", ["SPA"], ["SPA", "DAI"], sender=env.keeper
        )
        strategy = env.strategy
        assert strategy.current_bond() == "SPA_DAI_BOND"
        assert payout == env.bonds["SPA_DAI_BOND"].bond_info("strategy").payout
        assert env.tokens.balance_of("SPA-DAI LP", "strategy") == 0
        # Unpaired leftovers end up restaked next to the bond
        assert strategy.unstaked_rebasing() == 0
        assert strategy.rebase_bonded() + strategy.staked_rebasing() == strategy.total_balance()

    def test_lp_scrap_is_small(self):
        env = make_env()
        deposit(env, 1000)
        env.strategy.stake_to_bond_lp_all("SPA_DAI_BOND", ["SPA"], ["SPA", "DAI"], sender=env.keeper)
        scrap = env.strategy.staked_rebasing()
        assert scrap * 10000 <= to_units(1000) * env.strategy.lp_scrap_tolerance_bps

    def test_lp_routes_accept_either_order(self):
        env = make_env()
        deposit(env, 1000)
        env.strategy.stake_to_bond_lp_all("SPA_DAI_BOND", ["SPA", "DAI"], ["SPA"], sender=env.keeper)
        assert env.strategy.current_bond() == "SPA_DAI_BOND"

    def test_lp_routes_must_start_with_rebase_token(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_lp_all("SPA_DAI_BOND", ["DAI", "SPA"], ["SPA"], sender=env.keeper)
        assert exc.value.reason == "Routes must start with {rebaseToken}!"

    def test_lp_routes_must_end_with_pool_tokens(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_lp_all(
                "SPA_DAI_BOND", ["SPA"], ["SPA", "DAI", "WFTM"], sender=env.keeper
            )
        assert exc.value.reason == "Routes must end with their respective tokens!"

    def test_single_asset_venue_not_usable_as_lp(self):
        env = make_env()
        deposit(env, 1000)
        with pytest.raises(ValidationError) as exc:
            env.strategy.stake_to_bond_lp_all("DAI_BOND", ["SPA"], ["SPA", "DAI"], sender=env.keeper)
        assert exc.value.reason == "Unapproved bond!"
