"""Tests for manager/owner controls: panic, pause, staking moves, bond list, setters."""

import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from bondvault.config.loader import load_config
from bondvault.engine.errors import AccessControlError, CollaboratorError, PolicyError, ValidationError
from bondvault.simulation.environment import build_environment
from bondvault.venues.router import Router
from bondvault.venues.tokens import to_units

DEPOSITOR = "depositor_1"


def funded_env(amount=1000):
    env = build_environment(load_config())
    env.vault.deposit(to_units(amount), sender=DEPOSITOR)
    return env


def observable_state(env):
    return (env.strategy.snapshot(), env.strategy.paused, len(env.events))


class TestPanic:
    """Emergency brake."""

    def test_panic_unstakes_and_pauses(self):
        env = funded_env()
        env.strategy.panic(sender=env.keeper)
        assert env.strategy.paused is True
        assert env.strategy.staked_rebasing() == 0
        assert env.strategy.unstaked_rebasing() == to_units(1000)
        assert env.events.last("Paused") is not None

    def test_panic_is_idempotent(self):
        env = funded_env()
        env.strategy.panic(sender=env.keeper)
        once = observable_state(env)
        env.strategy.panic(sender=env.keeper)
        assert observable_state(env) == once

    def test_panic_while_bonding_keeps_bond(self):
        env = funded_env()
        env.strategy.stake_to_bond_single_all("DAI_BOND", ["SPA", "DAI"], sender=env.keeper)
        env.advance_epoch()
        pending = env.bonds["DAI_BOND"].pending_payout_for("strategy")
        dev_before = env.tokens.balance_of("sSPA", "dev")

        env.strategy.panic(sender=env.keeper)

        assert env.strategy.is_bonding() is True
        assert env.strategy.unstaked_rebasing() == pending
        assert env.strategy.staked_rebasing() == 0
        assert env.tokens.balance_of("sSPA", "dev") == dev_before
        snapshot = env.strategy.snapshot()
        assert snapshot.validate_conservation(env.vault.balance()) == (True, None)

    def test_panic_requires_manager(self):
        env = funded_env()
        with pytest.raises(AccessControlError) as exc:
            env.strategy.panic(sender=DEPOSITOR)
        assert exc.value.reason == "!manager"

    def test_deposits_blocked_after_panic(self):
        env = funded_env()
        env.strategy.panic(sender=env.keeper)
        with pytest.raises(PolicyError) as exc:
            env.vault.deposit(to_units(10), sender="depositor_2")
        assert exc.value.reason == "Pausable: paused"


class TestPause:
    """Owner pause/unpause."""

    def test_pause_twice_fails(self):
        env = funded_env()
        env.strategy.pause(sender=env.owner)
        with pytest.raises(PolicyError) as exc:
            env.strategy.pause(sender=env.owner)
        assert exc.value.reason == "Pausable: paused"

    def test_unpause_when_not_paused_fails(self):
        env = funded_env()
        with pytest.raises(PolicyError) as exc:
            env.strategy.unpause(sender=env.owner)
        assert exc.value.reason == "Pausable: not paused"

    def test_keeper_cannot_unpause(self):
        env = funded_env()
        env.strategy.panic(sender=env.keeper)
        with pytest.raises(AccessControlError) as exc:
            env.strategy.unpause(sender=env.keeper)
        assert exc.value.reason == "Ownable: caller is not the owner"

    def test_unpause_restakes(self):
        env = funded_env()
        env.strategy.panic(sender=env.keeper)
        env.strategy.unpause(sender=env.owner)
        assert env.strategy.paused is False
        assert env.strategy.staked_rebasing() == to_units(1000)
        assert env.strategy.unstaked_rebasing() == 0
        assert env.events.last("Unpaused").args == (env.owner,)


class TestStakingMoves:
    """Liquid rebalancing is idempotent."""

    def test_unstake_all_is_idempotent(self):
        env = funded_env()
        assert env.strategy.unstake_all(sender=env.keeper) == to_units(1000)
        once = observable_state(env)
        assert env.strategy.unstake_all(sender=env.keeper) == 0
        assert observable_state(env) == once

    def test_stake_is_idempotent(self):
        env = funded_env()
        once = observable_state(env)
        assert env.strategy.stake(sender=env.keeper) == 0
        assert observable_state(env) == once

    def test_unstake_then_stake(self):
        env = funded_env()
        env.strategy.unstake(to_units(400), sender=env.keeper)
        assert env.events.last("Unstake").args == (to_units(600), to_units(400), 0)
        assert env.strategy.stake(sender=env.keeper) == to_units(400)
        assert env.strategy.staked_rebasing() == to_units(1000)

    def test_unstake_more_than_staked(self):
        env = funded_env()
        before = observable_state(env)
        with pytest.raises(CollaboratorError):
            env.strategy.unstake(to_units(1001), sender=env.keeper)
        assert observable_state(env) == before

    def test_unstake_zero(self):
        env = funded_env()
        with pytest.raises(ValidationError) as exc:
            env.strategy.unstake(0, sender=env.keeper)
        assert exc.value.reason == "amount <= 0!"

    def test_staking_moves_require_manager(self):
        env = funded_env()
        for call in (env.strategy.stake, env.strategy.unstake_all, env.strategy.claim_stake):
            with pytest.raises(AccessControlError):
                call(sender=DEPOSITOR)

    def test_total_balance_unchanged_by_moves(self):
        env = funded_env()
        total = env.strategy.total_balance()
        env.strategy.unstake(to_units(123), sender=env.keeper)
        assert env.strategy.total_balance() == total
        env.strategy.stake(sender=env.keeper)
        assert env.strategy.total_balance() == total


class TestBondList:
    """Allow-list maintenance."""

    def test_default_bonds(self):
        env = funded_env()
        assert env.strategy.num_bonds() == 3
        assert env.strategy.bonds(0) == "DAI_BOND"

    def test_remove_and_add(self):
        env = funded_env()
        env.strategy.remove_bond("WFTM_BOND", sender=env.keeper)
        assert env.events.last("BondRemoved").args == (["DAI_BOND", "SPA_DAI_BOND"],)
        env.strategy.add_bond("WFTM_BOND", sender=env.keeper)
        assert env.events.last("BondAdded").args == (["DAI_BOND", "SPA_DAI_BOND", "WFTM_BOND"],)
        assert env.strategy.num_bonds() == 3

    def test_duplicate_add(self):
        env = funded_env()
        with pytest.raises(ValidationError) as exc:
            env.strategy.add_bond("DAI_BOND", sender=env.keeper)
        assert exc.value.reason == "Bond already added!"

    def test_remove_missing(self):
        env = funded_env()
        env.strategy.remove_bond("DAI_BOND", sender=env.keeper)
        with pytest.raises(ValidationError) as exc:
            env.strategy.remove_bond("DAI_BOND", sender=env.keeper)
        assert exc.value.reason == "Bond not found!"

    def test_add_unknown_venue(self):
        env = funded_env()
        with pytest.raises(ValidationError) as exc:
            env.strategy.add_bond("NOT_A_BOND", sender=env.keeper)
        assert exc.value.reason == "!bond"

    def test_bond_list_requires_manager(self):
        env = funded_env()
        with pytest.raises(AccessControlError) as exc:
            env.strategy.remove_bond("DAI_BOND", sender=DEPOSITOR)
        assert exc.value.reason == "!manager"


class TestSetters:
    """Owner-only address setters and stuck-token rescue."""

    def test_set_keeper(self):
        env = funded_env()
        old_keeper = env.keeper
        env.strategy.set_keeper("new_keeper", sender=env.owner)
        assert env.events.last("NewKeeper").args == ("new_keeper",)
        env.strategy.unstake_all(sender="new_keeper")
        with pytest.raises(AccessControlError):
            env.strategy.stake(sender=old_keeper)

    def test_keeper_cannot_set_keeper(self):
        env = funded_env()
        with pytest.raises(AccessControlError) as exc:
            env.strategy.set_keeper("someone", sender=env.keeper)
        assert exc.value.reason == "Ownable: caller is not the owner"

    def test_set_service_fee_recipient(self):
        env = funded_env()
        env.strategy.set_service_fee_recipient("treasury", sender=env.owner)
        env.strategy.stake_to_bond_single_all("DAI_BOND", ["SPA", "DAI"], sender=env.keeper)
        assert env.tokens.balance_of("sSPA", "treasury") == to_units(5)
        assert env.events.named("NewServiceFeeRecipient")[-1].args == ("treasury",)

    def test_set_vault(self):
        env = funded_env()
        env.strategy.set_vault("other_vault", sender=env.owner)
        with pytest.raises(AccessControlError) as exc:
            env.vault.deposit(to_units(10), sender="depositor_2")
        assert exc.value.reason == "!vault"

    def test_set_unirouter(self):
        env = funded_env()
        router = Router(env.chain, env.tokens, name="router_v2")
        env.strategy.set_unirouter(router, sender=env.owner)
        assert env.strategy.router is router
        assert env.events.last("NewUnirouter").args == ("router_v2",)

    def test_set_min_deposit(self):
        env = funded_env()
        env.strategy.set_min_deposit(to_units(100), sender=env.owner)
        assert env.events.last("NewMinDeposit").args == (to_units(100),)
        with pytest.raises(ValidationError) as exc:
            env.vault.deposit(to_units(99), sender="depositor_2")
        assert exc.value.reason == "< minDeposit!"

    def test_rescue_stuck_token(self):
        env = funded_env()
        env.tokens.mint("WFTM", env.strategy.address, to_units(7))
        assert env.strategy.in_case_tokens_get_stuck("WFTM", sender=env.owner) == to_units(7)
        assert env.tokens.balance_of("WFTM", env.owner) == to_units(7)

    def test_managed_tokens_cannot_be_rescued(self):
        env = funded_env()
        for token in ("SPA", "sSPA"):
            with pytest.raises(ValidationError) as exc:
                env.strategy.in_case_tokens_get_stuck(token, sender=env.owner)
            assert exc.value.reason == "!token"
