"""Lifecycle runner - drive deposits, bond cycles, reserves and claims.

Each bond cycle:
- the keeper bonds everything into the venue with the deepest positive discount
- epochs advance with a rebase and a redemption each
- depositors randomly reserve part of their shares and claim once vested

Every step records a BalanceSnapshot and checks conservation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from ..config.schema import Config
from ..engine.errors import StrategyError
from ..engine.events import Event
from ..engine.ledger import BalanceSnapshot
from ..venues.tokens import UNIT, from_units
from .environment import Environment, build_environment

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    """Complete simulation result."""
    config: Config
    states: List[BalanceSnapshot]
    metrics_over_time: List[Dict[str, Any]]
    final_metrics: Dict[str, Any]
    events: List[Event] = field(default_factory=list)
    conservation_errors: List[str] = field(default_factory=list)
    failed_actions: List[str] = field(default_factory=list)


class LifecycleRunner:
    """Runs bond cycles over one freshly built environment."""

    def __init__(self, config: Config):
        """
        Initialize the runner.

        Args:
            config: Simulation configuration
        """
        self.config = config
        self.env: Optional[Environment] = None
        self._states: List[BalanceSnapshot] = []
        self._metrics: List[Dict[str, Any]] = []
        self._conservation_errors: List[str] = []
        self._failed_actions: List[str] = []
        self._claimed = 0
        self._bonds_opened = 0

    def run(self, random_seed: int = None) -> SimulationResult:
        """
        Run the full lifecycle.

        Args:
            random_seed: Overrides config.simulation.random_seed

        Returns:
            SimulationResult with per-step snapshots and metrics
        """
        sim = self.config.simulation
        np.random.seed(sim.random_seed if random_seed is None else random_seed)

        self.env = env = build_environment(self.config)
        self._states, self._metrics = [], []
        self._conservation_errors, self._failed_actions = [], []
        self._claimed = 0
        self._bonds_opened = 0

        self._record("genesis")
        for depositor in env.depositors:
            wallet = env.balance_of(depositor)
            fraction = float(np.clip(np.random.normal(sim.deposit_fraction_mean, 0.15), 0.05, 1.0))
            self._try(f"deposit {depositor}", env.vault.deposit, int(wallet * fraction), sender=depositor)
        self._record("deposits")

        for cycle in range(sim.bond_cycles):
            venue = self.best_venue()
            if venue is None:
                logger.info("Cycle %d: no positive bond available", cycle)
                self._record(f"cycle{cycle}:no_bond")
                continue
            if self._enter_bond(venue):
                self._bonds_opened += 1
            self._record(f"cycle{cycle}:bond")

            for _ in range(sim.max_epochs_per_cycle):
                env.advance_epoch()
                self._try("redeem_and_stake", env.strategy.redeem_and_stake, sender=env.keeper)
                self._random_reserves(sim.reserve_probability)
                self._claim_all()
                self._record(f"cycle{cycle}:epoch")
                if not env.strategy.is_bonding():
                    break

        # Let the last warm-up mature so every queued claim can be paid.
        for _ in range(self.config.staking.warmup_period + 1):
            env.advance_epoch()
            self._claim_all()
        self._record("final")

        return SimulationResult(
            config=self.config,
            states=self._states,
            metrics_over_time=self._metrics,
            final_metrics=self._compute_final_metrics(),
            events=list(env.events),
            conservation_errors=self._conservation_errors,
            failed_actions=self._failed_actions,
        )

    def best_venue(self) -> Optional[str]:
        """Approved venue with the deepest positive discount to market."""
        strategy = self.env.strategy
        market = strategy.rebase_token_price_in_usd(UNIT)
        best, best_price = None, None
        for i in range(strategy.num_bonds()):
            name = strategy.bonds(i)
            price = self.env.bonds[name].bond_price_in_usd()
            if price <= market and (best_price is None or price < best_price):
                best, best_price = name, price
        return best

    def route_to(self, token: str) -> List[str]:
        """Swap path from the rebase token to ``token``."""
        rebase = self.config.tokens.rebase_token
        stable = self.config.tokens.stable_token
        if token == rebase:
            return [rebase]
        pairs = {frozenset((p.token0, p.token1)) for p in self.env.router.pools()}
        if frozenset((rebase, token)) in pairs:
            return [rebase, token]
        return [rebase, stable, token]

    def _enter_bond(self, venue: str) -> bool:
        env = self.env
        depository = env.bonds[venue]
        if depository.is_liquidity_bond:
            pool = env.router.pool_for_lp(depository.principle)
            return self._try(
                f"stake_to_bond_lp_all {venue}",
                env.strategy.stake_to_bond_lp_all,
                venue,
                self.route_to(pool.token0),
                self.route_to(pool.token1),
                sender=env.keeper,
            )
        return self._try(
            f"stake_to_bond_single_all {venue}",
            env.strategy.stake_to_bond_single_all,
            venue,
            self.route_to(depository.principle),
            sender=env.keeper,
        )

    def _random_reserves(self, probability: float) -> None:
        vault = self.env.vault
        for depositor in self.env.depositors:
            shares = vault.balance_of(depositor)
            if shares == 0 or np.random.random() >= probability:
                continue
            portion = max(1, int(shares * np.random.uniform(0.1, 1.0)))
            self._try(f"reserve {depositor}", vault.reserve, portion, sender=depositor)

    def _claim_all(self) -> None:
        strategy = self.env.strategy
        epoch = strategy.current_epoch_number()
        for depositor in strategy.reserve_queue.claimants():
            if strategy.reserve_queue.is_claimable(depositor, epoch):
                amount = self._try(f"claim {depositor}", self.env.vault.claim, sender=depositor)
                if amount:
                    self._claimed += amount

    def _try(self, action: str, fn, *args, **kwargs):
        """Run one participant action; a rejected action is recorded, not fatal."""
        try:
            result = fn(*args, **kwargs)
        except StrategyError as exc:
            message = f"block {self.env.chain.block}: {action}: {exc.reason}"
            logger.warning("Action rejected: %s", message)
            self._failed_actions.append(message)
            return None
        return result if result is not None else True

    def _record(self, phase: str) -> None:
        env = self.env
        state = env.strategy.snapshot()
        self._states.append(state)

        vault_balance = env.vault.balance()
        for is_valid, error in (
            state.validate_conservation(vault_balance),
            state.validate_non_negative(),
            env.strategy.reserve_queue.validate_conservation(),
        ):
            if not is_valid:
                logger.warning(error)
                self._conservation_errors.append(error)

        self._metrics.append(self._compute_metrics(phase, state))

    def _compute_metrics(self, phase: str, state: BalanceSnapshot) -> Dict[str, Any]:
        env = self.env
        strategy = env.strategy
        bond = strategy.active_bond()
        return {
            'phase': phase,
            'block': state.block,
            'epoch': state.epoch,
            'is_bonding': state.is_bonding,
            'current_bond': strategy.current_bond() or "",
            'bond_age_blocks': state.block - bond.opened_at_block if bond else 0,
            'bond_principal': from_units(bond.principal) if bond else 0.0,
            'bond_payout': from_units(bond.payout) if bond else 0.0,
            'price_per_full_share': from_units(env.vault.get_price_per_full_share()),
            'share_supply': from_units(env.vault.total_supply()),
            'reserve_period': strategy.current_reserve_period(),
            'rebase_token_price_usd': from_units(strategy.rebase_token_price_in_usd(UNIT)),
            'service_fees_earned': from_units(self._service_fees_earned()),
            'claimed_cumulative': from_units(self._claimed),
        }

    def _service_fees_earned(self) -> int:
        env = self.env
        recipient = env.strategy.service_fee_recipient
        return (
            env.tokens.balance_of(env.strategy.staked_token, recipient) +
            env.staking.warmup_info(recipient).balance
        )

    def _compute_final_metrics(self) -> Dict[str, Any]:
        final = self._states[-1]
        first_pps = next(
            (m['price_per_full_share'] for m in self._metrics if m['phase'] == 'deposits'),
            1.0
        )
        final_pps = self._metrics[-1]['price_per_full_share']
        return {
            'final_total_balance': from_units(final.total_balance),
            'final_reserves': from_units(final.reserves),
            'final_price_per_full_share': final_pps,
            'share_price_growth': final_pps / first_pps - 1.0 if first_pps else 0.0,
            'bonds_opened': self._bonds_opened,
            'claimed_total': from_units(self._claimed),
            'service_fees_earned': from_units(self._service_fees_earned()),
            'num_events': len(self.env.events),
            'num_failed_actions': len(self._failed_actions),
            'conservation_ok': not self._conservation_errors,
        }
