"""Sanity checks and validation for configuration, ledger state and simulation output."""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config.schema import Config
from ..engine.ledger import BalanceSnapshot
from ..venues.tokens import from_units


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # e.g., "input", "conservation", "bounds"
    message: str
    details: Optional[str] = None


class SanityChecker:
    """Run sanity checks on configuration and strategy state."""

    def __init__(self, config: Config):
        """Initialize with configuration."""
        self.config = config

    def check_config_inputs(self) -> List[ValidationWarning]:
        """
        Check configuration inputs for implausible values.

        Returns:
            List of validation warnings
        """
        warnings = []
        fees = self.config.fees

        # Claims queued against an open bond absorb their share of each service fee
        if fees.service_fee > fees.withdrawal_fee:
            warnings.append(ValidationWarning(
                severity="warning",
                category="fees",
                message="Service fee exceeds withdrawal fee; claims reserved while bonded lose more to service fees than to the withdrawal fee",
                details=f"service_fee={fees.service_fee}, withdrawal_fee={fees.withdrawal_fee} (of {fees.divisor})"
            ))

        # USD route must end in the stable token
        route = self.config.strategy.usd_route
        if route[0] != self.config.tokens.rebase_token or route[-1] != self.config.tokens.stable_token:
            warnings.append(ValidationWarning(
                severity="error",
                category="input",
                message="USD route must run from the rebase token to the stable token",
                details=f"Route: {' -> '.join(route)}"
            ))

        pairs = {frozenset((p.token0, p.token1)) for p in self.config.pools}
        for hop in zip(route, route[1:]):
            if frozenset(hop) not in pairs:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="input",
                    message=f"No pool for USD route hop {hop[0]}/{hop[1]}",
                ))

        pool_tokens = {p.token0 for p in self.config.pools} | {p.token1 for p in self.config.pools}
        for bond in self.config.bonds:
            if bond.kind == "lp":
                lp_tokens = {f"{p.token0}-{p.token1} LP" for p in self.config.pools}
                if bond.principle not in lp_tokens:
                    warnings.append(ValidationWarning(
                        severity="error",
                        category="input",
                        message=f"LP bond {bond.name} has no matching pool",
                        details=f"Principle: {bond.principle}"
                    ))
            elif bond.principle not in pool_tokens:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="input",
                    message=f"Bond {bond.name} principle {bond.principle} cannot be reached by swap",
                ))

        # Vesting much shorter than an epoch means claims wait on rebases rather than the bond
        epoch_length = self.config.staking.epoch_length_blocks
        for bond in self.config.bonds:
            if bond.vesting_blocks < epoch_length:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="bounds",
                    message=f"Bond {bond.name} vests in under one epoch",
                    details=f"vesting={bond.vesting_blocks} blocks, epoch={epoch_length} blocks"
                ))

        if self.config.staking.rebase_rate_ppm > 10_000:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message="Rebase rate above 1% per epoch is unusually high",
                details=f"Current rate: {self.config.staking.rebase_rate_ppm / 10_000:.2f}%"
            ))

        return warnings

    def check_state(
        self,
        state: BalanceSnapshot,
        vault_balance: Optional[int] = None
    ) -> List[ValidationWarning]:
        """
        Check a strategy snapshot for issues.

        Args:
            state: Strategy balance snapshot
            vault_balance: Vault's reported balance, if available

        Returns:
            List of validation warnings
        """
        warnings = []

        is_valid, error_msg = state.validate_non_negative()
        if not is_valid:
            warnings.append(ValidationWarning(
                severity="error",
                category="bounds",
                message=f"Negative balance bucket at block {state.block}",
                details=error_msg
            ))

        is_valid, error_msg = state.validate_conservation(vault_balance)
        if not is_valid:
            warnings.append(ValidationWarning(
                severity="error",
                category="conservation",
                message="Conservation law violated",
                details=error_msg
            ))

        if state.rebase_bonded and not state.is_bonding:
            warnings.append(ValidationWarning(
                severity="error",
                category="lifecycle",
                message=f"Bonded value reported while idle at block {state.block}",
                details=f"rebase_bonded={from_units(state.rebase_bonded):,.4f}"
            ))

        if state.pending_payout and not state.is_bonding:
            warnings.append(ValidationWarning(
                severity="error",
                category="lifecycle",
                message=f"Pending bond payout reported while idle at block {state.block}",
                details=f"pending={from_units(state.pending_payout):,.4f}"
            ))

        return warnings

    def check_metrics(self, metrics: Dict[str, Any]) -> List[ValidationWarning]:
        """
        Check computed metrics for issues.

        Args:
            metrics: Computed metrics dictionary

        Returns:
            List of validation warnings
        """
        warnings = []

        for key, value in metrics.items():
            if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
                warnings.append(ValidationWarning(
                    severity="error",
                    category="nan",
                    message=f"Invalid metric value for {key}",
                    details=f"Value: {value}"
                ))

        pps = metrics.get('price_per_full_share')
        if pps is not None and metrics.get('share_supply', 0) > 0 and pps < 0.9:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message=f"Share price fell below 0.9 ({pps:.4f})",
                details="Bonds may be realizing a loss against the staked position"
            ))

        return warnings


def validate_simulation_results(
    config: Config,
    states: List[BalanceSnapshot],
    metrics_over_time: List[Dict[str, Any]]
) -> List[ValidationWarning]:
    """
    Validate complete simulation results.

    Args:
        config: Simulation configuration
        states: Strategy snapshots over time
        metrics_over_time: List of metrics dictionaries

    Returns:
        List of all validation warnings
    """
    checker = SanityChecker(config)
    warnings = []

    warnings.extend(checker.check_config_inputs())

    for state in states:
        warnings.extend(checker.check_state(state))

    if metrics_over_time:
        warnings.extend(checker.check_metrics(metrics_over_time[-1]))

    if states and states[-1].reserves > 0:
        warnings.append(ValidationWarning(
            severity="warning",
            category="liveness",
            message="Claims still outstanding at the end of the run",
            details=f"Reserves: {from_units(states[-1].reserves):,.4f}"
        ))

    return warnings
