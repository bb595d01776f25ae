"""Position Ledger - read-side accounting of the strategy's balance buckets.

Every figure is recomputed from the token book, the staking venue and the
active bond on each call; nothing here is cached.

Conservation Identity:
total_balance + reserves = unstaked + staked + warmup + rebase_bonded
"""

from dataclasses import dataclass
from typing import Optional

from .errors import InvariantViolation, checked_sub


def rebase_bonded(payout: int, pending: int) -> int:
    """
    Value still locked in the bond.

    Formula: rebase_bonded = payout - pending

    Args:
        payout: Total payout the venue still owes the strategy
        pending: Part of that payout redeemable right now

    Returns:
        Locked value in rebase token base units
    """
    return checked_sub(payout, pending, "rebase_bonded")


def total_balance(unstaked: int, staked: int, warmup: int, bonded: int, reserves: int) -> int:
    """Value owned by current shareholders, net of outstanding reserves."""
    gross = unstaked + staked + warmup + bonded
    if gross < reserves:
        raise InvariantViolation(
            f"Negative total balance: buckets={gross} < reserves={reserves}"
        )
    return gross - reserves


@dataclass
class BalanceSnapshot:
    """Strategy balance buckets at one block."""
    block: int
    epoch: int
    unstaked: int
    staked: int
    warmup: int
    rebase_bonded: int
    pending_payout: int  # Vested but not yet redeemed; excluded from rebase_bonded
    reserves: int
    total_balance: int
    is_bonding: bool

    @property
    def total_rebasing(self) -> int:
        return self.unstaked + self.staked + self.warmup

    def validate_conservation(self, vault_balance: Optional[int] = None) -> tuple[bool, Optional[str]]:
        """
        Validate the bucket identity and, if given, agreement with the vault.

        Returns:
            (is_valid, error_message)
        """
        computed = self.total_rebasing + self.rebase_bonded - self.reserves
        if computed != self.total_balance:
            return False, (
                f"Conservation violation at block={self.block}: "
                f"total_balance={self.total_balance}, sum={computed} "
                f"(unstaked={self.unstaked}, staked={self.staked}, warmup={self.warmup}, "
                f"bonded={self.rebase_bonded}, reserves={self.reserves})"
            )
        if vault_balance is not None and vault_balance != self.total_balance:
            return False, (
                f"Vault balance mismatch at block={self.block}: "
                f"vault={vault_balance}, strategy={self.total_balance}"
            )
        return True, None

    def validate_non_negative(self) -> tuple[bool, Optional[str]]:
        """Validate all buckets are non-negative."""
        buckets = [
            ('unstaked', self.unstaked),
            ('staked', self.staked),
            ('warmup', self.warmup),
            ('rebase_bonded', self.rebase_bonded),
            ('pending_payout', self.pending_payout),
            ('reserves', self.reserves),
            ('total_balance', self.total_balance),
        ]
        for name, value in buckets:
            if value < 0:
                return False, f"Negative bucket at block={self.block}: {name}={value}"
        return True, None


class PositionLedger:
    """Balance bucket queries for one strategy."""

    def __init__(self, strategy):
        self.strategy = strategy

    def unstaked_rebasing(self) -> int:
        s = self.strategy
        return s.tokens.balance_of(s.rebase_token, s.address)

    def staked_rebasing(self) -> int:
        s = self.strategy
        return s.tokens.balance_of(s.staked_token, s.address)

    def warmup_balance(self) -> int:
        s = self.strategy
        return s.staking.warmup_info(s.address).balance

    def total_rebasing(self) -> int:
        return self.unstaked_rebasing() + self.staked_rebasing() + self.warmup_balance()

    def _active_depository(self):
        venue = self.strategy.lifecycle.current_bond
        if venue is None:
            return None
        return self.strategy.bond_registry[venue]

    def pending_payout(self) -> int:
        depository = self._active_depository()
        if depository is None:
            return 0
        return depository.pending_payout_for(self.strategy.address)

    def rebase_bonded(self) -> int:
        depository = self._active_depository()
        if depository is None:
            return 0
        address = self.strategy.address
        return rebase_bonded(
            depository.bond_info(address).payout,
            depository.pending_payout_for(address),
        )

    def reserves(self) -> int:
        return self.strategy.reserve_queue.reserves

    def total_balance(self) -> int:
        return total_balance(
            self.unstaked_rebasing(),
            self.staked_rebasing(),
            self.warmup_balance(),
            self.rebase_bonded(),
            self.reserves(),
        )

    def snapshot(self) -> BalanceSnapshot:
        s = self.strategy
        unstaked = self.unstaked_rebasing()
        staked = self.staked_rebasing()
        warmup = self.warmup_balance()
        bonded = self.rebase_bonded()
        reserves = self.reserves()
        return BalanceSnapshot(
            block=s.chain.block,
            epoch=s.staking.epoch().number,
            unstaked=unstaked,
            staked=staked,
            warmup=warmup,
            rebase_bonded=bonded,
            pending_payout=self.pending_payout(),
            reserves=reserves,
            total_balance=total_balance(unstaked, staked, warmup, bonded, reserves),
            is_bonding=s.lifecycle.is_bonding,
        )
