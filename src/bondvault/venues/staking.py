"""Rebasing staking venue with an epoch clock and warm-up holding.

Staking locks the rebase token and credits its staked form one-to-one. Each
``rebase()`` (at most once per epoch) grows every staked balance, including
balances still in warm-up, by ``rebase_rate_ppm`` and mints the matching
rebase token as backing, so the staked supply always equals the rebase token
held by the venue.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict

from ..engine.errors import CollaboratorError

logger = logging.getLogger(__name__)


@dataclass
class Epoch:
    """Rebase epoch clock."""
    length: int  # Blocks per epoch
    number: int
    end_block: int
    distribute: int = 0  # Staked growth paid at the last rebase


@dataclass
class WarmupInfo:
    """A recipient's stake still in warm-up."""
    deposit: int = 0  # Principal staked into warm-up
    balance: int = 0  # Principal plus rebases earned while warming up
    expiry: int = 0  # Epoch number at which the stake may be claimed


class StakingVenue:
    """Stake/unstake/claim/rebase for one rebase token."""

    _state_fields = ("epoch_state", "warmup_period", "_warmup")

    def __init__(
        self,
        chain,
        tokens,
        rebase_token: str,
        staked_token: str,
        epoch_length: int,
        first_epoch_number: int = 1,
        warmup_period: int = 0,
        rebase_rate_ppm: int = 0,
        address: str = "staking",
    ):
        self.chain = chain
        self.tokens = tokens
        self.rebase_token = rebase_token
        self.staked_token = staked_token
        self.rebase_rate_ppm = rebase_rate_ppm
        self.address = address
        self.warmup_address = f"{address}:warmup"
        self.warmup_period = warmup_period
        self.epoch_state = Epoch(
            length=epoch_length,
            number=first_epoch_number,
            end_block=chain.block + epoch_length,
        )
        self._warmup: Dict[str, WarmupInfo] = {}
        chain.register(self)

    def epoch(self) -> Epoch:
        return replace(self.epoch_state)

    def warmup_info(self, recipient: str) -> WarmupInfo:
        info = self._warmup.get(recipient)
        return replace(info) if info is not None else WarmupInfo()

    def stake(self, amount: int, recipient: str, sender: str) -> None:
        """
        Stake ``amount`` of the rebase token from ``sender`` for ``recipient``.

        With no warm-up the staked token is credited directly; otherwise the
        stake joins the recipient's warm-up and restarts its expiry.
        """
        if amount <= 0:
            raise CollaboratorError("Staking: amount must be positive")
        with self.chain.transaction():
            self.tokens.transfer(self.rebase_token, sender, self.address, amount)
            if self.warmup_period == 0:
                self.tokens.mint(self.staked_token, recipient, amount)
            else:
                self.tokens.mint(self.staked_token, self.warmup_address, amount)
                info = self._warmup.setdefault(recipient, WarmupInfo())
                info.deposit += amount
                info.balance += amount
                info.expiry = self.epoch_state.number + self.warmup_period
        logger.debug("stake %d for %s (warmup=%d)", amount, recipient, self.warmup_period)

    def claim(self, recipient: str) -> int:
        """Release a matured warm-up balance to ``recipient``; returns the amount."""
        info = self._warmup.get(recipient)
        if info is None or info.balance == 0 or info.expiry > self.epoch_state.number:
            return 0
        with self.chain.transaction():
            self.tokens.transfer(self.staked_token, self.warmup_address, recipient, info.balance)
            del self._warmup[recipient]
        logger.debug("claim %d warm-up for %s", info.balance, recipient)
        return info.balance

    def unstake(self, amount: int, trigger: bool, sender: str) -> None:
        """Burn ``amount`` staked token from ``sender`` and return the rebase token."""
        with self.chain.transaction():
            if trigger:
                self.rebase()
            self.tokens.burn(self.staked_token, sender, amount)
            self.tokens.transfer(self.rebase_token, self.address, sender, amount)
        logger.debug("unstake %d for %s", amount, sender)

    def rebase(self) -> int:
        """
        Distribute one epoch of growth if the epoch has ended.

        Growth is split pro rata over staked holders and warm-up positions.

        Returns:
            Staked growth minted (0 if the epoch has not ended)
        """
        epoch = self.epoch_state
        if self.chain.block < epoch.end_block:
            return 0

        with self.chain.transaction():
            positions = [
                (holder, self.tokens.balance_of(self.staked_token, holder))
                for holder in self.tokens.holders(self.staked_token)
                if holder != self.warmup_address
            ]
            total = sum(bal for _, bal in positions) + sum(
                info.balance for info in self._warmup.values()
            )
            profit = total * self.rebase_rate_ppm // 1_000_000

            distributed = 0
            if profit > 0:
                for holder, bal in positions:
                    gain = bal * profit // total
                    if gain:
                        self.tokens.mint(self.staked_token, holder, gain)
                        distributed += gain
                for info in self._warmup.values():
                    gain = info.balance * profit // total
                    if gain:
                        self.tokens.mint(self.staked_token, self.warmup_address, gain)
                        info.balance += gain
                        distributed += gain
                if distributed:
                    self.tokens.mint(self.rebase_token, self.address, distributed)

            epoch.distribute = distributed
            epoch.number += 1
            epoch.end_block += epoch.length
        logger.debug("rebase epoch=%d distributed=%d", epoch.number, distributed)
        return distributed
