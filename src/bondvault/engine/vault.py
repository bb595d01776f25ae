"""Outer vault - depositor share accounting over one strategy.

Deposited funds move straight into the strategy; the vault's balance is the
strategy's ``total_balance()``.
"""

import logging

from ..venues.chain import atomic
from ..venues.tokens import UNIT
from .errors import (
    ABOVE_CAP,
    AMOUNT_ZERO,
    BELOW_MIN_DEPOSIT,
    NO_SHARES,
    NOT_OWNER,
    PAUSED,
    PROTECTED_TOKEN,
    SHARES_EXCEED_BALANCE,
    AccessControlError,
    PolicyError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SOURCE = "vault"


class BondVault:
    """Mints shares on deposit and forwards exits to the strategy."""

    _state_fields = ("cap", "owner")

    def __init__(
        self,
        chain,
        events,
        tokens,
        strategy,
        share_token: str,
        owner: str,
        cap: int,
        name: str = "",
        address: str = "vault",
    ):
        self.chain = chain
        self.events = events
        self.tokens = tokens
        self.strategy = strategy
        self.want = strategy.rebase_token
        self.share_token = share_token
        self.owner = owner
        self.cap = cap
        self.name = name
        self.address = address
        chain.register(self)

    def balance(self) -> int:
        return self.strategy.total_balance()

    def is_bonding(self) -> bool:
        return self.strategy.is_bonding()

    def total_supply(self) -> int:
        return self.tokens.total_supply(self.share_token)

    def balance_of(self, account: str) -> int:
        return self.tokens.balance_of(self.share_token, account)

    def get_price_per_full_share(self) -> int:
        supply = self.total_supply()
        if supply == 0:
            return UNIT
        return self.balance() * UNIT // supply

    def claim_of_reserves(self, account: str):
        return self.strategy.claim_of_reserves(account)

    @atomic
    def deposit(self, amount: int, sender: str) -> int:
        """
        Deposit ``amount`` of the want token and mint shares.

        Returns:
            Shares minted
        """
        if self.strategy.paused:
            raise PolicyError(PAUSED)
        if amount <= 0:
            raise ValidationError(AMOUNT_ZERO)
        if amount < self.strategy.min_deposit:
            raise ValidationError(BELOW_MIN_DEPOSIT)
        pool = self.balance()
        if pool + amount > self.cap:
            raise ValidationError(ABOVE_CAP)

        self.tokens.transfer(self.want, sender, self.strategy.address, amount)
        self.strategy.deposit(sender=self.address)
        received = self.balance() - pool

        supply = self.total_supply()
        if supply == 0 or pool == 0:
            shares = received
        else:
            shares = received * supply // pool
        self.tokens.mint(self.share_token, sender, shares)
        logger.debug("%s deposited %d for %d shares", sender, amount, shares)
        return shares

    def deposit_all(self, sender: str) -> int:
        return self.deposit(self.tokens.balance_of(self.want, sender), sender=sender)

    @atomic
    def reserve(self, shares: int, sender: str) -> int:
        """
        Burn ``shares`` and hand their value to the strategy's reserve queue.

        Returns:
            Amount paid (idle) or reserved (bonding) after the withdrawal fee
        """
        if shares <= 0:
            raise ValidationError(NO_SHARES)
        if shares > self.balance_of(sender):
            raise ValidationError(SHARES_EXCEED_BALANCE)
        amount = self.balance() * shares // self.total_supply()
        self.tokens.burn(self.share_token, sender, shares)
        return self.strategy.reserve(amount, sender, sender=self.address)

    def reserve_all(self, sender: str) -> int:
        return self.reserve(self.balance_of(sender), sender=sender)

    @atomic
    def claim(self, sender: str) -> int:
        return self.strategy.claim(sender, sender=self.address)

    @atomic
    def set_cap(self, cap: int, sender: str) -> None:
        if sender != self.owner:
            raise AccessControlError(NOT_OWNER)
        if cap <= 0:
            raise ValidationError(AMOUNT_ZERO)
        self.cap = cap
        self.events.emit(SOURCE, "NewWantCap", cap)

    @atomic
    def in_case_tokens_get_stuck(self, token: str, sender: str) -> int:
        if sender != self.owner:
            raise AccessControlError(NOT_OWNER)
        if token == self.want:
            raise ValidationError(PROTECTED_TOKEN)
        amount = self.tokens.balance_of(token, self.address)
        if amount:
            self.tokens.transfer(token, self.address, self.owner, amount)
        return amount
