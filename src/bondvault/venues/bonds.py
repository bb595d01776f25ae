"""Bond depository and LP bond calculator.

A depository sells the rebase token at a set USD price against a principle
token (single-asset bonds) or an LP token (liquidity bonds). Payout vests
linearly over ``vesting_blocks``; ``redeem`` releases the vested part.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional

from ..engine.errors import CollaboratorError, ValidationError
from .tokens import PRICE_SCALE

logger = logging.getLogger(__name__)

MIN_PAYOUT = 10 ** 7  # 0.01 rebase token
VESTED_BPS = 10000


@dataclass
class BondInfo:
    """A depositor's outstanding bond."""
    payout: int = 0  # Rebase token still owed
    vesting: int = 0  # Blocks left to vest
    last_block: int = 0  # Block of the last deposit or redeem
    price_paid: int = 0  # USD price per rebase token (PRICE_SCALE)


class BondingCalculator:
    """Values LP tokens at twice the stable side of the pool."""

    def __init__(self, tokens, router, stable_token: str):
        self.tokens = tokens
        self.router = router
        self.stable_token = stable_token

    def valuation(self, pair: str, amount: int) -> int:
        """
        USD value (stable token base units) of ``amount`` LP tokens.

        Formula: 2 * stable_reserve * amount / lp_supply
        """
        pool = self.router.pool_for_lp(pair)
        if self.stable_token not in (pool.token0, pool.token1):
            raise CollaboratorError(f"{pair}: pool has no {self.stable_token} side")
        supply = self.tokens.total_supply(pair)
        if supply == 0:
            return 0
        stable_reserve = self.tokens.balance_of(self.stable_token, pool.address)
        return 2 * stable_reserve * amount // supply


class BondDepository:
    """One bond venue."""

    _state_fields = ("_bond_info", "total_debt", "bond_price_usd", "asset_price_usd", "max_debt")

    def __init__(
        self,
        chain,
        tokens,
        name: str,
        principle: str,
        rebase_token: str,
        bond_price_usd: int,
        vesting_blocks: int,
        max_payout_thousandths: int,
        max_debt: int,
        asset_price_usd: int = PRICE_SCALE,
        calculator: Optional[BondingCalculator] = None,
    ):
        self.chain = chain
        self.tokens = tokens
        self.name = name
        self.principle = principle
        self.rebase_token = rebase_token
        self.bond_price_usd = bond_price_usd
        self.asset_price_usd = asset_price_usd
        self.vesting_blocks = vesting_blocks
        self.max_payout_thousandths = max_payout_thousandths
        self.max_debt = max_debt
        self.calculator = calculator
        self.address = f"bond:{name}"
        self.total_debt = 0
        self._bond_info: Dict[str, BondInfo] = {}
        chain.register(self)

    @property
    def is_liquidity_bond(self) -> bool:
        return self.calculator is not None

    def bond_info(self, depositor: str) -> BondInfo:
        info = self._bond_info.get(depositor)
        return replace(info) if info is not None else BondInfo()

    def bond_price_in_usd(self) -> int:
        return self.bond_price_usd

    def asset_price(self) -> int:
        return self.asset_price_usd

    def bond_price(self) -> int:
        """Price of one rebase token in principle terms (PRICE_SCALE)."""
        if self.is_liquidity_bond:
            return self.bond_price_usd
        return self.bond_price_usd * PRICE_SCALE // self.asset_price_usd

    def set_bond_price_usd(self, price: int) -> None:
        if price <= 0:
            raise ValidationError(f"Bond price must be positive, got {price}")
        self.bond_price_usd = price

    def max_payout(self) -> int:
        return self.tokens.total_supply(self.rebase_token) * self.max_payout_thousandths // 100000

    def payout_for(self, amount: int) -> int:
        """Rebase token owed for ``amount`` of principle at the current price."""
        if self.is_liquidity_bond:
            value = self.calculator.valuation(self.principle, amount)
        else:
            value = amount * self.asset_price_usd // PRICE_SCALE
        return value * PRICE_SCALE // self.bond_price_usd

    def deposit(self, amount: int, max_price: int, depositor: str, sender: str) -> int:
        """
        Buy a bond with ``amount`` of principle.

        Returns:
            Payout in rebase token base units
        """
        if max_price < self.bond_price():
            raise CollaboratorError("Slippage limit: more than max price")
        payout = self.payout_for(amount)
        if payout < MIN_PAYOUT:
            raise CollaboratorError("Bond too small")
        if payout > self.max_payout():
            raise CollaboratorError("Bond too large")
        if self.total_debt + payout > self.max_debt:
            raise CollaboratorError("Max capacity reached")

        with self.chain.transaction():
            self.tokens.transfer(self.principle, sender, self.address, amount)
            self.tokens.mint(self.rebase_token, self.address, payout)
            info = self._bond_info.setdefault(depositor, BondInfo())
            info.payout += payout
            info.vesting = self.vesting_blocks
            info.last_block = self.chain.block
            info.price_paid = self.bond_price_usd
            self.total_debt += payout
        logger.debug("%s deposit %d -> payout %d for %s", self.name, amount, payout, depositor)
        return payout

    def percent_vested_for(self, depositor: str) -> int:
        """Vested share of the outstanding payout in basis points."""
        info = self._bond_info.get(depositor)
        if info is None or info.vesting == 0:
            return 0
        blocks_since = self.chain.block - info.last_block
        return blocks_since * VESTED_BPS // info.vesting

    def pending_payout_for(self, depositor: str) -> int:
        """Payout redeemable right now."""
        info = self._bond_info.get(depositor)
        if info is None:
            return 0
        percent = self.percent_vested_for(depositor)
        if percent >= VESTED_BPS:
            return info.payout
        return info.payout * percent // VESTED_BPS

    def redeem(self, recipient: str) -> int:
        """Release the vested payout to ``recipient``; returns the amount."""
        info = self._bond_info.get(recipient)
        if info is None:
            return 0
        percent = self.percent_vested_for(recipient)
        with self.chain.transaction():
            if percent >= VESTED_BPS:
                amount = info.payout
                del self._bond_info[recipient]
            else:
                amount = info.payout * percent // VESTED_BPS
                info.payout -= amount
                info.vesting -= self.chain.block - info.last_block
                info.last_block = self.chain.block
            self.total_debt -= amount
            if amount:
                self.tokens.transfer(self.rebase_token, self.address, recipient, amount)
        logger.debug("%s redeem %d for %s (%d bps vested)", self.name, amount, recipient, percent)
        return amount
