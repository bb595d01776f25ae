"""Constant-product pools and a router over them."""

import logging
import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple

from ..engine.errors import CollaboratorError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairPool:
    """A two-token pool; reserves live in the token book under ``address``."""
    token0: str
    token1: str
    fee_bps: int = 20

    @property
    def address(self) -> str:
        return f"pool:{self.token0}-{self.token1}"

    @property
    def lp_token(self) -> str:
        return f"{self.token0}-{self.token1} LP"


class Router:
    """Quotes, swaps and liquidity provision across registered pools."""

    def __init__(self, chain, tokens, name: str = "router"):
        self.chain = chain
        self.tokens = tokens
        self.name = name
        self._pools: Dict[FrozenSet[str], PairPool] = {}

    def create_pool(
        self,
        token0: str,
        token1: str,
        amount0: int,
        amount1: int,
        provider: str,
        fee_bps: int = 20,
    ) -> PairPool:
        """Seed a new pool from ``provider``; the provider receives the LP tokens."""
        key = frozenset((token0, token1))
        if key in self._pools:
            raise CollaboratorError(f"UniswapV2: PAIR_EXISTS {token0}/{token1}")
        pool = PairPool(token0, token1, fee_bps)
        with self.chain.transaction():
            self.tokens.transfer(token0, provider, pool.address, amount0)
            self.tokens.transfer(token1, provider, pool.address, amount1)
            self.tokens.mint(pool.lp_token, provider, math.isqrt(amount0 * amount1))
            self._pools[key] = pool
        return pool

    def pool_for(self, token_a: str, token_b: str) -> PairPool:
        pool = self._pools.get(frozenset((token_a, token_b)))
        if pool is None:
            raise CollaboratorError(f"UniswapV2Library: no pair {token_a}/{token_b}")
        return pool

    def pool_for_lp(self, lp_token: str) -> PairPool:
        for pool in self._pools.values():
            if pool.lp_token == lp_token:
                return pool
        raise CollaboratorError(f"UniswapV2Library: no pair for {lp_token}")

    def pools(self) -> List[PairPool]:
        return list(self._pools.values())

    def get_reserves(self, token_a: str, token_b: str) -> Tuple[int, int]:
        pool = self.pool_for(token_a, token_b)
        return (
            self.tokens.balance_of(token_a, pool.address),
            self.tokens.balance_of(token_b, pool.address),
        )

    def get_amount_out(self, amount_in: int, token_in: str, token_out: str) -> int:
        if amount_in <= 0:
            raise CollaboratorError("UniswapV2Library: INSUFFICIENT_INPUT_AMOUNT")
        pool = self.pool_for(token_in, token_out)
        reserve_in, reserve_out = self.get_reserves(token_in, token_out)
        if reserve_in == 0 or reserve_out == 0:
            raise CollaboratorError("UniswapV2Library: INSUFFICIENT_LIQUIDITY")
        amount_in_with_fee = amount_in * (10000 - pool.fee_bps)
        return amount_in_with_fee * reserve_out // (reserve_in * 10000 + amount_in_with_fee)

    def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        if len(path) < 2:
            raise CollaboratorError("UniswapV2Library: INVALID_PATH")
        amounts = [amount_in]
        for token_in, token_out in zip(path, path[1:]):
            amounts.append(self.get_amount_out(amounts[-1], token_in, token_out))
        return amounts

    def swap_exact_tokens_for_tokens(
        self,
        amount_in: int,
        amount_out_min: int,
        path: List[str],
        to: str,
        sender: str,
    ) -> List[int]:
        amounts = self.get_amounts_out(amount_in, path)
        if amounts[-1] < amount_out_min:
            raise CollaboratorError("UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT")
        with self.chain.transaction():
            self.tokens.transfer(path[0], sender, self.pool_for(path[0], path[1]).address, amount_in)
            for i, (token_in, token_out) in enumerate(zip(path, path[1:])):
                pool = self.pool_for(token_in, token_out)
                if i + 2 < len(path):
                    recipient = self.pool_for(token_out, path[i + 2]).address
                else:
                    recipient = to
                self.tokens.transfer(token_out, pool.address, recipient, amounts[i + 1])
        logger.debug("swap %d %s -> %d %s", amount_in, path[0], amounts[-1], path[-1])
        return amounts

    def add_liquidity(
        self,
        token_a: str,
        token_b: str,
        amount_a_desired: int,
        amount_b_desired: int,
        amount_a_min: int,
        amount_b_min: int,
        to: str,
        sender: str,
    ) -> Tuple[int, int, int]:
        """
        Add liquidity at the pool's current ratio.

        Returns:
            (amount_a used, amount_b used, LP tokens minted)
        """
        pool = self.pool_for(token_a, token_b)
        reserve_a, reserve_b = self.get_reserves(token_a, token_b)
        amount_b_optimal = amount_a_desired * reserve_b // reserve_a
        if amount_b_optimal <= amount_b_desired:
            if amount_b_optimal < amount_b_min:
                raise CollaboratorError("UniswapV2Router: INSUFFICIENT_B_AMOUNT")
            amount_a, amount_b = amount_a_desired, amount_b_optimal
        else:
            amount_a_optimal = amount_b_desired * reserve_a // reserve_b
            if amount_a_optimal < amount_a_min:
                raise CollaboratorError("UniswapV2Router: INSUFFICIENT_A_AMOUNT")
            amount_a, amount_b = amount_a_optimal, amount_b_desired

        supply = self.tokens.total_supply(pool.lp_token)
        liquidity = min(amount_a * supply // reserve_a, amount_b * supply // reserve_b)
        if liquidity <= 0:
            raise CollaboratorError("UniswapV2: INSUFFICIENT_LIQUIDITY_MINTED")
        with self.chain.transaction():
            self.tokens.transfer(token_a, sender, pool.address, amount_a)
            self.tokens.transfer(token_b, sender, pool.address, amount_b)
            self.tokens.mint(pool.lp_token, to, liquidity)
        logger.debug("add liquidity %d %s + %d %s -> %d LP", amount_a, token_a, amount_b, token_b, liquidity)
        return amount_a, amount_b, liquidity
