"""Bond Lifecycle State Machine - the single active bond slot and its allow-list.

States:
- Idle: no bond open; reserves pay out synchronously
- Bonding(venue, ...): one bond open at ``venue``; reserves are queued

Transitions are only made through ``open`` and ``close``.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from .errors import (
    ALREADY_BONDING,
    BOND_ALREADY_ADDED,
    BOND_NOT_FOUND,
    LP_ROUTES_END,
    LP_ROUTES_START,
    NOT_BONDING,
    ROUTE_END,
    ROUTE_START,
    UNAPPROVED_BOND,
    InvariantViolation,
    PolicyError,
    ValidationError,
)


@dataclass(frozen=True)
class Idle:
    """No bond open."""


@dataclass(frozen=True)
class Bonding:
    """A bond open at ``venue``."""
    venue: str
    opened_at_block: int
    principal: int  # Rebase token committed, after the service fee
    payout: int  # Payout reported by the venue at entry


BondState = Union[Idle, Bonding]


class BondLifecycle:
    """Allow-listed venues plus the Idle/Bonding state."""

    def __init__(self, bonds: Optional[Sequence[str]] = None):
        self._bonds: List[str] = list(bonds or [])
        self.state: BondState = Idle()

    @property
    def is_bonding(self) -> bool:
        return isinstance(self.state, Bonding)

    @property
    def current_bond(self) -> Optional[str]:
        return self.state.venue if isinstance(self.state, Bonding) else None

    def num_bonds(self) -> int:
        return len(self._bonds)

    def bond_at(self, index: int) -> str:
        return self._bonds[index]

    def bond_list(self) -> List[str]:
        return list(self._bonds)

    def is_approved(self, venue: str) -> bool:
        return venue in self._bonds

    def add(self, venue: str) -> None:
        if venue in self._bonds:
            raise ValidationError(BOND_ALREADY_ADDED)
        self._bonds.append(venue)

    def remove(self, venue: str) -> None:
        if venue not in self._bonds:
            raise ValidationError(BOND_NOT_FOUND)
        self._bonds.remove(venue)

    def require_idle(self) -> None:
        if self.is_bonding:
            raise PolicyError(ALREADY_BONDING)

    def require_approved(self, venue: str) -> None:
        if not self.is_approved(venue):
            raise ValidationError(UNAPPROVED_BOND)

    def open(self, venue: str, block: int, principal: int, payout: int) -> Bonding:
        self.require_idle()
        self.state = Bonding(venue=venue, opened_at_block=block, principal=principal, payout=payout)
        return self.state

    def close(self) -> Bonding:
        if not isinstance(self.state, Bonding):
            raise InvariantViolation(NOT_BONDING)
        closed = self.state
        self.state = Idle()
        return closed


def validate_route_start(route: Sequence[str], rebase_token: str) -> None:
    if not route or route[0] != rebase_token:
        raise ValidationError(ROUTE_START)


def validate_route_end(route: Sequence[str], principle: str) -> None:
    if route[-1] != principle:
        raise ValidationError(ROUTE_END)


def validate_lp_route_starts(route0: Sequence[str], route1: Sequence[str], rebase_token: str) -> None:
    if not route0 or not route1 or route0[0] != rebase_token or route1[0] != rebase_token:
        raise ValidationError(LP_ROUTES_START)


def validate_lp_route_ends(route0: Sequence[str], route1: Sequence[str], token0: str, token1: str) -> None:
    """The two routes must end on the pool's two tokens, in either order."""
    if {route0[-1], route1[-1]} != {token0, token1}:
        raise ValidationError(LP_ROUTES_END)


def max_bond_size(bond_price_usd: int, max_payout: int, rebase_price_usd: int) -> int:
    """
    Largest rebase token amount whose bond payout stays under the venue cap.

    Formula: bond_price_usd * max_payout / rebase_price_usd
    """
    if rebase_price_usd <= 0:
        raise InvariantViolation(f"Non-positive rebase token price {rebase_price_usd}")
    return bond_price_usd * max_payout // rebase_price_usd


def is_bond_positive(bond_price_usd: int, rebase_price_usd: int) -> bool:
    """A bond is positive when it sells the rebase token at or below market."""
    return bond_price_usd <= rebase_price_usd
