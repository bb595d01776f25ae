"""Token balance book for every simulated token."""

from decimal import Decimal
from typing import Dict, List

from ..engine.errors import CollaboratorError, ValidationError

DECIMALS = 9
UNIT = 10 ** DECIMALS
PRICE_SCALE = 10 ** 9  # USD prices are ints scaled per whole token


def to_units(amount: float, decimals: int = DECIMALS) -> int:
    """Convert a whole-token amount to integer base units."""
    return int(Decimal(str(amount)) * (10 ** decimals))


def from_units(amount: int, decimals: int = DECIMALS) -> float:
    """Convert integer base units to whole tokens (for reporting only)."""
    return amount / (10 ** decimals)


def price_to_scaled(usd: float) -> int:
    """Convert a USD price per whole token to a PRICE_SCALE integer."""
    return int(Decimal(str(usd)) * PRICE_SCALE)


class TokenLedger:
    """Balances of all tokens, keyed by token symbol then holder address."""

    _state_fields = ("_balances", "_total_supply")

    def __init__(self, chain, decimals: int = DECIMALS):
        self.chain = chain
        self.decimals = decimals
        self._balances: Dict[str, Dict[str, int]] = {}
        self._total_supply: Dict[str, int] = {}
        chain.register(self)

    def balance_of(self, token: str, holder: str) -> int:
        return self._balances.get(token, {}).get(holder, 0)

    def total_supply(self, token: str) -> int:
        return self._total_supply.get(token, 0)

    def holders(self, token: str) -> List[str]:
        """Addresses with a non-zero balance, in first-credit order."""
        return [h for h, bal in self._balances.get(token, {}).items() if bal > 0]

    def mint(self, token: str, to: str, amount: int) -> None:
        _check_amount(amount)
        book = self._balances.setdefault(token, {})
        book[to] = book.get(to, 0) + amount
        self._total_supply[token] = self._total_supply.get(token, 0) + amount

    def burn(self, token: str, frm: str, amount: int) -> None:
        _check_amount(amount)
        balance = self.balance_of(token, frm)
        if amount > balance:
            raise CollaboratorError(f"{token}: burn amount exceeds balance")
        self._balances[token][frm] = balance - amount
        self._total_supply[token] -= amount

    def transfer(self, token: str, frm: str, to: str, amount: int) -> None:
        _check_amount(amount)
        balance = self.balance_of(token, frm)
        if amount > balance:
            raise CollaboratorError(f"{token}: transfer amount exceeds balance")
        if amount == 0:
            return
        book = self._balances[token]
        book[frm] = balance - amount
        book[to] = book.get(to, 0) + amount


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValidationError(f"Token amounts are integer base units, got {amount!r}")
    if amount < 0:
        raise ValidationError(f"Negative token amount {amount}")
