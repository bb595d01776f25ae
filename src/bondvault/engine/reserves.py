"""Reserve/Claim Queue - withdrawal requests registered while a bond is open.

Period 0 is the "no period" sentinel and is never vested. A claimant's pointer
returns to 0 once paid, so a repeated claim is refused as not vested.

Conservation Identity (per period P):
periods[P].total_reserved = sum(claim.amount for claims with index P)
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from .errors import NOT_FULLY_VESTED, InvariantViolation, PolicyError, checked_sub


@dataclass
class ReservePeriod:
    index: int
    total_reserved: int = 0
    fully_vested: bool = False
    warmup_expiry: int = 0  # Staking epoch at which the period's payout leaves warm-up


@dataclass
class ClaimOfReserves:
    amount: int = 0
    index: int = 0  # Reserve period pointer; 0 when nothing is owed


@dataclass(frozen=True)
class ClaimView:
    """A claim as seen by the depositor."""
    amount: int
    index: int
    fully_vested: bool


class ReserveQueue:
    """Reserve periods, per-depositor claims and the ordered claimant set."""

    def __init__(self):
        self.periods: Dict[int, ReservePeriod] = {0: ReservePeriod(index=0)}
        self.current_index = 0
        self.reserves = 0
        self._claims: Dict[str, ClaimOfReserves] = {}
        # Insertion-ordered set of depositors with an outstanding claim
        self._users: Dict[str, None] = {}

    def current_period(self) -> ReservePeriod:
        return self.periods[self.current_index]

    def period(self, index: int) -> ReservePeriod:
        """Copy of period ``index`` (an empty, unvested period if never opened)."""
        period = self.periods.get(index)
        return replace(period) if period is not None else ReservePeriod(index=index)

    def needs_new_period(self) -> bool:
        """A reservation opens a new period if none is open or the open one has vested."""
        return self.current_index == 0 or self.current_period().fully_vested

    def open_period(self) -> ReservePeriod:
        previous = self.current_period()
        if previous.total_reserved != 0:
            raise InvariantViolation(
                f"Opening period {self.current_index + 1} while period "
                f"{previous.index} still holds {previous.total_reserved}"
            )
        self.current_index += 1
        period = ReservePeriod(index=self.current_index)
        self.periods[self.current_index] = period
        return period

    def register(self, depositor: str, amount: int) -> ClaimOfReserves:
        """Add ``amount`` to ``depositor``'s claim in the current period."""
        period = self.current_period()
        if period.index == 0 or period.fully_vested:
            raise InvariantViolation(f"Registering into closed period {period.index}")
        claim = self._claims.setdefault(depositor, ClaimOfReserves())
        if claim.amount > 0 and claim.index != period.index:
            raise InvariantViolation(
                f"{depositor} already holds a claim in period {claim.index}"
            )
        claim.amount += amount
        claim.index = period.index
        period.total_reserved += amount
        self.reserves += amount
        self._users[depositor] = None
        return claim

    def exposed(self) -> int:
        """Reserved value still riding the open bond (the open, unvested period)."""
        period = self.current_period()
        if period.index == 0 or period.fully_vested:
            return 0
        return period.total_reserved

    def absorb_fee(self, service_fee: int, gross: int) -> int:
        """
        Charge the open period its pro-rata share of a redemption service fee.

        ``gross`` is the value the fee is spread over: every bucket plus the
        outstanding payout, less reserves already vested. The share is rounded
        up so the remaining assets always cover the remaining reserves.

        Returns:
            Total amount cut from the period's claims
        """
        exposed = self.exposed()
        if service_fee <= 0 or exposed == 0 or gross <= 0:
            return 0
        share = min(exposed, -(-service_fee * exposed // gross))
        if share == 0:
            return 0

        period = self.current_period()
        members = [
            self._claims[user] for user in self._users
            if self._claims[user].index == period.index and self._claims[user].amount > 0
        ]
        cuts = [claim.amount * share // exposed for claim in members]
        # Floor remainders go one unit at a time to claims that can still take them
        remainder = share - sum(cuts)
        for i, claim in enumerate(members):
            if remainder == 0:
                break
            if claim.amount > cuts[i]:
                cuts[i] += 1
                remainder -= 1
        for claim, cut in zip(members, cuts):
            claim.amount -= cut

        period.total_reserved = checked_sub(period.total_reserved, share, "total_reserved")
        self.reserves = checked_sub(self.reserves, share, "reserves")
        return share

    def vest_current(self, warmup_expiry: int) -> Optional[ReservePeriod]:
        """Mark the open period vested; returns it, or None if there was none."""
        period = self.current_period()
        if period.index == 0 or period.fully_vested:
            return None
        period.fully_vested = True
        period.warmup_expiry = warmup_expiry
        return period

    def claim_of(self, depositor: str) -> ClaimView:
        claim = self._claims.get(depositor, ClaimOfReserves())
        period = self.periods.get(claim.index)
        vested = period is not None and period.index != 0 and period.fully_vested
        return ClaimView(amount=claim.amount, index=claim.index, fully_vested=vested)

    def is_claimable(self, depositor: str, epoch_number: int) -> bool:
        """Claim period vested and its warm-up expiry reached."""
        claim = self._claims.get(depositor)
        if claim is None or claim.index == 0:
            return False
        period = self.periods[claim.index]
        return period.fully_vested and epoch_number >= period.warmup_expiry

    def require_claimable(self, depositor: str, epoch_number: int) -> None:
        if not self.is_claimable(depositor, epoch_number):
            raise PolicyError(NOT_FULLY_VESTED)

    def settle(self, depositor: str) -> int:
        """Zero ``depositor``'s claim and reset its pointer; returns the amount."""
        claim = self._claims[depositor]
        period = self.periods[claim.index]
        amount = claim.amount
        period.total_reserved = checked_sub(period.total_reserved, amount, "total_reserved")
        self.reserves = checked_sub(self.reserves, amount, "reserves")
        claim.amount = 0
        claim.index = 0
        self._users.pop(depositor, None)
        return amount

    def claimants(self, index: Optional[int] = None) -> List[str]:
        """Depositors with an outstanding claim, in registration order."""
        return [
            user for user in self._users
            if index is None or self._claims[user].index == index
        ]

    def reserve_user(self, i: int) -> str:
        return list(self._users)[i]

    def num_reserve_users(self) -> int:
        return len(self._users)

    def validate_conservation(self) -> tuple[bool, Optional[str]]:
        """Per-period and aggregate claim sums match the recorded totals."""
        sums: Dict[int, int] = {}
        for claim in self._claims.values():
            if claim.amount:
                sums[claim.index] = sums.get(claim.index, 0) + claim.amount
        for index, period in self.periods.items():
            if sums.get(index, 0) != period.total_reserved:
                return False, (
                    f"Reserve period {index}: total_reserved={period.total_reserved}, "
                    f"claims={sums.get(index, 0)}"
                )
        if sum(sums.values()) != self.reserves:
            return False, f"reserves={self.reserves}, claims={sum(sums.values())}"
        return True, None
