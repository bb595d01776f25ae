"""Fee Engine - basis-point fees with configurable caps."""

from dataclasses import dataclass

from .errors import BAD_FEE, FEE_CAP, InvariantViolation, ValidationError

SERVICE_FEE_DIVISOR = 10000
WITHDRAWAL_FEE_DIVISOR = 10000


def fee(amount: int, rate: int, divisor: int) -> int:
    """
    Compute a fee with floor division.

    Formula: fee = amount * rate // divisor

    Args:
        amount: Amount the fee is charged on (base units)
        rate: Fee rate in units of 1/divisor
        divisor: Fee divisor

    Returns:
        Fee in base units
    """
    if amount < 0:
        raise InvariantViolation(f"Fee charged on negative amount {amount}")
    return amount * rate // divisor


@dataclass
class FeeSchedule:
    """Service and withdrawal fee rates with their caps."""
    service_fee: int
    withdrawal_fee: int
    service_fee_cap: int = 300
    withdrawal_fee_cap: int = 100
    service_fee_divisor: int = SERVICE_FEE_DIVISOR
    withdrawal_fee_divisor: int = WITHDRAWAL_FEE_DIVISOR

    def __post_init__(self):
        _check_rate(self.service_fee, self.service_fee_cap)
        _check_rate(self.withdrawal_fee, self.withdrawal_fee_cap)

    def set_service_fee(self, rate: int) -> None:
        _check_rate(rate, self.service_fee_cap)
        self.service_fee = rate

    def set_withdrawal_fee(self, rate: int) -> None:
        _check_rate(rate, self.withdrawal_fee_cap)
        self.withdrawal_fee = rate

    def service_fee_on(self, amount: int) -> int:
        return fee(amount, self.service_fee, self.service_fee_divisor)

    def withdrawal_fee_on(self, amount: int) -> int:
        return fee(amount, self.withdrawal_fee, self.withdrawal_fee_divisor)


def _check_rate(rate: int, cap: int) -> None:
    if not isinstance(rate, int) or isinstance(rate, bool) or rate < 0:
        raise ValidationError(BAD_FEE)
    if rate > cap:
        raise ValidationError(FEE_CAP)
