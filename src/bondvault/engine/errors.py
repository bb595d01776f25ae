"""Error taxonomy for the strategy core.

Every error carries a stable ``reason`` string (also its message) so callers and
tests can assert on the exact cause:

- ValidationError: caller input is malformed (zero amounts, bad routes, caps)
- PolicyError: a business rule blocks the call (already bonding, not vested)
- AccessControlError: caller lacks the required role
- CollaboratorError: a venue, router or token rejected the call
- InvariantViolation: an accounting invariant broke (never a recoverable condition)
"""

NOT_OWNER = "Ownable: caller is not the owner"
NOT_MANAGER = "!manager"
NOT_VAULT = "!vault"
PAUSED = "Pausable: paused"
NOT_PAUSED = "Pausable: not paused"

AMOUNT_ZERO = "amount <= 0!"
ROUTE_START = "Route must start with rebaseToken!"
ROUTE_END = "Route must end with bond principle!"
LP_ROUTES_START = "Routes must start with {rebaseToken}!"
LP_ROUTES_END = "Routes must end with their respective tokens!"
UNAPPROVED_BOND = "Unapproved bond!"
UNKNOWN_BOND = "!bond"
BOND_ALREADY_ADDED = "Bond already added!"
BOND_NOT_FOUND = "Bond not found!"
ALREADY_BONDING = "Already bonding!"
NOT_BONDING = "!bonding"
NOT_POSITIVE = "!bondIsPositive"
NOT_WARMED_UP = "!warmedUp"
FEE_CAP = "!cap"
BAD_FEE = "!fee"
NOT_FULLY_VESTED = "!fullyVested"
NO_SHARES = "!shares > 0"
SHARES_EXCEED_BALANCE = "shares > balance!"
BELOW_MIN_DEPOSIT = "< minDeposit!"
ABOVE_CAP = "> wantCap!"
PROTECTED_TOKEN = "!token"
INSUFFICIENT_LIQUIDITY = "Insufficient liquidity!"


class StrategyError(Exception):
    """Base class for every failure raised by the strategy core."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(StrategyError, ValueError):
    """Caller mistake; retrying with corrected input succeeds."""


class PolicyError(StrategyError):
    """Business-rule violation; ledger state is untouched."""


class AccessControlError(StrategyError, PermissionError):
    """Caller does not hold the role the operation requires."""


class CollaboratorError(StrategyError):
    """A token, router or venue rejected the call."""


class InvariantViolation(StrategyError, ArithmeticError):
    """Accounting invariant broken; indicates a defect, not a business condition."""


def checked_sub(a: int, b: int, what: str) -> int:
    """Subtract ``b`` from ``a``, refusing to go negative."""
    result = a - b
    if result < 0:
        raise InvariantViolation(f"{what} underflow: {a} - {b}")
    return result
