"""Rebase/bond strategy - public entry points over the ledger, lifecycle and queue.

Roles:
- owner: pause/unpause, address setters, stuck-token rescue
- manager (owner or keeper): bonding, redemption, staking moves, fee rates
- vault: deposit, reserve, claim on behalf of depositors

Every mutating entry point runs inside one chain transaction; any failure
restores all participants to their state before the call.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..venues.chain import atomic
from ..venues.tokens import UNIT
from .bonding import (
    Bonding,
    BondLifecycle,
    is_bond_positive,
    max_bond_size,
    validate_lp_route_ends,
    validate_lp_route_starts,
    validate_route_end,
    validate_route_start,
)
from .errors import (
    AMOUNT_ZERO,
    INSUFFICIENT_LIQUIDITY,
    NOT_MANAGER,
    NOT_OWNER,
    NOT_PAUSED,
    NOT_POSITIVE,
    NOT_VAULT,
    NOT_WARMED_UP,
    PAUSED,
    PROTECTED_TOKEN,
    UNAPPROVED_BOND,
    UNKNOWN_BOND,
    AccessControlError,
    InvariantViolation,
    PolicyError,
    ValidationError,
)
from .fees import FeeSchedule
from .ledger import BalanceSnapshot, PositionLedger
from .reserves import ClaimView, ReservePeriod, ReserveQueue

logger = logging.getLogger(__name__)

SOURCE = "strategy"


class RebaseBondStrategy:
    """Manages one vault's rebase token between staking and a single active bond."""

    _state_fields = (
        "lifecycle",
        "reserve_queue",
        "fees",
        "paused",
        "owner",
        "keeper",
        "vault",
        "service_fee_recipient",
        "min_deposit",
    )
    _ref_fields = ("router",)

    def __init__(
        self,
        chain,
        events,
        tokens,
        staking,
        router,
        bond_registry: Dict,
        rebase_token: str,
        staked_token: str,
        usd_route: Sequence[str],
        fees: FeeSchedule,
        owner: str,
        keeper: str,
        service_fee_recipient: str,
        vault: str = "vault",
        min_deposit: int = 0,
        redeem_permission: str = "manager",
        swap_slippage_bps: int = 50,
        lp_scrap_tolerance_bps: int = 50,
        address: str = "strategy",
    ):
        """
        Initialize the strategy.

        Args:
            chain: Block clock and transaction boundary
            events: Shared event log
            tokens: Token balance book
            staking: Staking venue for the rebase token
            router: Swap router
            bond_registry: Every bond depository known on-chain, by name
            rebase_token: Managed token symbol
            staked_token: Staked form of the managed token
            usd_route: Swap path used to price the rebase token in USD
            fees: Service and withdrawal fee schedule
            owner: Owner address
            keeper: Keeper address
            service_fee_recipient: Receives staked service fees
            vault: Outer vault address
            min_deposit: Minimum vault deposit in base units
            redeem_permission: "manager" or "public" for redeem_and_stake
            swap_slippage_bps: Tolerated slippage when swapping
            lp_scrap_tolerance_bps: LP leftovers tolerated before a warning
            address: This strategy's address
        """
        self.chain = chain
        self.events = events
        self.tokens = tokens
        self.staking = staking
        self.router = router
        self.bond_registry = bond_registry
        self.rebase_token = rebase_token
        self.staked_token = staked_token
        self.usd_route = list(usd_route)
        self.fees = fees
        self.owner = owner
        self.keeper = keeper
        self.service_fee_recipient = service_fee_recipient
        self.vault = vault
        self.min_deposit = min_deposit
        self.redeem_permission = redeem_permission
        self.swap_slippage_bps = swap_slippage_bps
        self.lp_scrap_tolerance_bps = lp_scrap_tolerance_bps
        self.address = address
        self.paused = False
        self.lifecycle = BondLifecycle()
        self.reserve_queue = ReserveQueue()
        self.ledger = PositionLedger(self)
        chain.register(self)

    # ------------------------------------------------------------------
    # Access control

    def _only_owner(self, sender: str) -> None:
        if sender != self.owner:
            raise AccessControlError(NOT_OWNER)

    def _only_manager(self, sender: str) -> None:
        if sender not in (self.owner, self.keeper):
            raise AccessControlError(NOT_MANAGER)

    def _only_vault(self, sender: str) -> None:
        if sender != self.vault:
            raise AccessControlError(NOT_VAULT)

    def _when_not_paused(self) -> None:
        if self.paused:
            raise PolicyError(PAUSED)

    def _emit(self, name: str, *args):
        return self.events.emit(SOURCE, name, *args)

    # ------------------------------------------------------------------
    # Position Ledger queries

    def unstaked_rebasing(self) -> int:
        return self.ledger.unstaked_rebasing()

    def staked_rebasing(self) -> int:
        return self.ledger.staked_rebasing()

    def warmup_balance(self) -> int:
        return self.ledger.warmup_balance()

    def rebase_bonded(self) -> int:
        return self.ledger.rebase_bonded()

    def pending_payout(self) -> int:
        return self.ledger.pending_payout()

    def total_rebasing(self) -> int:
        return self.ledger.total_rebasing()

    def total_balance(self) -> int:
        return self.ledger.total_balance()

    def snapshot(self) -> BalanceSnapshot:
        return self.ledger.snapshot()

    # ------------------------------------------------------------------
    # Bond state and pricing queries

    def is_bonding(self) -> bool:
        return self.lifecycle.is_bonding

    def current_bond(self) -> Optional[str]:
        return self.lifecycle.current_bond

    def active_bond(self) -> Optional[Bonding]:
        """The open bond record (venue, entry block, principal, payout), or None."""
        state = self.lifecycle.state
        return state if isinstance(state, Bonding) else None

    def num_bonds(self) -> int:
        return self.lifecycle.num_bonds()

    def bonds(self, index: int) -> str:
        return self.lifecycle.bond_at(index)

    def rebase_token_price_in_usd(self, amount: int) -> int:
        """Router quote for ``amount`` rebase token along the USD route."""
        return self.router.get_amounts_out(amount, self.usd_route)[-1]

    def max_bond_size(self, venue: str) -> int:
        depository = self._depository(venue)
        return max_bond_size(
            depository.bond_price_in_usd(),
            depository.max_payout(),
            self.rebase_token_price_in_usd(UNIT),
        )

    def is_bond_positive(self, venue: str) -> bool:
        depository = self._depository(venue)
        return is_bond_positive(
            depository.bond_price_in_usd(),
            self.rebase_token_price_in_usd(UNIT),
        )

    def _depository(self, venue: str):
        depository = self.bond_registry.get(venue)
        if depository is None:
            raise ValidationError(UNKNOWN_BOND)
        return depository

    # ------------------------------------------------------------------
    # Warm-up helpers

    def current_epoch_number(self) -> int:
        return self.staking.epoch().number

    def new_warmup_expiry(self) -> int:
        """Expiry a stake made now would get."""
        return self.current_epoch_number() + self.staking.warmup_period

    def warmed_up(self) -> bool:
        """True once this strategy holds no unexpired warm-up."""
        return self.staking.warmup_info(self.address).expiry <= self.current_epoch_number()

    def safe_to_stake(self) -> bool:
        """Staking now would not push back the expiry of an existing warm-up."""
        info = self.staking.warmup_info(self.address)
        return info.deposit == 0 or info.expiry == self.new_warmup_expiry()

    # ------------------------------------------------------------------
    # Reserve queue queries

    def reserves(self) -> int:
        return self.reserve_queue.reserves

    def claim_of_reserves(self, depositor: str) -> ClaimView:
        return self.reserve_queue.claim_of(depositor)

    def reserve_periods(self, index: int) -> ReservePeriod:
        return self.reserve_queue.period(index)

    def current_reserve_period(self) -> int:
        return self.reserve_queue.current_index

    def reserve_users(self, index: int) -> str:
        return self.reserve_queue.reserve_user(index)

    def num_reserve_users(self) -> int:
        return self.reserve_queue.num_reserve_users()

    # ------------------------------------------------------------------
    # Liquidity movements

    def _claim_matured_warmup(self) -> int:
        info = self.staking.warmup_info(self.address)
        if info.balance > 0 and info.expiry <= self.current_epoch_number():
            return self.staking.claim(self.address)
        return 0

    def _stake_unstaked(self) -> int:
        """Stake all unstaked funds if that does not reset a running warm-up."""
        self._claim_matured_warmup()
        amount = self.unstaked_rebasing()
        if amount == 0 or not self.safe_to_stake():
            return 0
        self.staking.stake(amount, self.address, sender=self.address)
        return amount

    def _ensure_liquid(self, amount: int) -> None:
        """Make at least ``amount`` rebase token unstaked, unstaking as needed."""
        self._claim_matured_warmup()
        unstaked = self.unstaked_rebasing()
        if unstaked >= amount:
            return
        shortfall = amount - unstaked
        staked = self.staked_rebasing()
        if staked < shortfall:
            if staked + self.warmup_balance() >= shortfall:
                raise PolicyError(NOT_WARMED_UP)
            raise InvariantViolation(INSUFFICIENT_LIQUIDITY)
        self.staking.unstake(shortfall, False, sender=self.address)

    def _stake_fee(self, amount: int) -> int:
        """Stake the service fee on ``amount`` for the fee recipient."""
        service_fee = self.fees.service_fee_on(amount)
        if service_fee > 0:
            self.staking.stake(service_fee, self.service_fee_recipient, sender=self.address)
        return service_fee

    def _swap(self, amount: int, route: Sequence[str]) -> int:
        """Swap ``amount`` along ``route`` with slippage protection; returns output."""
        if len(route) < 2 or amount == 0:
            return amount
        quote = self.router.get_amounts_out(amount, list(route))[-1]
        amount_out_min = quote * (10000 - self.swap_slippage_bps) // 10000
        amounts = self.router.swap_exact_tokens_for_tokens(
            amount, amount_out_min, list(route), self.address, sender=self.address
        )
        return amounts[-1]

    # ------------------------------------------------------------------
    # Bond allow-list

    @atomic
    def add_bond(self, venue: str, sender: str) -> None:
        self._only_manager(sender)
        self._depository(venue)
        self.lifecycle.add(venue)
        self._emit("BondAdded", self.lifecycle.bond_list())

    @atomic
    def remove_bond(self, venue: str, sender: str) -> None:
        self._only_manager(sender)
        self.lifecycle.remove(venue)
        self._emit("BondRemoved", self.lifecycle.bond_list())

    # ------------------------------------------------------------------
    # Entering a bond

    def _check_bond_preconditions(self, venue: str) -> None:
        self.lifecycle.require_approved(venue)
        self.lifecycle.require_idle()
        if not self.warmed_up():
            raise PolicyError(NOT_WARMED_UP)
        if not self.is_bond_positive(venue):
            raise PolicyError(NOT_POSITIVE)

    def _bondable(self, amount: int, venue: str) -> int:
        available = self.total_rebasing() - self.reserves()
        bond_amount = min(amount, available, self.max_bond_size(venue))
        if bond_amount <= 0:
            raise ValidationError(AMOUNT_ZERO)
        return bond_amount

    def _open_bond(self, depository, principle_amount: int, bonded: int, service_fee: int) -> int:
        payout = depository.deposit(
            principle_amount, depository.bond_price(), self.address, sender=self.address
        )
        self.lifecycle.open(depository.name, self.chain.block, bonded, payout)
        self._emit("Bond", bonded, service_fee, payout, depository.name)
        logger.info(
            "Opened %s bond: bonded=%d fee=%d payout=%d",
            depository.name, bonded, service_fee, payout
        )
        return payout

    @atomic
    def stake_to_bond_single(self, amount: int, venue: str, route: Sequence[str], sender: str) -> int:
        """
        Bond ``amount`` of the rebase token at a single-asset venue.

        Args:
            amount: Requested amount (capped by liquidity and the venue's max size)
            venue: Allow-listed bond venue name
            route: Swap path from the rebase token to the venue's principle
            sender: Caller (manager)

        Returns:
            Payout reported by the venue
        """
        self._only_manager(sender)
        self._when_not_paused()
        if amount <= 0:
            raise ValidationError(AMOUNT_ZERO)
        validate_route_start(route, self.rebase_token)
        depository = self.bond_registry.get(venue)
        if depository is None or depository.is_liquidity_bond:
            raise ValidationError(UNAPPROVED_BOND)
        validate_route_end(route, depository.principle)
        self._check_bond_preconditions(venue)

        bond_amount = self._bondable(amount, venue)
        self._ensure_liquid(bond_amount)
        service_fee = self._stake_fee(bond_amount)
        bonded = bond_amount - service_fee
        principle_amount = self._swap(bonded, route)
        return self._open_bond(depository, principle_amount, bonded, service_fee)

    def stake_to_bond_single_all(self, venue: str, route: Sequence[str], sender: str) -> int:
        return self.stake_to_bond_single(
            self.total_rebasing() - self.reserves(), venue, route, sender=sender
        )

    @atomic
    def stake_to_bond_lp(
        self,
        amount: int,
        venue: str,
        route0: Sequence[str],
        route1: Sequence[str],
        sender: str,
    ) -> int:
        """
        Bond ``amount`` of the rebase token at a liquidity bond venue.

        Half of the post-fee amount is swapped along each route, the results are
        paired into the venue's pool, and any leftovers are swapped back and
        restaked.

        Returns:
            Payout reported by the venue
        """
        self._only_manager(sender)
        self._when_not_paused()
        if amount <= 0:
            raise ValidationError(AMOUNT_ZERO)
        validate_lp_route_starts(route0, route1, self.rebase_token)
        depository = self.bond_registry.get(venue)
        if depository is None or not depository.is_liquidity_bond:
            raise ValidationError(UNAPPROVED_BOND)
        pool = self.router.pool_for_lp(depository.principle)
        validate_lp_route_ends(route0, route1, pool.token0, pool.token1)
        self._check_bond_preconditions(venue)

        bond_amount = self._bondable(amount, venue)
        self._ensure_liquid(bond_amount)
        service_fee = self._stake_fee(bond_amount)
        bonded = bond_amount - service_fee

        half = bonded // 2
        token_a, token_b = route0[-1], route1[-1]
        amount_a = self._swap(half, route0)
        amount_b = self._swap(bonded - half, route1)
        used_a, used_b, liquidity = self.router.add_liquidity(
            token_a, token_b, amount_a, amount_b, 1, 1, self.address, sender=self.address
        )

        scrap = self._unwind_leftover(amount_a - used_a, route0)
        scrap += self._unwind_leftover(amount_b - used_b, route1)
        if scrap * 10000 > bonded * self.lp_scrap_tolerance_bps:
            logger.warning(
                "LP bond %s left %d of %d unpaired (tolerance %d bps)",
                venue, scrap, bonded, self.lp_scrap_tolerance_bps
            )
        self._stake_unstaked()
        return self._open_bond(depository, liquidity, bonded, service_fee)

    def stake_to_bond_lp_all(
        self, venue: str, route0: Sequence[str], route1: Sequence[str], sender: str
    ) -> int:
        return self.stake_to_bond_lp(
            self.total_rebasing() - self.reserves(), venue, route0, route1, sender=sender
        )

    def _unwind_leftover(self, leftover: int, route: Sequence[str]) -> int:
        """Swap an unpaired leftover back to the rebase token; returns its rebase value."""
        if leftover <= 0:
            return 0
        if len(route) < 2:
            return leftover
        back = list(reversed(route))
        if self.router.get_amounts_out(leftover, back)[-1] == 0:
            return 0
        return self._swap(leftover, back)

    # ------------------------------------------------------------------
    # Redemption

    def _redeem_vested(self, depository) -> tuple[int, bool]:
        """Redeem whatever is vested; returns (amount, was_final)."""
        outstanding = depository.bond_info(self.address).payout
        pending = depository.pending_payout_for(self.address)
        if pending == 0:
            return 0, False
        received = depository.redeem(self.address)
        return received, received >= outstanding

    def _finish_bond(self) -> Bonding:
        closed = self.lifecycle.close()
        expiry = self.staking.warmup_info(self.address).expiry
        period = self.reserve_queue.vest_current(expiry)
        if period is not None:
            logger.info(
                "Reserve period %d fully vested (%d reserved, warm-up expiry %d)",
                period.index, period.total_reserved, expiry
            )
        return closed

    def _gross_exposed_value(self, depository) -> int:
        """Everything the strategy holds or is owed, less reserves already vested."""
        vested_reserves = self.reserves() - self.reserve_queue.exposed()
        return (
            self.total_rebasing()
            + depository.bond_info(self.address).payout
            - vested_reserves
        )

    @atomic
    def redeem_and_stake(self, sender: str) -> int:
        """
        Redeem the vested bond payout, charge the service fee and restake the rest.

        A no-op when idle or when nothing has vested. Claimants of the open
        reserve period bear their pro-rata share of the fee. While paused the
        payout is redeemed without a fee and kept unstaked.

        Returns:
            Amount redeemed net of the service fee
        """
        if self.redeem_permission == "manager":
            self._only_manager(sender)
        if not self.lifecycle.is_bonding:
            return 0
        depository = self.bond_registry[self.lifecycle.current_bond]
        bonded_before = self.rebase_bonded()
        gross = self._gross_exposed_value(depository)
        received, final = self._redeem_vested(depository)
        if received == 0 and not final:
            return 0

        if self.paused:
            net = received
        else:
            service_fee = self._stake_fee(received)
            absorbed = self.reserve_queue.absorb_fee(service_fee, gross)
            if absorbed:
                logger.debug("Claimants absorbed %d of a %d service fee", absorbed, service_fee)
            net = received - service_fee
            self._claim_matured_warmup()
            if net > 0:
                self.staking.stake(net, self.address, sender=self.address)

        if final:
            closed = self._finish_bond()
            self._emit("RedeemFinal", net)
            logger.info(
                "Final redemption from %s: %d net (paused=%s)", closed.venue, net, self.paused
            )
        else:
            self._emit("Redeem", bonded_before, net)
        return net

    # ------------------------------------------------------------------
    # Reserve / claim

    def _pay_claim(self, depositor: str) -> int:
        self.reserve_queue.require_claimable(depositor, self.current_epoch_number())
        amount = self.reserve_queue.claim_of(depositor).amount
        self._ensure_liquid(amount)
        self.reserve_queue.settle(depositor)
        self.tokens.transfer(self.rebase_token, self.address, depositor, amount)
        self._emit("Claim", depositor, amount)
        logger.info("Paid claim of %d to %s", amount, depositor)
        return amount

    @atomic
    def reserve(self, amount: int, depositor: str, sender: str) -> int:
        """
        Register ``depositor``'s exit of ``amount`` (already valued by the vault).

        Idle: pays ``amount`` minus the withdrawal fee immediately.
        Bonding: queues it in the current reserve period, first settling and
        rolling over a period that has already vested.

        Returns:
            Amount paid (idle) or reserved (bonding), after the fee
        """
        self._only_vault(sender)
        if amount <= 0:
            raise ValidationError(AMOUNT_ZERO)
        withdrawal_fee = self.fees.withdrawal_fee_on(amount)
        net = amount - withdrawal_fee

        if not self.lifecycle.is_bonding:
            self._ensure_liquid(net)
            self.tokens.transfer(self.rebase_token, self.address, depositor, net)
            self._emit("Reserve", withdrawal_fee, net)
            return net

        queue = self.reserve_queue
        if queue.needs_new_period():
            for claimant in queue.claimants(queue.current_index):
                self._pay_claim(claimant)
            period = queue.open_period()
            logger.info("Opened reserve period %d", period.index)
        queue.register(depositor, net)
        self._emit("Reserve", withdrawal_fee, net)
        logger.info("Reserved %d for %s in period %d", net, depositor, queue.current_index)
        return net

    @atomic
    def claim(self, depositor: str, sender: str) -> int:
        """Pay ``depositor``'s vested claim; fails with "!fullyVested" otherwise."""
        self._only_vault(sender)
        return self._pay_claim(depositor)

    # ------------------------------------------------------------------
    # Deposits and liquid rebalancing

    @atomic
    def deposit(self, sender: str) -> None:
        self._only_vault(sender)
        self._when_not_paused()
        self._stake_unstaked()
        self._emit("Deposit", self.total_balance())

    @atomic
    def stake(self, sender: str) -> int:
        """Stake all unstaked funds; a no-op when there is nothing to stake."""
        self._only_manager(sender)
        self._when_not_paused()
        staked = self._stake_unstaked()
        if staked:
            self._emit("Stake", staked)
        return staked

    @atomic
    def claim_stake(self, sender: str) -> int:
        self._only_manager(sender)
        return self._claim_matured_warmup()

    @atomic
    def unstake(self, amount: int, sender: str) -> None:
        self._only_manager(sender)
        if amount <= 0:
            raise ValidationError(AMOUNT_ZERO)
        self._claim_matured_warmup()
        self.staking.unstake(amount, False, sender=self.address)
        self._emit("Unstake", self.staked_rebasing(), self.unstaked_rebasing(), self.warmup_balance())

    @atomic
    def unstake_all(self, sender: str) -> int:
        """Unstake everything staked; a no-op when nothing is staked."""
        self._only_manager(sender)
        self._claim_matured_warmup()
        amount = self.staked_rebasing()
        if amount == 0:
            return 0
        self.staking.unstake(amount, False, sender=self.address)
        self._emit("Unstake", self.staked_rebasing(), self.unstaked_rebasing(), self.warmup_balance())
        return amount

    # ------------------------------------------------------------------
    # Emergency controls

    @atomic
    def panic(self, sender: str) -> None:
        """
        Pull everything liquid out of staking and pause.

        Vested bond payout is redeemed (no fee, not restaked); the bond itself
        is left to vest. A second call while paused changes nothing.
        """
        self._only_manager(sender)
        if self.paused:
            return
        if self.lifecycle.is_bonding:
            depository = self.bond_registry[self.lifecycle.current_bond]
            received, final = self._redeem_vested(depository)
            if final:
                self._finish_bond()
                self._emit("RedeemFinal", received)
        self._claim_matured_warmup()
        staked = self.staked_rebasing()
        if staked:
            self.staking.unstake(staked, False, sender=self.address)
        self.paused = True
        self._emit("Paused", sender)
        logger.warning("Strategy paused by %s (bonding=%s)", sender, self.lifecycle.is_bonding)

    @atomic
    def pause(self, sender: str) -> None:
        self._only_owner(sender)
        self._when_not_paused()
        self.paused = True
        self._emit("Paused", sender)
        logger.info("Strategy paused by %s", sender)

    @atomic
    def unpause(self, sender: str) -> None:
        self._only_owner(sender)
        if not self.paused:
            raise PolicyError(NOT_PAUSED)
        self.paused = False
        self._emit("Unpaused", sender)
        self._stake_unstaked()
        logger.info("Strategy unpaused by %s", sender)

    # ------------------------------------------------------------------
    # Setters

    @atomic
    def set_service_fee(self, rate: int, sender: str) -> None:
        self._only_manager(sender)
        self.fees.set_service_fee(rate)
        self._emit("NewServiceFee", rate)

    @atomic
    def set_withdrawal_fee(self, rate: int, sender: str) -> None:
        self._only_manager(sender)
        self.fees.set_withdrawal_fee(rate)
        self._emit("NewWithdrawalFee", rate)

    @atomic
    def set_keeper(self, keeper: str, sender: str) -> None:
        self._only_owner(sender)
        self.keeper = keeper
        self._emit("NewKeeper", keeper)

    @atomic
    def set_unirouter(self, router, sender: str) -> None:
        self._only_owner(sender)
        self.router = router
        self._emit("NewUnirouter", router.name)

    @atomic
    def set_vault(self, vault: str, sender: str) -> None:
        self._only_owner(sender)
        self.vault = vault
        self._emit("NewVault", vault)

    @atomic
    def set_service_fee_recipient(self, recipient: str, sender: str) -> None:
        self._only_owner(sender)
        self.service_fee_recipient = recipient
        self._emit("NewServiceFeeRecipient", recipient)

    @atomic
    def set_min_deposit(self, min_deposit: int, sender: str) -> None:
        self._only_owner(sender)
        if min_deposit < 0:
            raise ValidationError(AMOUNT_ZERO)
        self.min_deposit = min_deposit
        self._emit("NewMinDeposit", min_deposit)

    @atomic
    def in_case_tokens_get_stuck(self, token: str, sender: str) -> int:
        """Send any token other than the managed pair to the owner."""
        self._only_owner(sender)
        if token in (self.rebase_token, self.staked_token):
            raise ValidationError(PROTECTED_TOKEN)
        amount = self.tokens.balance_of(token, self.address)
        if amount:
            self.tokens.transfer(token, self.address, self.owner, amount)
        return amount

    def bond_list(self) -> List[str]:
        return self.lifecycle.bond_list()
