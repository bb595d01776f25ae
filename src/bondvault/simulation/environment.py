"""Wire a complete single-process environment from a Config."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config.loader import load_config
from ..config.schema import Config
from ..engine.events import EventLog
from ..engine.fees import FeeSchedule
from ..engine.strategy import RebaseBondStrategy
from ..engine.vault import BondVault
from ..venues.bonds import BondDepository, BondingCalculator
from ..venues.chain import Chain
from ..venues.router import Router
from ..venues.staking import StakingVenue
from ..venues.tokens import TokenLedger, price_to_scaled, to_units

logger = logging.getLogger(__name__)

LIQUIDITY_PROVIDER = "liquidity_provider"


@dataclass
class Environment:
    """Every participant of one simulated deployment."""
    config: Config
    chain: Chain
    events: EventLog
    tokens: TokenLedger
    router: Router
    staking: StakingVenue
    calculator: BondingCalculator
    bonds: Dict[str, BondDepository]
    strategy: RebaseBondStrategy
    vault: BondVault
    depositors: List[str] = field(default_factory=list)

    @property
    def owner(self) -> str:
        return self.config.roles.owner

    @property
    def keeper(self) -> str:
        return self.config.roles.keeper

    def units(self, amount: float) -> int:
        return to_units(amount, self.config.tokens.decimals)

    def balance_of(self, account: str, token: Optional[str] = None) -> int:
        return self.tokens.balance_of(token or self.strategy.rebase_token, account)

    def advance_blocks(self, n: int) -> int:
        return self.chain.advance_blocks(n)

    def advance_epoch(self) -> int:
        """Advance one epoch of blocks and trigger the rebase."""
        self.chain.advance_blocks(self.staking.epoch().length)
        return self.staking.rebase()


def build_environment(config: Optional[Config] = None) -> Environment:
    """
    Build and fund an environment.

    Args:
        config: Configuration (defaults.yaml if None)

    Returns:
        Environment with pools seeded, bonds allow-listed and depositors funded
    """
    if config is None:
        config = load_config()
    decimals = config.tokens.decimals
    rebase = config.tokens.rebase_token
    roles = config.roles

    chain = Chain()
    events = EventLog(chain)
    tokens = TokenLedger(chain, decimals=decimals)

    tokens.mint(rebase, roles.owner, to_units(config.tokens.deployer_balance, decimals))
    tokens.mint(rebase, roles.whale, to_units(config.tokens.whale_balance, decimals))
    depositors = [f"depositor_{i + 1}" for i in range(config.simulation.num_depositors)]
    for depositor in depositors:
        tokens.mint(rebase, depositor, to_units(config.tokens.depositor_balance, decimals))

    router = Router(chain, tokens)
    for pool in config.pools:
        amount0 = to_units(pool.reserve0, decimals)
        amount1 = to_units(pool.reserve1, decimals)
        tokens.mint(pool.token0, LIQUIDITY_PROVIDER, amount0)
        tokens.mint(pool.token1, LIQUIDITY_PROVIDER, amount1)
        router.create_pool(pool.token0, pool.token1, amount0, amount1, LIQUIDITY_PROVIDER, pool.fee_bps)

    staking = StakingVenue(
        chain,
        tokens,
        rebase_token=rebase,
        staked_token=config.tokens.staked_token,
        epoch_length=config.staking.epoch_length_blocks,
        first_epoch_number=config.staking.first_epoch_number,
        warmup_period=config.staking.warmup_period,
        rebase_rate_ppm=config.staking.rebase_rate_ppm,
    )
    calculator = BondingCalculator(tokens, router, config.tokens.stable_token)

    bonds: Dict[str, BondDepository] = {}
    for venue in config.bonds:
        bonds[venue.name] = BondDepository(
            chain,
            tokens,
            name=venue.name,
            principle=venue.principle,
            rebase_token=rebase,
            bond_price_usd=price_to_scaled(venue.bond_price_usd),
            asset_price_usd=price_to_scaled(venue.asset_price_usd),
            vesting_blocks=venue.vesting_blocks,
            max_payout_thousandths=venue.max_payout_thousandths,
            max_debt=to_units(venue.max_debt, decimals),
            calculator=calculator if venue.kind == "lp" else None,
        )

    fees = FeeSchedule(
        service_fee=config.fees.service_fee,
        withdrawal_fee=config.fees.withdrawal_fee,
        service_fee_cap=config.fees.service_fee_cap,
        withdrawal_fee_cap=config.fees.withdrawal_fee_cap,
        service_fee_divisor=config.fees.divisor,
        withdrawal_fee_divisor=config.fees.divisor,
    )
    strategy = RebaseBondStrategy(
        chain,
        events,
        tokens,
        staking,
        router,
        bond_registry=bonds,
        rebase_token=rebase,
        staked_token=config.tokens.staked_token,
        usd_route=config.strategy.usd_route,
        fees=fees,
        owner=roles.owner,
        keeper=roles.keeper,
        service_fee_recipient=roles.service_fee_recipient,
        min_deposit=to_units(config.strategy.min_deposit, decimals),
        redeem_permission=roles.redeem_permission,
        swap_slippage_bps=config.strategy.swap_slippage_bps,
        lp_scrap_tolerance_bps=config.strategy.lp_scrap_tolerance_bps,
    )
    vault = BondVault(
        chain,
        events,
        tokens,
        strategy,
        share_token=config.vault.symbol,
        owner=roles.owner,
        cap=to_units(config.vault.cap, decimals),
        name=config.vault.name,
    )
    strategy.set_vault(vault.address, sender=roles.owner)
    for venue in config.bonds:
        strategy.add_bond(venue.name, sender=roles.owner)

    logger.debug("Built environment %s with %d bond venues", config.compute_hash(), len(bonds))
    return Environment(
        config=config,
        chain=chain,
        events=events,
        tokens=tokens,
        router=router,
        staking=staking,
        calculator=calculator,
        bonds=bonds,
        strategy=strategy,
        vault=vault,
        depositors=depositors,
    )
