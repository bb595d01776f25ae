"""Pydantic schema for configuration validation."""

import hashlib
import json
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class Tokens(BaseModel):
    """Token symbols and starting balances (whole tokens)."""
    rebase_token: str = Field(default="SPA", description="Managed rebasing token")
    staked_token: str = Field(default="sSPA", description="Staked form of the rebasing token")
    stable_token: str = Field(default="DAI", description="USD-pegged token used for pricing")
    decimals: int = Field(default=9, ge=0, le=18, description="Decimals shared by all simulated tokens")
    deployer_balance: float = Field(ge=0, description="Rebase token held by the deployer")
    whale_balance: float = Field(ge=0, description="Rebase token held by the whale account")
    depositor_balance: float = Field(ge=0, description="Rebase token held by each simulated depositor")


class Fees(BaseModel):
    """Fee rates in basis points of the divisor."""
    divisor: int = Field(default=10000, gt=0, description="Fee divisor")
    service_fee: int = Field(ge=0, description="Service fee charged on bonding and redemption")
    service_fee_cap: int = Field(default=300, ge=0, description="Maximum service fee")
    withdrawal_fee: int = Field(ge=0, description="Fee retained on every payout to an exiting depositor")
    withdrawal_fee_cap: int = Field(default=100, ge=0, description="Maximum withdrawal fee")

    @model_validator(mode='after')
    def validate_caps(self):
        """Fees must sit at or under their caps."""
        if self.service_fee > self.service_fee_cap:
            raise ValueError(
                f"service_fee {self.service_fee} exceeds cap {self.service_fee_cap}"
            )
        if self.withdrawal_fee > self.withdrawal_fee_cap:
            raise ValueError(
                f"withdrawal_fee {self.withdrawal_fee} exceeds cap {self.withdrawal_fee_cap}"
            )
        if self.service_fee_cap > self.divisor or self.withdrawal_fee_cap > self.divisor:
            raise ValueError("Fee caps cannot exceed the divisor")
        return self


class Roles(BaseModel):
    """Account names for privileged roles."""
    owner: str = Field(default="deployer", description="Strategy and vault owner")
    keeper: str = Field(default="keeper", description="Keeper (manager without owner rights)")
    service_fee_recipient: str = Field(default="dev", description="Receives service fees")
    whale: str = Field(default="whale", description="Large outside account used by scenarios")
    redeem_permission: Literal["manager", "public"] = Field(
        default="manager",
        description="Who may call redeem_and_stake"
    )


class StrategyParams(BaseModel):
    """Strategy behaviour parameters."""
    usd_route: List[str] = Field(description="Swap route used to price the rebase token in USD")
    min_deposit: float = Field(ge=0, description="Minimum vault deposit (whole tokens)")
    swap_slippage_bps: int = Field(default=50, ge=0, le=10000, description="Tolerated slippage on swaps")
    lp_scrap_tolerance_bps: int = Field(
        default=50, ge=0, le=10000,
        description="Leftover value after LP bonding, relative to the bonded amount, before a warning is logged"
    )

    @field_validator('usd_route')
    @classmethod
    def validate_usd_route(cls, v):
        """USD route needs at least one hop."""
        if len(v) < 2:
            raise ValueError("usd_route must contain at least two tokens")
        return v


class Staking(BaseModel):
    """Rebasing staking venue parameters."""
    epoch_length_blocks: int = Field(gt=0, description="Blocks per rebase epoch")
    warmup_period: int = Field(ge=0, description="Epochs a new stake waits before it can be claimed")
    rebase_rate_ppm: int = Field(ge=0, le=1_000_000, description="Staked growth per epoch in parts per million")
    first_epoch_number: int = Field(default=1, ge=0, description="Epoch number at genesis")


class Pool(BaseModel):
    """Constant-product liquidity pool seeded at genesis."""
    token0: str
    token1: str
    reserve0: float = Field(gt=0, description="Initial token0 reserve (whole tokens)")
    reserve1: float = Field(gt=0, description="Initial token1 reserve (whole tokens)")
    fee_bps: int = Field(default=20, ge=0, lt=10000, description="Swap fee")

    @model_validator(mode='after')
    def validate_distinct(self):
        """A pool pairs two different tokens."""
        if self.token0 == self.token1:
            raise ValueError(f"Pool tokens must differ, got {self.token0}/{self.token1}")
        return self


class BondVenue(BaseModel):
    """Bond depository parameters."""
    name: str = Field(description="Venue identifier")
    kind: Literal["single", "lp"] = Field(default="single", description="Single-asset or liquidity bond")
    principle: str = Field(description="Principle token (LP bonds: 'TOKEN0-TOKEN1 LP')")
    asset_price_usd: float = Field(default=1.0, gt=0, description="USD price of one principle token (single bonds)")
    bond_price_usd: float = Field(gt=0, description="USD price of one rebase token bought through this bond")
    vesting_blocks: int = Field(gt=0, description="Blocks for the payout to vest linearly")
    max_payout_thousandths: int = Field(
        gt=0, le=100_000,
        description="Max payout per bond in thousandths of a percent of rebase token supply"
    )
    max_debt: float = Field(gt=0, description="Max outstanding payout across depositors (whole tokens)")


class Vault(BaseModel):
    """Outer vault parameters."""
    name: str = Field(default="Minimum Spartacus")
    symbol: str = Field(default="minSPA")
    cap: float = Field(gt=0, description="Maximum vault balance (whole tokens)")


class Simulation(BaseModel):
    """Lifecycle simulation parameters."""
    random_seed: int = Field(description="Random seed for reproducibility")
    num_depositors: int = Field(default=5, ge=0, description="Simulated depositors")
    bond_cycles: int = Field(default=3, gt=0, description="Bond cycles to run")
    deposit_fraction_mean: float = Field(
        default=0.5, gt=0, le=1,
        description="Mean fraction of a depositor's wallet deposited at the start"
    )
    reserve_probability: float = Field(
        default=0.1, ge=0, le=1,
        description="Chance per epoch that a depositor reserves part of their shares"
    )
    max_epochs_per_cycle: int = Field(default=50, gt=0, description="Safety bound on epochs per cycle")


class Config(BaseModel):
    """Complete configuration for the bond vault workbench."""
    tokens: Tokens
    fees: Fees
    roles: Roles = Field(default_factory=Roles)
    strategy: StrategyParams
    staking: Staking
    pools: List[Pool]
    bonds: List[BondVenue]
    vault: Vault
    simulation: Simulation

    @model_validator(mode='after')
    def validate_references(self):
        """Bond venues must be uniquely named."""
        names = [bond.name for bond in self.bonds]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate bond venue names: {names}")
        return self

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_dict = self.model_dump()
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create config from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump()
