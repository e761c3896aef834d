"""
Configuration schema validation using Pydantic
"""

import re
from typing import Dict, List, Optional, Literal
from pydantic import BaseModel, Field, field_validator, model_validator
from pathlib import Path

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _check_address(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not _ADDRESS_RE.match(value):
        raise ValueError(f"Invalid address: {value}")
    return value


class AddressesConfig(BaseModel):
    """Protocol contract addresses"""

    token_converter_operator: str = Field(description="TokenConverterOperator")
    protocol_share_reserve: str = Field(description="ProtocolShareReserve")
    swap_router: Optional[str] = Field(
        default=None, description="Router the operator is expected to use"
    )
    unitroller: Optional[str] = None
    vbnb: Optional[str] = None
    vbnb_admin: Optional[str] = None
    venus_lens: Optional[str] = None
    pool_lens: Optional[str] = None
    pool_registry: Optional[str] = None
    multicall3: Optional[str] = None

    model_config = {"extra": "forbid"}

    @field_validator("*")
    @classmethod
    def validate_address(cls, v):
        return _check_address(v)


class SubgraphsConfig(BaseModel):
    """Subgraph endpoints"""

    protocol_reserve: str = Field(description="Protocol reserve subgraph URL")
    core_pool: Optional[str] = None
    isolated_pools: Optional[str] = None
    api_key_env: Optional[str] = Field(
        default=None, description="Environment variable holding a gateway API key"
    )
    timeout_seconds: float = Field(gt=0, le=120, default=15)

    model_config = {"extra": "forbid"}

    @field_validator("protocol_reserve", "core_pool", "isolated_pools")
    @classmethod
    def validate_url(cls, v):
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError(f"Subgraph URL must be http(s): {v}")
        return v


class RouteOptimizerConfig(BaseModel):
    """Quoter-backed route optimizer"""

    provider: Literal["pancakeswap", "uniswap"] = "pancakeswap"
    quoter: str = Field(description="QuoterV2 contract")
    factory: str = Field(description="V3 pool factory")
    fee_tiers: List[int] = Field(default_factory=lambda: [100, 500, 2500, 10000])
    intermediate_tokens: List[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @field_validator("quoter", "factory")
    @classmethod
    def validate_contract(cls, v):
        return _check_address(v)

    @field_validator("intermediate_tokens")
    @classmethod
    def validate_intermediates(cls, v):
        for token in v:
            _check_address(token)
        return v

    @field_validator("fee_tiers")
    @classmethod
    def validate_fee_tiers(cls, v):
        if not v:
            raise ValueError("fee_tiers cannot be empty")
        for fee in v:
            if fee <= 0 or fee >= 2**24:
                raise ValueError(f"Fee tier out of uint24 range: {fee}")
        return v


class NegotiationConfig(BaseModel):
    """Price impact mitigation"""

    price_impact_threshold_pct: float = Field(gt=0, le=100, default=5.0)
    max_retries: int = Field(ge=0, le=50, default=5)
    min_amount: int = Field(ge=1, default=1)

    model_config = {"extra": "forbid"}


class ExecutionSection(BaseModel):
    """Transaction execution"""

    dry_run: bool = True
    deadline_grace_seconds: int = Field(ge=1, le=3600, default=60)
    confirmations: Optional[int] = Field(ge=0, le=64, default=None)
    receipt_timeout_seconds: float = Field(gt=0, le=3600, default=180)
    rpc_timeout_seconds: float = Field(gt=0, le=300, default=30)

    model_config = {"extra": "forbid"}


class MarketConfig(BaseModel):
    """Market whose interest is accrued before discovery"""

    underlying: str
    vtoken: str

    model_config = {"extra": "forbid"}

    @field_validator("underlying", "vtoken")
    @classmethod
    def validate_market_address(cls, v):
        return _check_address(v)


class StrategySection(BaseModel):
    """Keeper run strategy"""

    release_funds: bool = False
    profitable_only: bool = True
    min_trade_usd: float = Field(ge=0, default=500)
    max_trade_usd: float = Field(gt=0, default=5000)
    min_income_bp: int = Field(ge=0, le=10000, default=50)
    concurrency: int = Field(ge=1, le=32, default=1)
    loop: bool = False
    poll_interval_seconds: float = Field(gt=0, default=60)
    accrue_interest: bool = True
    reduce_reserves: bool = True
    markets: List[MarketConfig] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def validate_trade_bounds(self):
        if self.min_trade_usd > self.max_trade_usd:
            raise ValueError(
                f"min_trade_usd ({self.min_trade_usd}) exceeds max_trade_usd ({self.max_trade_usd})"
            )
        return self


class MetricsSection(BaseModel):
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = Field(ge=1, le=65535, default=8000)

    model_config = {"extra": "forbid"}


class ObservabilitySection(BaseModel):
    """Logging and metrics"""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: Optional[str] = None
    verbose_events: bool = True
    metrics: MetricsSection = Field(default_factory=MetricsSection)

    model_config = {"extra": "forbid"}


class KeeperConfigModel(BaseModel):
    """Complete keeper configuration"""

    network: Literal["bscmainnet", "bsctestnet", "ethereum", "sepolia"]
    rpc_url_env: Optional[str] = Field(
        default=None, description="Defaults to RPC_<NETWORK>"
    )
    private_key_env: str = "PRIVATE_KEY"
    addresses: AddressesConfig
    subgraphs: SubgraphsConfig
    route_optimizer: RouteOptimizerConfig
    negotiation: NegotiationConfig = Field(default_factory=NegotiationConfig)
    execution: ExecutionSection = Field(default_factory=ExecutionSection)
    strategy: StrategySection = Field(default_factory=StrategySection)
    observability: ObservabilitySection = Field(default_factory=ObservabilitySection)

    model_config = {"extra": "forbid", "validate_assignment": True}

    @model_validator(mode="after")
    def validate_network_addresses(self):
        if self.network in ("bscmainnet", "bsctestnet"):
            if self.strategy.reduce_reserves and not (
                self.addresses.vbnb and self.addresses.vbnb_admin
            ):
                raise ValueError(
                    "reduce_reserves on BSC requires addresses.vbnb and addresses.vbnb_admin"
                )
        if self.strategy.release_funds and not (
            self.subgraphs.core_pool or self.subgraphs.isolated_pools
        ):
            raise ValueError(
                "release_funds requires a core_pool or isolated_pools subgraph"
            )
        return self


def validate_keeper_config(config_dict: Dict) -> KeeperConfigModel:
    """Validate a keeper configuration dictionary"""
    return KeeperConfigModel(**config_dict)


def validate_config_file(config_path: Path) -> KeeperConfigModel:
    """Validate a configuration file"""
    import yaml

    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f)

    return validate_keeper_config(config_dict)
