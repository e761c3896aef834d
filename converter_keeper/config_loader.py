"""
Configuration loading and normalization for the converter keeper.

The YAML file is validated against the pydantic schema, secrets are resolved
from the environment once, and the result is frozen into a KeeperConfig that
is passed explicitly to every component.
"""

import os
import yaml
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from .config_schema import KeeperConfigModel, validate_keeper_config
from .constants import (
    CHAIN_IDS,
    CONFIRMATIONS,
    CORE_POOL_NETWORKS,
    MULTICALL3_ADDRESS,
    LiquidityProvider,
    Network,
)
from .exceptions import ConfigurationError, ValidationError
from .types import MarketAddresses
from .utils import deep_merge


@dataclass(frozen=True)
class ContractAddresses:
    """Normalized protocol contract addresses."""

    token_converter_operator: str
    protocol_share_reserve: str
    swap_router: Optional[str] = None
    unitroller: Optional[str] = None
    vbnb: Optional[str] = None
    vbnb_admin: Optional[str] = None
    venus_lens: Optional[str] = None
    pool_lens: Optional[str] = None
    pool_registry: Optional[str] = None
    multicall3: str = MULTICALL3_ADDRESS


@dataclass(frozen=True)
class SubgraphEndpoints:
    """Normalized subgraph endpoints."""

    protocol_reserve: str
    core_pool: Optional[str] = None
    isolated_pools: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class RouteOptimizerSettings:
    """Normalized route optimizer configuration."""

    provider: LiquidityProvider
    quoter: str
    factory: str
    fee_tiers: tuple = (100, 500, 2500, 10000)
    intermediate_tokens: tuple = ()


@dataclass(frozen=True)
class NegotiationSettings:
    """Normalized price impact mitigation settings."""

    price_impact_threshold_pct: float = 5.0
    max_retries: int = 5
    min_amount: int = 1

    @property
    def price_impact_threshold(self) -> Fraction:
        """Threshold as an exact ratio, 5.0 -> 1/20."""
        return Fraction(str(self.price_impact_threshold_pct)) / 100


@dataclass(frozen=True)
class ExecutionSettings:
    """Normalized execution settings."""

    dry_run: bool = True
    deadline_grace_seconds: int = 60
    confirmations: Optional[int] = None
    receipt_timeout_seconds: float = 180.0
    rpc_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class StrategySettings:
    """Normalized keeper run strategy."""

    release_funds: bool = False
    profitable_only: bool = True
    min_trade_usd: float = 500.0
    max_trade_usd: float = 5000.0
    min_income_bp: int = 50
    concurrency: int = 1
    loop: bool = False
    poll_interval_seconds: float = 60.0
    accrue_interest: bool = True
    reduce_reserves: bool = True
    markets: tuple = ()


@dataclass(frozen=True)
class ObservabilitySettings:
    """Normalized logging and metrics settings."""

    log_level: str = "INFO"
    log_file: Optional[str] = None
    verbose_events: bool = True
    metrics_enabled: bool = False
    metrics_host: str = "127.0.0.1"
    metrics_port: int = 8000


@dataclass(frozen=True)
class KeeperConfig:
    """Immutable runtime configuration shared by all keeper components."""

    network: Network
    rpc_url: str
    private_key: str = field(repr=False)
    addresses: ContractAddresses
    subgraphs: SubgraphEndpoints
    route_optimizer: RouteOptimizerSettings
    negotiation: NegotiationSettings = field(default_factory=NegotiationSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    strategy: StrategySettings = field(default_factory=StrategySettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)

    @property
    def chain_id(self) -> int:
        return CHAIN_IDS[self.network]

    @property
    def confirmations(self) -> int:
        """Confirmations awaited for approvals and conversions."""
        if self.execution.confirmations is not None:
            return self.execution.confirmations
        return CONFIRMATIONS[self.network]

    @property
    def uses_venus_lens(self) -> bool:
        return self.network in CORE_POOL_NETWORKS

    @property
    def dry_run(self) -> bool:
        return self.execution.dry_run


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}")

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    return config_dict


def _require_env(env: Mapping[str, str], name: str, purpose: str) -> str:
    value = env.get(name)
    if not value:
        raise ConfigurationError(
            f"Missing environment variable {name} ({purpose})",
            details={"variable": name},
        )
    return value


def build_keeper_config(
    model: KeeperConfigModel, env: Mapping[str, str]
) -> KeeperConfig:
    """
    Freeze a validated config model, resolving secrets from ``env``.

    Args:
        model: Validated configuration
        env: Environment mapping holding the RPC URL and private key

    Returns:
        Frozen keeper configuration

    Raises:
        ConfigurationError: If a required secret is missing
    """
    network = Network(model.network)
    rpc_env = model.rpc_url_env or f"RPC_{network.value.upper()}"
    rpc_url = _require_env(env, rpc_env, "RPC endpoint")
    private_key = _require_env(env, model.private_key_env, "keeper private key")

    api_key = None
    if model.subgraphs.api_key_env:
        api_key = env.get(model.subgraphs.api_key_env) or None

    addresses = model.addresses
    optimizer = model.route_optimizer
    strategy = model.strategy
    observability = model.observability

    return KeeperConfig(
        network=network,
        rpc_url=rpc_url,
        private_key=private_key,
        addresses=ContractAddresses(
            token_converter_operator=addresses.token_converter_operator,
            protocol_share_reserve=addresses.protocol_share_reserve,
            swap_router=addresses.swap_router,
            unitroller=addresses.unitroller,
            vbnb=addresses.vbnb,
            vbnb_admin=addresses.vbnb_admin,
            venus_lens=addresses.venus_lens,
            pool_lens=addresses.pool_lens,
            pool_registry=addresses.pool_registry,
            multicall3=addresses.multicall3 or MULTICALL3_ADDRESS,
        ),
        subgraphs=SubgraphEndpoints(
            protocol_reserve=model.subgraphs.protocol_reserve,
            core_pool=model.subgraphs.core_pool,
            isolated_pools=model.subgraphs.isolated_pools,
            api_key=api_key,
            timeout_seconds=model.subgraphs.timeout_seconds,
        ),
        route_optimizer=RouteOptimizerSettings(
            provider=(
                LiquidityProvider.PANCAKESWAP
                if optimizer.provider == "pancakeswap"
                else LiquidityProvider.UNISWAP
            ),
            quoter=optimizer.quoter,
            factory=optimizer.factory,
            fee_tiers=tuple(optimizer.fee_tiers),
            intermediate_tokens=tuple(optimizer.intermediate_tokens),
        ),
        negotiation=NegotiationSettings(
            price_impact_threshold_pct=model.negotiation.price_impact_threshold_pct,
            max_retries=model.negotiation.max_retries,
            min_amount=model.negotiation.min_amount,
        ),
        execution=ExecutionSettings(
            dry_run=model.execution.dry_run,
            deadline_grace_seconds=model.execution.deadline_grace_seconds,
            confirmations=model.execution.confirmations,
            receipt_timeout_seconds=model.execution.receipt_timeout_seconds,
            rpc_timeout_seconds=model.execution.rpc_timeout_seconds,
        ),
        strategy=StrategySettings(
            release_funds=strategy.release_funds,
            profitable_only=strategy.profitable_only,
            min_trade_usd=strategy.min_trade_usd,
            max_trade_usd=strategy.max_trade_usd,
            min_income_bp=strategy.min_income_bp,
            concurrency=strategy.concurrency,
            loop=strategy.loop,
            poll_interval_seconds=strategy.poll_interval_seconds,
            accrue_interest=strategy.accrue_interest,
            reduce_reserves=strategy.reduce_reserves,
            markets=tuple(
                MarketAddresses(
                    underlying_address=m.underlying, vtoken_address=m.vtoken
                )
                for m in strategy.markets
            ),
        ),
        observability=ObservabilitySettings(
            log_level=observability.log_level,
            log_file=observability.log_file,
            verbose_events=observability.verbose_events,
            metrics_enabled=observability.metrics.enabled,
            metrics_host=observability.metrics.host,
            metrics_port=observability.metrics.port,
        ),
    )


def load_keeper_config(
    config_path: Union[str, Path],
    overrides: Optional[Dict[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> KeeperConfig:
    """
    Load, validate and freeze a keeper configuration file.

    Args:
        config_path: Path to the YAML configuration file
        overrides: Nested values merged over the file (e.g. CLI flags)
        env: Environment mapping; defaults to the process environment after
            loading ``.env``

    Returns:
        Frozen keeper configuration

    Raises:
        ConfigurationError: If the file cannot be loaded or a secret is missing
        ValidationError: If the configuration fails schema validation
    """
    config_dict = load_yaml_config(config_path)
    if overrides:
        config_dict = deep_merge(config_dict, overrides)

    try:
        model = validate_keeper_config(config_dict)
    except PydanticValidationError as e:
        raise ValidationError(f"Configuration validation failed: {e}")

    if env is None:
        load_dotenv()
        env = os.environ

    return build_keeper_config(model, env)
