"""
Keeper orchestration: maintenance, discovery, negotiation and execution for
one network, run once or on a polling loop.
"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from .allowance import AllowanceGuard
from .chain.abis import TOKEN_CONVERTER_OPERATOR_ABI
from .chain.gateway import ChainGateway, ContractCall, revert_reason
from .config_loader import KeeperConfig
from .constants import BASIS_POINTS
from .discovery import MarketDiscovery
from .events import AccrueInterestEvent, EventChannel, ExecuteTradeContext, ExecuteTradeEvent
from .exceptions import ConfigurationError, DiscoveryError, NetworkError
from .executor import ConversionExecutor
from .maintenance import MaintenanceRoutines
from .markets import MarketRegistry
from .negotiator import TradeNegotiator
from .providers import QuoterRouteOptimizer, RouteOptimizer
from .subgraph import ConversionConfigIndex
from .types import BalanceResult, ConversionFilter, PreparedConversion
from .utils import format_duration, get_logger, same_address

logger = get_logger(__name__)

INSUFFICIENT_BALANCE = "Insufficient wallet balance to pay min income"
MIN_INCOME_TOO_HIGH = "Min income too high"
NOT_PROFITABLE = "Conversion is not profitable"


@dataclass
class CycleReport:
    """Outcome counts for one keeper cycle."""

    block_number: Optional[int] = None
    discovered: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0
    error: Optional[str] = None

    def count(self, outcome: str):
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1


def check_trade(
    result: BalanceResult,
    prepared: PreparedConversion,
    min_income_bp: int,
    profitable_only: bool,
) -> Optional[str]:
    """Reason to refuse a negotiated conversion, or None to execute it."""
    min_income = prepared.min_income
    if min_income < 0 and result.account_balance_asset_out < -min_income:
        return INSUFFICIENT_BALANCE
    if min_income < 0 and -min_income * BASIS_POINTS > prepared.amount * min_income_bp:
        return MIN_INCOME_TOO_HIGH
    if profitable_only and min_income <= 0:
        return NOT_PROFITABLE
    return None


def disjoint_batches(results: List[BalanceResult], size: int) -> List[List[BalanceResult]]:
    """
    Split opportunities into batches of at most ``size`` where no two
    entries of a batch share a token. Order is kept within the constraint.
    """
    pending = list(results)
    batches = []
    while pending:
        batch, tokens, rest = [], set(), []
        for result in pending:
            keys = {result.asset_in.address.lower(), result.asset_out.address.lower()}
            if len(batch) < size and not keys & tokens:
                batch.append(result)
                tokens |= keys
            else:
                rest.append(result)
        batches.append(batch)
        pending = rest
    return batches


class TokenConverterKeeper:
    """
    Wire the keeper components for one network and drive them.

    Args:
        config: Keeper configuration
        gateway: Chain gateway
        index: Conversion config index
        optimizer: Route optimizer
        channel: Event channel; a new one is created when omitted
    """

    def __init__(
        self,
        config: KeeperConfig,
        gateway: ChainGateway,
        index: ConversionConfigIndex,
        optimizer: RouteOptimizer,
        channel: Optional[EventChannel] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.channel = channel or EventChannel(verbose=config.observability.verbose_events)
        self.markets = MarketRegistry(config, gateway)
        self.discovery = MarketDiscovery(config, gateway, index, self.markets, self.channel)
        self.negotiator = TradeNegotiator(config, gateway, optimizer, self.channel)
        self.allowances = AllowanceGuard(config, gateway)
        self.executor = ConversionExecutor(config, gateway, self.allowances, self.channel)
        self.maintenance = MaintenanceRoutines(config, gateway, self.channel)

    @classmethod
    def from_config(
        cls, config: KeeperConfig, channel: Optional[EventChannel] = None
    ) -> "TokenConverterKeeper":
        gateway = ChainGateway(config)
        return cls(
            config,
            gateway,
            ConversionConfigIndex.from_config(config),
            QuoterRouteOptimizer(config, gateway),
            channel,
        )

    async def sanity_check(self):
        """
        Verify a price lens is configured and the operator swaps through
        the configured router.
        """
        lens_field = "venus_lens" if self.config.uses_venus_lens else "pool_lens"
        if getattr(self.config.addresses, lens_field) is None:
            raise ConfigurationError(
                f"addresses.{lens_field} is required to value conversions in USD",
                details={"network": self.config.network.value},
            )
        router = await self.gateway.read(
            ContractCall(
                self.config.addresses.token_converter_operator,
                TOKEN_CONVERTER_OPERATOR_ABI,
                "SWAP_ROUTER",
            )
        )
        expected = self.config.addresses.swap_router
        if expected is None:
            logger.info(f"Operator swap router is {router}")
            return
        if not same_address(router, expected):
            raise ConfigurationError(
                f"Operator swap router {router} does not match configured {expected}",
                details={"operator_router": router, "configured_router": expected},
            )
        logger.info(f"✅ Operator swap router {router} matches configuration")

    async def accrue_targets(self) -> List[str]:
        """vTokens to accrue: configured markets, else the core pool."""
        if self.config.strategy.markets:
            return [m.vtoken_address for m in self.config.strategy.markets]
        targets = []
        for _comptroller, markets in await self.markets.core_markets():
            targets.extend(m.vtoken_address for m in markets)
        return targets

    async def _accrue_interest(self):
        """Accrue interest; a failed market lookup is reported as the event error."""
        try:
            targets = await self.accrue_targets()
        except NetworkError:
            raise
        except Exception as e:
            reason = revert_reason(e) or str(e)
            logger.warning(f"Could not list markets to accrue: {reason}")
            self.channel.publish(AccrueInterestEvent(error=(reason,)))
            return
        if targets:
            await self.maintenance.accrue_interest(targets)

    async def _trade_amount(self, result: BalanceResult) -> Optional[int]:
        """Converter balance gated by USD value; None when below the minimum."""
        amount = result.asset_out.balance
        vtokens = result.asset_out_vtokens
        vtoken = vtokens.core or (vtokens.isolated[0][1] if vtokens.isolated else None)
        if vtoken is None:
            logger.warning(f"No market prices {result.asset_out.symbol}, skipping")
            return None

        valuation = await self.markets.usd_value(result.asset_out.address, vtoken, amount)
        strategy = self.config.strategy
        if valuation.usd_value < Decimal(str(strategy.min_trade_usd)):
            logger.info(
                f"{result.asset_out.symbol} on {result.converter} worth "
                f"${valuation.usd_value:.2f}, below ${strategy.min_trade_usd}"
            )
            return None
        if valuation.usd_value > Decimal(str(strategy.max_trade_usd)):
            capped = (
                Decimal(str(strategy.max_trade_usd))
                / valuation.underlying_price_usd
                * (Decimal(10) ** valuation.underlying_decimals)
            )
            amount = min(amount, int(capped))
            logger.info(
                f"Capping {result.asset_out.symbol} at ${strategy.max_trade_usd}: {amount}"
            )
        return amount

    async def process_opportunity(self, result: BalanceResult) -> str:
        """
        Negotiate and execute one conversion.

        Returns:
            One of "skipped", "no-trade", "rejected", "failed", "executed"
        """
        amount = await self._trade_amount(result)
        if amount is None:
            return "skipped"

        prepared = await self.negotiator.prepare_conversion(
            result.converter, result.asset_out.address, result.asset_in.address, amount
        )
        if prepared is None:
            return "no-trade"

        strategy = self.config.strategy
        error = check_trade(result, prepared, strategy.min_income_bp, strategy.profitable_only)
        self.channel.publish(
            ExecuteTradeEvent(
                error=error,
                context=ExecuteTradeContext(
                    converter=result.converter,
                    token_to_receive_from_converter=result.asset_out.address,
                    token_to_send_to_converter=result.asset_in.address,
                    amount=prepared.amount,
                    min_income=prepared.min_income,
                ),
            )
        )
        if error:
            return "rejected"

        event = await self.executor.arbitrage(
            result.converter, prepared.trade, prepared.amount, prepared.min_income
        )
        return "failed" if event.failed else "executed"

    async def _process_safely(self, result: BalanceResult) -> str:
        try:
            return await self.process_opportunity(result)
        except NetworkError:
            raise
        except Exception as e:
            logger.exception(
                f"Opportunity {result.converter} {result.asset_out.symbol} "
                f"-> {result.asset_in.symbol} failed: {e}"
            )
            return "error"

    async def run_cycle(
        self, conversion_filter: Optional[ConversionFilter] = None
    ) -> CycleReport:
        """
        One pass: maintenance, discovery, optional release, conversions.

        A discovery failure ends the cycle with ``report.error`` set;
        network failures propagate.
        """
        start = time.time()
        report = CycleReport()
        strategy = self.config.strategy

        if strategy.accrue_interest:
            await self._accrue_interest()
        if strategy.reduce_reserves:
            await self.maintenance.reduce_reserves()

        try:
            results = await self.discovery.discover(
                conversion_filter, release_funds=strategy.release_funds
            )
        except DiscoveryError as e:
            logger.error(f"Discovery failed, skipping cycle: {e}")
            report.error = str(e)
            report.duration_seconds = time.time() - start
            return report

        report.discovered = len(results)
        report.block_number = self.discovery.last_block_number

        if strategy.release_funds and results:
            await self.maintenance.release_funds_for_conversions(results)

        for batch in disjoint_batches(results, max(1, strategy.concurrency)):
            outcomes = await asyncio.gather(*[self._process_safely(r) for r in batch])
            for outcome in outcomes:
                report.count(outcome)

        report.duration_seconds = time.time() - start
        logger.info(
            f"Cycle done in {format_duration(report.duration_seconds)}: "
            f"{report.discovered} discovered, {report.outcomes}"
        )
        return report

    async def run(
        self,
        conversion_filter: Optional[ConversionFilter] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> CycleReport:
        """
        Run one cycle, or keep cycling while ``strategy.loop`` is set until
        ``stop`` is set. Returns the last cycle's report.
        """
        while True:
            report = await self.run_cycle(conversion_filter)
            if not self.config.strategy.loop or (stop is not None and stop.is_set()):
                return report
            if stop is None:
                await asyncio.sleep(self.config.strategy.poll_interval_seconds)
                continue
            try:
                await asyncio.wait_for(
                    stop.wait(), timeout=self.config.strategy.poll_interval_seconds
                )
                return report
            except asyncio.TimeoutError:
                pass
