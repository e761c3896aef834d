"""
On-chain market registry and oracle valuation.

Reads the core pool (Unitroller) and isolated pools (PoolRegistry) to map
comptrollers to their markets, and prices underlying amounts through the
VenusLens (BSC core pool) or PoolLens oracle view.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .chain.abis import COMPTROLLER_ABI, ERC20_ABI, LENS_ABI, POOL_REGISTRY_ABI, VTOKEN_ABI
from .chain.gateway import ChainGateway, ContractCall
from .config_loader import KeeperConfig
from .constants import ORACLE_PRICE_DECIMALS
from .types import MarketAddresses
from .utils import format_units, get_logger, same_address

logger = get_logger(__name__)

# (comptroller, markets)
PoolMarkets = Tuple[str, List[MarketAddresses]]


@dataclass(frozen=True)
class UsdValuation:
    """Oracle valuation of an underlying amount."""

    underlying_price_usd: Decimal
    usd_value: Decimal
    underlying_decimals: int


class MarketRegistry:
    """Comptroller/market lookups and oracle pricing for one network."""

    def __init__(self, config: KeeperConfig, gateway: ChainGateway):
        self.config = config
        self.gateway = gateway

    async def _with_underlying(self, vtokens: List[str]) -> List[MarketAddresses]:
        # vBNB-style native markets have no underlying() and are skipped
        results = await self.gateway.multicall(
            [
                ContractCall(v, VTOKEN_ABI, "underlying", allow_failure=True)
                for v in vtokens
            ]
        )
        return [
            MarketAddresses(underlying_address=r.value, vtoken_address=v)
            for v, r in zip(vtokens, results)
            if r.success
        ]

    async def core_markets(self) -> List[PoolMarkets]:
        unitroller = self.config.addresses.unitroller
        if not (self.config.uses_venus_lens and unitroller):
            return []
        vtokens = await self.gateway.read(
            ContractCall(unitroller, COMPTROLLER_ABI, "getAllMarkets")
        )
        return [(unitroller, await self._with_underlying(list(vtokens)))]

    async def isolated_markets(self) -> List[PoolMarkets]:
        registry = self.config.addresses.pool_registry
        if not registry:
            return []
        pools = await self.gateway.read(
            ContractCall(registry, POOL_REGISTRY_ABI, "getAllPools")
        )
        result = []
        for pool in pools:
            comptroller = pool[2]
            vtokens = await self.gateway.read(
                ContractCall(comptroller, COMPTROLLER_ABI, "getAllMarkets")
            )
            result.append((comptroller, await self._with_underlying(list(vtokens))))
        return result

    async def all_pools(self) -> List[PoolMarkets]:
        return await self.core_markets() + await self.isolated_markets()

    async def pools_for_assets(self, assets: Iterable[str]) -> Dict[str, List[str]]:
        """
        Group assets by the comptrollers that list them.

        Returns:
            {comptroller: [asset, ...]} with assets in first-seen order
        """
        assets = list(assets)
        grouped: Dict[str, List[str]] = {}
        for comptroller, markets in await self.all_pools():
            for asset in assets:
                listed = any(same_address(m.underlying_address, asset) for m in markets)
                already = any(same_address(a, asset) for a in grouped.get(comptroller, []))
                if listed and not already:
                    grouped.setdefault(comptroller, []).append(asset)
        return grouped

    def _lens_address(self) -> Optional[str]:
        if self.config.uses_venus_lens:
            return self.config.addresses.venus_lens
        return self.config.addresses.pool_lens

    async def usd_value(
        self, underlying: str, vtoken: str, amount: int
    ) -> UsdValuation:
        """
        Price ``amount`` of ``underlying`` through the oracle lens.

        The lens reports prices scaled to 36 - decimals, so amount * price
        carries 36 decimals. A missing price values the amount at zero.
        """
        lens = self._lens_address()
        calls = [ContractCall(underlying, ERC20_ABI, "decimals", allow_failure=True)]
        if lens:
            calls.append(
                ContractCall(lens, LENS_ABI, "vTokenUnderlyingPrice", (vtoken,), True)
            )
        results = await self.gateway.multicall(calls)

        decimals = results[0].value if results[0].success else 0
        price = 0
        if len(results) > 1 and results[1].success:
            price = results[1].value[1]

        usd_value = Decimal(0)
        price_usd = Decimal(0)
        if price and decimals:
            usd_value = Decimal(format_units(amount * price, ORACLE_PRICE_DECIMALS))
            price_usd = Decimal(format_units(price, ORACLE_PRICE_DECIMALS - decimals))
        else:
            logger.warning(f"No oracle price for {underlying} via {vtoken}")

        return UsdValuation(
            underlying_price_usd=price_usd,
            usd_value=usd_value,
            underlying_decimals=decimals,
        )
