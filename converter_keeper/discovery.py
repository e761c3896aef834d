"""
Market discovery: which converters currently hold a redeemable balance.
"""

from typing import Dict, List, Optional

from .chain.abis import ERC20_ABI, PROTOCOL_SHARE_RESERVE_ABI
from .chain.gateway import ChainGateway, ContractCall
from .config_loader import KeeperConfig
from .events import EventChannel, PotentialConversionsContext, PotentialConversionsEvent
from .exceptions import DiscoveryError, NetworkError
from .markets import MarketRegistry
from .subgraph import ConversionConfigIndex
from .types import (
    AssetBalance,
    BalanceResult,
    ConversionConfig,
    ConversionFilter,
    MarketVTokens,
)
from .utils import get_logger, unique_addresses

logger = get_logger(__name__)


class MarketDiscovery:
    """
    Resolve conversion configs and read their balances in one multicall.

    Args:
        config: Keeper configuration
        gateway: Chain gateway (the keeper wallet is the balance owner)
        index: Subgraph-backed config index
        markets: Market registry used to group release-funds calls by pool
        channel: Event channel receiving ``PotentialConversions``
    """

    def __init__(
        self,
        config: KeeperConfig,
        gateway: ChainGateway,
        index: ConversionConfigIndex,
        markets: MarketRegistry,
        channel: EventChannel,
    ):
        self.config = config
        self.gateway = gateway
        self.index = index
        self.markets = markets
        self.channel = channel
        self.last_block_number: Optional[int] = None

    async def _release_funds_calls(self, configs: List[ConversionConfig]) -> List[ContractCall]:
        assets = unique_addresses(c.asset_out.address for c in configs)
        pools = await self.markets.pools_for_assets(assets)
        return [
            ContractCall(
                self.config.addresses.protocol_share_reserve,
                PROTOCOL_SHARE_RESERVE_ABI,
                "releaseFunds",
                (comptroller, list(pool_assets)),
                allow_failure=True,
            )
            for comptroller, pool_assets in pools.items()
        ]

    def _balance_calls(self, configs: List[ConversionConfig]) -> List[ContractCall]:
        calls = []
        for config in configs:
            token = config.asset_out.address
            calls.append(ContractCall(token, ERC20_ABI, "balanceOf", (config.converter,)))
            calls.append(ContractCall(token, ERC20_ABI, "balanceOf", (self.gateway.address,)))
        return calls

    async def discover(
        self,
        conversion_filter: Optional[ConversionFilter] = None,
        release_funds: bool = False,
    ) -> List[BalanceResult]:
        """
        Discover conversions with a strictly positive converter balance.

        When ``release_funds`` is set the balance batch is prefixed with
        best-effort ``releaseFunds`` calls so balances include funds still
        held by the protocol share reserve.

        Returns:
            Opportunities in config index order

        Raises:
            DiscoveryError: If the index query or the batch read fails
            NetworkError: If the RPC endpoint is unreachable
        """
        conversion_filter = conversion_filter or ConversionFilter()
        block_number = None
        try:
            configs = await self.index.configs_for(conversion_filter)
            release_calls = []
            if release_funds and configs:
                release_calls = await self._release_funds_calls(configs)

            block_number = await self.gateway.block_number()
            results = await self.gateway.multicall(
                release_calls + self._balance_calls(configs),
                block_identifier=block_number,
            )
            balances = results[len(release_calls):]

            vtokens: Dict[str, MarketVTokens] = {}
            conversions = []
            for position, config in enumerate(configs):
                converter_balance = balances[2 * position].value
                account_balance = balances[2 * position + 1].value
                if converter_balance <= 0:
                    continue
                key = config.asset_out.address.lower()
                if key not in vtokens:
                    vtokens[key] = await self.index.vtokens_for_underlying(
                        config.asset_out.address
                    )
                conversions.append(
                    BalanceResult(
                        converter=config.converter,
                        asset_in=config.asset_in,
                        asset_out=AssetBalance.from_token(config.asset_out, converter_balance),
                        account_balance_asset_out=account_balance,
                        asset_out_vtokens=vtokens[key],
                    )
                )
        except NetworkError as e:
            self._publish_failure(str(e), block_number)
            raise
        except DiscoveryError as e:
            self._publish_failure(str(e), block_number)
            raise
        except Exception as e:
            self._publish_failure(str(e), block_number)
            raise DiscoveryError(
                f"Discovery failed: {e}", block_number=block_number
            ) from e

        self.last_block_number = block_number
        logger.info(
            f"🔎 {len(conversions)} of {len(configs)} conversions redeemable at block {block_number}"
        )
        self.channel.publish(
            PotentialConversionsEvent(
                context=PotentialConversionsContext(conversions=tuple(conversions)),
                block_number=block_number,
            )
        )
        return conversions

    def _publish_failure(self, error: str, block_number: Optional[int]):
        self.channel.publish(
            PotentialConversionsEvent(error=error, block_number=block_number)
        )
