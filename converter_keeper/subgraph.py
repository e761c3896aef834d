"""
Subgraph access: converter configurations and vToken markets.

The protocol-reserve subgraph indexes which converter accepts which
(tokenIn, tokenOut) pair; the core and isolated pool subgraphs map an
underlying token to the vToken markets listing it.
"""

import asyncio
from typing import Any, Dict, List, Optional

import requests
from web3 import Web3

from .config_loader import KeeperConfig
from .constants import SUBGRAPH_PAGE_SIZE, USER_ACCESS, ConversionAccess
from .exceptions import SubgraphError
from .types import ConversionConfig, ConversionFilter, MarketVTokens, TokenInfo
from .utils import get_logger

logger = get_logger(__name__)

TOKEN_CONVERTER_CONFIGS_QUERY = """
query TokenConverterConfigs($first: Int!, $skip: Int!, $where: TokenConverterConfig_filter) {
  tokenConverterConfigs(first: $first, skip: $skip, where: $where, orderBy: id) {
    id
    tokenConverter { id }
    tokenIn { address symbol decimals }
    tokenOut { address symbol decimals }
    incentive
    access
  }
}
"""

CORE_VTOKENS_FROM_UNDERLYING_QUERY = """
query CoreVTokensFromUnderlying($underlyingAddress: Bytes!) {
  markets(where: { underlyingAddress: $underlyingAddress }) {
    id
  }
}
"""

ISOLATED_VTOKENS_FROM_UNDERLYING_QUERY = """
query IsolatedVTokensFromUnderlying($underlyingAddress: Bytes!) {
  markets(where: { underlyingAddress: $underlyingAddress }) {
    id
    pool { id }
  }
}
"""


class SubgraphClient:
    """Minimal GraphQL-over-HTTP client for one subgraph endpoint."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def query(self, document: str, variables: Optional[Dict[str, Any]] = None) -> Dict:
        """
        Execute a GraphQL document and return its ``data`` object.

        Raises:
            SubgraphError: On transport failure, HTTP error or GraphQL errors
        """
        try:
            response = self.session.post(
                self.url,
                json={"query": document, "variables": variables or {}},
                headers=self.headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.HTTPError as e:
            raise SubgraphError(
                f"Subgraph request failed: {e}",
                endpoint=self.url,
                status_code=e.response.status_code if e.response is not None else None,
            )
        except (requests.RequestException, ValueError) as e:
            raise SubgraphError(f"Subgraph request failed: {e}", endpoint=self.url)

        if payload.get("errors"):
            messages = "; ".join(err.get("message", str(err)) for err in payload["errors"])
            raise SubgraphError(
                f"Subgraph query error: {messages}",
                endpoint=self.url,
                details={"errors": payload["errors"]},
            )
        return payload.get("data") or {}

    def query_all(
        self,
        document: str,
        field: str,
        variables: Optional[Dict[str, Any]] = None,
        page_size: int = SUBGRAPH_PAGE_SIZE,
    ) -> List[Dict]:
        """Follow first/skip pagination until a short page is returned."""
        rows: List[Dict] = []
        skip = 0
        while True:
            page_vars = dict(variables or {}, first=page_size, skip=skip)
            page = self.query(document, page_vars).get(field) or []
            rows.extend(page)
            if len(page) < page_size:
                return rows
            skip += page_size


def where_for_filter(conversion_filter: ConversionFilter) -> Dict[str, str]:
    """
    Translate a discovery filter into a subgraph ``where`` clause.

    Precedence: both assets (optionally narrowed to one converter) over
    asset_out over asset_in over converter; no filter selects everything.
    """
    converter = conversion_filter.converter
    asset_in = conversion_filter.asset_in
    asset_out = conversion_filter.asset_out

    if asset_in and asset_out:
        where = {"tokenIn": asset_in.lower(), "tokenOut": asset_out.lower()}
        if converter:
            where["tokenConverter"] = converter.lower()
        return where
    if asset_out:
        return {"tokenOut": asset_out.lower()}
    if asset_in:
        return {"tokenIn": asset_in.lower()}
    if converter:
        return {"tokenConverter": converter.lower()}
    return {}


def _token(raw: Dict) -> TokenInfo:
    return TokenInfo(
        address=Web3.to_checksum_address(raw["address"]),
        symbol=raw.get("symbol") or "",
        decimals=int(raw.get("decimals") or 0),
    )


def parse_config(raw: Dict) -> ConversionConfig:
    return ConversionConfig(
        converter=Web3.to_checksum_address(raw["tokenConverter"]["id"]),
        asset_in=_token(raw["tokenIn"]),
        asset_out=_token(raw["tokenOut"]),
        incentive=int(raw.get("incentive") or 0),
        access=ConversionAccess(raw.get("access") or "NONE"),
    )


class ConversionConfigIndex:
    """
    Async facade over the subgraphs used by discovery.

    Blocking HTTP calls run on a worker thread.
    """

    def __init__(
        self,
        protocol_reserve: SubgraphClient,
        core_pool: Optional[SubgraphClient] = None,
        isolated_pools: Optional[SubgraphClient] = None,
    ):
        self.protocol_reserve = protocol_reserve
        self.core_pool = core_pool
        self.isolated_pools = isolated_pools

    @classmethod
    def from_config(cls, config: KeeperConfig) -> "ConversionConfigIndex":
        endpoints = config.subgraphs

        def client(url):
            if not url:
                return None
            return SubgraphClient(
                url, api_key=endpoints.api_key, timeout=endpoints.timeout_seconds
            )

        return cls(
            protocol_reserve=client(endpoints.protocol_reserve),
            core_pool=client(endpoints.core_pool),
            isolated_pools=client(endpoints.isolated_pools),
        )

    async def configs_for(self, conversion_filter: ConversionFilter) -> List[ConversionConfig]:
        """Configurations matching ``conversion_filter`` that users may convert."""
        where = where_for_filter(conversion_filter)
        rows = await asyncio.to_thread(
            self.protocol_reserve.query_all,
            TOKEN_CONVERTER_CONFIGS_QUERY,
            "tokenConverterConfigs",
            {"where": where},
        )
        configs = [parse_config(row) for row in rows]
        usable = [c for c in configs if c.access in USER_ACCESS]
        logger.debug(
            f"Config index returned {len(configs)} configs for {where or 'all'}, "
            f"{len(usable)} open to users"
        )
        return usable

    async def vtokens_for_underlying(self, underlying: str) -> MarketVTokens:
        """Core (first match) and isolated (pool, vToken) markets for a token."""
        variables = {"underlyingAddress": underlying.lower()}
        core = None
        isolated = ()

        if self.core_pool is not None:
            data = await asyncio.to_thread(
                self.core_pool.query, CORE_VTOKENS_FROM_UNDERLYING_QUERY, variables
            )
            markets = data.get("markets") or []
            if markets:
                core = Web3.to_checksum_address(markets[0]["id"])

        if self.isolated_pools is not None:
            data = await asyncio.to_thread(
                self.isolated_pools.query, ISOLATED_VTOKENS_FROM_UNDERLYING_QUERY, variables
            )
            isolated = tuple(
                (
                    Web3.to_checksum_address(m["pool"]["id"]),
                    Web3.to_checksum_address(m["id"]),
                )
                for m in data.get("markets") or []
            )

        return MarketVTokens(core=core, isolated=isolated)
