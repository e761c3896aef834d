"""Shared fixtures for converter keeper tests."""

import dataclasses
from unittest.mock import AsyncMock, Mock

import pytest

from converter_keeper.chain.gateway import BlockInfo, CallResult, TransactionReceipt
from converter_keeper.config_loader import (
    ContractAddresses,
    ExecutionSettings,
    KeeperConfig,
    NegotiationSettings,
    RouteOptimizerSettings,
    StrategySettings,
    SubgraphEndpoints,
)
from converter_keeper.constants import LiquidityProvider, Network
from converter_keeper.events import EventChannel
from converter_keeper.types import AssetBalance, BalanceResult, MarketVTokens, TokenInfo

OPERATOR = "0xa0EC2A2489D57CD8385A565F38168cC539586B07"
PROTOCOL_SHARE_RESERVE = "0xCa01D5A9A248a830E9D93231e791B1afFed7c446"
UNITROLLER = "0xfD36E2c2a6789Db23113685031d7F16329158384"
VBNB = "0xA07c5b74C9B40447a954e1466938b865b6BBea36"
VBNB_ADMIN = "0x9A7890534d9d91d473F28cB97962d176e2B65f1d"
VENUS_LENS = "0x1111111111111111111111111111111111111111"
ROUTER = "0x13f4EA83D0bd40E75C8222255bc855a974568Dd4"
QUOTER = "0xB048Bbc1Ee6b733FFfCFb9e9CeF7375518e25997"
FACTORY = "0x0BFbCF9fa4f9C56B0F40a671Ad40E0805A091865"

CONVERTER = "0xd5b9AE835F4C59272032B3B954417179573331E0"
OTHER_CONVERTER = "0x258f49254C758a0E37DAb148ADDAEA851F4b02a2"
WALLET = "0x4CCeBa2d7D2B4fdcE4304d3e09a1fea9fbEb1528"
STABLE_COMPTROLLER = "0x94c1495cD4c557f1560Cbd68EAB0d197e6291571"

XVS = "0xcF6BB5389c92Bdda8a3747Ddb454cB7a64626C63"
WBNB = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"
USDT = "0x55d398326f99059fF775485246999027B3197955"
USDC = "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d"
VUSDT = "0xfD5840Cd36d94D7229439859C0112a4185BC0255"
VUSDC = "0xecA88125a5ADbe82614ffC12D0DB554E2e2867C8"

TX_HASH = "0x" + "ab" * 32


def make_config(**sections) -> KeeperConfig:
    """Keeper config for BSC mainnet with per-section overrides."""
    base = KeeperConfig(
        network=Network.BSC_MAINNET,
        rpc_url="http://localhost:8545",
        private_key="0x" + "11" * 32,
        addresses=ContractAddresses(
            token_converter_operator=OPERATOR,
            protocol_share_reserve=PROTOCOL_SHARE_RESERVE,
            swap_router=ROUTER,
            unitroller=UNITROLLER,
            vbnb=VBNB,
            vbnb_admin=VBNB_ADMIN,
            venus_lens=VENUS_LENS,
        ),
        subgraphs=SubgraphEndpoints(protocol_reserve="https://subgraph.test/reserve"),
        route_optimizer=RouteOptimizerSettings(
            provider=LiquidityProvider.PANCAKESWAP,
            quoter=QUOTER,
            factory=FACTORY,
            intermediate_tokens=(WBNB,),
        ),
        negotiation=NegotiationSettings(),
        execution=ExecutionSettings(dry_run=False),
        strategy=StrategySettings(),
    )
    updates = {}
    for name, values in sections.items():
        updates[name] = dataclasses.replace(getattr(base, name), **values)
    return dataclasses.replace(base, **updates)


def make_balance_result(
    converter=CONVERTER,
    asset_in=XVS,
    asset_out=USDT,
    balance=10**21,
    account_balance=0,
    vtokens=None,
) -> BalanceResult:
    return BalanceResult(
        converter=converter,
        asset_in=TokenInfo(address=asset_in, symbol="IN", decimals=18),
        asset_out=AssetBalance(address=asset_out, symbol="OUT", decimals=18, balance=balance),
        account_balance_asset_out=account_balance,
        asset_out_vtokens=vtokens or MarketVTokens(core=VUSDT),
    )


def ok(value=None) -> CallResult:
    return CallResult(success=True, value=value)


def failed(error="reverted") -> CallResult:
    return CallResult(success=False, error=error)


@pytest.fixture
def keeper_config():
    return make_config()


@pytest.fixture
def dry_run_config():
    return make_config(execution={"dry_run": True})


@pytest.fixture
def channel():
    return EventChannel()


@pytest.fixture
def gateway():
    """Chain gateway double; every RPC is an AsyncMock."""
    gw = Mock()
    gw.address = WALLET
    gw.block_number = AsyncMock(return_value=1000)
    gw.get_block = AsyncMock(return_value=BlockInfo(number=1000, timestamp=1_700_000_000))
    gw.gas_price = AsyncMock(return_value=3 * 10**9)
    gw.read = AsyncMock()
    gw.simulate = AsyncMock()
    gw.multicall = AsyncMock(return_value=[])
    gw.estimate_gas = AsyncMock(return_value=250_000)
    gw.write = AsyncMock(return_value=TX_HASH)
    gw.wait_for_receipt = AsyncMock(
        return_value=TransactionReceipt(
            transaction_hash=TX_HASH, block_number=1004, status=1, gas_used=200_000
        )
    )
    return gw
