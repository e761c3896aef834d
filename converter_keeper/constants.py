"""
Constants and enums for the converter keeper.

Centralizes network tables, contract constants and negotiation defaults.
"""

from enum import Enum, IntEnum
from fractions import Fraction


class Network(Enum):
    """Supported networks."""

    BSC_MAINNET = "bscmainnet"
    BSC_TESTNET = "bsctestnet"
    ETHEREUM = "ethereum"
    SEPOLIA = "sepolia"


class LiquidityProvider(IntEnum):
    """Liquidity provider ids understood by the TokenConverterOperator."""

    UNISWAP = 0
    PANCAKESWAP = 1


class ConversionAccess(Enum):
    """Converter config access levels as indexed by the subgraph."""

    NONE = "NONE"
    ALL = "ALL"
    ONLY_FOR_CONVERTERS = "ONLY_FOR_CONVERTERS"
    ONLY_FOR_USERS = "ONLY_FOR_USERS"


# Access levels under which an external account may convert
USER_ACCESS = frozenset({ConversionAccess.ALL, ConversionAccess.ONLY_FOR_USERS})

CHAIN_IDS = {
    Network.BSC_MAINNET: 56,
    Network.BSC_TESTNET: 97,
    Network.ETHEREUM: 1,
    Network.SEPOLIA: 11155111,
}

# Block confirmations awaited for approvals and conversions
CONFIRMATIONS = {
    Network.BSC_MAINNET: 4,
    Network.BSC_TESTNET: 4,
    Network.ETHEREUM: 12,
    Network.SEPOLIA: 12,
}

# Networks whose core pool is priced through VenusLens rather than PoolLens
CORE_POOL_NETWORKS = frozenset({Network.BSC_MAINNET, Network.BSC_TESTNET})

MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

# Seconds after the latest block timestamp before a conversion reverts
DEADLINE_GRACE_SECONDS = 60

# Negotiation defaults
DEFAULT_PRICE_IMPACT_THRESHOLD_PCT = 5.0
IMPACT_BACKOFF_RATIO = Fraction(75, 100)
DEFAULT_MAX_IMPACT_RETRIES = 5
DEFAULT_MIN_CONVERSION_AMOUNT = 1

# Keeper defaults
DEFAULT_MIN_TRADE_USD = 500.0
DEFAULT_MAX_TRADE_USD = 5000.0
DEFAULT_MIN_INCOME_BP = 50
BASIS_POINTS = 10000

# Oracle prices carry 36 decimals minus the underlying decimals
ORACLE_PRICE_DECIMALS = 36

V3_FEE_TIERS = (100, 500, 2500, 10000)

# Subgraph pagination
SUBGRAPH_PAGE_SIZE = 1000

EVENT_ERROR_SEPARATOR = ","
