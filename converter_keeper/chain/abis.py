"""
Minimal contract ABIs used by the keeper.
"""


def _fn(name, inputs=(), outputs=(), mutability="view"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


def _error(name, inputs=()):
    return {
        "type": "error",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
    }


ERC20_ABI = [
    _fn("balanceOf", [("account", "address")], [("", "uint256")]),
    _fn("allowance", [("owner", "address"), ("spender", "address")], [("", "uint256")]),
    _fn(
        "approve",
        [("spender", "address"), ("amount", "uint256")],
        [("", "bool")],
        "nonpayable",
    ),
    _fn("decimals", outputs=[("", "uint8")]),
    _fn("symbol", outputs=[("", "string")]),
]

VTOKEN_ABI = [
    _fn("accrueInterest", outputs=[("", "uint256")], mutability="nonpayable"),
    _fn("totalReserves", outputs=[("", "uint256")]),
    _fn("getCash", outputs=[("", "uint256")]),
    _fn("underlying", outputs=[("", "address")]),
]

VBNB_ADMIN_ABI = [
    _fn("reduceReserves", [("reduceAmount", "uint256")], mutability="nonpayable"),
]

PROTOCOL_SHARE_RESERVE_ABI = [
    _fn(
        "releaseFunds",
        [("comptroller", "address"), ("assets", "address[]")],
        mutability="nonpayable",
    ),
]

TOKEN_CONVERTER_ABI = [
    _fn(
        "getUpdatedAmountIn",
        [
            ("amountOutMantissa", "uint256"),
            ("tokenAddressIn", "address"),
            ("tokenAddressOut", "address"),
        ],
        [("amountOutMantissa", "uint256"), ("amountInMantissa", "uint256")],
        "nonpayable",
    ),
]

_CONVERSION_PARAMETERS = {
    "name": "params",
    "type": "tuple",
    "components": [
        {"name": "liquidityProvider", "type": "uint8"},
        {"name": "beneficiary", "type": "address"},
        {"name": "tokenToReceiveFromConverter", "type": "address"},
        {"name": "amount", "type": "uint256"},
        {"name": "minIncome", "type": "int256"},
        {"name": "tokenToSendToConverter", "type": "address"},
        {"name": "converter", "type": "address"},
        {"name": "path", "type": "bytes"},
        {"name": "deadline", "type": "uint256"},
    ],
}

TOKEN_CONVERTER_OPERATOR_ABI = [
    _fn("SWAP_ROUTER", outputs=[("", "address")]),
    {
        "type": "function",
        "name": "convert",
        "stateMutability": "nonpayable",
        "inputs": [_CONVERSION_PARAMETERS],
        "outputs": [],
    },
    _error("ApproveFailed"),
    _error("DeadlinePassed", [("currentTimestamp", "uint256"), ("deadline", "uint256")]),
    _error("EmptySwap"),
    _error("InsufficientLiquidity", [("expected", "uint256"), ("actual", "uint256")]),
    _error("InvalidCallbackSender", [("expected", "address"), ("actual", "address")]),
    _error("InvalidSwapEnd", [("expected", "address"), ("actual", "address")]),
    _error("InvalidSwapStart", [("expected", "address"), ("actual", "address")]),
    _error("Overflow"),
    _error("Underflow"),
    _error("ZeroAddressNotAllowed"),
]

_PRICE_STRUCT = {
    "name": "",
    "type": "tuple",
    "components": [
        {"name": "vToken", "type": "address"},
        {"name": "underlyingPrice", "type": "uint256"},
    ],
}

# VenusLens and PoolLens share this signature
LENS_ABI = [
    {
        "type": "function",
        "name": "vTokenUnderlyingPrice",
        "stateMutability": "view",
        "inputs": [{"name": "vToken", "type": "address"}],
        "outputs": [_PRICE_STRUCT],
    },
]

MULTICALL3_ABI = [
    {
        "type": "function",
        "name": "aggregate3",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "calls",
                "type": "tuple[]",
                "components": [
                    {"name": "target", "type": "address"},
                    {"name": "allowFailure", "type": "bool"},
                    {"name": "callData", "type": "bytes"},
                ],
            }
        ],
        "outputs": [
            {
                "name": "returnData",
                "type": "tuple[]",
                "components": [
                    {"name": "success", "type": "bool"},
                    {"name": "returnData", "type": "bytes"},
                ],
            }
        ],
    },
]

QUOTER_V2_ABI = [
    _fn(
        "quoteExactInput",
        [("path", "bytes"), ("amountIn", "uint256")],
        [
            ("amountOut", "uint256"),
            ("sqrtPriceX96AfterList", "uint160[]"),
            ("initializedTicksCrossedList", "uint32[]"),
            ("gasEstimate", "uint256"),
        ],
        "nonpayable",
    ),
    _fn(
        "quoteExactOutput",
        [("path", "bytes"), ("amountOut", "uint256")],
        [
            ("amountIn", "uint256"),
            ("sqrtPriceX96AfterList", "uint160[]"),
            ("initializedTicksCrossedList", "uint32[]"),
            ("gasEstimate", "uint256"),
        ],
        "nonpayable",
    ),
]

V3_FACTORY_ABI = [
    _fn(
        "getPool",
        [("tokenA", "address"), ("tokenB", "address"), ("fee", "uint24")],
        [("", "address")],
    ),
]

# Only the leading slot0 word is decoded; the trailing fields differ
# between Uniswap and PancakeSwap pools
V3_POOL_ABI = [
    _fn("slot0", outputs=[("sqrtPriceX96", "uint160")]),
]

COMPTROLLER_ABI = [
    _fn("getAllMarkets", outputs=[("", "address[]")]),
]

POOL_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "getAllPools",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {
                "name": "",
                "type": "tuple[]",
                "components": [
                    {"name": "name", "type": "string"},
                    {"name": "creator", "type": "address"},
                    {"name": "comptroller", "type": "address"},
                    {"name": "blockPosted", "type": "uint256"},
                    {"name": "timestampPosted", "type": "uint256"},
                ],
            }
        ],
    },
]
