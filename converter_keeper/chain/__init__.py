"""
Chain access: contract calls, multicall batching, transactions and swap paths.
"""

from .gateway import (
    BlockInfo,
    CallResult,
    ChainGateway,
    ContractCall,
    TransactionReceipt,
    revert_reason,
)
from .path import decode_path, encode_exact_output_path, encode_path, validate_path

__all__ = [
    "BlockInfo",
    "CallResult",
    "ChainGateway",
    "ContractCall",
    "TransactionReceipt",
    "revert_reason",
    "decode_path",
    "encode_exact_output_path",
    "encode_path",
    "validate_path",
]
