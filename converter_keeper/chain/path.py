"""
Packed V3 swap path encoding.

A path is ``token(20) | fee(3) | token(20) | fee(3) | token(20) ...``. The
operator swaps exact-output, so the path it receives is the exact-input path
reversed: it starts with the token the converter receives and ends with the
token the converter releases.
"""

from typing import List, Sequence, Tuple

from web3 import Web3

from ..exceptions import PathValidationError
from ..utils import same_address

ADDRESS_SIZE = 20
FEE_SIZE = 3
HOP_SIZE = ADDRESS_SIZE + FEE_SIZE

# (token_in, fee, token_out)
Hop = Tuple[str, int, str]


def _address(raw: bytes) -> str:
    return Web3.to_checksum_address("0x" + raw.hex())


def _address_bytes(token: str) -> bytes:
    try:
        raw = bytes.fromhex(token.removeprefix("0x"))
    except ValueError:
        raise PathValidationError(f"Invalid token address: {token}")
    if len(raw) != ADDRESS_SIZE:
        raise PathValidationError(f"Invalid token address: {token}")
    return raw


def encode_path(tokens: Sequence[str], fees: Sequence[int]) -> bytes:
    """
    Pack tokens and fee tiers into a V3 path.

    Args:
        tokens: Token addresses in path order
        fees: Fee tiers between consecutive tokens (len(tokens) - 1)

    Returns:
        Packed path bytes
    """
    if len(tokens) < 2:
        raise PathValidationError("A path needs at least two tokens")
    if len(fees) != len(tokens) - 1:
        raise PathValidationError(
            f"Expected {len(tokens) - 1} fees for {len(tokens)} tokens, got {len(fees)}"
        )

    data = _address_bytes(tokens[0])
    for fee, token in zip(fees, tokens[1:]):
        if not 0 <= fee < 2 ** (8 * FEE_SIZE):
            raise PathValidationError(f"Fee tier out of range: {fee}")
        data += fee.to_bytes(FEE_SIZE, "big") + _address_bytes(token)
    return data


def decode_path(path: bytes) -> Tuple[List[str], List[int]]:
    """Unpack a V3 path into checksummed tokens and fee tiers."""
    if len(path) < ADDRESS_SIZE + HOP_SIZE or (len(path) - ADDRESS_SIZE) % HOP_SIZE:
        raise PathValidationError(f"Malformed path of {len(path)} bytes")

    tokens = [_address(path[:ADDRESS_SIZE])]
    fees = []
    offset = ADDRESS_SIZE
    while offset < len(path):
        fees.append(int.from_bytes(path[offset : offset + FEE_SIZE], "big"))
        offset += FEE_SIZE
        tokens.append(_address(path[offset : offset + ADDRESS_SIZE]))
        offset += ADDRESS_SIZE
    return tokens, fees


def encode_exact_output_path(hops: Sequence[Hop]) -> bytes:
    """
    Encode exact-input ordered hops as the reversed, exact-output path.

    ``[(A, 2500, B), (B, 500, C)]`` becomes ``C | 500 | B | 2500 | A``.
    """
    if not hops:
        raise PathValidationError("A route needs at least one hop")
    tokens = [hops[0][0]]
    fees = []
    for index, (token_in, fee, token_out) in enumerate(hops):
        if not same_address(token_in, tokens[-1]):
            raise PathValidationError(
                f"Hop {index} starts at {token_in}, expected {tokens[-1]}"
            )
        fees.append(fee)
        tokens.append(token_out)
    return encode_path(list(reversed(tokens)), list(reversed(fees)))


def validate_path(
    path: bytes, token_to_send_to_converter: str, token_to_receive_from_converter: str
) -> None:
    """
    Check the path endpoints against the conversion tokens.

    Mirrors the operator's InvalidSwapStart / InvalidSwapEnd checks so the
    mismatch is caught before any gas is spent.

    Raises:
        PathValidationError: If either endpoint does not match
    """
    tokens, _ = decode_path(path)
    if not same_address(tokens[0], token_to_send_to_converter):
        raise PathValidationError(
            f"InvalidSwapStart: path starts with {tokens[0]}, "
            f"expected {token_to_send_to_converter}",
            expected=token_to_send_to_converter,
            actual=tokens[0],
        )
    if not same_address(tokens[-1], token_to_receive_from_converter):
        raise PathValidationError(
            f"InvalidSwapEnd: path ends with {tokens[-1]}, "
            f"expected {token_to_receive_from_converter}",
            expected=token_to_receive_from_converter,
            actual=tokens[-1],
        )
