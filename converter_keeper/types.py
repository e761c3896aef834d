"""
Core data types for converter discovery, negotiation and execution.
"""

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Optional

from .constants import ConversionAccess, LiquidityProvider


@dataclass(frozen=True)
class TokenInfo:
    """ERC-20 token descriptor."""

    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class AssetBalance:
    """Token descriptor plus a balance held by a converter."""

    address: str
    symbol: str
    decimals: int
    balance: int

    @classmethod
    def from_token(cls, token: TokenInfo, balance: int) -> "AssetBalance":
        return cls(
            address=token.address,
            symbol=token.symbol,
            decimals=token.decimals,
            balance=balance,
        )


@dataclass(frozen=True)
class MarketAddresses:
    """A lending market: underlying token and its vToken."""

    underlying_address: str
    vtoken_address: str


@dataclass(frozen=True)
class ConversionConfig:
    """
    A converter's willingness to trade asset_in for asset_out.

    Attributes:
        converter: Token converter contract
        asset_in: Token the converter accepts
        asset_out: Token the converter releases
        incentive: Conversion incentive mantissa (1e18 = 100%)
        access: Who may use this conversion
    """

    converter: str
    asset_in: TokenInfo
    asset_out: TokenInfo
    incentive: int = 0
    access: ConversionAccess = ConversionAccess.ALL


@dataclass(frozen=True)
class ConversionFilter:
    """Discovery filter. Unset fields match everything."""

    converter: Optional[str] = None
    asset_in: Optional[str] = None
    asset_out: Optional[str] = None


@dataclass(frozen=True)
class MarketVTokens:
    """vToken markets listing a converter's asset_out."""

    core: Optional[str] = None
    # (comptroller, vToken) pairs
    isolated: tuple = ()


@dataclass(frozen=True)
class BalanceResult:
    """
    One discovered conversion opportunity.

    Attributes:
        converter: Token converter holding the balance
        asset_in: Token the keeper sends to the converter
        asset_out: Token (and converter balance) the keeper receives
        account_balance_asset_out: Keeper wallet balance of asset_out
        asset_out_vtokens: Markets whose reserves feed this converter
    """

    converter: str
    asset_in: TokenInfo
    asset_out: AssetBalance
    account_balance_asset_out: int
    asset_out_vtokens: MarketVTokens = field(default_factory=MarketVTokens)


@dataclass(frozen=True)
class TokenAmount:
    """Exact token amount in the token's smallest unit."""

    address: str
    amount: Fraction


@dataclass(frozen=True)
class TradeRoute:
    """
    A negotiated swap plan.

    input_token is paid to the venue (received from the converter) and
    output_token is delivered by the venue (sent to the converter). path is
    the packed exact-output path, starting with output_token.
    """

    input_token: TokenAmount
    output_token: TokenAmount
    path: bytes


@dataclass(frozen=True)
class PreparedConversion:
    trade: TradeRoute
    amount: int
    min_income: int


@dataclass(frozen=True)
class ConvertArgs:
    """Arguments of TokenConverterOperator.convert, in ABI order."""

    liquidity_provider: LiquidityProvider
    beneficiary: str
    token_to_receive_from_converter: str
    amount: int
    min_income: int
    token_to_send_to_converter: str
    converter: str
    path: bytes
    deadline: int

    def as_tuple(self) -> tuple:
        return (
            int(self.liquidity_provider),
            self.beneficiary,
            self.token_to_receive_from_converter,
            self.amount,
            self.min_income,
            self.token_to_send_to_converter,
            self.converter,
            self.path,
            self.deadline,
        )
