"""Token metadata."""

from __future__ import annotations

from dataclasses import dataclass

from dexbundler.models.types import normalize_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Token:
    """An ERC-20 token or the chain's native asset.

    The native asset is always represented by the all-zero address.
    """

    address: str
    decimals: int
    symbol: str
    is_native: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", normalize_address(self.address, validate=True))
        if self.is_native and self.address != ZERO_ADDRESS:
            raise ValueError(f"Native token must use the zero address, got {self.address}")
        if not 0 <= self.decimals <= 77:
            raise ValueError(f"Invalid decimals for {self.address}: {self.decimals}")

    @classmethod
    def native(cls, symbol: str = "ETH", decimals: int = 18) -> Token:
        return cls(ZERO_ADDRESS, decimals, symbol, is_native=True)

    def to_units(self, amount: int) -> str:
        """Format a base-unit amount as a decimal string (no rounding)."""
        if self.decimals == 0:
            return str(amount)
        whole, frac = divmod(amount, 10**self.decimals)
        frac_str = str(frac).rjust(self.decimals, "0").rstrip("0")
        return f"{whole}.{frac_str}" if frac_str else str(whole)


__all__ = ["Token", "ZERO_ADDRESS"]
