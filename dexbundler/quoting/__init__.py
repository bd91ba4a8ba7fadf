"""Quoting: per-dex sources behind one dispatcher."""

from dexbundler.quoting.aggregators import BalancerQuoteSource, OneInchQuoteSource
from dexbundler.quoting.quoter import PathQuoteSource, PathRebuilder, Quoter, apply_direct_fallback
from dexbundler.quoting.v4 import DirectV4QuoteSource, V4QuoteSource

__all__ = [
    "PathQuoteSource",
    "PathRebuilder",
    "Quoter",
    "apply_direct_fallback",
    "V4QuoteSource",
    "DirectV4QuoteSource",
    "BalancerQuoteSource",
    "OneInchQuoteSource",
]
