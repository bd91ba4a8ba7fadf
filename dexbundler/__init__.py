"""Multi-DEX routing and bundled execution engine."""

__version__ = "0.1.0"
