"""polyarb: Polymarket arbitrage scanner with atomic multi-leg execution."""

__version__ = "0.1.0"
