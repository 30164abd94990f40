"""
PositionLedger - Position Ledger & Valuation Engine

Public API for tracking holdings inside portfolios and keeping their
valuation state consistent under buy/sell/dividend/split events.
"""

from importlib.metadata import version

try:
    __version__ = version("positionledger")
except Exception:
    __version__ = "0.0.0.dev"  # Fallback for development


__all__ = [
    "__version__",
]
