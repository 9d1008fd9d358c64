# flasharb/__init__.py
"""
Flash Loan Arbitrage Engine
Multi-venue route scanner with simulate-then-submit flash loan execution

Modules:
- config: Settings and environment
- pairs: Token, venue and route registry
- quote_engine: Multi-venue quotes
- arbitrage_scanner: Route evaluation and opportunity detection
- profit_calculator: Premium and slippage-buffered profit
- decision: Opportunity ranking
- flash_loan: Aave V3 reads and arbitrage contract call
- executor: Simulate-then-submit execution
- scheduler: Polling loop
- main: Entry point
"""

__version__ = "1.0.0"
__author__ = "flasharb"

# Core components
from flasharb.config import (
    MODE_SCAN,
    MODE_SIMULATE,
    MODE_EXECUTE,
    Settings,
    load_settings,
)

from flasharb.pairs import (
    TOKENS,
    VENUES,
    ROUTE_TABLE,
)

__all__ = [
    "MODE_SCAN",
    "MODE_SIMULATE",
    "MODE_EXECUTE",
    "Settings",
    "load_settings",
    "TOKENS",
    "VENUES",
    "ROUTE_TABLE",
]
