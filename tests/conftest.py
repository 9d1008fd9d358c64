"""
Shared fixtures: registry objects, settings and a table-driven quote engine
"""

import time

import pytest

from flasharb.arbitrage_scanner import Opportunity
from flasharb.config import Settings
from flasharb.pairs import (
    TOKENS, VENUES, USDC, USDT, WETH, WMATIC, DAI,
    Route,
)
from flasharb.profit_calculator import calculate_profit
from flasharb.quote_engine import Quote

ARB_CONTRACT = "0x" + "11" * 20


@pytest.fixture
def usdc():
    return TOKENS[USDC]


@pytest.fixture
def usdt():
    return TOKENS[USDT]


@pytest.fixture
def weth():
    return TOKENS[WETH]


@pytest.fixture
def wmatic():
    return TOKENS[WMATIC]


@pytest.fixture
def dai():
    return TOKENS[DAI]


@pytest.fixture
def usdc_weth_route(usdc, weth):
    return Route(tokens=(usdc, weth, usdc), venues=(VENUES["uniswap_v3"], VENUES["quickswap"]))


@pytest.fixture
def settings(usdc_weth_route):
    return Settings(
        rpc_url="http://127.0.0.1:8545",
        private_key="0x" + "22" * 32,
        arb_contract=ARB_CONTRACT,
        routes=[usdc_weth_route],
        scan_reverse=False,
        retry_delay=0,
    )


class FakeQuoteEngine:
    """
    Answers from a {(venue, token_in_symbol, token_out_symbol): amount_out}
    table. Missing entries fail; entries in `stale` come back stale.
    """

    def __init__(self, table=None, stale=()):
        self.table = dict(table or {})
        self.stale = set(stale)
        self.calls = []

    def quote(self, venue, token_in, token_out, amount_in):
        key = (venue.name, token_in.symbol, token_out.symbol)
        self.calls.append((key, amount_in))
        amount_out = self.table.get(key, 0)
        if callable(amount_out):
            amount_out = amount_out(amount_in)
        return Quote(
            venue=venue.name,
            token_in=token_in.address,
            token_out=token_out.address,
            amount_in=amount_in,
            amount_out=amount_out,
            fee_tier=500 if venue.name == "uniswap_v3" else None,
            via=(token_in.address, token_out.address),
            stale=key in self.stale,
            error="" if amount_out else "no liquidity",
            timestamp=time.time(),
        )


@pytest.fixture
def fake_engine():
    return FakeQuoteEngine


@pytest.fixture
def make_opportunity(usdc_weth_route, usdc, weth):
    """Build an Opportunity on USDC → WETH → USDC without going through a scan"""
    counter = {"n": 0}

    def _make(amount_in=100_000_000, amount_out=103_500_000, stale=False, route=None, token=None):
        counter["n"] += 1
        route = route or usdc_weth_route
        token = token or route.start
        mid = route.tokens[1]
        quotes = [
            Quote(route.venues[0].name, token.address, mid.address, amount_in, 40_000_000_000_000_000,
                  fee_tier=500, via=(token.address, mid.address), stale=stale),
            Quote(route.venues[1].name, mid.address, token.address, 40_000_000_000_000_000, amount_out,
                  via=(mid.address, token.address)),
        ]
        profit = calculate_profit(amount_in, amount_out, 9, 200, token)
        return Opportunity(
            opportunity_id=f"ARB-test-{counter['n']}",
            route=route,
            amount_in=amount_in,
            quotes=quotes,
            amount_out=amount_out,
            profit=profit,
            stale=stale,
            detected_at=time.time(),
        )

    return _make
