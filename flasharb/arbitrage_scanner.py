# flasharb/arbitrage_scanner.py
"""
Multi-Hop Path Scanner
Walks each configured route hop by hop, feeding every hop's output into the
next, and turns profitable round trips into opportunities
"""

import itertools
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, List, Optional

from flasharb.pairs import Route, Token
from flasharb.profit_calculator import ProfitBreakdown, calculate_profit, format_amount
from flasharb.quote_engine import Quote, QuoteEngine

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

class PathStatus(Enum):
    OK = "ok"
    NO_LIQUIDITY = "no_liquidity"


@dataclass
class PathResult:
    """End-to-end evaluation of one route variant"""
    route: Route
    amount_in: int
    quotes: List[Quote] = field(default_factory=list)
    amount_out: int = 0
    status: PathStatus = PathStatus.OK
    failed_hop: Optional[int] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is PathStatus.OK

    @property
    def stale(self) -> bool:
        return any(q.stale for q in self.quotes)


@dataclass
class Opportunity:
    """A route whose output survives premium and slippage buffer"""
    opportunity_id: str
    route: Route
    amount_in: int
    quotes: List[Quote]
    amount_out: int
    profit: ProfitBreakdown
    stale: bool
    detected_at: float

    @property
    def token(self) -> Token:
        return self.route.start

    @property
    def net_profit_usd(self) -> Decimal:
        return self.profit.net_profit_usd

    @property
    def min_profit(self) -> int:
        """On-chain floor: output must reach the buffered repayment"""
        return self.profit.buffered_required - self.profit.required_repay

    @property
    def is_executable(self) -> bool:
        return not self.stale

    def as_dict(self) -> dict:
        return {
            "id": self.opportunity_id,
            "path": [t.symbol for t in self.route.tokens],
            "venues": [q.venue for q in self.quotes],
            "fee_tiers": [q.fee_tier for q in self.quotes],
            "amount_in": self.amount_in,
            "amount_out": self.amount_out,
            "buffered_required": self.profit.buffered_required,
            "net_profit": self.profit.net_profit,
            "net_profit_usd": str(self.net_profit_usd),
            "stale": self.stale,
        }


@dataclass
class ScanResult:
    """Result of one scan cycle across all route variants"""
    timestamp: float
    scan_duration_ms: float
    results: List[PathResult]
    opportunities: List[Opportunity]

    @property
    def routes_scanned(self) -> int:
        return len(self.results)

    @property
    def routes_failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


# =============================================================================
# PATH SCANNER
# =============================================================================

class PathScanner:
    """
    Evaluates routes through the quote engine. Route variants are fanned out
    on a thread pool (quote calls are read-only) and joined before any
    opportunity is produced.
    """

    def __init__(
        self,
        quote_engine: QuoteEngine,
        premium_bps: int,
        slippage_bps: int,
        min_profit_usd: Decimal,
        max_workers: int = 4,
        scan_reverse: bool = True,
    ):
        self.quote_engine = quote_engine
        self.premium_bps = premium_bps
        self.slippage_bps = slippage_bps
        self.min_profit_usd = min_profit_usd
        self.max_workers = max_workers
        self.scan_reverse = scan_reverse
        self._counter = itertools.count(1)

    @classmethod
    def from_settings(cls, quote_engine: QuoteEngine, settings) -> "PathScanner":
        return cls(
            quote_engine,
            premium_bps=settings.premium_bps,
            slippage_bps=settings.slippage_bps,
            min_profit_usd=settings.min_profit_usd,
            max_workers=settings.max_workers,
            scan_reverse=settings.scan_reverse,
        )

    def _generate_opportunity_id(self) -> str:
        return f"ARB-{int(time.time())}-{next(self._counter)}"

    def scan(self, route: Route, amount_in: int) -> PathResult:
        """Evaluate hops in order; the first failed hop ends the path"""
        result = PathResult(route=route, amount_in=amount_in)
        amount = amount_in

        for i, (token_in, token_out, venue) in enumerate(route.hops()):
            quote = self.quote_engine.quote(venue, token_in, token_out, amount)
            result.quotes.append(quote)

            if not quote.ok:
                result.status = PathStatus.NO_LIQUIDITY
                result.failed_hop = i
                result.reason = f"hop {i + 1} ({venue.name} {token_in.symbol} → {token_out.symbol}): {quote.error}"
                logger.debug(f"❌ {route.label}: {result.reason}")
                return result

            amount = quote.amount_out

        result.amount_out = amount
        return result

    def variants(self, routes: Iterable[Route]) -> List[Route]:
        """Each route plus its reversed-venue variant, without duplicates"""
        seen = set()
        out = []
        for route in routes:
            candidates = [route]
            if self.scan_reverse:
                candidates.append(route.reversed_venues())
            for candidate in candidates:
                if candidate in seen:
                    continue
                seen.add(candidate)
                out.append(candidate)
        return out

    def scan_all(
        self,
        routes: Iterable[Route],
        amount_for: Callable[[Token], int],
    ) -> List[PathResult]:
        """
        Fan out every route variant and wait for all of them. Results keep
        the variant order so reports are stable between cycles.
        """
        variants = self.variants(routes)
        if not variants:
            return []

        with ThreadPoolExecutor(max_workers=max(1, self.max_workers), thread_name_prefix="scan") as executor:
            futures = [
                executor.submit(self.scan, route, amount_for(route.start))
                for route in variants
            ]
            results = []
            for route, future in zip(variants, futures):
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Error scanning {route.label}: {e}")
                    results.append(
                        PathResult(
                            route=route,
                            amount_in=0,
                            status=PathStatus.NO_LIQUIDITY,
                            reason=f"scan error: {e}",
                        )
                    )
        return results

    def evaluate(self, result: PathResult) -> Optional[Opportunity]:
        """Apply the profit model; only strictly profitable, above-threshold routes survive"""
        if not result.ok or not result.route.is_closed:
            return None

        token = result.route.start
        profit = calculate_profit(
            amount_in=result.amount_in,
            amount_out=result.amount_out,
            premium_bps=self.premium_bps,
            slippage_bps=self.slippage_bps,
            token=token,
        )

        logger.debug(
            f"{result.route.label}: in {format_amount(result.amount_in, token)} "
            f"out {format_amount(result.amount_out, token)} "
            f"required {format_amount(profit.buffered_required, token)} {token.symbol} "
            f"profit ${profit.net_profit_usd:.4f}"
        )

        if not profit.is_profitable or profit.net_profit_usd < self.min_profit_usd:
            return None

        return Opportunity(
            opportunity_id=self._generate_opportunity_id(),
            route=result.route,
            amount_in=result.amount_in,
            quotes=list(result.quotes),
            amount_out=result.amount_out,
            profit=profit,
            stale=result.stale,
            detected_at=time.time(),
        )

    def full_scan(
        self,
        routes: Iterable[Route],
        amount_for: Callable[[Token], int],
    ) -> ScanResult:
        """Scan every route variant and collect the opportunities"""
        start_time = time.time()

        results = self.scan_all(routes, amount_for)
        opportunities = []
        for result in results:
            opp = self.evaluate(result)
            if opp:
                opportunities.append(opp)

        return ScanResult(
            timestamp=start_time,
            scan_duration_ms=(time.time() - start_time) * 1000,
            results=results,
            opportunities=opportunities,
        )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def format_opportunity(opp: Opportunity) -> str:
    """Format opportunity for logging"""
    token = opp.token
    hops = []
    for quote, (t_in, t_out, venue) in zip(opp.quotes, opp.route.hops()):
        tier = f" fee {quote.fee_tier}" if quote.fee_tier else ""
        hops.append(
            f"  {t_in.symbol} → {t_out.symbol} on {venue.name}{tier}: "
            f"{format_amount(quote.amount_in, t_in)} → {format_amount(quote.amount_out, t_out)}"
        )
    stale = " ⚠️ STALE (not executable)" if opp.stale else ""
    return (
        f"[{opp.opportunity_id}] {opp.route.label}{stale}\n"
        + "\n".join(hops)
        + f"\n  Required: {format_amount(opp.profit.buffered_required, token)} {token.symbol}"
        f"\n  Profit: {format_amount(opp.profit.net_profit, token)} {token.symbol} (${opp.net_profit_usd:.4f})"
    )
