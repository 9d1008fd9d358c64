"""
Tests for hop chaining, short-circuiting, variants and opportunity creation
"""

from decimal import Decimal
from unittest.mock import MagicMock

from flasharb.arbitrage_scanner import PathScanner, PathStatus, format_opportunity
from flasharb.decision import select_executable
from flasharb.pairs import VENUES, Route
from flasharb.quote_engine import QuoteEngine, StaticPriceEstimator

WETH_OUT = 40_000_000_000_000_000  # 0.04 WETH


def _scanner(engine, scan_reverse=False, min_profit_usd=Decimal("1")):
    return PathScanner(engine, premium_bps=9, slippage_bps=200,
                       min_profit_usd=min_profit_usd, max_workers=2, scan_reverse=scan_reverse)


class TestScan:
    def test_hop_output_feeds_next_hop(self, fake_engine, usdc_weth_route):
        engine = fake_engine({
            ("uniswap_v3", "USDC", "WETH"): WETH_OUT,
            ("quickswap", "WETH", "USDC"): 101_000_000,
        })

        result = _scanner(engine).scan(usdc_weth_route, 100_000_000)

        assert result.ok
        assert result.amount_out == 101_000_000
        assert engine.calls[1] == (("quickswap", "WETH", "USDC"), WETH_OUT)

    def test_failed_hop_short_circuits(self, fake_engine, usdc_weth_route):
        engine = fake_engine({("quickswap", "WETH", "USDC"): 101_000_000})

        result = _scanner(engine).scan(usdc_weth_route, 100_000_000)

        assert result.status is PathStatus.NO_LIQUIDITY
        assert result.failed_hop == 0
        assert result.amount_out == 0
        assert len(engine.calls) == 1
        assert "uniswap_v3" in result.reason

    def test_stale_hop_makes_path_stale(self, fake_engine, usdc_weth_route):
        engine = fake_engine({
            ("uniswap_v3", "USDC", "WETH"): WETH_OUT,
            ("quickswap", "WETH", "USDC"): 103_500_000,
        }, stale={("uniswap_v3", "USDC", "WETH")})

        result = _scanner(engine).scan(usdc_weth_route, 100_000_000)

        assert result.ok
        assert result.stale


class TestVariants:
    def test_reverse_variant_added(self, fake_engine, usdc_weth_route):
        variants = _scanner(fake_engine(), scan_reverse=True).variants([usdc_weth_route])

        assert len(variants) == 2
        assert [v.name for v in variants[1].venues] == ["quickswap", "uniswap_v3"]

    def test_symmetric_route_not_duplicated(self, fake_engine, usdc, weth):
        route = Route(tokens=(usdc, weth, usdc), venues=(VENUES["quickswap"], VENUES["quickswap"]))
        assert len(_scanner(fake_engine(), scan_reverse=True).variants([route])) == 1

    def test_scan_all_preserves_order(self, fake_engine, usdc_weth_route, usdt, wmatic):
        other = Route(tokens=(usdt, wmatic, usdt), venues=(VENUES["uniswap_v3"], VENUES["quickswap"]))
        engine = fake_engine({
            ("uniswap_v3", "USDC", "WETH"): WETH_OUT,
            ("quickswap", "WETH", "USDC"): 101_000_000,
        })

        results = _scanner(engine, scan_reverse=True).scan_all(
            [usdc_weth_route, other], lambda token: 100_000_000,
        )

        assert [r.route for r in results][0] == usdc_weth_route
        assert results[2].route == other
        assert len(results) == 4
        assert results[0].ok
        assert not results[2].ok


class TestEvaluate:
    def test_unprofitable_route_yields_nothing(self, fake_engine, usdc_weth_route):
        engine = fake_engine({
            ("uniswap_v3", "USDC", "WETH"): WETH_OUT,
            ("quickswap", "WETH", "USDC"): 101_000_000,
        })
        scanner = _scanner(engine)

        assert scanner.evaluate(scanner.scan(usdc_weth_route, 100_000_000)) is None

    def test_profitable_route_yields_opportunity(self, fake_engine, usdc_weth_route):
        engine = fake_engine({
            ("uniswap_v3", "USDC", "WETH"): WETH_OUT,
            ("quickswap", "WETH", "USDC"): 103_500_000,
        })
        scanner = _scanner(engine)

        opp = scanner.evaluate(scanner.scan(usdc_weth_route, 100_000_000))

        assert opp is not None
        assert opp.profit.net_profit == 1_408_200
        assert opp.is_executable
        assert opp.min_profit == 102_091_800 - 100_090_000
        assert opp.opportunity_id.startswith("ARB-")
        assert "USDC → WETH → USDC" in format_opportunity(opp)

    def test_threshold_filters_small_profit(self, fake_engine, usdc_weth_route):
        engine = fake_engine({
            ("uniswap_v3", "USDC", "WETH"): WETH_OUT,
            ("quickswap", "WETH", "USDC"): 103_500_000,
        })
        scanner = _scanner(engine, min_profit_usd=Decimal("2"))

        assert scanner.evaluate(scanner.scan(usdc_weth_route, 100_000_000)) is None

    def test_full_scan_collects_opportunities(self, fake_engine, usdc_weth_route):
        engine = fake_engine({
            ("uniswap_v3", "USDC", "WETH"): WETH_OUT,
            ("quickswap", "WETH", "USDC"): 103_500_000,
        })

        scan = _scanner(engine).full_scan([usdc_weth_route], lambda token: 100_000_000)

        assert scan.routes_scanned == 1
        assert scan.routes_failed == 0
        assert len(scan.opportunities) == 1


class TestStaleEndToEnd:
    def test_fallback_estimate_is_never_auto_executed(self, usdc_weth_route):
        """Every concentrated-liquidity tier fails, the estimate fills in, the opportunity is flagged"""
        w3 = MagicMock()
        contract = w3.eth.contract.return_value
        contract.functions.quoteExactInputSingle.return_value.call.side_effect = Exception("execution reverted")
        contract.functions.getAmountsOut.return_value.call.return_value = [WETH_OUT, 103_500_000]

        engine = QuoteEngine(w3, timeout=2.0, retry_count=1, estimator=StaticPriceEstimator())
        try:
            scanner = _scanner(engine)
            opp = scanner.evaluate(scanner.scan(usdc_weth_route, 100_000_000))
        finally:
            engine.close()

        assert opp is not None
        assert opp.stale
        assert not opp.is_executable
        assert select_executable([opp]) is None
