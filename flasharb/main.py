# flasharb/main.py
"""
Flash Loan Arbitrage Bot Main Loop

THIS IS THE ENTRY POINT - Run with: python -m flasharb

MODES:
1. scan: Just observe opportunities (safe)
2. simulate: Scan + dry-run the arbitrage contract call (safe)
3. execute: Simulate, then submit for real
"""

import sys
import time
import logging
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from web3 import Web3

from flasharb import __version__
from flasharb.config import MODES, MODE_EXECUTE, MODE_SCAN, Settings, load_settings
from flasharb.exceptions import ConfigError, ConfirmationError
from flasharb.rpc_health import RPCHealth, connect, preflight
from flasharb.quote_engine import QuoteEngine
from flasharb.arbitrage_scanner import PathResult, PathScanner, Opportunity, format_opportunity
from flasharb.decision import rank_opportunities, select_executable
from flasharb.profit_calculator import format_profit_breakdown
from flasharb.flash_loan import FlashLoanManager
from flasharb.executor import ExecutionController, ExecutionResult, ExecutionStatus
from flasharb.scheduler import PollingScheduler

logger = logging.getLogger(__name__)

# =============================================================================
# LOGGING SETUP
# =============================================================================

LOG_DIR = Path(__file__).parent.parent / "logs"


def setup_logging(level: str = "INFO", log_dir: Optional[Path] = LOG_DIR):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / f"flasharb_{datetime.now().strftime('%Y%m%d')}.log"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s | %(levelname)-8s | %(message)s',
        handlers=handlers,
    )


# =============================================================================
# STATISTICS TRACKER
# =============================================================================

class StatisticsTracker:
    """Track bot performance statistics"""

    def __init__(self):
        self.start_time = datetime.now()
        self.scan_count = 0
        self.routes_scanned = 0
        self.opportunities_found = 0
        self.stale_opportunities = 0
        self.trades_executed = 0
        self.trades_successful = 0
        self.trades_refused = 0
        self.trades_unconfirmed = 0
        self.simulations_passed = 0
        self.expected_profit_usd = Decimal(0)
        self.best_profit_usd = Decimal(0)

    def record_scan(self, routes: int, opportunities: List[Opportunity]):
        self.scan_count += 1
        self.routes_scanned += routes
        self.opportunities_found += len(opportunities)
        self.stale_opportunities += sum(1 for o in opportunities if o.stale)
        for opp in opportunities:
            if opp.net_profit_usd > self.best_profit_usd:
                self.best_profit_usd = opp.net_profit_usd

    def record_trade(self, result: ExecutionResult, expected_usd: Decimal = Decimal(0)):
        if result.status is ExecutionStatus.SIMULATED_OK:
            self.simulations_passed += 1
            return
        if not result.submitted:
            self.trades_refused += 1
            return
        self.trades_executed += 1
        if result.status is ExecutionStatus.SUCCEEDED:
            self.trades_successful += 1
            self.expected_profit_usd += expected_usd

    def record_unconfirmed(self):
        self.trades_unconfirmed += 1

    def record_resolved(self, result: ExecutionResult, expected_usd: Decimal = Decimal(0)):
        """Outcome of a transaction counted earlier as unconfirmed"""
        self.trades_unconfirmed = max(0, self.trades_unconfirmed - 1)
        self.record_trade(result, expected_usd)

    def get_summary(self) -> str:
        runtime = datetime.now() - self.start_time
        success_rate = (self.trades_successful / self.trades_executed * 100) if self.trades_executed > 0 else 0

        return (
            f"\n{'='*60}\n"
            f"📊 BOT STATISTICS\n"
            f"{'='*60}\n"
            f"Runtime: {runtime}\n"
            f"Scans: {self.scan_count}\n"
            f"Routes Scanned: {self.routes_scanned}\n"
            f"Opportunities Found: {self.opportunities_found} ({self.stale_opportunities} stale)\n"
            f"Simulations Passed: {self.simulations_passed}\n"
            f"Trades Executed: {self.trades_executed}\n"
            f"Trades Successful: {self.trades_successful} ({success_rate:.1f}%)\n"
            f"Refused Before Submit: {self.trades_refused}\n"
            f"Awaiting Receipt: {self.trades_unconfirmed}\n"
            f"Expected Profit: ${self.expected_profit_usd:.4f}\n"
            f"Best Opportunity: ${self.best_profit_usd:.4f}\n"
            f"{'='*60}\n"
        )


# =============================================================================
# CYCLE REPORT
# =============================================================================

@dataclass
class CycleReport:
    """Everything one scan cycle saw and did"""
    cycle: int
    timestamp: float
    results: List[PathResult] = field(default_factory=list)
    ranked: List[Opportunity] = field(default_factory=list)
    execution: Optional[ExecutionResult] = None
    # Outcomes of earlier unconfirmed transactions found during this cycle
    resolved: List[ExecutionResult] = field(default_factory=list)
    duration_ms: float = 0

    @property
    def routes_failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def as_dict(self) -> dict:
        return {
            "cycle": self.cycle,
            "timestamp": self.timestamp,
            "duration_ms": round(self.duration_ms, 1),
            "routes_scanned": len(self.results),
            "routes_failed": self.routes_failed,
            "opportunities": [opp.as_dict() for opp in self.ranked],
            "execution": None if self.execution is None else _result_dict(self.execution),
            "resolved": [_result_dict(r) for r in self.resolved],
        }


def _result_dict(result: ExecutionResult) -> dict:
    return {
        "id": result.opportunity_id,
        "status": result.status.value,
        "tx_hash": result.tx_hash,
        "gas_used": result.gas_used,
        "error": result.error,
    }


# =============================================================================
# MAIN BOT CLASS
# =============================================================================

class ArbitrageBot:
    """
    Flash loan arbitrage bot

    Strategy:
    1. Quote every configured route (and its reversed venue order)
    2. Keep routes whose output beats premium plus slippage buffer
    3. Rank, then simulate the best live one before submitting it
    """

    def __init__(
        self,
        settings: Settings,
        mode: str = MODE_SCAN,
        w3: Optional[Web3] = None,
        account=None,
        stop_event: Optional[threading.Event] = None,
    ):
        if mode not in MODES:
            raise ConfigError(f"Unknown mode {mode!r}")
        if mode != MODE_SCAN:
            settings.require_signer()

        self.settings = settings
        self.mode = mode
        self.stop_event = stop_event or threading.Event()
        self.stats = StatisticsTracker()
        self.cycle = 0
        self.last_report: Optional[CycleReport] = None
        # tx hash -> expected USD profit of submissions still awaiting a receipt
        self._unconfirmed: Dict[str, Decimal] = {}

        if w3 is None:
            logger.info(f"Connecting to RPC: {settings.rpc_url}")
            w3 = connect(settings.rpc_url, timeout=settings.quote_timeout)
        self.w3 = w3

        if account is None and mode != MODE_SCAN:
            account = w3.eth.account.from_key(settings.private_key)
        self.account = account

        # Initialize components
        self.quote_engine = QuoteEngine.from_settings(w3, settings)
        self.scanner = PathScanner.from_settings(self.quote_engine, settings)
        self.flash_loans = FlashLoanManager(w3, settings.flash_pool, settings.liquidity_safety_bps)
        self.executor: Optional[ExecutionController] = None
        if mode != MODE_SCAN:
            self.executor = ExecutionController.from_settings(
                w3, account, self.flash_loans, settings,
                submit=(mode == MODE_EXECUTE),
            )

    def check_prerequisites(self):
        """RPC health, chain, wallet and contract. Raises ConfigError on a hard mismatch"""
        logger.info("Checking prerequisites...")

        ok, status = RPCHealth(self.w3).check()
        if ok:
            logger.info(f"✅ RPC healthy: {status}")
        else:
            logger.warning(f"⚠️ RPC unhealthy: {status}")

        preflight(self.w3, self.settings, self.account)
        self.flash_loans.check_premium(self.settings.premium_bps)

        logger.info("✅ All prerequisites checked")

    def run_cycle(self) -> bool:
        """
        One scan/rank/execute pass. Returns True when an execution was
        attempted so the scheduler can cool down.
        """
        self.cycle += 1
        start = time.time()
        report = CycleReport(cycle=self.cycle, timestamp=start)

        logger.info("-" * 40)
        logger.info(f"Cycle {self.cycle}: scanning {len(self.settings.routes)} routes...")

        scan = self.scanner.full_scan(self.settings.routes, self.settings.base_amount_for)
        report.results = scan.results
        report.ranked = rank_opportunities(scan.opportunities, self.settings.min_profit_usd)
        self.stats.record_scan(scan.routes_scanned, report.ranked)

        attempted = False
        try:
            if self.executor is not None and self.executor.pending_tx:
                self.executor.resolve_pending()

            if self.stop_event.is_set():
                logger.info("Stop requested, skipping execution")
                return False

            for opp in report.ranked:
                logger.info(f"💰 OPPORTUNITY {format_opportunity(opp)}")

            if self.executor is not None:
                best = select_executable(report.ranked)
                if best is not None:
                    attempted = True
                    logger.debug(format_profit_breakdown(best.profit, best.token))
                    try:
                        report.execution = self.executor.execute(best, self.stop_event)
                    except ConfirmationError as e:
                        self.stats.record_unconfirmed()
                        self._unconfirmed[e.tx_hash] = best.net_profit_usd
                        raise
                    self.stats.record_trade(report.execution, best.net_profit_usd)
                    self._log_execution(report.execution)
        finally:
            if self.executor is not None:
                self._collect_resolved(report)
            report.duration_ms = (time.time() - start) * 1000
            self.last_report = report
            logger.info(
                f"Cycle {self.cycle}: {len(report.results)} routes "
                f"({report.routes_failed} unavailable), {len(report.ranked)} opportunities "
                f"({report.duration_ms:.0f}ms)"
            )

        return attempted

    def _collect_resolved(self, report: CycleReport):
        for result in self.executor.take_resolved():
            expected = self._unconfirmed.pop(result.tx_hash, Decimal(0))
            self.stats.record_resolved(result, expected)
            report.resolved.append(result)
            logger.info(f"🔎 [{result.opportunity_id}] Earlier transaction {result.tx_hash} resolved")
            self._log_execution(result)

    def _log_execution(self, result: ExecutionResult):
        if result.status is ExecutionStatus.SUCCEEDED:
            logger.info(f"✅ Trade successful! TX: {result.tx_hash}")
        elif result.status is ExecutionStatus.SIMULATED_OK:
            logger.info(f"🧪 [{result.opportunity_id}] Simulation passed (simulate mode, not submitted)")
        else:
            logger.warning(f"❌ Trade {result.status.value}: {result.error}")

    def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Main bot loop
        Continuously scans and executes opportunities
        """
        logger.info("=" * 60)
        logger.info(f"🚀 FLASH ARBITRAGE BOT v{__version__} STARTING")
        logger.info(f"Mode: {self.mode}")
        logger.info(f"Routes: {len(self.settings.routes)} (reverse variants: {self.settings.scan_reverse})")
        logger.info(f"Min profit: ${self.settings.min_profit_usd}")
        logger.info("=" * 60)

        self.check_prerequisites()

        scheduler = PollingScheduler.from_settings(
            self.run_cycle, self.settings,
            stop_event=self.stop_event,
            max_cycles=max_cycles,
        )
        try:
            return scheduler.run()
        finally:
            self.quote_engine.close()
            logger.info(self.stats.get_summary())
            logger.info("Bot stopped.")

    def stop(self):
        self.stop_event.set()


# =============================================================================
# ENTRY POINT
# =============================================================================

def main(argv=None) -> int:
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Flash Loan Arbitrage Bot")
    parser.add_argument(
        "--mode",
        choices=list(MODES),
        default=MODE_SCAN,
        help="Bot mode: scan (observe only), simulate (dry-run contract call), execute (real trades)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit"
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file (default: config/.env when present)"
    )
    parser.add_argument(
        "--base-amount",
        type=int,
        default=None,
        help="Base trade amount in 6-decimal units (default: DEFAULT_BASE_AMOUNT)"
    )

    args = parser.parse_args(argv)

    overrides = {}
    if args.base_amount is not None:
        overrides["default_base_amount"] = args.base_amount

    try:
        settings = load_settings(args.env_file, **overrides)
    except ConfigError as e:
        setup_logging()
        logger.error(f"❌ Configuration error: {e}")
        return 1

    setup_logging(settings.log_level)

    try:
        bot = ArbitrageBot(settings, mode=args.mode)
    except ConfigError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1

    def _handle_shutdown(signum, frame):
        logger.info("\n🛑 Shutdown signal received...")
        bot.stop()

    signal.signal(signal.SIGINT, _handle_shutdown)
    signal.signal(signal.SIGTERM, _handle_shutdown)

    try:
        bot.run(max_cycles=1 if args.once else None)
    except ConfigError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
