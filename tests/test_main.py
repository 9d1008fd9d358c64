"""
Tests for bot wiring: one cycle end to end with stubbed components, and CLI handling
"""

import logging
from unittest.mock import MagicMock

import pytest

from flasharb import main as main_module
from flasharb.arbitrage_scanner import ScanResult
from flasharb.config import MODE_EXECUTE, MODE_SCAN, MODE_SIMULATE
from flasharb.exceptions import ConfigError, ConfirmationError
from flasharb.executor import ExecutionResult, ExecutionStatus
from flasharb.main import ArbitrageBot, StatisticsTracker


def _scan(opportunities, results=()):
    return ScanResult(timestamp=0, scan_duration_ms=1, results=list(results), opportunities=list(opportunities))


@pytest.fixture
def account():
    account = MagicMock()
    account.address = "0x" + "44" * 20
    return account


def _bot(settings, mode, opportunities, account=None):
    bot = ArbitrageBot(settings, mode=mode, w3=MagicMock(), account=account)
    bot.scanner = MagicMock()
    bot.scanner.full_scan.return_value = _scan(opportunities)
    if bot.executor is not None:
        bot.executor = MagicMock()
        bot.executor.pending_tx = None
        bot.executor.take_resolved.return_value = []
    return bot


class TestRunCycle:
    def test_scan_mode_never_executes(self, settings, make_opportunity):
        bot = _bot(settings, MODE_SCAN, [make_opportunity()])
        try:
            assert bot.run_cycle() is False
        finally:
            bot.quote_engine.close()

        assert bot.executor is None
        assert len(bot.last_report.ranked) == 1
        assert bot.stats.opportunities_found == 1

    def test_execute_mode_runs_best_live_opportunity(self, settings, make_opportunity, account):
        stale = make_opportunity(amount_out=104_000_000, stale=True)
        live = make_opportunity(amount_out=103_500_000)
        bot = _bot(settings, MODE_EXECUTE, [live, stale], account)
        bot.executor.execute.return_value = ExecutionResult(
            ExecutionStatus.SUCCEEDED, live.opportunity_id, tx_hash="0xabc", gas_used=1,
        )
        try:
            assert bot.run_cycle() is True
        finally:
            bot.quote_engine.close()

        bot.executor.execute.assert_called_once_with(live, bot.stop_event)
        assert bot.stats.trades_successful == 1
        assert bot.stats.stale_opportunities == 1

        report = bot.last_report.as_dict()
        assert report["execution"]["status"] == "succeeded"
        assert [o["id"] for o in report["opportunities"]] == [stale.opportunity_id, live.opportunity_id]

    def test_nothing_to_execute_is_a_quiet_cycle(self, settings, account):
        bot = _bot(settings, MODE_SIMULATE, [], account)
        try:
            assert bot.run_cycle() is False
        finally:
            bot.quote_engine.close()
        bot.executor.execute.assert_not_called()

    def test_stop_after_fan_in_skips_execution(self, settings, make_opportunity, account):
        bot = _bot(settings, MODE_EXECUTE, [make_opportunity()], account)
        bot.stop()
        try:
            assert bot.run_cycle() is False
        finally:
            bot.quote_engine.close()
        bot.executor.execute.assert_not_called()

    def test_confirmation_error_propagates(self, settings, make_opportunity, account):
        bot = _bot(settings, MODE_EXECUTE, [make_opportunity()], account)
        bot.executor.execute.side_effect = ConfirmationError("timed out", "0xabc")
        try:
            with pytest.raises(ConfirmationError):
                bot.run_cycle()
        finally:
            bot.quote_engine.close()
        assert bot.stats.trades_unconfirmed == 1
        assert bot.stats.trades_executed == 0

    def test_late_receipt_reaches_stats_and_report(self, settings, make_opportunity, account):
        opp = make_opportunity()
        bot = _bot(settings, MODE_EXECUTE, [opp], account)
        bot.executor.execute.side_effect = ConfirmationError("timed out", "0xabc")
        try:
            with pytest.raises(ConfirmationError):
                bot.run_cycle()

            bot.executor.pending_tx = "0xabc"
            bot.executor.execute.side_effect = None
            bot.executor.execute.return_value = ExecutionResult(
                ExecutionStatus.FAILED_BEFORE_SUBMIT, "ARB-next", error="still pending",
            )
            bot.executor.take_resolved.return_value = [
                ExecutionResult(ExecutionStatus.SUCCEEDED, opp.opportunity_id, tx_hash="0xabc", gas_used=300_000),
            ]
            bot.run_cycle()
        finally:
            bot.quote_engine.close()

        bot.executor.resolve_pending.assert_called_once()
        assert bot.stats.trades_unconfirmed == 0
        assert bot.stats.trades_executed == 1
        assert bot.stats.trades_successful == 1
        assert bot.stats.trades_refused == 1
        assert bot.stats.expected_profit_usd == opp.net_profit_usd
        resolved = bot.last_report.as_dict()["resolved"]
        assert [(r["id"], r["status"]) for r in resolved] == [(opp.opportunity_id, "succeeded")]

    def test_selected_opportunity_breakdown_is_logged(self, settings, make_opportunity, account, caplog):
        bot = _bot(settings, MODE_SIMULATE, [make_opportunity()], account)
        bot.executor.execute.return_value = ExecutionResult(ExecutionStatus.SIMULATED_OK, "x")
        try:
            with caplog.at_level(logging.DEBUG, logger="flasharb.main"):
                bot.run_cycle()
        finally:
            bot.quote_engine.close()

        assert "Profit Breakdown" in caplog.text
        assert "102.091800" in caplog.text


class TestConstruction:
    def test_simulate_requires_signer(self, settings):
        from dataclasses import replace
        with pytest.raises(ConfigError):
            ArbitrageBot(replace(settings, private_key=None), mode=MODE_SIMULATE, w3=MagicMock())

    def test_unknown_mode(self, settings):
        with pytest.raises(ConfigError):
            ArbitrageBot(settings, mode="yolo", w3=MagicMock())


class TestStatistics:
    def test_simulation_not_counted_as_trade(self):
        stats = StatisticsTracker()
        stats.record_trade(ExecutionResult(ExecutionStatus.SIMULATED_OK, "x"))
        stats.record_trade(ExecutionResult(ExecutionStatus.REVERTED, "y", tx_hash="0xabc"))

        assert stats.simulations_passed == 1
        assert stats.trades_executed == 1
        assert stats.trades_successful == 0
        assert "BOT STATISTICS" in stats.get_summary()

    def test_refusals_before_submit_are_not_trades(self):
        stats = StatisticsTracker()
        stats.record_trade(ExecutionResult(ExecutionStatus.FAILED_BEFORE_SUBMIT, "x", error="simulation reverted"))
        stats.record_trade(ExecutionResult(ExecutionStatus.SUCCEEDED, "y", tx_hash="0xabc"))

        assert stats.trades_refused == 1
        assert stats.trades_executed == 1
        assert "(100.0%)" in stats.get_summary()


class TestCli:
    def test_bad_mode_exits(self):
        with pytest.raises(SystemExit):
            main_module.main(["--mode", "yolo"])

    def test_missing_env_file_returns_error(self, tmp_path, monkeypatch):
        monkeypatch.setattr(main_module, "setup_logging", lambda *a, **k: None)
        assert main_module.main(["--env-file", str(tmp_path / "missing.env")]) == 1
