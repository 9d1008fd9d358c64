# flasharb/executor.py
"""
Flash Loan Execution Controller
Simulates the exact arbitrage call, then submits it once and waits for the
receipt. Only one attempt is ever in flight.
"""

import time
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3RPCError

from flasharb.arbitrage_scanner import Opportunity
from flasharb.exceptions import ConfirmationError
from flasharb.flash_loan import FlashLoanManager

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS & DATA CLASSES
# =============================================================================

class ExecutionState(Enum):
    IDLE = "idle"
    SIMULATING = "simulating"
    SIMULATION_FAILED = "simulation_failed"
    SIMULATED_OK = "simulated_ok"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    REVERTED = "reverted"


class ExecutionStatus(Enum):
    SUCCEEDED = "succeeded"
    REVERTED = "reverted"
    FAILED_BEFORE_SUBMIT = "failed_before_submit"
    SIMULATED_OK = "simulated_ok"   # simulate mode stops here
    DROPPED = "dropped"             # never mined, nonce taken by another tx


@dataclass
class ExecutionResult:
    """Result of an arbitrage execution attempt"""
    status: ExecutionStatus
    opportunity_id: str
    tx_hash: Optional[str] = None
    gas_used: int = 0
    error: str = ""
    execution_time_ms: float = 0
    simulation_passed: bool = False

    @property
    def submitted(self) -> bool:
        return self.tx_hash is not None


# Error substrings mapped to operator hints
REVERT_HINTS = (
    ("insufficient funds", "Add native token to the wallet for gas"),
    ("INSUFFICIENT_OUTPUT_AMOUNT", "Constant-product output fell below the minimum; prices have likely converged"),
    ("reverted", "Check pool liquidity and slippage, or try a smaller base amount"),
)


def revert_hints(error: str):
    return [hint for needle, hint in REVERT_HINTS if needle in error]


# =============================================================================
# EXECUTION CONTROLLER
# =============================================================================

class ExecutionController:
    """
    Drives one opportunity through
    IDLE -> SIMULATING -> SIMULATED_OK -> SUBMITTING -> CONFIRMING -> SUCCEEDED | REVERTED

    Nothing is signed or sent before the simulation of the very same call
    succeeds. A transaction whose send or receipt wait faulted stays pending
    (state CONFIRMING) and blocks further submissions until resolve_pending()
    sees its receipt or finds it dropped.
    """

    def __init__(
        self,
        w3: Web3,
        account,
        arb_contract: str,
        flash_loans: FlashLoanManager,
        chain_id: int = 137,
        gas_limit: int = 500_000,
        confirm_timeout: float = 120.0,
        submit: bool = True,
    ):
        self.w3 = w3
        self.account = account
        self.arb_contract = Web3.to_checksum_address(arb_contract)
        self.flash_loans = flash_loans
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.confirm_timeout = confirm_timeout
        self.submit = submit

        self._lock = threading.Lock()
        self._state = ExecutionState.IDLE
        self.pending_tx: Optional[str] = None
        self._pending_opportunity: Optional[str] = None
        self._pending_nonce: Optional[int] = None
        self._resolved: List[ExecutionResult] = []

    @classmethod
    def from_settings(cls, w3: Web3, account, flash_loans: FlashLoanManager, settings, submit: bool = True):
        return cls(
            w3,
            account,
            settings.arb_contract,
            flash_loans,
            chain_id=settings.chain_id,
            gas_limit=settings.gas_limit,
            confirm_timeout=settings.confirm_timeout,
            submit=submit,
        )

    @property
    def state(self) -> ExecutionState:
        return self._state

    def _set_state(self, state: ExecutionState, opp_id: str = ""):
        logger.debug(f"[{opp_id}] {self._state.value} → {state.value}")
        self._state = state

    def _failed(self, opp_id: str, error: str, start_time: float, simulated: bool = False) -> ExecutionResult:
        self._set_state(ExecutionState.IDLE, opp_id)
        return ExecutionResult(
            status=ExecutionStatus.FAILED_BEFORE_SUBMIT,
            opportunity_id=opp_id,
            error=error,
            execution_time_ms=(time.time() - start_time) * 1000,
            simulation_passed=simulated,
        )

    def execute(self, opportunity: Opportunity, stop_event: Optional[threading.Event] = None) -> ExecutionResult:
        """
        Run a single attempt. A concurrent call gets FAILED_BEFORE_SUBMIT
        straight away rather than waiting for the lock.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning(f"[{opportunity.opportunity_id}] Another execution is in flight, skipping")
            return ExecutionResult(
                status=ExecutionStatus.FAILED_BEFORE_SUBMIT,
                opportunity_id=opportunity.opportunity_id,
                error="another execution is in flight",
            )
        try:
            return self._execute(opportunity, stop_event)
        finally:
            self._lock.release()

    def _execute(self, opportunity: Opportunity, stop_event: Optional[threading.Event]) -> ExecutionResult:
        start_time = time.time()
        opp_id = opportunity.opportunity_id

        if self.pending_tx and self.resolve_pending() is None:
            # State stays CONFIRMING while the earlier tx is outstanding
            return ExecutionResult(
                status=ExecutionStatus.FAILED_BEFORE_SUBMIT,
                opportunity_id=opp_id,
                error=f"transaction {self.pending_tx} still pending",
                execution_time_ms=(time.time() - start_time) * 1000,
            )

        if opportunity.stale:
            logger.warning(f"[{opp_id}] Refusing stale opportunity")
            return self._failed(opp_id, "opportunity is built on stale quotes", start_time)

        liquidity = self.flash_loans.check_liquidity(opportunity.token.address, opportunity.amount_in)
        if not liquidity.ok:
            logger.warning(f"[{opp_id}] Flash loan liquidity check failed: {liquidity.reason}")
            return self._failed(opp_id, liquidity.reason, start_time)

        # Step 1: Simulate the exact call that would be submitted
        self._set_state(ExecutionState.SIMULATING, opp_id)
        logger.info(f"[{opp_id}] 🔍 Simulating executeArbitrage...")
        try:
            call = self.flash_loans.arbitrage_call(self.arb_contract, opportunity)
            call.call({"from": self.account.address})
        except ContractLogicError as e:
            self._set_state(ExecutionState.SIMULATION_FAILED, opp_id)
            self._log_failure(opp_id, f"Simulation reverted: {e}")
            return self._failed(opp_id, f"simulation reverted: {e}", start_time)
        except Exception as e:
            logger.error(f"[{opp_id}] Simulation could not run: {e}")
            return self._failed(opp_id, f"simulation error: {e}", start_time)

        self._set_state(ExecutionState.SIMULATED_OK, opp_id)
        logger.info(f"[{opp_id}] ✅ Simulation successful")

        if not self.submit:
            self._set_state(ExecutionState.IDLE, opp_id)
            return ExecutionResult(
                status=ExecutionStatus.SIMULATED_OK,
                opportunity_id=opp_id,
                execution_time_ms=(time.time() - start_time) * 1000,
                simulation_passed=True,
            )

        if stop_event is not None and stop_event.is_set():
            return self._failed(opp_id, "stopped before submission", start_time, simulated=True)

        # Step 2: Build and sign; nothing has left the process yet
        self._set_state(ExecutionState.SUBMITTING, opp_id)
        gas = self._estimate_gas(call)
        if gas is None:
            self._log_failure(opp_id, f"Gas estimate exceeds GAS_LIMIT {self.gas_limit}")
            return self._failed(opp_id, f"gas estimate exceeds GAS_LIMIT {self.gas_limit}", start_time, simulated=True)
        try:
            tx = call.build_transaction({
                "from": self.account.address,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                "gas": gas,
                "gasPrice": self.w3.eth.gas_price,
                "chainId": self.chain_id,
            })
            signed = self.account.sign_transaction(tx)
        except Exception as e:
            self._log_failure(opp_id, f"Submission failed: {e}")
            return self._failed(opp_id, f"submission failed: {e}", start_time, simulated=True)

        # The hash is known before sending, so a send that faults after the
        # node accepted the transaction still leaves it guarded
        hash_hex = Web3.to_hex(signed.hash)
        self.pending_tx = hash_hex
        self._pending_opportunity = opp_id
        self._pending_nonce = tx["nonce"]

        # Step 3: Send exactly once
        try:
            self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3RPCError as e:
            if "already known" not in str(e):
                self._clear_pending()
                self._log_failure(opp_id, f"Submission rejected: {e}")
                return self._failed(opp_id, f"submission rejected: {e}", start_time, simulated=True)
            logger.warning(f"[{opp_id}] Node already has {hash_hex}")
        except Exception as e:
            self._set_state(ExecutionState.CONFIRMING, opp_id)
            logger.error(f"[{opp_id}] Send of {hash_hex} failed, it may still land: {e}")
            raise ConfirmationError(f"send failed: {e}", hash_hex)
        logger.info(f"[{opp_id}] 📝 Transaction sent: {hash_hex}")

        # Step 4: Wait for the receipt; on timeout the tx stays pending
        self._set_state(ExecutionState.CONFIRMING, opp_id)
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(hash_hex, timeout=self.confirm_timeout)
        except TimeExhausted as e:
            logger.error(f"[{opp_id}] No receipt for {hash_hex} after {self.confirm_timeout}s")
            raise ConfirmationError(f"receipt wait timed out: {e}", hash_hex)
        except Exception as e:
            logger.error(f"[{opp_id}] Lost track of {hash_hex}: {e}")
            raise ConfirmationError(f"receipt wait failed: {e}", hash_hex)

        return self._finish(opp_id, hash_hex, receipt, start_time)

    def _estimate_gas(self, call) -> Optional[int]:
        """Padded estimate capped at gas_limit; None when the estimate alone is over it"""
        try:
            estimate = int(call.estimate_gas({"from": self.account.address}))
        except Exception as e:
            logger.debug(f"Gas estimation failed, using limit {self.gas_limit}: {e}")
            return self.gas_limit
        if estimate > self.gas_limit:
            return None
        return min(estimate * 12 // 10, self.gas_limit)

    def _clear_pending(self):
        self.pending_tx = None
        self._pending_opportunity = None
        self._pending_nonce = None

    def _finish(self, opp_id: str, hash_hex: str, receipt, start_time: float) -> ExecutionResult:
        self._clear_pending()
        gas_used = int(receipt["gasUsed"])

        if receipt["status"] == 1:
            self._set_state(ExecutionState.SUCCEEDED, opp_id)
            logger.info(f"[{opp_id}] ✅ Arbitrage executed successfully (gas {gas_used})")
            status, error = ExecutionStatus.SUCCEEDED, ""
        else:
            self._set_state(ExecutionState.REVERTED, opp_id)
            logger.error(f"[{opp_id}] ❌ Transaction reverted on-chain: {hash_hex}")
            status, error = ExecutionStatus.REVERTED, "transaction reverted"

        self._set_state(ExecutionState.IDLE, opp_id)
        return ExecutionResult(
            status=status,
            opportunity_id=opp_id,
            tx_hash=hash_hex,
            gas_used=gas_used,
            error=error,
            execution_time_ms=(time.time() - start_time) * 1000,
            simulation_passed=True,
        )

    def resolve_pending(self) -> Optional[ExecutionResult]:
        """
        Look up the pending transaction and clear it once its outcome is
        known. A transaction with no receipt whose nonce has since been used
        by another one can never land and is reported as dropped. Resolved
        outcomes are also kept for take_resolved().
        """
        if not self.pending_tx:
            return None
        hash_hex = self.pending_tx
        opp_id = self._pending_opportunity or ""
        receipt = self._lookup_receipt(hash_hex)
        if receipt is None:
            if not self._nonce_consumed():
                logger.warning(f"Transaction {hash_hex} is still pending")
                return None
            # The nonce may have been taken by this very tx in the meantime
            receipt = self._lookup_receipt(hash_hex)

        if receipt is not None:
            result = self._finish(opp_id, hash_hex, receipt, time.time())
        else:
            logger.error(f"[{opp_id}] ❌ Transaction {hash_hex} was dropped: nonce {self._pending_nonce} is used")
            self._clear_pending()
            self._set_state(ExecutionState.IDLE, opp_id)
            result = ExecutionResult(
                status=ExecutionStatus.DROPPED,
                opportunity_id=opp_id,
                tx_hash=hash_hex,
                error="transaction dropped",
                simulation_passed=True,
            )
        self._resolved.append(result)
        return result

    def take_resolved(self) -> List[ExecutionResult]:
        """Outcomes of earlier pending transactions found since the last call"""
        resolved, self._resolved = self._resolved, []
        return resolved

    def _lookup_receipt(self, hash_hex: str):
        try:
            return self.w3.eth.get_transaction_receipt(hash_hex)
        except TransactionNotFound:
            return None

    def _nonce_consumed(self) -> bool:
        if self._pending_nonce is None:
            return False
        mined = self.w3.eth.get_transaction_count(self.account.address, "latest")
        return mined > self._pending_nonce

    def _log_failure(self, opp_id: str, message: str):
        logger.error(f"[{opp_id}] 💥 {message}")
        for hint in revert_hints(message):
            logger.info(f"[{opp_id}] 💡 {hint}")
