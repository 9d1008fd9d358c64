# flasharb/rpc_health.py
"""
RPC Health & Preflight
Checks RPC connection and latency, and verifies chain, wallet gas and the
arbitrage contract before the bot starts
"""

import time
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from flasharb.exceptions import ConfigError

logger = logging.getLogger(__name__)

MAX_RPC_LATENCY = 2.0            # seconds
MIN_GAS_BALANCE = Decimal("0.1")  # native token


def connect(rpc_url: str, timeout: float = 10.0) -> Web3:
    """HTTP provider with request timeout and POA extra-data handling"""
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    if not w3.is_connected():
        raise ConfigError(f"RPC not connected: {rpc_url}")
    return w3


class RPCHealth:
    """
    Monitor RPC health
    """

    def __init__(self, w3: Web3, max_latency: float = MAX_RPC_LATENCY):
        self.w3 = w3
        self.max_latency = max_latency

    def check(self) -> tuple:
        """
        Check RPC health
        Returns (is_healthy: bool, status_message: str)
        """
        try:
            start = time.time()
            latest = self.w3.eth.block_number
            latency = time.time() - start

            if latency > self.max_latency:
                return False, f"High latency {latency:.2f}s"

            return True, f"OK (latency={latency:.2f}s, block={latest})"

        except Exception as e:
            return False, str(e)


@dataclass
class PreflightReport:
    chain_id: int
    block_number: int
    gas_balance: Optional[Decimal] = None
    contract_deployed: Optional[bool] = None

    @property
    def low_gas(self) -> bool:
        return self.gas_balance is not None and self.gas_balance < MIN_GAS_BALANCE


def preflight(w3: Web3, settings, account=None) -> PreflightReport:
    """
    Verify the node is on the configured chain. With a signer, also check
    its gas balance (low balance only warns) and that the arbitrage contract
    has code. Mismatches raise ConfigError.
    """
    logger.info("🔧 Running preflight checks...")

    chain_id = w3.eth.chain_id
    if chain_id != settings.chain_id:
        raise ConfigError(f"RPC is on chain {chain_id}, expected {settings.chain_id}")

    report = PreflightReport(chain_id=chain_id, block_number=w3.eth.block_number)
    logger.info(f"   ✅ RPC connected - chain {chain_id}, block {report.block_number}")

    if account is not None:
        balance = w3.eth.get_balance(account.address)
        report.gas_balance = Decimal(balance) / Decimal(10 ** 18)
        logger.info(f"   👛 Wallet {account.address}: {report.gas_balance:.4f} native")
        if report.low_gas:
            logger.warning(f"   ⚠️ Gas balance below {MIN_GAS_BALANCE}; transactions may fail")

    if settings.arb_contract:
        code = w3.eth.get_code(Web3.to_checksum_address(settings.arb_contract))
        report.contract_deployed = bool(code) and bytes(code) not in (b"", b"\x00")
        if not report.contract_deployed:
            raise ConfigError(f"No contract code at {settings.arb_contract}")
        logger.info(f"   📄 Arbitrage contract deployed at {settings.arb_contract}")

    return report
