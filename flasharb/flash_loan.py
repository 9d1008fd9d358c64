# flasharb/flash_loan.py
"""
Aave V3 Flash Loan Integration
Reads premium and reserve liquidity from the pool and builds the call into
the arbitrage contract that borrows, runs the route and repays atomically
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from eth_abi import encode
from web3 import Web3

from flasharb.arbitrage_scanner import Opportunity
from flasharb.pairs import VenueFamily

logger = logging.getLogger(__name__)

# =============================================================================
# ABI DEFINITIONS
# =============================================================================

AAVE_POOL_ABI = [
    # Get reserve data (to check available liquidity)
    {
        "name": "getReserveData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "asset", "type": "address"}],
        "outputs": [
            {
                "components": [
                    {"name": "configuration", "type": "uint256"},
                    {"name": "liquidityIndex", "type": "uint128"},
                    {"name": "currentLiquidityRate", "type": "uint128"},
                    {"name": "variableBorrowIndex", "type": "uint128"},
                    {"name": "currentVariableBorrowRate", "type": "uint128"},
                    {"name": "currentStableBorrowRate", "type": "uint128"},
                    {"name": "lastUpdateTimestamp", "type": "uint40"},
                    {"name": "id", "type": "uint16"},
                    {"name": "aTokenAddress", "type": "address"},
                    {"name": "stableDebtTokenAddress", "type": "address"},
                    {"name": "variableDebtTokenAddress", "type": "address"},
                    {"name": "interestRateStrategyAddress", "type": "address"},
                    {"name": "accruedToTreasury", "type": "uint128"},
                    {"name": "unbacked", "type": "uint128"},
                    {"name": "isolationModeTotalDebt", "type": "uint128"},
                ],
                "name": "",
                "type": "tuple",
            }
        ],
    },
    {
        "name": "FLASHLOAN_PREMIUM_TOTAL",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint128"}],
    },
]

ATOKEN_ABI = [
    {
        "name": "totalSupply",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# Deployed receiver: takes the flash loan, runs routeData, repays, reverts
# unless output >= amount + premium + minProfit
ARB_CONTRACT_ABI = [
    {
        "name": "executeArbitrage",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "asset", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "routeData", "type": "bytes"},
            {"name": "minProfit", "type": "uint256"},
        ],
        "outputs": [],
    },
]

# One element per hop: (family, entryPoint, tokenIn, tokenOut, fee, path)
ROUTE_STEP_TYPE = "(uint8,address,address,address,uint24,address[])[]"

FAMILY_CODES = {
    VenueFamily.CONSTANT_PRODUCT: 0,
    VenueFamily.CONCENTRATED_LIQUIDITY: 1,
}

RESERVE_ATOKEN_INDEX = 8


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class LiquidityCheck:
    """Whether the pool can lend the requested amount with margin to spare"""
    ok: bool
    amount: int
    available: Optional[int]
    max_borrow: Optional[int]
    reason: str = ""


# =============================================================================
# FLASH LOAN MANAGER
# =============================================================================

class FlashLoanManager:
    """
    Manages flash loan reads against Aave V3 and encodes the arbitrage call
    """

    def __init__(self, w3: Web3, pool_address: str, safety_bps: int = 5000):
        self.w3 = w3
        self.pool = w3.eth.contract(
            address=Web3.to_checksum_address(pool_address),
            abi=AAVE_POOL_ABI,
        )
        self.safety_bps = safety_bps
        self._premium_cache: Optional[int] = None

    def get_premium_bps(self) -> Optional[int]:
        """On-chain flash loan premium in basis points, None when unreadable"""
        if self._premium_cache is None:
            try:
                self._premium_cache = int(self.pool.functions.FLASHLOAN_PREMIUM_TOTAL().call())
            except Exception as e:
                logger.warning(f"Could not read FLASHLOAN_PREMIUM_TOTAL: {e}")
                return None
        return self._premium_cache

    def check_premium(self, configured_bps: int) -> bool:
        """Compare the configured premium with the pool's; a mismatch is only a warning"""
        actual = self.get_premium_bps()
        if actual is None:
            return False
        if actual != configured_bps:
            logger.warning(
                f"⚠️ Pool premium is {actual} bps but PREMIUM_BPS={configured_bps}; "
                f"profit estimates may be off"
            )
            return False
        logger.info(f"Flash loan premium: {actual} bps")
        return True

    def get_available_liquidity(self, token: str) -> Optional[int]:
        """aToken total supply for the reserve, None if it can't be determined"""
        token = Web3.to_checksum_address(token)
        try:
            reserve_data = self.pool.functions.getReserveData(token).call()
            atoken_address = reserve_data[RESERVE_ATOKEN_INDEX]
            atoken = self.w3.eth.contract(address=atoken_address, abi=ATOKEN_ABI)
            return int(atoken.functions.totalSupply().call())
        except Exception as e:
            logger.warning(f"Could not read reserve liquidity for {token}: {e}")
            return None

    def check_liquidity(self, token: str, amount: int) -> LiquidityCheck:
        """
        Borrow must stay within safety_bps of the reserve's liquidity.
        Unknown liquidity passes; the contract call will revert on its own.
        """
        available = self.get_available_liquidity(token)
        if available is None:
            return LiquidityCheck(True, amount, None, None, "liquidity unknown")

        max_borrow = available * self.safety_bps // 10000
        if amount > max_borrow:
            return LiquidityCheck(
                False, amount, available, max_borrow,
                f"borrow {amount} exceeds {self.safety_bps / 100:.0f}% of pool liquidity {available}",
            )
        return LiquidityCheck(True, amount, available, max_borrow)

    # -------------------------------------------------------------------------
    # Arbitrage contract call
    # -------------------------------------------------------------------------

    def arbitrage_call(self, arb_contract: str, opportunity: Opportunity):
        """Contract function for executeArbitrage, shared by simulation and submission"""
        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(arb_contract),
            abi=ARB_CONTRACT_ABI,
        )
        return contract.functions.executeArbitrage(
            Web3.to_checksum_address(opportunity.token.address),
            opportunity.amount_in,
            encode_route(opportunity),
            opportunity.min_profit,
        )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def route_steps(opportunity: Opportunity) -> List[Tuple[int, str, str, str, int, List[str]]]:
    """Per-hop execution steps, using the venue path and fee tier that quoted"""
    steps = []
    for quote, (token_in, token_out, venue) in zip(opportunity.quotes, opportunity.route.hops()):
        if venue.family is VenueFamily.CONSTANT_PRODUCT:
            path = [Web3.to_checksum_address(a) for a in (quote.via or (token_in.address, token_out.address))]
        else:
            path = []
        steps.append((
            FAMILY_CODES[venue.family],
            Web3.to_checksum_address(venue.entry_point),
            Web3.to_checksum_address(token_in.address),
            Web3.to_checksum_address(token_out.address),
            quote.fee_tier or 0,
            path,
        ))
    return steps


def encode_route(opportunity: Opportunity) -> bytes:
    return encode([ROUTE_STEP_TYPE], [route_steps(opportunity)])
