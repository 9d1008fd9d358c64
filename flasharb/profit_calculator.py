# flasharb/profit_calculator.py
"""
Flash Loan Profit Calculator
Turns an end-to-end route output into a buffered net profit after the
flash-loan premium and a single-sided slippage buffer

All amounts are integers in the token's smallest unit. Decimal is used only
for the reference-currency (USD) figure.
"""

from dataclasses import dataclass
from decimal import Decimal, getcontext

from flasharb.pairs import Token

getcontext().prec = 50

BPS_DENOMINATOR = 10000


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ProfitBreakdown:
    """Complete profit breakdown for one route evaluation"""
    amount_in: int
    amount_out: int

    premium_bps: int
    slippage_bps: int

    # Costs
    premium: int
    required_repay: int
    buffered_required: int

    # Result
    net_profit: int
    raw_profit: int            # Without the slippage buffer, display only
    net_profit_usd: Decimal

    @property
    def is_profitable(self) -> bool:
        return self.net_profit > 0


# =============================================================================
# PROFIT MODEL
# =============================================================================

def required_repayment(amount_in: int, premium_bps: int) -> int:
    """Principal plus flash-loan premium"""
    return amount_in + (amount_in * premium_bps) // BPS_DENOMINATOR


def buffered_repayment(required_repay: int, slippage_bps: int) -> int:
    """Repayment inflated by the slippage buffer"""
    return (required_repay * (BPS_DENOMINATOR + slippage_bps)) // BPS_DENOMINATOR


def to_reference(amount: int, token: Token) -> Decimal:
    """Convert smallest units to USD using the token's configured price"""
    if not token.usd_price or amount <= 0:
        return Decimal(0)
    return Decimal(amount) / Decimal(token.unit) * token.usd_price


def calculate_profit(
    amount_in: int,
    amount_out: int,
    premium_bps: int,
    slippage_bps: int,
    token: Token,
) -> ProfitBreakdown:
    """
    requiredRepay    = A + floor(A * p / 10000)
    bufferedRequired = floor(requiredRepay * (10000 + s) / 10000)
    netProfit        = max(0, O - bufferedRequired)
    """
    if amount_in < 0 or amount_out < 0:
        raise ValueError("amounts must not be negative")
    if premium_bps < 0 or slippage_bps < 0:
        raise ValueError("premium and slippage must not be negative")

    required = required_repayment(amount_in, premium_bps)
    buffered = buffered_repayment(required, slippage_bps)
    net_profit = max(0, amount_out - buffered)

    # A zero-input loop can't be profitable however the output reads
    if amount_in == 0:
        net_profit = 0

    return ProfitBreakdown(
        amount_in=amount_in,
        amount_out=amount_out,
        premium_bps=premium_bps,
        slippage_bps=slippage_bps,
        premium=required - amount_in,
        required_repay=required,
        buffered_required=buffered,
        net_profit=net_profit,
        raw_profit=max(0, amount_out - required) if amount_in else 0,
        net_profit_usd=to_reference(net_profit, token),
    )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def format_amount(amount: int, token: Token) -> str:
    """Human-readable amount: 6 places for small-decimal tokens, 8 otherwise"""
    places = 6 if token.decimals <= 6 else 8
    value = Decimal(amount) / Decimal(token.unit)
    return f"{value:.{places}f}"


def format_profit_breakdown(breakdown: ProfitBreakdown, token: Token) -> str:
    """Format profit breakdown for logging"""
    sym = token.symbol
    return (
        f"=== Profit Breakdown ===\n"
        f"Input: {format_amount(breakdown.amount_in, token)} {sym}\n"
        f"Output: {format_amount(breakdown.amount_out, token)} {sym}\n"
        f"Premium ({breakdown.premium_bps} bps): {format_amount(breakdown.premium, token)} {sym}\n"
        f"Required (+{breakdown.slippage_bps} bps buffer): "
        f"{format_amount(breakdown.buffered_required, token)} {sym}\n"
        f"Net Profit: {format_amount(breakdown.net_profit, token)} {sym} "
        f"(${breakdown.net_profit_usd:.4f})\n"
        f"Raw (no buffer): {format_amount(breakdown.raw_profit, token)} {sym}"
    )
