# flasharb/quote_engine.py
"""
Multi-Venue Quote Engine
Normalizes constant-product routers and concentrated-liquidity quoters
behind one quote() call that never raises
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

import requests
from web3 import Web3
from web3.exceptions import ContractLogicError

from flasharb.exceptions import QuoteUnavailable, TransportTimeout
from flasharb.pairs import DEFAULT_FEE_TIERS, Token, Venue, VenueFamily

logger = logging.getLogger(__name__)

T = TypeVar("T")

# =============================================================================
# ABI DEFINITIONS
# =============================================================================

ROUTER_V2_ABI = [
    {
        "name": "getAmountsOut",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
]

QUOTER_V2_ABI = [
    {
        "name": "quoteExactInputSingle",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "tokenIn", "type": "address"},
                    {"name": "tokenOut", "type": "address"},
                    {"name": "amountIn", "type": "uint256"},
                    {"name": "fee", "type": "uint24"},
                    {"name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
            }
        ],
        "outputs": [
            {"name": "amountOut", "type": "uint256"},
            {"name": "sqrtPriceX96After", "type": "uint160"},
            {"name": "initializedTicksCrossed", "type": "uint32"},
            {"name": "gasEstimate", "type": "uint256"},
        ],
    },
]

# Faults worth another attempt; reverts and bad responses are not
TRANSIENT_ERRORS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    TimeoutError,
    ConnectionError,
)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class Quote:
    """Single hop quote. amount_out is 0 whenever error is set."""
    venue: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int = 0
    fee_tier: Optional[int] = None
    via: Tuple[str, ...] = ()
    stale: bool = False  # Produced by the static estimator, not a live call
    error: str = ""
    timestamp: float = 0

    @property
    def ok(self) -> bool:
        return not self.error and self.amount_out > 0


def failed_quote(venue: Venue, token_in: Token, token_out: Token, amount_in: int, error: str) -> Quote:
    return Quote(
        venue=venue.name,
        token_in=token_in.address,
        token_out=token_out.address,
        amount_in=amount_in,
        error=error,
        timestamp=time.time(),
    )


# =============================================================================
# CONTRACT CALLS WITH TIMEOUT & RETRY
# =============================================================================

class ContractCaller:
    """
    Runs read-only contract calls on a worker pool with a hard timeout.
    Transient transport faults are retried with linear backoff; anything
    else propagates on the first attempt.
    """

    def __init__(
        self,
        pool: ThreadPoolExecutor,
        timeout: float,
        retry_count: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._pool = pool
        self.timeout = timeout
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self._sleep = sleep

    def call(self, fn: Callable[[], T], label: str = "call") -> T:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.retry_count + 1):
            future = self._pool.submit(fn)
            try:
                return future.result(timeout=self.timeout)
            except FuturesTimeout:
                future.cancel()
                last_error = TransportTimeout(f"{label} timed out after {self.timeout}s")
            except TRANSIENT_ERRORS as e:
                last_error = TransportTimeout(f"{label}: {e}")

            logger.debug(f"{label} attempt {attempt}/{self.retry_count} failed: {last_error}")
            if attempt < self.retry_count:
                self._sleep(self.retry_delay * attempt)

        raise last_error


# =============================================================================
# VENUE PROVIDERS
# =============================================================================

class QuoteProvider:
    """One provider per venue family; subclasses implement quote()"""

    family: VenueFamily

    def __init__(self, w3: Web3, caller: ContractCaller):
        self.w3 = w3
        self.caller = caller
        self._contract_cache: Dict[str, object] = {}

    def _contract(self, address: str, abi: list):
        if address not in self._contract_cache:
            self._contract_cache[address] = self.w3.eth.contract(
                address=Web3.to_checksum_address(address),
                abi=abi,
            )
        return self._contract_cache[address]

    def quote(self, venue: Venue, token_in: Token, token_out: Token, amount_in: int) -> Quote:
        raise NotImplementedError


class ConstantProductProvider(QuoteProvider):
    """
    x*y=k routers (V2 forks). Tries the direct pair, then a two-hop path
    through the hub token when neither endpoint is the hub.
    """

    family = VenueFamily.CONSTANT_PRODUCT

    def __init__(self, w3: Web3, caller: ContractCaller, hub_token: Optional[str] = None):
        super().__init__(w3, caller)
        self.hub_token = hub_token

    def _amounts_out(self, venue: Venue, amount_in: int, path: List[str]) -> int:
        router = self._contract(venue.entry_point, ROUTER_V2_ABI)
        fn = router.functions.getAmountsOut(amount_in, path)
        amounts = self.caller.call(fn.call, label=f"{venue.name}.getAmountsOut")
        if not amounts or len(amounts) != len(path):
            raise QuoteUnavailable(f"malformed getAmountsOut response: {amounts!r}")
        return int(amounts[-1])

    def candidate_paths(self, token_in: str, token_out: str) -> List[List[str]]:
        paths = [[token_in, token_out]]
        if self.hub_token and self.hub_token not in (token_in, token_out):
            paths.append([token_in, self.hub_token, token_out])
        return paths

    def quote(self, venue: Venue, token_in: Token, token_out: Token, amount_in: int) -> Quote:
        errors = []

        for path in self.candidate_paths(token_in.address, token_out.address):
            try:
                amount_out = self._amounts_out(venue, amount_in, path)
            except ContractLogicError as e:
                errors.append(f"{len(path) - 1}-hop reverted: {e}")
                continue
            except Exception as e:
                errors.append(f"{len(path) - 1}-hop failed: {e}")
                continue

            if amount_out > 0:
                return Quote(
                    venue=venue.name,
                    token_in=token_in.address,
                    token_out=token_out.address,
                    amount_in=amount_in,
                    amount_out=amount_out,
                    via=tuple(path),
                    timestamp=time.time(),
                )
            errors.append(f"{len(path) - 1}-hop returned zero")

        return failed_quote(venue, token_in, token_out, amount_in, "; ".join(errors))


class ConcentratedLiquidityProvider(QuoteProvider):
    """
    Fee-tier quoters (V3 QuoterV2). Tries the pair's configured tiers, or
    the generic defaults, and keeps the first tier with a non-zero output.
    """

    family = VenueFamily.CONCENTRATED_LIQUIDITY

    def __init__(
        self,
        w3: Web3,
        caller: ContractCaller,
        default_tiers: Tuple[int, ...] = DEFAULT_FEE_TIERS,
    ):
        super().__init__(w3, caller)
        self.default_tiers = default_tiers

    def candidate_tiers(self, venue: Venue, token_in: str, token_out: str) -> Tuple[int, ...]:
        return venue.fee_tiers_for(token_in, token_out) or self.default_tiers

    def _quote_tier(self, venue: Venue, token_in: str, token_out: str, amount_in: int, fee: int) -> int:
        quoter = self._contract(venue.entry_point, QUOTER_V2_ABI)
        fn = quoter.functions.quoteExactInputSingle((token_in, token_out, amount_in, fee, 0))
        result = self.caller.call(fn.call, label=f"{venue.name}.quoteExactInputSingle[{fee}]")
        try:
            return int(result[0])
        except (TypeError, IndexError, ValueError):
            raise QuoteUnavailable(f"malformed quoter response: {result!r}")

    def quote(self, venue: Venue, token_in: Token, token_out: Token, amount_in: int) -> Quote:
        errors = []

        for fee in self.candidate_tiers(venue, token_in.address, token_out.address):
            try:
                amount_out = self._quote_tier(
                    venue, token_in.address, token_out.address, amount_in, fee
                )
            except ContractLogicError as e:
                errors.append(f"fee {fee} reverted: {e}")
                continue
            except Exception as e:
                errors.append(f"fee {fee} failed: {e}")
                continue

            if amount_out > 0:
                return Quote(
                    venue=venue.name,
                    token_in=token_in.address,
                    token_out=token_out.address,
                    amount_in=amount_in,
                    amount_out=amount_out,
                    fee_tier=fee,
                    via=(token_in.address, token_out.address),
                    timestamp=time.time(),
                )
            errors.append(f"fee {fee} returned zero")

        return failed_quote(
            venue, token_in, token_out, amount_in,
            "; ".join(errors) or "no fee tiers configured",
        )


# =============================================================================
# FALLBACK ESTIMATION
# =============================================================================

class StaticPriceEstimator:
    """
    Approximates a hop from configured reference prices when every live
    call failed. Results are always flagged stale.
    """

    def estimate(self, venue: Venue, token_in: Token, token_out: Token, amount_in: int) -> Optional[int]:
        if not token_in.usd_price or not token_out.usd_price:
            return None

        value = (
            Fraction(amount_in)
            * Fraction(token_in.usd_price)
            * token_out.unit
            / (Fraction(token_out.usd_price) * token_in.unit)
        )
        value = value * (10000 - venue.fee_bps) / 10000
        estimate = int(value)
        return estimate if estimate > 0 else None


# =============================================================================
# QUOTE ENGINE
# =============================================================================

class QuoteEngine:
    """
    Dispatches quotes to the provider for the venue's family and applies
    the optional stale fallback
    """

    def __init__(
        self,
        w3: Web3,
        timeout: float = 10.0,
        retry_count: int = 3,
        retry_delay: float = 1.0,
        hub_token: Optional[str] = None,
        estimator: Optional[StaticPriceEstimator] = None,
        max_workers: int = 8,
    ):
        self.w3 = w3
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="quote")
        caller = ContractCaller(self._pool, timeout, retry_count, retry_delay)
        self._providers: Dict[VenueFamily, QuoteProvider] = {
            VenueFamily.CONSTANT_PRODUCT: ConstantProductProvider(w3, caller, hub_token),
            VenueFamily.CONCENTRATED_LIQUIDITY: ConcentratedLiquidityProvider(w3, caller),
        }
        self.estimator = estimator

    @classmethod
    def from_settings(cls, w3: Web3, settings) -> "QuoteEngine":
        return cls(
            w3,
            timeout=settings.quote_timeout,
            retry_count=settings.retry_count,
            retry_delay=settings.retry_delay,
            hub_token=settings.hub_token,
            estimator=StaticPriceEstimator() if settings.enable_fallback_estimates else None,
            max_workers=max(2, settings.max_workers * 2),
        )

    def provider_for(self, venue: Venue) -> Optional[QuoteProvider]:
        return self._providers.get(venue.family)

    def quote(self, venue: Venue, token_in: Token, token_out: Token, amount_in: int) -> Quote:
        if amount_in <= 0:
            return failed_quote(venue, token_in, token_out, amount_in, "zero input amount")
        if token_in.address == token_out.address:
            return failed_quote(venue, token_in, token_out, amount_in, "identical tokens")

        provider = self.provider_for(venue)
        if provider is None:
            return failed_quote(
                venue, token_in, token_out, amount_in,
                f"no provider for venue family {venue.family}",
            )

        try:
            quote = provider.quote(venue, token_in, token_out, amount_in)
        except Exception as e:
            quote = failed_quote(venue, token_in, token_out, amount_in, f"provider error: {e}")

        if quote.ok:
            logger.debug(
                f"{venue.name}: {amount_in} {token_in.symbol} → {quote.amount_out} {token_out.symbol}"
                + (f" (fee {quote.fee_tier})" if quote.fee_tier else "")
            )
            return quote

        logger.debug(f"{venue.name}: {token_in.symbol} → {token_out.symbol} unavailable: {quote.error}")

        if self.estimator is not None:
            estimate = self.estimator.estimate(venue, token_in, token_out, amount_in)
            if estimate:
                logger.warning(
                    f"⚠️ {venue.name}: using STALE static estimate for "
                    f"{token_in.symbol} → {token_out.symbol} ({quote.error})"
                )
                return Quote(
                    venue=venue.name,
                    token_in=token_in.address,
                    token_out=token_out.address,
                    amount_in=amount_in,
                    amount_out=estimate,
                    stale=True,
                    timestamp=time.time(),
                )

        return quote

    def close(self):
        self._pool.shutdown(wait=False)
