# flasharb/pairs.py
"""
Token, Venue & Route Registry
Static configuration data for Polygon: tokens, liquidity venues and the
closed arbitrage loops that are scanned every cycle
"""

from web3 import Web3
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

# =============================================================================
# TOKEN ADDRESSES (Polygon Mainnet - All Checksummed)
# =============================================================================

# Stablecoins
USDC = Web3.to_checksum_address("0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359")
USDT = Web3.to_checksum_address("0xc2132D05D31c914a87C6611C10748AEb04B58e8F")
DAI = Web3.to_checksum_address("0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063")

# Native/Wrapped
WMATIC = Web3.to_checksum_address("0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270")
WETH = Web3.to_checksum_address("0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619")
WBTC = Web3.to_checksum_address("0x1BFD67037B42Cf73acF2047067bd4F2C47D9BfD6")

# DeFi
LINK = Web3.to_checksum_address("0x53E0bca35eC356BD5ddDFebbD1Fc0fD03FaBad39")
AAVE = Web3.to_checksum_address("0xD6DF932A45C0f255f85145f286eA0b292B21C90B")


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class Token:
    address: str
    symbol: str
    decimals: int
    usd_price: Optional[Decimal] = None  # Reference price, display and estimates only

    @property
    def unit(self) -> int:
        return 10 ** self.decimals


class VenueFamily(Enum):
    CONSTANT_PRODUCT = "constant_product"              # x*y=k routers (V2 forks)
    CONCENTRATED_LIQUIDITY = "concentrated_liquidity"  # fee-tier quoters (V3)


@dataclass(frozen=True)
class Venue:
    """
    A liquidity venue. entry_point is the router for constant-product
    venues and the quoter for concentrated-liquidity venues.
    """
    name: str
    family: VenueFamily
    entry_point: str
    fee_bps: int
    # pair -> fee tiers to try first; either direction of a pair matches
    fee_tiers: Dict[Tuple[str, str], Tuple[int, ...]] = field(
        default_factory=dict, compare=False, hash=False
    )

    def fee_tiers_for(self, token_in: str, token_out: str) -> Tuple[int, ...]:
        tiers = self.fee_tiers.get((token_in, token_out))
        if tiers is None:
            tiers = self.fee_tiers.get((token_out, token_in), ())
        return tiers


@dataclass(frozen=True)
class Route:
    """
    Closed arbitrage loop: tokens[0] -> ... -> tokens[-1] == tokens[0],
    venues[i] serves the hop tokens[i] -> tokens[i + 1]
    """
    tokens: Tuple[Token, ...]
    venues: Tuple[Venue, ...]

    def __post_init__(self):
        if len(self.tokens) < 2:
            raise ValueError("A route needs at least two tokens")
        if len(self.venues) != len(self.tokens) - 1:
            raise ValueError(
                f"Route has {len(self.tokens) - 1} hops but {len(self.venues)} venues"
            )

    @property
    def start(self) -> Token:
        return self.tokens[0]

    @property
    def end(self) -> Token:
        return self.tokens[-1]

    @property
    def is_closed(self) -> bool:
        return self.start.address == self.end.address

    def hops(self) -> Iterator[Tuple[Token, Token, Venue]]:
        for i, venue in enumerate(self.venues):
            yield self.tokens[i], self.tokens[i + 1], venue

    def reversed_venues(self) -> "Route":
        """Same tokens, venue order swapped (V3 -> V2 becomes V2 -> V3)"""
        return Route(tokens=self.tokens, venues=tuple(reversed(self.venues)))

    @property
    def label(self) -> str:
        tokens = " → ".join(t.symbol for t in self.tokens)
        venues = "/".join(v.name for v in self.venues)
        return f"{tokens} [{venues}]"


# =============================================================================
# TOKEN METADATA
# =============================================================================

TOKENS: Dict[str, Token] = {
    USDC: Token(USDC, "USDC", 6, Decimal("1")),
    USDT: Token(USDT, "USDT", 6, Decimal("1")),
    DAI: Token(DAI, "DAI", 18, Decimal("1")),
    WETH: Token(WETH, "WETH", 18, Decimal("4137")),
    WMATIC: Token(WMATIC, "WMATIC", 18, Decimal("0.203")),
    WBTC: Token(WBTC, "WBTC", 8, Decimal("40000")),
    LINK: Token(LINK, "LINK", 18, Decimal("13")),
    AAVE: Token(AAVE, "AAVE", 18, Decimal("90")),
}

# Common routing hub for constant-product venues
HUB_TOKEN = WMATIC

# =============================================================================
# VENUES
# =============================================================================

# Generic concentrated-liquidity tiers, in priority order
DEFAULT_FEE_TIERS: Tuple[int, ...] = (500, 3000, 100, 10000)

# Known-good tiers per pool, used in place of the generic list for both swap directions
FEE_TIER_OVERRIDES: Dict[Tuple[str, str], Tuple[int, ...]] = {
    (USDC, WETH): (500, 3000),
    (USDC, WMATIC): (3000, 500),
    (USDC, LINK): (3000,),
    (USDC, WBTC): (500,),
    (USDC, AAVE): (3000,),
    (USDC, USDT): (100,),
    (USDT, WETH): (500,),
    (USDT, WMATIC): (500,),
    (DAI, WMATIC): (500,),
    (DAI, WETH): (500,),
}

VENUES: Dict[str, Venue] = {
    "uniswap_v3": Venue(
        name="uniswap_v3",
        family=VenueFamily.CONCENTRATED_LIQUIDITY,
        entry_point=Web3.to_checksum_address("0x61fFE014bA17989E743c5F6cB21bF9697530B21e"),  # QuoterV2
        fee_bps=5,
        fee_tiers=FEE_TIER_OVERRIDES,
    ),
    "quickswap": Venue(
        name="quickswap",
        family=VenueFamily.CONSTANT_PRODUCT,
        entry_point=Web3.to_checksum_address("0xa5E0829CaCEd8fFDD4De3c43696c57F7D7A678ff"),
        fee_bps=30,
    ),
    "sushiswap": Venue(
        name="sushiswap",
        family=VenueFamily.CONSTANT_PRODUCT,
        entry_point=Web3.to_checksum_address("0x1b02dA8Cb0d097eB8D57A175b88c7D8b47997506"),
        fee_bps=30,
    ),
}

# =============================================================================
# AAVE V3 FLASH LOAN CONFIG
# =============================================================================

AAVE_V3_POOL = Web3.to_checksum_address("0x794a61358D6845594F94dc1DB02A252b5b4814aD")

# =============================================================================
# ROUTES
# =============================================================================

# (tokens, venue per hop); reverse venue order is scanned as a variant
ROUTE_TABLE: List[Tuple[Tuple[str, ...], Tuple[str, ...]]] = [
    ((USDC, WETH, USDC), ("uniswap_v3", "quickswap")),      # Reliable, high liq
    ((USDC, WMATIC, USDC), ("uniswap_v3", "quickswap")),
    ((USDT, WETH, USDT), ("uniswap_v3", "quickswap")),
    ((USDT, WMATIC, USDT), ("uniswap_v3", "quickswap")),
    ((DAI, WETH, DAI), ("uniswap_v3", "quickswap")),        # DAI has good V2 via WETH
    ((DAI, WMATIC, DAI), ("uniswap_v3", "quickswap")),
    ((USDC, WETH, USDC), ("uniswap_v3", "sushiswap")),
]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def build_routes(
    table: List[Tuple[Tuple[str, ...], Tuple[str, ...]]],
    tokens: Dict[str, Token],
    venues: Dict[str, Venue],
) -> List[Route]:
    """Resolve a route table of addresses and venue names into Route objects"""
    routes = []
    for token_addrs, venue_names in table:
        routes.append(
            Route(
                tokens=tuple(tokens[Web3.to_checksum_address(a)] for a in token_addrs),
                venues=tuple(venues[name] for name in venue_names),
            )
        )
    return routes

