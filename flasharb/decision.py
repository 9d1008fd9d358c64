# flasharb/decision.py
"""
Opportunity Ranker
Decides which opportunities are worth acting on and in what order

No trade executes unless it survives the threshold here and is built on
live quotes only.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from flasharb.arbitrage_scanner import Opportunity

logger = logging.getLogger(__name__)


def rank_opportunities(opportunities: Iterable[Opportunity], min_profit_usd: Decimal) -> List[Opportunity]:
    """
    Drop zero-profit and below-threshold entries, then sort by USD profit
    descending. Ties go to the smaller input; the sort is stable beyond that.
    """
    eligible = [
        opp for opp in opportunities
        if opp.profit.net_profit > 0 and opp.net_profit_usd >= min_profit_usd
    ]
    return sorted(eligible, key=lambda opp: (-opp.net_profit_usd, opp.amount_in))


def select_executable(ranked: List[Opportunity]) -> Optional[Opportunity]:
    """Best opportunity that may be executed automatically"""
    for opp in ranked:
        if opp.is_executable:
            return opp
        logger.info(f"[{opp.opportunity_id}] ⚠️ Skipping stale opportunity {opp.route.label}")
    return None
