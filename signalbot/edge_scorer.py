"""
Edge scorer for mapping topic clusters onto prediction markets.

Claude decides which of the top markets a cluster is relevant to, the
direction the signals point and a signal-implied probability. The edge score
itself is computed here:

    edge_score = signal_strength * price_discrepancy * time_value
"""

import json
import logging
from typing import Any, Optional

from signalbot.config import CampaignConfig
from signalbot.llm_client import ClaudeClient
from signalbot.market_data import MarketCache
from signalbot.models import DIRECTIONS, EdgeOpportunity, MarketInstrument, TopicCluster
from signalbot.utils import ClassificationError, parse_llm_json, safe_float

# Configure module logger
logger = logging.getLogger(__name__)

TIME_VALUE_BREAKING = 1.0
TIME_VALUE_DEVELOPING = 0.7
TIME_VALUE_SLOW = 0.4

MARKET_MAPPING_PROMPT = """You are a prediction market analyst. Given a topic cluster (a group of signals from Crypto Twitter) and a list of active Polymarket markets, determine:

1. Which markets are relevant to this topic cluster?
2. What direction (YES or NO) does the signal evidence suggest?
3. What is the implied probability based on the signals?

Respond with JSON only (no markdown fencing):
{
  "mappings": [
    {
      "market_index": 0,
      "direction": "YES" | "NO",
      "signal_implied_probability": 0.0-1.0,
      "reasoning": "Brief explanation of why the signals suggest this direction and probability"
    }
  ]
}

Rules:
- Only include markets that are genuinely relevant to the cluster topic
- Be conservative with implied probability - don't overfit to noisy signals
- If the cluster sentiment is "mixed", the implied probability should be near 0.5
- Consider signal quality: corroborated claims > single sources > rumors > vibes
- It's fine to return an empty mappings array if no markets are relevant"""


def time_value(cluster: TopicCluster) -> float:
    """1.0 if any member is breaking, 0.7 if any is developing, else 0.4."""
    urgencies = {s.urgency for s in cluster.signals}
    if "breaking" in urgencies:
        return TIME_VALUE_BREAKING
    if "developing" in urgencies:
        return TIME_VALUE_DEVELOPING
    return TIME_VALUE_SLOW


def signal_strength(cluster_weight: float, normalizer: float) -> float:
    """Cluster weight normalised into [0, 1]."""
    return max(0.0, min(1.0, cluster_weight / normalizer))


class EdgeScorer:
    """Finds and scores edge opportunities for a cluster."""

    def __init__(self, llm: ClaudeClient, market_cache: MarketCache, config: CampaignConfig):
        self.llm = llm
        self.market_cache = market_cache
        self.config = config

    def _build_prompt(self, cluster: TopicCluster, markets: list[MarketInstrument]) -> str:
        market_summaries = [
            {
                "index": i,
                "id": m.condition_id,
                "question": m.question,
                "yes_price": m.price_for("YES"),
                "no_price": m.price_for("NO"),
                "volume": m.volume,
            }
            for i, m in enumerate(markets)
        ]

        cluster_summary = {
            "name": cluster.name,
            "signal_count": cluster.signal_count,
            "avg_engagement": round(cluster.avg_engagement, 2),
            "sentiment": {
                "direction": cluster.sentiment.direction,
                "confidence": cluster.sentiment.confidence,
            },
            "top_claims": [s.core_claim for s in cluster.signals[:5]],
        }

        return (
            f"Topic cluster:\n{json.dumps(cluster_summary, indent=2)}\n\n"
            f"Active Polymarket markets:\n{json.dumps(market_summaries, indent=2)}"
        )

    def _to_opportunity(
        self,
        mapping: Any,
        cluster: TopicCluster,
        markets: list[MarketInstrument],
        strength: float,
        urgency_value: float
    ) -> Optional[EdgeOpportunity]:
        if not isinstance(mapping, dict):
            return None

        index = mapping.get("market_index")
        if isinstance(index, bool) or not isinstance(index, int) or not (0 <= index < len(markets)):
            logger.debug(f"Skipping mapping with bad market_index {index!r}")
            return None

        direction = str(mapping.get("direction") or "").upper()
        if direction not in DIRECTIONS:
            logger.debug(f"Skipping mapping with bad direction {direction!r}")
            return None

        implied = safe_float(mapping.get("signal_implied_probability"), -1.0)
        if not (0.0 <= implied <= 1.0):
            logger.debug(f"Skipping mapping with bad implied probability {implied!r}")
            return None

        market = markets[index]
        current_price = market.price_for(direction)
        discrepancy = abs(implied - current_price)

        return EdgeOpportunity(
            cluster=cluster,
            market=market,
            direction=direction,
            signal_implied_probability=implied,
            current_market_price=current_price,
            price_discrepancy=discrepancy,
            edge_score=strength * discrepancy * urgency_value,
            reasoning=str(mapping.get("reasoning") or ""),
        )

    def find_edge(self, cluster: TopicCluster, cluster_weight: float) -> list[EdgeOpportunity]:
        """
        Map a cluster onto active markets and score each mapping.

        Args:
            cluster: Topic cluster to map
            cluster_weight: Recency-adjusted aggregate weight of the cluster

        Returns:
            Opportunities sorted by edge score, highest first. Unresolvable
            mappings are skipped; an unparseable response yields an empty list.
        """
        markets = self.market_cache.get_markets()[:self.config.markets_in_prompt]
        if not markets:
            logger.warning("No active markets available for edge scoring")
            return []

        try:
            text = self.llm.complete(
                MARKET_MAPPING_PROMPT,
                self._build_prompt(cluster, markets),
                max_tokens=1000,
            )
        except ClassificationError as e:
            logger.warning(f"Market mapping for {cluster.name!r} returned no usable content: {e}")
            return []
        result = parse_llm_json(text, {"mappings": []}, label="EdgeScorer")
        mappings = result.value.get("mappings")
        if not isinstance(mappings, list):
            return []

        strength = signal_strength(cluster_weight, self.config.signal_strength_normalizer)
        urgency_value = time_value(cluster)

        opportunities = []
        for mapping in mappings:
            opportunity = self._to_opportunity(mapping, cluster, markets, strength, urgency_value)
            if opportunity:
                opportunities.append(opportunity)

        opportunities.sort(key=lambda o: o.edge_score, reverse=True)
        logger.info(f"Cluster {cluster.name!r}: {len(opportunities)} opportunities")
        return opportunities
