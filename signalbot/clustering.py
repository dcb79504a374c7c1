"""
Topic clustering of enriched signals.

Claude proposes named groups of signal indices; the membership rules are
enforced here regardless of what comes back: indices must be in range, a
signal joins only the first cluster that claims it, and a cluster needs at
least two resolved signals.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from signalbot.llm_client import ClaudeClient
from signalbot.models import EnrichedSignal, Sentiment, TopicCluster
from signalbot.utils import ClassificationError, clamp, generate_id, parse_llm_json, safe_float
from signalbot.weighting import recency_multiplier

# Configure module logger
logger = logging.getLogger(__name__)

MIN_CLUSTER_SIZE = 2
MIXED_CONFIDENCE = 0.5

CLUSTERING_PROMPT = """You are a topic clustering engine. Given a list of signals (each with topics and core claims), group them into coherent topic clusters.

Each cluster should represent a distinct narrative, event, or theme that multiple signals are pointing at.

Respond with JSON only (no markdown fencing):
{
  "clusters": [
    {
      "name": "Short descriptive name for the cluster",
      "signal_indices": [0, 2, 5],
      "sentiment_direction": "bullish" | "bearish" | "hawkish" | "dovish" | "positive" | "negative" | "mixed",
      "sentiment_confidence": 0.0-1.0
    }
  ]
}

Rules:
- A signal can belong to at most one cluster
- Noise signals or signals that don't fit anywhere should be excluded
- Minimum 2 signals to form a cluster
- Cluster names should be specific: "Fed hawkish rhetoric intensifying" not "economy"
- Sentiment confidence reflects how aligned the signals are (1.0 = all agree, 0.5 = mixed)"""


def _resolve_indices(raw_indices: Any, size: int, claimed: set[int]) -> list[int]:
    if not isinstance(raw_indices, list):
        return []

    resolved: list[int] = []
    for raw in raw_indices:
        if isinstance(raw, bool) or not isinstance(raw, int):
            continue
        if raw < 0 or raw >= size:
            continue
        if raw in claimed or raw in resolved:
            continue
        resolved.append(raw)
    return resolved


def _parse_sentiment(entry: dict) -> Sentiment:
    direction = str(entry.get("sentiment_direction") or "mixed").strip().lower()
    default_confidence = MIXED_CONFIDENCE if direction == "mixed" else 0.0
    confidence = clamp(safe_float(entry.get("sentiment_confidence"), default_confidence), 0.0, 1.0)
    return Sentiment(direction=direction, confidence=confidence)


class TopicClusterer:
    """Groups recent signals into topic clusters."""

    def __init__(self, llm: ClaudeClient):
        self.llm = llm

    def cluster_signals(
        self,
        signals: list[EnrichedSignal],
        now: Optional[datetime] = None
    ) -> list[TopicCluster]:
        """
        Cluster a window of enriched signals into topic groups.

        Args:
            signals: Signals to group (index order is what the model sees)
            now: Timestamp recorded as last_updated_at

        Returns:
            Clusters with at least two signals each; empty when fewer than two
            signals are given or the model output cannot be parsed
        """
        if len(signals) < MIN_CLUSTER_SIZE:
            return []

        now = now or datetime.utcnow()

        summaries = [
            {
                "index": i,
                "claim": s.core_claim,
                "topics": s.topics,
                "type": s.signal_type,
                "urgency": s.urgency,
                "weight": round(s.weight, 3),
                "handle": s.raw.author.handle,
            }
            for i, s in enumerate(signals)
        ]

        prompt = f"Cluster these {len(signals)} signals:\n\n{json.dumps(summaries, indent=2)}"
        try:
            text = self.llm.complete(CLUSTERING_PROMPT, prompt, max_tokens=1000)
        except ClassificationError as e:
            logger.warning(f"Clustering returned no usable content: {e}")
            return []

        result = parse_llm_json(text, {"clusters": []}, label="TopicClusterer")
        raw_clusters = result.value.get("clusters")
        if not isinstance(raw_clusters, list):
            logger.warning("Clustering response has no 'clusters' list")
            return []

        claimed: set[int] = set()
        clusters: list[TopicCluster] = []

        for entry in raw_clusters:
            if not isinstance(entry, dict):
                continue

            indices = _resolve_indices(entry.get("signal_indices"), len(signals), claimed)
            if len(indices) < MIN_CLUSTER_SIZE:
                logger.debug(f"Dropping cluster {entry.get('name')!r}: {len(indices)} resolved signals")
                continue

            claimed.update(indices)
            members = [signals[i] for i in indices]

            total_engagement = sum(s.raw.engagement.total for s in members)

            clusters.append(TopicCluster(
                id=generate_id("clst"),
                name=str(entry.get("name") or "Unnamed cluster").strip(),
                signals=members,
                signal_count=len(members),
                avg_engagement=total_engagement / len(members),
                sentiment=_parse_sentiment(entry),
                first_seen_at=min(s.raw.timestamp for s in members),
                last_updated_at=now,
            ))

        logger.info(f"Clustered {len(signals)} signals into {len(clusters)} clusters")
        return clusters

    @staticmethod
    def cluster_weight(cluster: TopicCluster, now: Optional[datetime] = None) -> float:
        """Sum of member weights scaled by recency. Used for ranking only."""
        now = now or datetime.utcnow()
        return sum(
            signal.weight * recency_multiplier(signal.raw.timestamp, now)
            for signal in cluster.signals
        )
