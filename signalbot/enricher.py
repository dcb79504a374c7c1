"""
Signal enricher for turning raw mentions into structured signals.

Each mention is rendered into a context document (reply ancestors, quoted
post, then the mention itself) and classified by Claude into a signal type,
a one-sentence core claim, an urgency tier and topic labels. Noise is
dropped. Low-trust accounts are filtered out before any classification call.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Optional

from signalbot.config import CampaignConfig
from signalbot.llm_client import ClaudeClient
from signalbot.models import (
    SIGNAL_TYPES,
    URGENCIES,
    ConversationMessage,
    EnrichedSignal,
    Engagement,
    RawMention,
)
from signalbot.utils import generate_id, parse_llm_json
from signalbot.weighting import engagement_score, engagement_weight

# Configure module logger
logger = logging.getLogger(__name__)

ENRICH_BATCH_SIZE = 5

ENRICHMENT_PROMPT = """You are an AI signal analyst for a prediction market trading campaign.
Given a tweet that tagged @{handle}, extract structured signal information.

The tweet may be a reply or a quote tweet. When conversation context is provided, the
real signal is usually in the parent or quoted tweet, not in the tagging tweet itself
(which is often just "@{handle} look at this"). Extract the claim from wherever it lives.

The tweet may contain: breaking news, data points, rumors, sentiment/vibes, on-chain observations,
direct market references, or just noise. Your job is to classify and extract the core claim.

Respond with JSON only (no markdown fencing):
{{
  "signal_type": "news" | "data" | "rumor" | "sentiment" | "onchain" | "market_pointer" | "noise",
  "core_claim": "One sentence summarizing what this person is telling us. What happened or might happen?",
  "urgency": "breaking" | "developing" | "slow",
  "topics": ["topic1", "topic2"],
  "is_noise": false
}}

Rules:
- "noise" = greetings, spam, questions about how the bot works, unrelated content
- "breaking" = something that just happened or is happening now
- "developing" = a trend or narrative that's forming
- "slow" = background context, general sentiment
- Topics should be short labels like "Fed policy", "ETH price", "US elections", "BTC halving"
- core_claim should be factual and extractive, not your opinion"""

NOISE_CLASSIFICATION = {"is_noise": True}


def _format_engagement(engagement: Engagement) -> str:
    return (
        f"{engagement.likes} likes, {engagement.reshares} RTs, "
        f"{engagement.replies} replies, {engagement.quote_shares} quotes"
    )


def _format_message(label: str, message: ConversationMessage) -> list[str]:
    lines = [
        f"{label} @{message.author_handle} ({message.author_followers} followers, "
        f"{_format_engagement(message.engagement)}):",
        f'"{message.text}"',
    ]
    if message.urls:
        lines.append(f"URLs: {', '.join(message.urls)}")
    return lines


def build_context(mention: RawMention) -> str:
    """
    Render a mention and its surrounding conversation as a classification prompt.

    Order: reply ancestors (root first), quoted post, then the tagging mention,
    followed by a note on where the substantive claim is expected to be.
    """
    lines: list[str] = []

    if mention.conversation_context:
        lines.append("CONVERSATION CONTEXT (oldest first):")
        depth = len(mention.conversation_context)
        for i, parent in enumerate(mention.conversation_context):
            label = "[Parent]" if i == depth - 1 else f"[Ancestor {i + 1}]"
            lines.extend(_format_message(label, parent))
        lines.append("")

    if mention.quoted_message:
        lines.append("QUOTED TWEET:")
        lines.extend(_format_message("[Quoted]", mention.quoted_message))
        lines.append("")

    author = mention.author
    lines.append(
        f"TAGGING TWEET from @{author.handle} ({author.followers} followers, "
        f"{_format_engagement(mention.engagement)}):"
    )
    lines.append(f'"{mention.text}"')
    lines.append(f"URLs in tweet: {', '.join(mention.urls) or 'none'}")

    is_reply = bool(mention.conversation_context)
    is_quote = mention.quoted_message is not None
    if is_reply and is_quote:
        lines.append("")
        lines.append(
            "NOTE: This tweet is both a reply and a quote. The real claim is likely in the "
            "parent or quoted tweet above; the tagging tweet is pointing at it."
        )
    elif is_reply:
        lines.append("")
        lines.append(
            "NOTE: This tweet is a reply. The real claim is likely in the parent tweet above; "
            "the tagging tweet is pointing at it."
        )
    elif is_quote:
        lines.append("")
        lines.append(
            "NOTE: This tweet quotes another tweet. The real claim is likely in the quoted "
            "tweet above; the tagging tweet adds commentary."
        )

    return "\n".join(lines)


def best_engagement(mention: RawMention) -> Engagement:
    """
    Engagement of whichever of {mention, nearest ancestor, quoted post} scores highest.

    Ties keep the earlier candidate in that order.
    """
    candidates = [mention.engagement]
    if mention.conversation_context:
        candidates.append(mention.conversation_context[-1].engagement)
    if mention.quoted_message:
        candidates.append(mention.quoted_message.engagement)

    best = candidates[0]
    best_score = engagement_score(best.likes, best.reshares, best.quote_shares)
    for candidate in candidates[1:]:
        score = engagement_score(candidate.likes, candidate.reshares, candidate.quote_shares)
        if score > best_score:
            best, best_score = candidate, score
    return best


class SignalEnricher:
    """Filters and classifies raw mentions."""

    def __init__(self, llm: ClaudeClient, config: CampaignConfig):
        self.llm = llm
        self.config = config
        self.system_prompt = ENRICHMENT_PROMPT.format(handle=config.twitter_handle)

    def filter_mentions(self, mentions: list[RawMention]) -> list[RawMention]:
        """Drop mentions from accounts that are too new or too small."""
        kept = [
            m for m in mentions
            if m.author.account_age_days >= self.config.min_account_age_days
            and m.author.followers >= self.config.min_followers
        ]
        if len(kept) < len(mentions):
            logger.debug(f"Filtered {len(mentions) - len(kept)} low-trust mentions")
        return kept

    def classify(self, mention: RawMention) -> dict:
        """
        Classify one mention, degrading to a noise classification on malformed output.

        Transport failures propagate.
        """
        text = self.llm.complete(self.system_prompt, build_context(mention), max_tokens=500)
        result = parse_llm_json(text, dict(NOISE_CLASSIFICATION), label="SignalEnricher")
        return result.value

    def enrich_mention(self, mention: RawMention) -> Optional[EnrichedSignal]:
        """
        Enrich a single mention into a structured signal.

        Returns:
            EnrichedSignal, or None when the mention is noise or classification fails
        """
        try:
            parsed = self.classify(mention)
        except Exception as e:
            logger.error(f"Failed to enrich mention {mention.mention_id}: {e}")
            return None

        signal_type = parsed.get("signal_type")
        if parsed.get("is_noise") or signal_type == "noise":
            logger.debug(f"Mention {mention.mention_id} classified as noise")
            return None

        if signal_type not in SIGNAL_TYPES:
            logger.debug(f"Unknown signal_type {signal_type!r} for {mention.mention_id}, using 'rumor'")
            signal_type = "rumor"

        urgency = parsed.get("urgency")
        if urgency not in URGENCIES:
            urgency = "slow"

        core_claim = str(parsed.get("core_claim") or "").strip()
        if not core_claim:
            logger.debug(f"Mention {mention.mention_id} produced no core claim, dropping")
            return None

        topics = parsed.get("topics")
        if not isinstance(topics, list):
            topics = []

        engagement = best_engagement(mention)
        weight = engagement_weight(engagement.likes, engagement.reshares, engagement.quote_shares)

        return EnrichedSignal(
            id=generate_id("sig"),
            raw=mention,
            signal_type=signal_type,
            core_claim=core_claim,
            urgency=urgency,
            topics=[str(t).strip() for t in topics if str(t).strip()],
            weight=weight,
            processed_at=datetime.utcnow(),
        )

    def _safe_enrich(self, mention: RawMention) -> Optional[EnrichedSignal]:
        try:
            return self.enrich_mention(mention)
        except Exception as e:
            logger.error(f"Unexpected error enriching {mention.mention_id}: {e}", exc_info=True)
            return None

    def enrich_batch(self, mentions: list[RawMention]) -> list[EnrichedSignal]:
        """
        Filter, then enrich in chunks of ENRICH_BATCH_SIZE concurrent calls.

        Each chunk completes before the next starts. One failing mention never
        aborts the batch. Output preserves input order.
        """
        filtered = self.filter_mentions(mentions)
        results: list[EnrichedSignal] = []

        if not filtered:
            return results

        with ThreadPoolExecutor(max_workers=ENRICH_BATCH_SIZE) as pool:
            for start in range(0, len(filtered), ENRICH_BATCH_SIZE):
                chunk = filtered[start:start + ENRICH_BATCH_SIZE]
                for signal in pool.map(self._safe_enrich, chunk):
                    if signal is not None:
                        results.append(signal)

        logger.info(f"Enriched {len(results)}/{len(filtered)} mentions")
        return results
