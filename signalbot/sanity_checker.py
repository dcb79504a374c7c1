"""
Sanity checker: the final decision step before capital is committed.

Runs deterministic gates first (portfolio constraints, minimum edge score,
minimum signal count) and only then asks Claude for a qualitative
TRADE / PASS / WATCH arbitration. Always returns a fully populated
TradeOrder; malformed model output degrades to PASS, and a TRADE that sizes
to zero is downgraded to PASS.
"""

import json
import logging
from typing import Optional

from signalbot.config import CampaignConfig
from signalbot.llm_client import ClaudeClient
from signalbot.models import (
    DECISIONS,
    PASS,
    TRADE,
    WATCH,
    EdgeOpportunity,
    PortfolioState,
    TradeOrder,
)
from signalbot.sizing import calculate_exit_levels, calculate_position_size, check_portfolio_constraints
from signalbot.utils import clamp, parse_llm_json, safe_float

# Configure module logger
logger = logging.getLogger(__name__)

MAX_CONFIDENCE_ADJUSTMENT = 0.2

SANITY_CHECK_PROMPT = """You are a risk-aware prediction market analyst for a crowd-sourced trading campaign.
You are the final check before the agent commits real capital (${bankroll:,.0f} bankroll) to a trade.

Given an edge opportunity (topic cluster -> Polymarket market mapping), evaluate whether this trade should proceed.

Respond with JSON only (no markdown fencing):
{{
  "decision": "TRADE" | "PASS" | "WATCH",
  "reasoning": "2-3 sentence explanation of your decision. This will be published, so make it clear and insightful.",
  "pass_reason": "If PASS, explain why (e.g., 'market already priced in', 'signal too noisy')",
  "watch_condition": "If WATCH, what would change the decision (e.g., 'waiting for CPI print at 8:30am')",
  "confidence_adjustment": -0.2 to 0.2,
  "theme": "A short label for portfolio tracking (e.g., 'US politics', 'crypto prices', 'macro')"
}}

You should PASS if:
- The market price is already very close to the signal-implied probability (no edge)
- The signals are too noisy, conflicting, or low quality
- The signal is based purely on rumor with no corroboration
- Risk/reward is poor (e.g., buying YES at $0.90)

You should WATCH if:
- There's a pending catalyst (data release, event, announcement) that would clarify
- The signal is forming but not mature enough yet

You should TRADE if:
- Clear price discrepancy between signal and market
- Signal is corroborated by multiple independent sources
- Reasonable risk/reward at current price"""

PARSE_FAILURE_VERDICT = {
    "decision": PASS,
    "reasoning": "Failed to parse arbitration response",
    "pass_reason": "Arbitration parse error",
}


class SanityChecker:
    """Turns an edge opportunity into a TradeOrder."""

    def __init__(self, llm: ClaudeClient, config: CampaignConfig):
        self.llm = llm
        self.config = config

    def _order(
        self,
        opportunity: EdgeOpportunity,
        decision: str,
        reasoning: str,
        size: int = 0,
        stop_loss: float = 0.0,
        take_profit: float = 0.0,
        pass_reason: Optional[str] = None,
        watch_condition: Optional[str] = None,
        theme: str = ""
    ) -> TradeOrder:
        return TradeOrder(
            decision=decision,
            market=opportunity.market,
            direction=opportunity.direction,
            size=size,
            entry_price=opportunity.current_market_price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            edge_score=opportunity.edge_score,
            reasoning=reasoning,
            contributing_signals=tuple(opportunity.cluster.signals),
            pass_reason=pass_reason,
            watch_condition=watch_condition,
            theme=theme,
        )

    def _build_summary(self, opportunity: EdgeOpportunity, portfolio: PortfolioState) -> dict:
        cluster = opportunity.cluster
        return {
            "cluster_name": cluster.name,
            "signal_count": cluster.signal_count,
            "sentiment": {
                "direction": cluster.sentiment.direction,
                "confidence": cluster.sentiment.confidence,
            },
            "top_claims": [
                {
                    "claim": s.core_claim,
                    "type": s.signal_type,
                    "urgency": s.urgency,
                    "source": s.raw.author.handle,
                }
                for s in cluster.signals[:5]
            ],
            "market_question": opportunity.market.question,
            "direction": opportunity.direction,
            "yes_price": opportunity.market.price_for("YES"),
            "no_price": opportunity.market.price_for("NO"),
            "signal_implied_probability": opportunity.signal_implied_probability,
            "current_market_price": opportunity.current_market_price,
            "price_discrepancy": round(opportunity.price_discrepancy, 4),
            "edge_score": round(opportunity.edge_score, 4),
            "bankroll": portfolio.bankroll,
            "cash_available": portfolio.cash_available,
            "open_positions": len(portfolio.positions),
        }

    def arbitrate(self, opportunity: EdgeOpportunity, portfolio: PortfolioState) -> dict:
        """
        Ask Claude for a verdict. Never raises.

        Returns:
            Verdict dict; PARSE_FAILURE_VERDICT (or a transport-failure
            equivalent) when no usable verdict is available
        """
        system = SANITY_CHECK_PROMPT.format(bankroll=self.config.bankroll)
        prompt = (
            "Evaluate this edge opportunity:\n\n"
            f"{json.dumps(self._build_summary(opportunity, portfolio), indent=2)}"
        )

        try:
            text = self.llm.complete(system, prompt, max_tokens=500)
        except Exception as e:
            logger.error(f"Arbitration call failed for {opportunity.market.condition_id}: {e}")
            return {
                "decision": PASS,
                "reasoning": f"Arbitration unavailable: {e}",
                "pass_reason": "Arbitration call failed",
            }

        result = parse_llm_json(text, dict(PARSE_FAILURE_VERDICT), label="SanityChecker")
        return result.value

    def evaluate(self, opportunity: EdgeOpportunity, portfolio: PortfolioState) -> TradeOrder:
        """
        Run the full sanity check on an opportunity.

        Args:
            opportunity: Scored opportunity
            portfolio: Current portfolio snapshot

        Returns:
            TradeOrder with decision TRADE, PASS or WATCH
        """
        constraint_check = check_portfolio_constraints(opportunity, portfolio, self.config)
        if not constraint_check.allowed:
            return self._order(
                opportunity,
                PASS,
                reasoning=constraint_check.reason,
                pass_reason=constraint_check.reason,
            )

        if opportunity.edge_score < self.config.min_edge_score:
            return self._order(
                opportunity,
                PASS,
                reasoning=(
                    f"Edge score {opportunity.edge_score:.2f} below minimum threshold "
                    f"{self.config.min_edge_score}"
                ),
                pass_reason="Edge score too low",
            )

        cluster = opportunity.cluster
        if cluster.signal_count < self.config.min_signals_to_act:
            return self._order(
                opportunity,
                WATCH,
                reasoning=(
                    f"Only {cluster.signal_count} signals, need at least "
                    f"{self.config.min_signals_to_act} before acting"
                ),
                watch_condition=f'Waiting for more signals on "{cluster.name}"',
            )

        verdict = self.arbitrate(opportunity, portfolio)

        decision = str(verdict.get("decision") or "").upper()
        if decision not in DECISIONS:
            logger.warning(f"Unknown arbitration decision {verdict.get('decision')!r}, treating as PASS")
            decision = PASS

        reasoning = str(verdict.get("reasoning") or "").strip() or "No reasoning provided"
        pass_reason = str(verdict.get("pass_reason") or "").strip() or None
        watch_condition = str(verdict.get("watch_condition") or "").strip() or None
        theme = str(verdict.get("theme") or "")

        adjustment = clamp(
            safe_float(verdict.get("confidence_adjustment"), 0.0),
            -MAX_CONFIDENCE_ADJUSTMENT,
            MAX_CONFIDENCE_ADJUSTMENT,
        )
        logger.debug(
            f"Arbitration for {opportunity.market.condition_id}: {decision} "
            f"(confidence adjustment {adjustment:+.2f})"
        )

        if decision != TRADE:
            return self._order(
                opportunity,
                decision,
                reasoning=reasoning,
                pass_reason=pass_reason if decision == PASS else None,
                watch_condition=watch_condition if decision == WATCH else None,
                theme=theme,
            )

        size = calculate_position_size(opportunity, portfolio, self.config)
        if size == 0:
            return self._order(
                opportunity,
                PASS,
                reasoning=reasoning,
                pass_reason="Position size below minimum after portfolio caps",
                theme=theme,
            )

        exits = calculate_exit_levels(opportunity.current_market_price, opportunity.direction, self.config)
        return self._order(
            opportunity,
            TRADE,
            reasoning=reasoning,
            size=size,
            stop_loss=exits.stop_loss,
            take_profit=exits.take_profit,
            theme=theme,
        )
