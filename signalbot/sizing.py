"""
Position sizing and portfolio constraints.

Pure functions with no I/O: conviction tiers, conviction-scaled position
size, portfolio eligibility checks and stop-loss / take-profit levels.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from signalbot.config import CampaignConfig
from signalbot.models import EdgeOpportunity, PortfolioState

# Configure module logger
logger = logging.getLogger(__name__)

HIGH_CONVICTION_THRESHOLD = 0.8
MODERATE_CONVICTION_THRESHOLD = 0.5

CONVICTION_MULTIPLIERS = {
    "high": 2.0,
    "moderate": 1.0,
    "low": 0.5,
}

MIN_PRICE = 0.01
MAX_PRICE = 0.99


@dataclass(frozen=True)
class ConstraintCheck:
    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class ExitLevels:
    stop_loss: float
    take_profit: float


def get_conviction_level(edge_score: float) -> str:
    """'high' above 0.8, 'moderate' above 0.5, otherwise 'low'."""
    if edge_score > HIGH_CONVICTION_THRESHOLD:
        return "high"
    if edge_score > MODERATE_CONVICTION_THRESHOLD:
        return "moderate"
    return "low"


def calculate_position_size(
    opportunity: EdgeOpportunity,
    portfolio: PortfolioState,
    config: CampaignConfig
) -> int:
    """
    Conviction-scaled position size in whole currency units.

    The base percentage of bankroll is scaled by conviction (2x / 1x / 0.5x),
    capped at max_position_pct of bankroll and at the cash available above
    the reserve. Returns 0 when the result is below min_position_usd.

    Args:
        opportunity: Opportunity being sized
        portfolio: Current portfolio snapshot
        config: Campaign trading parameters

    Returns:
        Rounded position size, or 0 for no trade
    """
    conviction = get_conviction_level(opportunity.edge_score)
    pct = config.base_position_pct * CONVICTION_MULTIPLIERS[conviction]

    reserve = portfolio.bankroll * config.cash_reserve_pct
    max_spend = portfolio.cash_available - reserve
    cap = min(portfolio.bankroll * config.max_position_pct, max_spend)

    size = min(portfolio.bankroll * pct, cap)

    if size < config.min_position_usd:
        logger.debug(
            f"Position size {size:.2f} below minimum {config.min_position_usd} "
            f"(conviction={conviction}, spendable={max_spend:.2f})"
        )
        return 0

    rounded = round(size)
    # Rounding up may not cross a cap
    if rounded > cap:
        rounded = math.floor(cap)
    if rounded < config.min_position_usd:
        return 0
    return int(rounded)


def _theme_keyword(question: str) -> str:
    words = question.lower().split()
    return words[0] if words else ""


def check_portfolio_constraints(
    opportunity: EdgeOpportunity,
    portfolio: PortfolioState,
    config: CampaignConfig
) -> ConstraintCheck:
    """
    Check portfolio-level eligibility before allowing a trade.

    Rejects when: open positions are at the maximum; bankroll has fallen to
    or below drawdown_breaker_pct of the configured (original) bankroll;
    exposure to questions sharing the opportunity question's first word
    exceeds max_theme_exposure_pct of bankroll; or a position already exists
    in the same market.

    The theme check is a coarse keyword heuristic, not a taxonomy.
    """
    if len(portfolio.positions) >= config.max_open_positions:
        return ConstraintCheck(False, f"Already at max {config.max_open_positions} open positions")

    if portfolio.bankroll <= config.bankroll * config.drawdown_breaker_pct:
        return ConstraintCheck(False, f"Drawdown breaker active: bankroll at ${portfolio.bankroll:,.0f}")

    keyword = _theme_keyword(opportunity.market.question)
    if keyword:
        theme_exposure = sum(
            p.size for p in portfolio.positions
            if keyword in p.market_question.lower()
        )
        if theme_exposure > portfolio.bankroll * config.max_theme_exposure_pct:
            return ConstraintCheck(False, f'Theme exposure too high for "{keyword}"')

    market_id = opportunity.market.condition_id
    if any(p.market_id == market_id for p in portfolio.positions):
        return ConstraintCheck(False, "Already have a position in this market")

    return ConstraintCheck(True)


def calculate_exit_levels(entry_price: float, direction: str, config: CampaignConfig) -> ExitLevels:
    """
    Stop-loss and take-profit prices for a new position.

    YES: stop below entry, target above (capped at 0.99).
    NO: the relationship inverts; stop above entry, target below (floored at 0.01).
    """
    if direction == "YES":
        return ExitLevels(
            stop_loss=max(MIN_PRICE, entry_price * (1 - config.stop_loss_percent)),
            take_profit=min(MAX_PRICE, entry_price * config.take_profit_multiple),
        )

    return ExitLevels(
        stop_loss=min(MAX_PRICE, entry_price * (1 + config.stop_loss_percent)),
        take_profit=max(MIN_PRICE, entry_price / config.take_profit_multiple),
    )
