"""Tests for position sizing, portfolio constraints and exit levels."""

import pytest

from conftest import make_market, make_opportunity, make_portfolio, make_position
from signalbot.sizing import (
    calculate_exit_levels,
    calculate_position_size,
    check_portfolio_constraints,
    get_conviction_level,
)


@pytest.mark.parametrize("edge,level", [
    (0.85, "high"),
    (0.8, "moderate"),
    (0.6, "moderate"),
    (0.5, "low"),
    (0.1, "low"),
])
def test_conviction_level(edge, level):
    assert get_conviction_level(edge) == level


class TestPositionSize:
    def test_high_conviction_scenario(self, config):
        size = calculate_position_size(make_opportunity(edge_score=0.85), make_portfolio(), config)
        assert size == 400

    def test_moderate_and_low_conviction(self, config):
        assert calculate_position_size(make_opportunity(edge_score=0.6), make_portfolio(), config) == 200
        assert calculate_position_size(make_opportunity(edge_score=0.4), make_portfolio(), config) == 100

    def test_capped_by_cash_above_reserve(self, config):
        # Reserve is 2,000; only 250 spendable
        portfolio = make_portfolio(cash_available=2_250.0)
        assert calculate_position_size(make_opportunity(edge_score=0.9), portfolio, config) == 250

    def test_below_minimum_is_zero(self, config):
        portfolio = make_portfolio(cash_available=2_040.0)
        assert calculate_position_size(make_opportunity(edge_score=0.9), portfolio, config) == 0

    def test_no_spendable_cash_is_zero(self, config):
        portfolio = make_portfolio(cash_available=1_000.0)
        assert calculate_position_size(make_opportunity(edge_score=0.9), portfolio, config) == 0

    @pytest.mark.parametrize("cash", [2_050.4, 2_100.6, 2_333.3, 9_000.0])
    def test_never_exceeds_caps(self, config, cash):
        portfolio = make_portfolio(cash_available=cash)
        size = calculate_position_size(make_opportunity(edge_score=0.95), portfolio, config)
        cap = min(config.max_position_pct * portfolio.bankroll, cash - config.cash_reserve_pct * portfolio.bankroll)
        assert size <= cap
        assert size == 0 or size >= config.min_position_usd


class TestPortfolioConstraints:
    def test_allows_clean_portfolio(self, config):
        check = check_portfolio_constraints(make_opportunity(), make_portfolio(), config)
        assert check.allowed
        assert check.reason is None

    def test_rejects_duplicate_market(self, config):
        market = make_market("0xsame")
        portfolio = make_portfolio(positions=[make_position(market_id="0xsame", question="Other question", size=100)])

        for edge in (0.1, 0.99):
            check = check_portfolio_constraints(make_opportunity(edge_score=edge, market=market), portfolio, config)
            assert not check.allowed
            assert "already have a position" in check.reason.lower()

    def test_rejects_at_max_positions(self, config):
        positions = [make_position(market_id=f"0x{i}", question=f"Q{i}", size=10) for i in range(10)]
        check = check_portfolio_constraints(make_opportunity(), make_portfolio(positions=positions), config)
        assert not check.allowed
        assert "max 10" in check.reason

    @pytest.mark.parametrize("bankroll", [5_000.0, 4_000.0])
    def test_drawdown_breaker(self, config, bankroll):
        check = check_portfolio_constraints(make_opportunity(), make_portfolio(bankroll=bankroll), config)
        assert not check.allowed
        assert "Drawdown" in check.reason

    def test_drawdown_breaker_not_triggered_above_threshold(self, config):
        check = check_portfolio_constraints(make_opportunity(), make_portfolio(bankroll=5_001.0), config)
        assert check.allowed

    def test_theme_exposure_by_first_word(self, config):
        positions = [
            make_position(market_id="0x1", question="Will BTC hit 100k?", size=800),
            make_position(market_id="0x2", question="Will ETH flip BTC?", size=800),
        ]
        opportunity = make_opportunity(market=make_market("0x3", "Will the Fed pause?"))

        check = check_portfolio_constraints(opportunity, make_portfolio(positions=positions), config)

        assert not check.allowed
        assert '"will"' in check.reason


class TestExitLevels:
    def test_yes_direction(self, config):
        levels = calculate_exit_levels(0.40, "YES", config)
        assert levels.stop_loss == pytest.approx(0.24)
        assert levels.take_profit == pytest.approx(0.80)

    def test_yes_take_profit_capped(self, config):
        assert calculate_exit_levels(0.60, "YES", config).take_profit == 0.99

    def test_no_direction_inverts(self, config):
        levels = calculate_exit_levels(0.40, "NO", config)
        assert levels.stop_loss == pytest.approx(0.56)
        assert levels.take_profit == pytest.approx(0.20)

    def test_no_stop_loss_capped(self, config):
        assert calculate_exit_levels(0.80, "NO", config).stop_loss == 0.99
