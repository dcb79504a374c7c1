"""
Entry point for the crowd-signal campaign bot.

Wires the collaborators together and runs ticks either once (--once) or on
the poll interval (default). --status prints the persisted campaign state.
"""

import argparse
import logging
import signal
import sys
import time
from typing import Optional

from signalbot.campaign import Campaign
from signalbot.clustering import TopicClusterer
from signalbot.composer import ContentComposer
from signalbot.config import CampaignConfig, Config
from signalbot.edge_scorer import EdgeScorer
from signalbot.enricher import SignalEnricher
from signalbot.executor import TradeExecutor
from signalbot.llm_client import ClaudeClient
from signalbot.market_data import MarketCache, fetch_active_markets
from signalbot.sanity_checker import SanityChecker
from signalbot.scheduler import Scheduler
from signalbot.state import CampaignState
from signalbot.storage import Storage
from signalbot.twitter_client import TwitterClient
from signalbot.utils import format_currency, format_signed_percentage


# Configure logging
def setup_logging() -> None:
    """Configure logging for the application."""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if Config.LOG_FILE:
        Config.ensure_directories()
        handlers.append(logging.FileHandler(Config.LOG_FILE))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )


logger = logging.getLogger(__name__)


def build_campaign(config: CampaignConfig, storage: Storage) -> Campaign:
    """Construct a Campaign with production collaborators."""
    state = CampaignState(storage)
    state.init_or_restore()

    llm = ClaudeClient()
    market_cache = MarketCache(
        fetcher=fetch_active_markets,
        limit=config.market_fetch_limit,
        refresh_minutes=config.market_cache_minutes,
    )

    return Campaign(
        twitter=TwitterClient(),
        enricher=SignalEnricher(llm, config),
        clusterer=TopicClusterer(llm),
        edge_scorer=EdgeScorer(llm, market_cache, config),
        sanity_checker=SanityChecker(llm, config),
        executor=TradeExecutor(),
        composer=ContentComposer(config.twitter_handle),
        storage=storage,
        state=state,
        config=config,
    )


def _load_config() -> Optional[CampaignConfig]:
    """Load and validate settings, logging every problem found."""
    is_valid, errors = Config.validate()
    config = CampaignConfig.from_env()
    config_valid, config_errors = config.validate()

    errors = errors + config_errors
    if not (is_valid and config_valid):
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return None

    Config.ensure_directories()
    return config


def main() -> int:
    """
    Main entry point for the campaign bot.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Crowd-signal prediction market campaign bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run continuously, one tick per poll interval
  python -m signalbot.main

  # Run a single tick and exit
  python -m signalbot.main --once

  # Show persisted campaign state
  python -m signalbot.main --status

  # Record a sold position
  python -m signalbot.main --close trd_abc123 --exit-price 0.72
        """
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick (and digest check) and exit"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show campaign status and exit"
    )
    parser.add_argument(
        "--close",
        metavar="TRADE_ID",
        help="Record that an open trade was sold and publish the exit thread"
    )
    parser.add_argument(
        "--exit-price",
        type=float,
        help="Price the position was sold at (with --close)"
    )

    args = parser.parse_args()

    setup_logging()

    if args.status:
        return _show_status()

    config = _load_config()
    if config is None:
        return 1

    if args.close:
        if args.exit_price is None:
            parser.error("--close requires --exit-price")
        return _close_trade(config, args.close, args.exit_price)

    if args.once:
        return _run_single_mode(config)

    return _run_scheduled_mode(config)


def _show_status() -> int:
    storage = Storage()
    state = CampaignState(storage)
    state.init_or_restore()

    config = CampaignConfig.from_env()
    stats = storage.get_trade_stats()
    open_trades = storage.get_open_trades()
    counts = storage.get_signal_count_today()
    bankroll = config.bankroll + stats["pnl"]

    print("\nCampaign Status:")
    print(f"  Day: {state.day_number()}")
    print(f"  Bankroll: {format_currency(bankroll)} "
          f"({format_signed_percentage(stats['pnl'] / config.bankroll * 100)} realised)")
    print(f"  Open positions: {len(open_trades)}")
    print(f"  Closed trades: {stats['trades']} ({stats['wins']} wins, {stats['losses']} losses)")
    print(f"  Signals today: {counts['count']} from {counts['unique_users']} users")
    print(f"  Last seen mention: {state.get_last_seen_cursor() or 'N/A'}")
    last_digest = state.get_last_digest_date()
    print(f"  Last digest: {last_digest.isoformat() if last_digest else 'N/A'}")
    return 0


def _run_single_mode(config: CampaignConfig) -> int:
    """
    Run one tick and exit.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    storage = Storage()
    try:
        campaign = build_campaign(config, storage)
        campaign.run_tick()
        return 0

    except KeyboardInterrupt:
        logger.info("Tick interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    finally:
        storage.close()


def _close_trade(config: CampaignConfig, trade_id: str, exit_price: float) -> int:
    storage = Storage()
    try:
        campaign = build_campaign(config, storage)
        pnl = campaign.record_exit(trade_id, exit_price)
        if pnl is None:
            print(f"Trade {trade_id} is not open")
            return 1
        print(f"Closed {trade_id}: P&L {format_currency(pnl)}")
        return 0

    except Exception as e:
        logger.error(f"Fatal error closing trade: {e}", exc_info=True)
        return 1

    finally:
        storage.close()


def _run_scheduled_mode(config: CampaignConfig) -> int:
    """
    Run ticks on the poll interval until interrupted.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    logger.info("Starting in scheduled mode")
    logger.info(f"Bankroll: {format_currency(config.bankroll)}")
    logger.info(f"Poll interval: {config.poll_interval_seconds}s")

    storage = Storage()
    scheduler = Scheduler()

    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        scheduler.stop(wait=True)
        storage.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        campaign = build_campaign(config, storage)

        if not scheduler.start(campaign.run_tick, config.poll_interval_seconds):
            logger.error("Failed to start scheduler")
            storage.close()
            return 1

        logger.info("Scheduler is running. Press Ctrl+C to stop.")
        while True:
            time.sleep(1)

    except Exception as e:
        logger.error(f"Fatal error in scheduled mode: {e}", exc_info=True)
        scheduler.stop(wait=False)
        storage.close()
        return 1


if __name__ == "__main__":
    sys.exit(main())
