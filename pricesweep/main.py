"""
Price Sweep - Application Entrypoint

Periodic batch refresh of marketplace price estimates for catalog cards.
Configures structlog, builds the async engine and HTTP client, then sweeps the
selected games.

Run via:
    python -m pricesweep.main --game ygo --limit 500 --rpm 12
    pricesweep --game all --stale-days 3 --concurrency 4

Exit codes: 0 when the run completes (per-item misses included), 1 on a fatal
error, 2 on invalid arguments.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Sequence

import httpx
import structlog
from pydantic import ValidationError

from pricesweep.config import Game, Settings, settings as default_settings
from pricesweep.pipeline.auth import CredentialManager
from pricesweep.pipeline.catalog import CatalogLoader
from pricesweep.pipeline.database import Database, create_db_engine
from pricesweep.pipeline.ebay import BrowseClient
from pricesweep.pipeline.orchestrator import PriceSweep, SweepCounters
from pricesweep.pipeline.persistence import PriceWriter
from pricesweep.pipeline.rate_limiter import RateLimiter
from pricesweep.pipeline.schema import SchemaAdapter
from pricesweep.pipeline.staleness import StalenessSelector

# argparse dest -> Settings field
_FLAG_FIELDS: dict[str, str] = {
    "limit": "LIMIT",
    "stale_days": "STALE_DAYS",
    "concurrency": "CONCURRENCY",
    "max_pages": "MAX_PAGES",
    "results_per_card": "RESULTS_PER_CARD",
    "rpm": "REQUESTS_PER_MINUTE",
    "cooldown_threshold": "COOLDOWN_THRESHOLD",
    "cooldown_seconds": "COOLDOWN_SECONDS",
    "card_timeout_seconds": "CARD_TIMEOUT_SECONDS",
    "page_retry_cap": "PAGE_RETRY_CAP",
    "ascii_first": "ASCII_FIRST",
    "alias_expansion": "ALIAS_EXPANSION",
    "fallback_sample_threshold": "FALLBACK_SAMPLE_THRESHOLD",
    "delivery_country": "DELIVERY_COUNTRY",
    "price_currency": "PRICE_CURRENCY",
    "buying_options": "BUYING_OPTIONS",
    "rate_preflight": "RATE_PREFLIGHT",
    "trace_pages": "TRACE_PAGES",
    "log_writes": "LOG_WRITES",
}


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # stdlib logging for third-party libraries (httpx, sqlalchemy)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pricesweep",
        description="Refresh active-listing price estimates for stale catalog cards.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pricesweep --game pokemon --limit 200
  pricesweep --game all --stale-days 3 --rpm 20 --concurrency 4
  pricesweep --game mtg --no-ascii-first --fallback-sample-threshold 10 --debug
""",
    )
    parser.add_argument(
        "--game",
        default="all",
        choices=["all", *(g.value for g in Game)],
        help="Game to sweep (default: all).",
    )
    parser.add_argument("--limit", type=int, help="Max items per game (0 = no cap).")
    parser.add_argument("--stale-days", type=int, help="Refresh rows older than N days.")
    parser.add_argument("--concurrency", type=int, help="Concurrent items (1-16).")
    parser.add_argument("--max-pages", type=int, help="Page cap per query.")
    parser.add_argument("--results-per-card", type=int, help="Target samples per item (10-200).")
    parser.add_argument("--rpm", type=int, help="Requests per minute (0 disables pacing).")
    parser.add_argument("--cooldown-threshold", type=int, help="Consecutive 429s before a cooldown.")
    parser.add_argument("--cooldown-seconds", type=float, help="Cooldown length without Retry-After.")
    parser.add_argument("--card-timeout-seconds", type=float, help="Wall-clock budget per item.")
    parser.add_argument("--page-retry-cap", type=int, help="Retries per page on network/5xx errors.")
    parser.add_argument(
        "--ascii-first",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Try the diacritic-free query before the literal one.",
    )
    parser.add_argument(
        "--alias-expansion",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Use every game alias in fallback queries.",
    )
    parser.add_argument(
        "--fallback-sample-threshold",
        type=int,
        help="Run fallback queries when primaries yield fewer samples.",
    )
    parser.add_argument("--delivery-country", help="Browse deliveryCountry filter.")
    parser.add_argument("--price-currency", help="Browse priceCurrency filter.")
    parser.add_argument(
        "--buying-options",
        help="Browse buyingOptions filter (FIXED_PRICE | AUCTION | BEST_OFFER).",
    )
    parser.add_argument(
        "--rate-preflight",
        action="store_true",
        default=None,
        help="Log the Browse rate-limit status before sweeping.",
    )
    parser.add_argument("--debug", action="store_true", help="Debug logging.")
    parser.add_argument(
        "--trace-pages", action="store_true", default=None, help="Log every page request."
    )
    parser.add_argument(
        "--log-writes", action="store_true", default=None, help="Log every final price write."
    )
    return parser


def resolve_settings(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """
    Merge CLI flags over environment settings, re-validating the result.

    Raises:
        ValidationError: A flag is outside its allowed range.
    """
    base = base or default_settings
    overrides: dict[str, Any] = {
        field: getattr(args, dest)
        for dest, field in _FLAG_FIELDS.items()
        if getattr(args, dest, None) is not None
    }
    if args.debug:
        overrides["LOG_LEVEL"] = "DEBUG"
    return Settings(**{**base.model_dump(), **overrides})


def selected_games(choice: str) -> list[Game]:
    if choice == "all":
        return list(Game)
    return [Game(choice)]


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


def _install_signal_handlers(sweep: PriceSweep) -> None:
    logger = structlog.get_logger(__name__)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, sweep.request_stop)
        loop.add_signal_handler(signal.SIGINT, sweep.request_stop)
    except NotImplementedError:
        # Windows doesn't support add_signal_handler for all signals
        logger.warning("signal_handlers_not_supported_on_platform")


async def run(config: Settings, games: Sequence[Game]) -> dict[Game, SweepCounters]:
    """Build every collaborator, sweep, and always dispose of the engine."""
    logger = structlog.get_logger(__name__)
    logger.info(
        "price_sweep_startup",
        games=[g.value for g in games],
        rpm=config.REQUESTS_PER_MINUTE,
        concurrency=config.CONCURRENCY,
        max_pages=config.MAX_PAGES,
        results_per_card=config.RESULTS_PER_CARD,
    )

    engine = create_db_engine(config)
    try:
        async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS) as http:
            db = Database(engine)
            catalog = CatalogLoader(db)
            sweep = PriceSweep(
                schema=SchemaAdapter(db),
                writer=PriceWriter(db, config=config),
                catalog=catalog,
                staleness=StalenessSelector(db, catalog),
                credentials=CredentialManager(http, config=config),
                browse=BrowseClient(
                    http,
                    RateLimiter(config.REQUESTS_PER_MINUTE),
                    config=config,
                ),
                config=config,
            )
            _install_signal_handlers(sweep)
            return await sweep.run(games)
    finally:
        await engine.dispose()
        logger.info("price_sweep_shutdown_complete")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_settings(args)
    except ValidationError as e:
        parser.error(str(e))

    _configure_logging(config.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    try:
        asyncio.run(run(config, selected_games(args.game)))
    except KeyboardInterrupt:
        logger.info("price_sweep_interrupted_by_user")
        return 0
    except Exception as e:
        logger.error(
            "price_sweep_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return 1
    return 0


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    sys.exit(main())
