"""
Price Sweep - Worker Pool / Orchestrator

Drives the per-item pipeline over the stale set of each game:

    placeholder write -> plan queries -> fetch pages -> extract prices
    -> aggregate -> final write

Items flow through a bounded asyncio.Queue to CONCURRENCY worker tasks. A
failing item never affects its siblings: timeouts, auth failures after one
refresh and unexpected errors are logged and counted as misses. The only
per-item error that ends the run is PersistenceError; the pool then stops
taking work, drains, and re-raises.

A stop request (SIGINT/SIGTERM) is honored between items: the producer stops
feeding the queue, workers finish the item they hold and discard whatever is
still queued.
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, NamedTuple

import structlog

from pricesweep.config import Game, Settings, settings as default_settings
from pricesweep.engine.query_planner import plan_queries
from pricesweep.engine.stats import EMPTY_STATS, aggregate
from pricesweep.errors import (
    AuthError,
    PerItemTimeout,
    PersistenceError,
    TokenExpiredError,
)
from pricesweep.models.catalog import CatalogItem
from pricesweep.pipeline.auth import CredentialManager
from pricesweep.pipeline.catalog import CatalogLoader
from pricesweep.pipeline.ebay import BrowseClient
from pricesweep.pipeline.fetcher import FetchSession, ItemBudget
from pricesweep.pipeline.persistence import PriceWriter
from pricesweep.pipeline.schema import SchemaAdapter, SchemaProfile
from pricesweep.pipeline.staleness import StalenessSelector

logger = structlog.get_logger(__name__)


class ItemOutcome(NamedTuple):
    card_id: str
    samples: int
    median: Decimal | None
    query: str
    queries_tried: int


class SweepCounters:
    """Running totals for one game."""

    def __init__(self, game: Game, total: int = 0) -> None:
        self.game = game
        self.total = total
        self.processed = 0
        self.updated = 0
        self.missing = 0
        self.timeouts = 0
        self.errors = 0

    def snapshot(self, concurrency: int) -> dict[str, Any]:
        return {
            "game": self.game.value,
            "inflight": min(concurrency, max(0, self.total - self.processed)),
            "processed": self.processed,
            "total": self.total,
            "updated": self.updated,
            "missing": self.missing,
        }


class PriceSweep:
    """
    Usage:
        sweep = PriceSweep(schema=..., writer=..., catalog=..., staleness=...,
                           credentials=..., browse=...)
        results = await sweep.run([Game.POKEMON, Game.YGO])
    """

    def __init__(
        self,
        *,
        schema: SchemaAdapter,
        writer: PriceWriter,
        catalog: CatalogLoader,
        staleness: StalenessSelector,
        credentials: CredentialManager,
        browse: BrowseClient,
        config: Settings | None = None,
        stop_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._schema = schema
        self._writer = writer
        self._catalog = catalog
        self._staleness = staleness
        self._credentials = credentials
        self._browse = browse
        self._settings = config or default_settings
        self._stop = stop_event or asyncio.Event()
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._abort = asyncio.Event()
        self._fatal: BaseException | None = None

    def request_stop(self) -> None:
        logger.info("sweep_stop_requested")
        self._stop.set()

    # -----------------------------------------------------------------------
    # Top level
    # -----------------------------------------------------------------------

    async def run(self, games: Iterable[Game]) -> dict[Game, SweepCounters]:
        """
        Resolve every price table, obtain a token, then sweep each game in turn.

        Raises:
            SchemaError / PersistenceError: table resolution failed.
            AuthError: initial token exchange failed.
        """
        games = list(games)
        profiles = {game: await self._schema.resolve(game) for game in games}

        token = await self._credentials.current()
        if self._settings.RATE_PREFLIGHT:
            await self._browse.rate_preflight(token)

        results: dict[Game, SweepCounters] = {}
        for game in games:
            if self._stop.is_set():
                logger.info("sweep_stopped_before_game", game=game.value)
                break
            results[game] = await self.run_game(game, profiles[game])

        logger.info("sweep_complete", games=[g.value for g in results])
        return results

    async def run_game(self, game: Game, profile: SchemaProfile) -> SweepCounters:
        items = await self._catalog.load(game)
        logger.info("game_catalog_total", game=game.value, count=len(items))
        if not items:
            logger.info("game_skipped_no_items", game=game.value)
            return SweepCounters(game)

        stale_ids = set(
            await self._staleness.list_stale(game, profile, self._settings.STALE_DAYS)
        )
        todo = [item for item in items if item.id in stale_ids]
        if self._settings.LIMIT > 0:
            todo = todo[: self._settings.LIMIT]

        logger.info(
            "game_processing",
            game=game.value,
            todo=len(todo),
            catalog=len(items),
            stale=len(stale_ids),
            stale_days=self._settings.STALE_DAYS,
            limit=self._settings.LIMIT or None,
        )

        counters = SweepCounters(game, total=len(todo))
        started = self._clock()
        heartbeat = asyncio.create_task(self._heartbeat(counters, started))
        try:
            await self._run_pool(game, profile, todo, counters)
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            logger.info(
                "game_done",
                game=game.value,
                updated=counters.updated,
                missing=counters.missing,
                timeouts=counters.timeouts,
                processed=counters.processed,
                elapsed_seconds=round(self._clock() - started, 1),
            )

        if self._fatal is not None:
            raise self._fatal
        return counters

    # -----------------------------------------------------------------------
    # Worker pool
    # -----------------------------------------------------------------------

    async def _run_pool(
        self,
        game: Game,
        profile: SchemaProfile,
        todo: list[CatalogItem],
        counters: SweepCounters,
    ) -> None:
        workers = min(self._settings.CONCURRENCY, max(1, len(todo)))
        queue: asyncio.Queue[CatalogItem | None] = asyncio.Queue(maxsize=workers * 2)

        async def produce() -> None:
            for item in todo:
                if self._stop.is_set() or self._abort.is_set():
                    logger.info(
                        "game_feed_stopped",
                        game=game.value,
                        remaining=len(todo) - counters.processed,
                    )
                    break
                await queue.put(item)
            for _ in range(workers):
                await queue.put(None)

        async def work() -> None:
            while True:
                item = await queue.get()
                if item is None:
                    return
                # Drain to the sentinel without starting new items
                if self._stop.is_set() or self._abort.is_set():
                    continue
                await self._handle_item(game, profile, item, counters)

        await asyncio.gather(produce(), *(work() for _ in range(workers)))

    async def _heartbeat(self, counters: SweepCounters, started: float) -> None:
        while True:
            await asyncio.sleep(self._settings.HEARTBEAT_SECONDS)
            logger.info(
                "sweep_heartbeat",
                elapsed_seconds=round(self._clock() - started),
                **counters.snapshot(self._settings.CONCURRENCY),
            )

    async def _handle_item(
        self,
        game: Game,
        profile: SchemaProfile,
        item: CatalogItem,
        counters: SweepCounters,
    ) -> None:
        started = self._clock()
        logger.debug("item_start", game=game.value, card_id=item.id, name=item.name)
        try:
            outcome = await self._process_with_refresh(game, profile, item)
            if outcome.samples > 0:
                counters.updated += 1
            else:
                counters.missing += 1
            if self._settings.LOG_WRITES:
                logger.info(
                    "item_written",
                    game=game.value,
                    card_id=outcome.card_id,
                    samples=outcome.samples,
                    median=str(outcome.median) if outcome.median is not None else None,
                    query=outcome.query[:80],
                    queries_tried=outcome.queries_tried,
                )
        except PerItemTimeout as e:
            counters.missing += 1
            counters.timeouts += 1
            logger.warning("item_timeout", game=game.value, card_id=item.id, error=str(e))
        except PersistenceError as e:
            counters.missing += 1
            logger.error("item_persistence_failed", game=game.value, card_id=item.id, error=str(e))
            if self._fatal is None:
                self._fatal = e
            self._abort.set()
        except AuthError as e:
            counters.missing += 1
            counters.errors += 1
            logger.warning("item_auth_failed", game=game.value, card_id=item.id, error=str(e))
        except Exception as e:
            counters.missing += 1
            counters.errors += 1
            logger.warning(
                "item_failed",
                game=game.value,
                card_id=item.id,
                name=item.name,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            counters.processed += 1
            logger.debug(
                "item_done",
                game=game.value,
                card_id=item.id,
                elapsed_ms=round((self._clock() - started) * 1000),
            )

    async def _process_with_refresh(
        self,
        game: Game,
        profile: SchemaProfile,
        item: CatalogItem,
    ) -> ItemOutcome:
        token = await self._credentials.current()
        try:
            return await self.process_item(game, profile, item, token)
        except TokenExpiredError:
            logger.info("item_token_expired", game=game.value, card_id=item.id)
            token = await self._credentials.refresh(token)
            return await self.process_item(game, profile, item, token)

    # -----------------------------------------------------------------------
    # Per-item pipeline
    # -----------------------------------------------------------------------

    async def process_item(
        self,
        game: Game,
        profile: SchemaProfile,
        item: CatalogItem,
        token: str,
    ) -> ItemOutcome:
        budget = ItemBudget(self._settings.CARD_TIMEOUT_SECONDS, clock=self._clock)

        # Progress marker; a timed-out item keeps this zeroed row
        await self._writer.upsert(profile, item.id, EMPTY_STATS, None, "")

        primaries, fallbacks = plan_queries(
            game,
            item,
            ascii_first=self._settings.ASCII_FIRST,
            expand_aliases=self._settings.ALIAS_EXPANSION,
        )
        session = FetchSession(
            self._browse,
            token,
            budget,
            config=self._settings,
            sleep=self._sleep,
            card_id=item.id,
        )
        await session.collect(primaries, fallbacks)

        stats = aggregate(session.samples)
        query_used = session.query_used or (primaries[0] if primaries else "")
        await self._writer.upsert(profile, item.id, stats, session.sample_url, query_used)

        return ItemOutcome(
            card_id=item.id,
            samples=stats.sample,
            median=stats.median,
            query=query_used,
            queries_tried=len(session.queries_tried),
        )
