"""Reconciliation coordinator: fetch -> parse -> score -> threshold -> apply or queue.

One ``SyncRun`` context object is created per invocation and threaded
through every stage. The run always reaches a terminal status and always
writes its sync log, including on timeout and unexpected failure.

Auto-accepted listings that compete for one record are narrowed to the
strongest before anything is proposed; the rest go to review.

Apply-mode ordering:
1. snapshot the catalog
2. reset stock on every sync-eligible record (only when a stock feed
   succeeded), finished globally before any write below starts
3. stock writes, under the shared stock-phase lock with the reset
4. price writes and review-band upserts (one per listing key),
   concurrent across records and serialized per record
5. estimated prices filled for records with no better price
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from ..core.config import Settings
from ..core.enums import (
    PRICE_SOURCE_ESTIMATE,
    SOURCE_FAILURE_NUDGE,
    SOURCE_SUCCESS_NUDGE,
    MatchDecision,
    SourceKind,
    SyncMode,
    SyncStatus,
)
from ..core.errors import (
    ParseAmbiguityError,
    PersistenceError,
    RunFatalError,
    SourceFetchError,
)
from ..core.logging import log_error, log_sync_event, logger
from ..db.catalog import CatalogRepository
from ..db.mappings import MatchMappingRepository
from ..db.review_queue import ReviewQueueRepository
from ..db.sources import SourceRepository
from ..db.sync_logs import SyncLogRepository
from ..models.motor import CatalogMotorRecord, SourceDescriptor, SyncResult
from ..models.pipeline import (
    CatalogSnapshot,
    RecordResult,
    ScrapedListing,
    SyncRun,
    utcnow,
)
from .adapters.base import SourceAdapter
from .match_scorer import describe_record, rank_candidates
from .match_strategies import DEFAULT_STRATEGIES, MatchStrategy, find_best_match
from .price_estimator import estimate_price, needs_estimate
from .record_writer import RecordLocks, RecordWriter, StockAssertion

DETAIL_LOG_LIMIT = 200


@dataclass
class ProposedChanges:
    """What an apply run would write, derived from auto-accepted results."""

    stock: dict[str, StockAssertion] = field(default_factory=dict)
    stock_sources: dict[str, str] = field(default_factory=dict)
    prices: dict[str, tuple[float, str]] = field(default_factory=dict)
    stock_feed_ok: bool = False


class ReconciliationCoordinator:
    """Runs preview and apply sync runs against the catalog."""

    def __init__(
        self,
        settings: Settings,
        adapters: list[SourceAdapter],
        catalog: CatalogRepository,
        review_queue: ReviewQueueRepository,
        sync_logs: SyncLogRepository,
        sources: SourceRepository,
        mappings: MatchMappingRepository,
        strategies: tuple[MatchStrategy, ...] = DEFAULT_STRATEGIES,
        locks: RecordLocks | None = None,
    ) -> None:
        self._settings = settings
        self._adapters = adapters
        self._catalog = catalog
        self._review_queue = review_queue
        self._sync_logs = sync_logs
        self._sources = sources
        self._mappings = mappings
        self._strategies = strategies
        self._writer = RecordWriter(catalog, locks)

    async def preview(self) -> SyncResult:
        return await self.run(SyncMode.PREVIEW)

    async def apply(self) -> SyncResult:
        return await self.run(SyncMode.APPLY)

    async def run(self, mode: SyncMode) -> SyncResult:
        """Execute one sync run. Never raises; failures are in the result."""
        start = time.time()
        run = SyncRun(mode=mode)

        try:
            await self._sync_logs.create(run)
        except PersistenceError as e:
            fatal = RunFatalError(f"could not create sync log: {e}")
            log_error("Sync run could not start", fatal, mode=mode.value)
            run.finish(SyncStatus.FAILED, str(fatal))
            return self._result(run, start)

        log_sync_event(run.id, "started", mode=mode.value)
        in_stock_after = 0
        try:
            in_stock_after = await asyncio.wait_for(
                self._execute(run), timeout=self._settings.run_budget_seconds
            )
            run.finish(SyncStatus.COMPLETED)
        except asyncio.TimeoutError:
            run.finish(
                SyncStatus.FAILED,
                f"run exceeded budget of {self._settings.run_budget_seconds}s",
            )
            log_error("Sync run timed out", run_id=run.id)
        except Exception as e:
            run.finish(SyncStatus.FAILED, str(e))
            log_error("Sync run failed", e, run_id=run.id)
        finally:
            if run.status == SyncStatus.RUNNING:
                run.finish(SyncStatus.FAILED, "run aborted")
            await self._finalize(run, in_stock_after)

        return self._result(run, start)

    # -------------------------------------------------------------------------
    # Pipeline stages
    # -------------------------------------------------------------------------

    async def _execute(self, run: SyncRun) -> int:
        descriptors = await self._load_descriptors()
        snapshot = await self._snapshot()
        log_sync_event(run.id, "snapshot", records=len(snapshot.records))

        fetched = await self._fetch_all(run, descriptors)
        listings = [listing for batch in fetched.values() for listing in batch]
        log_sync_event(
            run.id, "fetched", sources=len(fetched), listings=len(listings)
        )

        for listing in listings:
            run.results.append(self._evaluate(run, listing, snapshot))
        self._resolve_conflicts(run, snapshot)

        changes = self._propose(run, fetched)
        in_stock_after = self._count_stock_changes(run, snapshot, changes)

        if run.mode == SyncMode.APPLY:
            await self._apply(run, snapshot, changes)

        log_sync_event(run.id, "evaluated", **run.counters.as_dict())
        return in_stock_after

    async def _load_descriptors(self) -> dict[str, SourceDescriptor]:
        try:
            return {d.name: d for d in await self._sources.list_sources()}
        except PersistenceError as e:
            logger.warning(f"Source descriptors unavailable, using defaults: {e}")
            return {}

    async def _snapshot(self) -> CatalogSnapshot:
        try:
            records = await self._catalog.list_records()
            mappings = await self._mappings.active_mappings()
        except PersistenceError as e:
            raise RunFatalError(f"could not read catalog: {e}") from e
        snapshot = CatalogSnapshot(records=records, mappings=mappings)
        snapshot.parsed = {r.id: describe_record(r) for r in records}
        return snapshot

    async def _fetch_all(
        self, run: SyncRun, descriptors: dict[str, SourceDescriptor]
    ) -> dict[str, list[ScrapedListing]]:
        """Fetch and parse every active adapter with bounded concurrency."""
        active = [
            a
            for a in self._adapters
            if descriptors.get(a.name) is None or descriptors[a.name].is_active
        ]
        active.sort(
            key=lambda a: descriptors[a.name].priority if a.name in descriptors else 100
        )
        semaphore = asyncio.Semaphore(self._settings.fetch_concurrency)

        async def _one(adapter: SourceAdapter) -> list[ScrapedListing] | None:
            async with semaphore:
                return await self._fetch_source(run, adapter)

        batches = await asyncio.gather(*(_one(a) for a in active))
        return {
            adapter.name: batch
            for adapter, batch in zip(active, batches)
            if batch is not None
        }

    async def _fetch_source(
        self, run: SyncRun, adapter: SourceAdapter
    ) -> list[ScrapedListing] | None:
        """Fetch one source; a failure is recorded and returns None."""
        try:
            listings = await self._fetch_and_parse(adapter)
        except SourceFetchError as e:
            run.source_errors[adapter.name] = e.message
            log_error("Source fetch failed", e, run_id=run.id, source=adapter.name)
            await self._nudge(adapter.name, SOURCE_FAILURE_NUDGE)
            return None

        await self._nudge(adapter.name, SOURCE_SUCCESS_NUDGE)
        log_sync_event(run.id, "source_ok", source=adapter.name, listings=len(listings))
        return listings

    @staticmethod
    async def _fetch_and_parse(adapter: SourceAdapter) -> list[ScrapedListing]:
        try:
            raw = await asyncio.wait_for(adapter.fetch(), adapter.timeout)
            return adapter.parse(raw)
        except SourceFetchError:
            raise
        except asyncio.TimeoutError as e:
            raise SourceFetchError(
                adapter.name, f"timed out after {adapter.timeout}s"
            ) from e
        except Exception as e:
            raise SourceFetchError(adapter.name, str(e)) from e

    async def _nudge(self, name: str, delta: int) -> None:
        try:
            await self._sources.nudge_success_rate(name, delta)
        except PersistenceError as e:
            logger.warning(f"Could not update success rate for {name}: {e}")

    def _threshold(self, kind: SourceKind) -> int:
        if kind == SourceKind.PRICE:
            return self._settings.price_auto_accept_threshold
        return self._settings.stock_auto_accept_threshold

    def _evaluate(
        self, run: SyncRun, listing: ScrapedListing, snapshot: CatalogSnapshot
    ) -> RecordResult:
        run.counters.processed += 1
        best = find_best_match(listing, snapshot, self._strategies)

        if listing.parsed.horsepower is None and (best is None or best.score == 0):
            run.counters.unscoreable += 1
            return RecordResult(
                listing=listing,
                decision=MatchDecision.UNSCOREABLE,
                best=best,
                error=str(ParseAmbiguityError(listing.title)),
            )

        score = best.score if best else 0
        if best is not None and score >= self._threshold(listing.kind):
            run.counters.matched += 1
            return RecordResult(listing, MatchDecision.AUTO_ACCEPT, best)

        if best is not None and score >= self._settings.review_floor:
            run.counters.queued_for_review += 1
            candidates = rank_candidates(
                listing,
                snapshot.records,
                snapshot.parsed,
                limit=self._settings.review_candidate_limit,
            )
            return RecordResult(listing, MatchDecision.REVIEW, best, candidates)

        run.counters.rejected += 1
        return RecordResult(listing, MatchDecision.REJECTED, best)

    def _resolve_conflicts(self, run: SyncRun, snapshot: CatalogSnapshot) -> None:
        """Keep only the strongest auto-accepted listings per record and kind.

        A record gets one price: the highest-scoring price listing, earliest
        on a tie. Stock listings at the record's top score all stand so their
        units aggregate. Every other auto-accepted listing for that record is
        demoted to review instead of being written.
        """
        accepted = [
            r
            for r in run.results
            if r.decision == MatchDecision.AUTO_ACCEPT
            and r.best is not None
            and (r.listing.kind == SourceKind.STOCK or r.listing.price is not None)
        ]
        top: dict[tuple[str, SourceKind], int] = {}
        for result in accepted:
            key = (result.best.record_id, result.listing.kind)
            top[key] = max(top.get(key, 0), result.score)

        priced: set[str] = set()
        for result in accepted:
            record_id = result.best.record_id
            kind = result.listing.kind
            reason = None
            if result.score < top[(record_id, kind)]:
                reason = f"stronger match exists for {record_id}"
            elif kind == SourceKind.PRICE and record_id in priced:
                reason = f"equal-score price already chosen for {record_id}"
            if reason:
                self._demote(run, result, snapshot, reason)
            elif kind == SourceKind.PRICE:
                priced.add(record_id)

    def _demote(
        self, run: SyncRun, result: RecordResult, snapshot: CatalogSnapshot, reason: str
    ) -> None:
        run.counters.matched -= 1
        run.counters.queued_for_review += 1
        result.decision = MatchDecision.REVIEW
        result.error = reason
        result.candidates = rank_candidates(
            result.listing,
            snapshot.records,
            snapshot.parsed,
            limit=self._settings.review_candidate_limit,
        )
        logger.info(f"Demoted '{result.listing.title}' to review: {reason}")

    def _propose(
        self, run: SyncRun, fetched: dict[str, list[ScrapedListing]]
    ) -> ProposedChanges:
        changes = ProposedChanges(
            stock_feed_ok=any(
                a.provides_stock for a in self._adapters if a.name in fetched
            )
        )

        for result in run.results:
            if result.decision != MatchDecision.AUTO_ACCEPT or result.best is None:
                continue
            listing = result.listing
            record_id = result.best.record_id
            if listing.kind == SourceKind.STOCK:
                assertion = changes.stock.setdefault(record_id, StockAssertion())
                assertion.add(
                    listing.title, listing.quantity, listing.price, listing.stock_number
                )
                changes.stock_sources.setdefault(record_id, listing.source)
            elif listing.kind == SourceKind.PRICE and listing.price is not None:
                changes.prices.setdefault(record_id, (listing.price, listing.source))
        return changes

    def _count_stock_changes(
        self, run: SyncRun, snapshot: CatalogSnapshot, changes: ProposedChanges
    ) -> int:
        """Fill the stock diff counters; returns records in stock afterwards."""
        if not changes.stock_feed_ok:
            return sum(1 for r in snapshot.records if r.in_stock)

        in_stock_after = 0
        for record in snapshot.records:
            now_in = record.id in changes.stock
            still_in_unreset = record.in_stock and not record.is_brochure
            if now_in or still_in_unreset:
                in_stock_after += 1
            if now_in and record.in_stock:
                run.counters.still_in_stock += 1
            elif now_in:
                run.counters.newly_in_stock += 1
            elif record.in_stock and record.is_brochure:
                run.counters.newly_out_of_stock += 1
        return in_stock_after

    async def _apply(
        self, run: SyncRun, snapshot: CatalogSnapshot, changes: ProposedChanges
    ) -> None:
        # Manual stock assertions wait until the reset and its writes are done.
        async with self._writer.locks.stock_phase:
            if changes.stock_feed_ok:
                try:
                    reset = await self._catalog.reset_stock(utcnow())
                except PersistenceError as e:
                    raise RunFatalError(f"stock reset failed: {e}") from e
                log_sync_event(run.id, "reset", records=reset)
            stock_writes = await asyncio.gather(
                *(
                    self._write_stock(
                        run, snapshot.by_id[rid], assertion, changes.stock_sources[rid]
                    )
                    for rid, assertion in changes.stock.items()
                    if rid in snapshot.by_id
                )
            )

        tasks = [
            self._write_price(run, snapshot.by_id[rid], price, source)
            for rid, (price, source) in changes.prices.items()
            if rid in snapshot.by_id
        ]
        tasks += [self._queue_for_review(run, r) for r in self._review_entries(run)]
        await asyncio.gather(*tasks)
        log_sync_event(run.id, "applied", writes=len(stock_writes) + len(tasks))

        priced = set(changes.prices) | {
            rid for rid, a in changes.stock.items() if a.price is not None
        }
        await self._fill_estimates(run, snapshot, priced)

    async def _write_stock(
        self,
        run: SyncRun,
        record: CatalogMotorRecord,
        assertion: StockAssertion,
        source: str,
    ) -> None:
        try:
            await self._writer.assert_stock(record, assertion, source)
        except PersistenceError as e:
            log_error("Stock write failed", e, run_id=run.id, record=record.id)
            run.record_failure(record.id, e)

    async def _write_price(
        self, run: SyncRun, record: CatalogMotorRecord, price: float, source: str
    ) -> None:
        try:
            if await self._writer.assert_price(record, price, source):
                run.counters.prices_updated += 1
        except PersistenceError as e:
            log_error("Price write failed", e, run_id=run.id, record=record.id)
            run.record_failure(record.id, e)

    @staticmethod
    def _review_entries(run: SyncRun) -> list[RecordResult]:
        """One review result per listing key, the highest score winning."""
        by_key: dict[str, RecordResult] = {}
        for result in run.results:
            if result.decision != MatchDecision.REVIEW:
                continue
            current = by_key.get(result.listing.listing_key)
            if current is None or result.score > current.score:
                by_key[result.listing.listing_key] = result
        return list(by_key.values())

    async def _queue_for_review(self, run: SyncRun, result: RecordResult) -> None:
        listing = result.listing
        fields = {
            "source": listing.source,
            "scraped_motor_data": listing.to_dict(),
            "potential_matches": [c.to_dict() for c in result.candidates],
            "confidence_score": result.score,
            "sync_run_id": run.id,
        }
        try:
            await self._review_queue.upsert_pending(listing.listing_key, fields)
        except PersistenceError as e:
            log_error("Review queue write failed", e, run_id=run.id, listing=listing.listing_key)
            run.record_failure(listing.listing_key, e)

    async def _fill_estimates(
        self, run: SyncRun, snapshot: CatalogSnapshot, priced: set[str]
    ) -> None:
        async def _one(record: CatalogMotorRecord) -> None:
            parsed = snapshot.parsed[record.id]
            estimate = estimate_price(parsed.horsepower, parsed.family)
            if estimate is None:
                return
            run.counters.estimated_prices += 1
            if record.estimated_price == estimate and record.price_source == PRICE_SOURCE_ESTIMATE:
                return
            try:
                await self._writer.write(
                    record.id,
                    {"estimated_price": estimate, "price_source": PRICE_SOURCE_ESTIMATE},
                )
            except PersistenceError as e:
                log_error("Estimate write failed", e, run_id=run.id, record=record.id)
                run.record_failure(record.id, e)

        await asyncio.gather(
            *(
                _one(r)
                for r in snapshot.records
                if r.id not in priced and needs_estimate(r)
            )
        )

    # -------------------------------------------------------------------------
    # Results and audit trail
    # -------------------------------------------------------------------------

    def _details(self, run: SyncRun, limit: int) -> list[dict[str, Any]]:
        return [r.to_dict() for r in run.results[:limit]]

    def _unmatched(self, run: SyncRun) -> list[dict[str, Any]]:
        return [
            r.to_dict()
            for r in run.results
            if r.decision in (MatchDecision.REJECTED, MatchDecision.UNSCOREABLE)
        ]

    async def _finalize(self, run: SyncRun, in_stock_after: int) -> None:
        details = {
            "counters": run.counters.as_dict(),
            "source_errors": run.source_errors,
            "failures": run.failures,
            "results": self._details(run, DETAIL_LOG_LIMIT),
        }
        try:
            await self._sync_logs.finalize(run, in_stock_after, details)
        except PersistenceError as e:
            log_error("Could not finalize sync log", e, run_id=run.id)
        log_sync_event(run.id, run.status.value, error=run.error)

    def _result(self, run: SyncRun, start: float) -> SyncResult:
        return SyncResult(
            success=run.status == SyncStatus.COMPLETED,
            run_id=run.id,
            mode=run.mode.value,
            status=run.status.value,
            counters=run.counters.as_dict(),
            details=self._details(run, self._settings.preview_detail_limit),
            unmatched=self._unmatched(run),
            failures=run.failures,
            source_errors=run.source_errors,
            error=run.error,
            duration_ms=round((time.time() - start) * 1000, 2),
        )
