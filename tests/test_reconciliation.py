"""Tests for the reconciliation coordinator (preview/apply sync runs)."""

import asyncio

from conftest import (
    INVENTORY_URL,
    INVENTORY_XML,
    PRICE_LIST_MD,
    PRICE_LIST_URL,
    FakeCatalog,
    FakeMappings,
    FakeReviewQueue,
    FakeSources,
    FakeSyncLogs,
    SlowAdapter,
    catalog_records,
    make_listing,
    mock_http_client,
)
from motor_sync.core.dependencies import build_source_adapters
from motor_sync.core.enums import (
    AVAILABILITY_IN_STOCK,
    PRICE_SOURCE_ESTIMATE,
    ReviewStatus,
    SyncMode,
)
from motor_sync.services.reconciliation import ReconciliationCoordinator
from motor_sync.services.record_writer import RecordLocks
from motor_sync.services.review_service import ReviewService

ROUTES = {INVENTORY_URL: INVENTORY_XML, PRICE_LIST_URL: PRICE_LIST_MD}

PRICE_HEADER = "| Model # | Description | MSRP |\n|---|---|---|\n"


class Harness:
    """A coordinator wired to in-memory repositories."""

    def __init__(self, settings, routes=None, sync_logs=None):
        self.settings = settings
        self.routes = ROUTES if routes is None else routes
        self.catalog = FakeCatalog(catalog_records())
        self.queue = FakeReviewQueue()
        self.logs = sync_logs or FakeSyncLogs()
        self.sources = FakeSources()
        self.mappings = FakeMappings()

    def run(self, mode: SyncMode, extra_adapters=None, only_extra: bool = False):
        async def _run():
            async with mock_http_client(self.routes) as client:
                adapters = [] if only_extra else build_source_adapters(self.settings, client)
                adapters += extra_adapters or []
                coordinator = ReconciliationCoordinator(
                    settings=self.settings,
                    adapters=adapters,
                    catalog=self.catalog,
                    review_queue=self.queue,
                    sync_logs=self.logs,
                    sources=self.sources,
                    mappings=self.mappings,
                )
                return await coordinator.run(mode)

        return asyncio.run(_run())


def _state(catalog: FakeCatalog) -> dict:
    return {
        rid: row.model_dump(exclude={"last_stock_check"})
        for rid, row in catalog.rows.items()
    }


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------


class TestPreview:
    def test_preview_does_not_touch_catalog_or_queue(self, settings):
        h = Harness(settings)
        before = _state(h.catalog)
        result = h.run(SyncMode.PREVIEW)

        assert result.success
        assert result.status == "completed"
        assert _state(h.catalog) == before
        assert h.catalog.events == []
        assert h.queue.entries == {}

    def test_preview_reports_proposed_stock_diff(self, settings):
        result = Harness(settings).run(SyncMode.PREVIEW)

        assert result.counters["processed"] == 6
        assert result.counters["matched"] == 3
        assert result.counters["queued_for_review"] == 1
        assert result.counters["rejected"] == 1
        assert result.counters["unscoreable"] == 1
        assert result.counters["newly_in_stock"] == 1
        assert result.counters["newly_out_of_stock"] == 1
        assert result.counters["still_in_stock"] == 0

    def test_preview_detail_has_model_quantity_score_and_justification(self, settings):
        result = Harness(settings).run(SyncMode.PREVIEW)
        detail = next(
            d for d in result.details if d["title"] == "2025 Mercury 9.9MH FourStroke EFI"
        )
        assert detail["model"] == "9.9MH FourStroke"
        assert detail["proposed_in_stock"] is True
        assert detail["proposed_quantity"] == 2
        assert detail["score"] >= 70
        assert detail["justification"]

    def test_preview_surfaces_unmatched_listings(self, settings):
        result = Harness(settings).run(SyncMode.PREVIEW)
        unmatched = {d["title"]: d for d in result.unmatched}

        assert "2025 Mercury 115ELPT Pro XS" in unmatched
        assert unmatched["2025 Mercury 115ELPT Pro XS"]["decision"] == "rejected"
        assert unmatched["Mercury Outboard Motor Cover"]["decision"] == "unscoreable"
        assert unmatched["Mercury Outboard Motor Cover"]["score"] == 0
        assert "horsepower" in unmatched["Mercury Outboard Motor Cover"]["error"].lower()

    def test_preview_details_are_capped(self, settings):
        capped = settings.model_copy(update={"preview_detail_limit": 2})
        result = Harness(capped).run(SyncMode.PREVIEW)
        assert len(result.details) == 2

    def test_preview_still_writes_sync_log(self, settings):
        h = Harness(settings)
        result = h.run(SyncMode.PREVIEW)
        row = h.logs.rows[result.run_id]
        assert row["sync_type"] == "preview"
        assert row["status"] == "completed"
        assert row["completed_at"] is not None


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


class TestApply:
    def test_auto_accepted_listing_is_marked_in_stock(self, settings):
        h = Harness(settings)
        result = h.run(SyncMode.APPLY)
        record = h.catalog.rows["m-009-9mh"]

        assert result.success
        assert record.in_stock is True
        assert record.stock_quantity == 2
        assert record.stock_number == "M1001"
        assert record.dealer_price_live == 3450
        assert record.availability == AVAILABILITY_IN_STOCK

    def test_price_list_writes_base_price_only(self, settings):
        h = Harness(settings)
        h.run(SyncMode.APPLY)
        assert h.catalog.rows["m-009-9mh"].base_price == 3615
        assert h.catalog.rows["m-040-elpt"].base_price == 9100
        assert h.catalog.rows["m-040-elpt"].dealer_price_live is None
        assert h.catalog.rows["m-040-elpt"].in_stock is False

    def test_record_absent_from_feed_falls_out_of_stock(self, settings):
        h = Harness(settings)
        result = h.run(SyncMode.APPLY)
        record = h.catalog.rows["m-025-elh"]

        assert record.in_stock is False
        assert record.stock_quantity == 0
        assert result.counters["newly_out_of_stock"] == 1

    def test_reset_completes_before_any_reassert(self, settings):
        h = Harness(settings)
        h.run(SyncMode.APPLY)
        kinds = [kind for kind, _ in h.catalog.events]
        assert kinds[0] == "reset"
        assert kinds.count("reset") == 1

    def test_review_band_listing_is_queued_with_ranked_candidates(self, settings):
        h = Harness(settings)
        h.run(SyncMode.APPLY)

        assert len(h.queue.entries) == 1
        entry = next(iter(h.queue.entries.values()))
        assert entry.review_status == ReviewStatus.PENDING
        assert entry.scraped_motor_data["title"] == "2025 Mercury 20ELH FourStroke"
        assert 30 <= entry.confidence_score < 70
        assert len(entry.potential_matches) == 3
        assert entry.potential_matches[0]["record_id"] == "m-025-elh"

    def test_rejected_listing_is_neither_applied_nor_queued(self, settings):
        h = Harness(settings)
        h.run(SyncMode.APPLY)

        queued_titles = [e.scraped_motor_data["title"] for e in h.queue.entries.values()]
        assert "2025 Mercury 115ELPT Pro XS" not in queued_titles
        assert h.catalog.rows["m-090-proxs"].in_stock is False

    def test_estimated_price_fills_unpriced_records(self, settings):
        h = Harness(settings)
        result = h.run(SyncMode.APPLY)
        record = h.catalog.rows["m-150-l"]

        assert record.estimated_price == 15300
        assert record.price_source == PRICE_SOURCE_ESTIMATE
        assert record.base_price is None
        assert h.catalog.rows["m-009-9mh"].estimated_price is None
        assert result.counters["estimated_prices"] == 3

    def test_sync_log_records_counts(self, settings):
        h = Harness(settings)
        result = h.run(SyncMode.APPLY)
        row = h.logs.rows[result.run_id]

        assert row["status"] == "completed"
        assert row["motors_processed"] == 6
        assert row["motors_matched"] == 3
        assert row["motors_in_stock"] == 1
        assert row["error_message"] is None

    def test_successful_sources_are_nudged_up(self, settings):
        h = Harness(settings)
        h.run(SyncMode.APPLY)
        assert ("inventory_xml", 10) in h.sources.nudges
        assert ("price_list", 10) in h.sources.nudges


class TestIdempotence:
    def test_second_apply_yields_same_catalog_state(self, settings):
        h = Harness(settings)
        h.run(SyncMode.APPLY)
        first = _state(h.catalog)
        first_in_stock = sum(1 for r in h.catalog.rows.values() if r.in_stock)

        second = h.run(SyncMode.APPLY)

        assert _state(h.catalog) == first
        assert sum(1 for r in h.catalog.rows.values() if r.in_stock) == first_in_stock
        assert second.counters["still_in_stock"] == 1
        assert second.counters["newly_in_stock"] == 0
        assert second.counters["newly_out_of_stock"] == 0

    def test_second_apply_updates_pending_entry_instead_of_duplicating(self, settings):
        h = Harness(settings)
        first = h.run(SyncMode.APPLY)
        second = h.run(SyncMode.APPLY)

        assert len(h.queue.entries) == 1
        entry = next(iter(h.queue.entries.values()))
        assert entry.sync_run_id == second.run_id != first.run_id


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestFailures:
    def test_failed_source_is_recorded_and_run_completes(self, settings):
        h = Harness(settings, routes={INVENTORY_URL: 500, PRICE_LIST_URL: PRICE_LIST_MD})
        result = h.run(SyncMode.APPLY)

        assert result.success
        assert "inventory_xml" in result.source_errors
        assert ("inventory_xml", -5) in h.sources.nudges
        assert ("price_list", 10) in h.sources.nudges
        assert h.catalog.rows["m-040-elpt"].base_price == 9100

    def test_no_stock_reset_when_stock_feed_fails(self, settings):
        h = Harness(settings, routes={INVENTORY_URL: 500, PRICE_LIST_URL: PRICE_LIST_MD})
        result = h.run(SyncMode.APPLY)

        assert ("reset", None) not in h.catalog.events
        assert h.catalog.rows["m-025-elh"].in_stock is True
        assert result.counters["newly_out_of_stock"] == 0

    def test_slow_source_times_out_without_stalling_run(self, settings):
        h = Harness(settings)
        result = h.run(SyncMode.PREVIEW, extra_adapters=[SlowAdapter(timeout=0.05)])

        assert result.success
        assert "timed out" in result.source_errors["slow_feed"]
        assert result.counters["matched"] == 3

    def test_run_over_budget_is_finalized_as_failed(self, settings):
        tight = settings.model_copy(update={"run_budget_seconds": 0.05})
        h = Harness(tight)
        result = h.run(
            SyncMode.APPLY,
            extra_adapters=[SlowAdapter(timeout=10)],
            only_extra=True,
        )

        assert not result.success
        assert result.status == "failed"
        assert "budget" in result.error
        row = h.logs.rows[result.run_id]
        assert row["status"] == "failed"
        assert row["error_message"] == result.error

    def test_record_write_failure_is_counted_not_fatal(self, settings):
        h = Harness(settings)
        h.catalog.fail_ids.add("m-009-9mh")
        result = h.run(SyncMode.APPLY)

        assert result.success
        assert result.counters["failed_writes"] >= 1
        assert any(f["key"] == "m-009-9mh" for f in result.failures)
        assert h.catalog.rows["m-040-elpt"].base_price == 9100

    def test_unwritable_sync_log_returns_structured_failure(self, settings):
        h = Harness(settings, sync_logs=FakeSyncLogs(fail_create=True))
        result = h.run(SyncMode.APPLY)

        assert not result.success
        assert result.status == "failed"
        assert "sync log" in result.error
        assert h.catalog.events == []


# ---------------------------------------------------------------------------
# Competing listings for one record
# ---------------------------------------------------------------------------


def _price_only(table: str) -> dict:
    return {INVENTORY_URL: 500, PRICE_LIST_URL: PRICE_HEADER + table}


class TestCompetingListings:
    def test_strongest_price_wins_regardless_of_feed_order(self, settings):
        h = Harness(
            settings,
            routes=_price_only(
                "| 1A00001AA | 20ELH FourStroke | $5,100 |\n"
                "| 1A00002AA | 25ELH FourStroke | $5,900 |\n"
            ),
        )
        result = h.run(SyncMode.APPLY)

        assert result.success
        assert h.catalog.rows["m-025-elh"].base_price == 5900
        assert result.counters["matched"] == 1
        assert result.counters["queued_for_review"] == 1
        assert result.counters["prices_updated"] == 1

    def test_weaker_price_is_queued_for_review(self, settings):
        h = Harness(
            settings,
            routes=_price_only(
                "| 1A00001AA | 20ELH FourStroke | $5,100 |\n"
                "| 1A00002AA | 25ELH FourStroke | $5,900 |\n"
            ),
        )
        result = h.run(SyncMode.APPLY)

        assert len(h.queue.entries) == 1
        entry = next(iter(h.queue.entries.values()))
        assert entry.scraped_motor_data["title"] == "20ELH FourStroke"
        assert entry.scraped_motor_data["price"] == 5100
        assert entry.potential_matches[0]["record_id"] == "m-025-elh"
        detail = next(d for d in result.details if d["title"] == "20ELH FourStroke")
        assert detail["decision"] == "review"
        assert "stronger match" in detail["error"]

    def test_equal_score_prices_keep_the_first(self, settings):
        h = Harness(
            settings,
            routes=_price_only(
                "| 1A00002AA | 25ELH FourStroke | $5,900 |\n"
                "| 1A00009AA | 25ELH FourStroke | $6,400 |\n"
            ),
        )
        h.run(SyncMode.APPLY)

        assert h.catalog.rows["m-025-elh"].base_price == 5900
        queued = [e.scraped_motor_data["price"] for e in h.queue.entries.values()]
        assert queued == [6400]

    def test_weaker_stock_listing_adds_no_units(self, settings):
        items = "".join(
            "<item><manufacturer>Mercury</manufacturer><condition>New</condition>"
            f"<title>{title}</title><stocknumber>{stock}</stocknumber>"
            "<price>5400</price></item>"
            for title, stock in [
                ("2025 Mercury 24ELH FourStroke", "M8002"),
                ("2025 Mercury 25ELH FourStroke", "M8001"),
            ]
        )
        h = Harness(
            settings,
            routes={
                INVENTORY_URL: f"<inventory>{items}</inventory>",
                PRICE_LIST_URL: 500,
            },
        )
        result = h.run(SyncMode.APPLY)

        record = h.catalog.rows["m-025-elh"]
        assert record.in_stock is True
        assert record.stock_quantity == 1
        assert record.stock_number == "M8001"
        queued = [e.scraped_motor_data["title"] for e in h.queue.entries.values()]
        assert queued == ["2025 Mercury 24ELH FourStroke"]
        assert result.counters["matched"] == 1

    def test_preview_proposes_one_price_per_record(self, settings):
        h = Harness(
            settings,
            routes=_price_only(
                "| 1A00001AA | 20ELH FourStroke | $5,100 |\n"
                "| 1A00002AA | 25ELH FourStroke | $5,900 |\n"
            ),
        )
        result = h.run(SyncMode.PREVIEW)

        accepted = [d for d in result.details if d["decision"] == "auto_accept"]
        assert [d["title"] for d in accepted] == ["25ELH FourStroke"]
        assert h.catalog.events == []


# ---------------------------------------------------------------------------
# Review queue identity
# ---------------------------------------------------------------------------


class TestReviewQueueIdentity:
    def _harness(self, settings, table: str) -> Harness:
        strict = settings.model_copy(update={"price_auto_accept_threshold": 70})
        return Harness(strict, routes=_price_only(table))

    def test_same_description_different_codes_get_separate_entries(self, settings):
        h = self._harness(
            settings,
            "| 1A00001AA | 20ELH FourStroke | $5,100 |\n"
            "| 1A00003AA | 20ELH FourStroke | $5,150 |\n",
        )
        result = h.run(SyncMode.APPLY)

        assert result.counters["failed_writes"] == 0
        assert result.failures == []
        codes = sorted(e.scraped_motor_data["model_code"] for e in h.queue.entries.values())
        assert codes == ["1A00001AA", "1A00003AA"]
        keys = {e.listing_key for e in h.queue.entries.values()}
        assert keys == {
            "price_list:20elh fourstroke#1a00001aa",
            "price_list:20elh fourstroke#1a00003aa",
        }

    def test_repeated_row_is_queued_once_without_failures(self, settings):
        h = self._harness(
            settings,
            "| 1A00003AA | 20ELH FourStroke | $5,150 |\n"
            "| 1A00003AA | 20ELH FourStroke | $5,150 |\n",
        )
        result = h.run(SyncMode.APPLY)

        assert result.success
        assert result.counters["queued_for_review"] == 2
        assert result.counters["failed_writes"] == 0
        assert len(h.queue.entries) == 1


# ---------------------------------------------------------------------------
# Writers sharing one lock registry
# ---------------------------------------------------------------------------


class PausingCatalog(FakeCatalog):
    """Holds the stock reset open so other writers can try to interleave."""

    def __init__(self, records):
        super().__init__(records)
        self.reset_started = asyncio.Event()

    async def reset_stock(self, checked_at):
        self.reset_started.set()
        await asyncio.sleep(0.05)
        return await super().reset_stock(checked_at)


class TestSharedLocks:
    def test_same_record_gets_same_lock(self):
        locks = RecordLocks()
        assert locks.lock("m-025-elh") is locks.lock("m-025-elh")
        assert locks.lock("m-025-elh") is not locks.lock("m-040-elpt")

    def test_approval_during_stock_reset_is_not_undone(self, settings):
        locks = RecordLocks()
        catalog = PausingCatalog(catalog_records())
        queue = FakeReviewQueue()
        mappings = FakeMappings()
        listing = make_listing("2025 Mercury 25ELH FourStroke", stock_number="M9001")
        review = ReviewService(queue, catalog, mappings, locks=locks)

        async def _run():
            entry_id = await queue.upsert_pending(
                listing.listing_key,
                {
                    "source": listing.source,
                    "scraped_motor_data": listing.to_dict(),
                    "confidence_score": 65,
                },
            )
            async with mock_http_client(ROUTES) as client:
                coordinator = ReconciliationCoordinator(
                    settings=settings,
                    adapters=build_source_adapters(settings, client),
                    catalog=catalog,
                    review_queue=queue,
                    sync_logs=FakeSyncLogs(),
                    sources=FakeSources(),
                    mappings=mappings,
                    locks=locks,
                )
                sync = asyncio.create_task(coordinator.run(SyncMode.APPLY))
                await catalog.reset_started.wait()
                await review.approve(entry_id, "m-025-elh")
                return await sync

        result = asyncio.run(_run())

        assert result.success
        record = catalog.rows["m-025-elh"]
        assert record.in_stock is True
        assert record.stock_number == "M9001"
        reset_at = catalog.events.index(("reset", None))
        assert ("update", "m-025-elh") in catalog.events[reset_at:]
