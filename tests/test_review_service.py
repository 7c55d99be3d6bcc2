"""Tests for review queue adjudication."""

import asyncio

import pytest

from conftest import FakeCatalog, FakeMappings, FakeReviewQueue, catalog_records, make_listing
from motor_sync.core.enums import AVAILABILITY_IN_STOCK, ReviewStatus, SourceKind
from motor_sync.core.errors import ReviewActionError
from motor_sync.services.review_service import ReviewService


class Harness:
    def __init__(self) -> None:
        self.catalog = FakeCatalog(catalog_records())
        self.queue = FakeReviewQueue()
        self.mappings = FakeMappings()
        self.service = ReviewService(self.queue, self.catalog, self.mappings)

    async def queue_listing(self, title: str, score: int = 45, **kwargs) -> str:
        listing = make_listing(title, **kwargs)
        return await self.queue.upsert_pending(
            listing.listing_key,
            {
                "source": listing.source,
                "scraped_motor_data": listing.to_dict(),
                "potential_matches": [],
                "confidence_score": score,
            },
        )


# ---------------------------------------------------------------------------
# Approve
# ---------------------------------------------------------------------------


class TestApprove:
    def test_stock_entry_updates_catalog_like_an_auto_match(self):
        h = Harness()

        async def _run():
            entry_id = await h.queue_listing(
                "2025 Mercury 20ELH FourStroke", price=5200, stock_number="M3001"
            )
            return await h.service.approve(entry_id, "m-025-elh", "alex")

        entry = asyncio.run(_run())
        record = h.catalog.rows["m-025-elh"]

        assert entry.review_status == ReviewStatus.APPROVED
        assert entry.selected_match_id == "m-025-elh"
        assert entry.reviewed_by == "alex"
        assert entry.reviewed_at is not None
        assert record.in_stock is True
        assert record.stock_quantity == 1
        assert record.stock_number == "M3001"
        assert record.dealer_price_live == 5200
        assert record.availability == AVAILABILITY_IN_STOCK

    def test_approval_records_a_mapping(self):
        h = Harness()

        async def _run():
            entry_id = await h.queue_listing("2025 Mercury  20ELH FourStroke")
            await h.service.approve(entry_id, "m-025-elh")

        asyncio.run(_run())
        assert h.mappings.recorded == [("2025 mercury 20elh fourstroke", "m-025-elh", 45)]

    def test_price_entry_sets_base_price_only(self):
        h = Harness()

        async def _run():
            entry_id = await h.queue_listing(
                "40 FourStroke Tiller",
                source="price_list",
                kind=SourceKind.PRICE,
                price=9100,
                quantity=0,
            )
            await h.service.approve(entry_id, "m-040-elpt")

        asyncio.run(_run())
        record = h.catalog.rows["m-040-elpt"]
        assert record.base_price == 9100
        assert record.in_stock is False

    def test_stored_entry_is_marked_approved(self):
        h = Harness()

        async def _run():
            entry_id = await h.queue_listing("2025 Mercury 20ELH FourStroke")
            await h.service.approve(entry_id, "m-025-elh")
            return entry_id

        entry_id = asyncio.run(_run())
        stored = h.queue.entries[entry_id]
        assert stored.review_status == ReviewStatus.APPROVED
        assert stored.selected_match_id == "m-025-elh"

    def test_cannot_approve_twice(self):
        h = Harness()

        async def _run():
            entry_id = await h.queue_listing("2025 Mercury 20ELH FourStroke")
            await h.service.approve(entry_id, "m-025-elh")
            await h.service.approve(entry_id, "m-025-elh")

        with pytest.raises(ReviewActionError, match="already approved"):
            asyncio.run(_run())

    def test_unknown_record_leaves_entry_pending(self):
        h = Harness()

        async def _run():
            entry_id = await h.queue_listing("2025 Mercury 20ELH FourStroke")
            with pytest.raises(ReviewActionError):
                await h.service.approve(entry_id, "m-does-not-exist")
            return entry_id

        entry_id = asyncio.run(_run())
        assert h.queue.entries[entry_id].review_status == ReviewStatus.PENDING
        assert h.catalog.events == []

    def test_unknown_entry(self):
        h = Harness()
        with pytest.raises(ReviewActionError, match="not found"):
            asyncio.run(h.service.approve("rq-404", "m-025-elh"))


# ---------------------------------------------------------------------------
# Reject and listing
# ---------------------------------------------------------------------------


class TestReject:
    def test_reject(self):
        h = Harness()

        async def _run():
            entry_id = await h.queue_listing("2025 Mercury 20ELH FourStroke")
            return await h.service.reject(entry_id, "alex")

        entry = asyncio.run(_run())
        assert entry.review_status == ReviewStatus.REJECTED
        assert h.catalog.events == []
        assert h.mappings.recorded == []

    def test_no_match(self):
        h = Harness()

        async def _run():
            entry_id = await h.queue_listing("Mercury Kicker Bracket")
            await h.service.reject(entry_id, no_match=True)
            return entry_id

        entry_id = asyncio.run(_run())
        assert h.queue.entries[entry_id].review_status == ReviewStatus.NO_MATCH


class TestListEntries:
    def _seeded(self) -> Harness:
        h = Harness()

        async def _run():
            await h.queue_listing("2025 Mercury 20ELH FourStroke")
            await h.queue_listing("2025 Mercury 30ELH FourStroke")
            rejected = await h.queue_listing("2025 Mercury 50ELPT FourStroke")
            await h.service.reject(rejected)

        asyncio.run(_run())
        return h

    def test_pending_page(self):
        h = self._seeded()
        page = asyncio.run(h.service.list_entries(page=1, page_size=1))
        assert page["total"] == 2
        assert len(page["items"]) == 1
        assert page["items"][0]["review_status"] == "pending"

    def test_all_statuses(self):
        h = self._seeded()
        page = asyncio.run(h.service.list_entries(status="all"))
        assert page["total"] == 3

    def test_filter_by_status(self):
        h = self._seeded()
        page = asyncio.run(h.service.list_entries(status="rejected"))
        assert page["total"] == 1

    def test_unknown_status(self):
        h = self._seeded()
        with pytest.raises(ReviewActionError):
            asyncio.run(h.service.list_entries(status="maybe"))
