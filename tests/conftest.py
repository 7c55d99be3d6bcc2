"""In-memory stand-ins for the Supabase repositories, plus shared fixtures."""

import asyncio
from datetime import datetime
from typing import Any

import httpx
import pytest

from motor_sync.core.config import Settings
from motor_sync.core.enums import AVAILABILITY_BROCHURE, ReviewStatus, SourceKind
from motor_sync.core.errors import PersistenceError
from motor_sync.models.motor import (
    CatalogMotorRecord,
    ReviewQueueEntry,
    SourceDescriptor,
    SyncLogEntry,
)
from motor_sync.models.pipeline import ScrapedListing, SyncRun
from motor_sync.services.adapters.base import SourceAdapter
from motor_sync.utils.motor_parsing import parse_motor_description

INVENTORY_URL = "https://dealer.test/unitinventory.xml"
PRICE_LIST_URL = "https://dealer.test/pricelist"


# ---------------------------------------------------------------------------
# Repository fakes
# ---------------------------------------------------------------------------


class FakeCatalog:
    table = "motor_models"

    def __init__(self, records: list[CatalogMotorRecord]) -> None:
        self.rows = {r.id: r for r in records}
        self.events: list[tuple[str, str | None]] = []
        self.fail_ids: set[str] = set()

    async def list_records(self, ids=None, limit=None) -> list[CatalogMotorRecord]:
        rows = [self.rows[k] for k in sorted(self.rows)]
        if ids:
            rows = [r for r in rows if r.id in ids]
        return rows[:limit] if limit else rows

    async def get_record(self, record_id: str) -> CatalogMotorRecord | None:
        return self.rows.get(record_id)

    async def reset_stock(self, checked_at: datetime) -> int:
        await asyncio.sleep(0)
        touched = 0
        for rid, row in list(self.rows.items()):
            if row.is_brochure:
                self.rows[rid] = row.model_copy(
                    update={
                        "in_stock": False,
                        "stock_quantity": 0,
                        "availability": AVAILABILITY_BROCHURE,
                        "last_stock_check": checked_at,
                    }
                )
                touched += 1
        self.events.append(("reset", None))
        return touched

    async def update_record(self, record_id: str, fields: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        if record_id in self.fail_ids:
            raise PersistenceError("update", self.table, "simulated failure")
        self.rows[record_id] = self.rows[record_id].model_copy(update=fields)
        self.events.append(("update", record_id))


class FakeReviewQueue:
    def __init__(self) -> None:
        self.entries: dict[str, ReviewQueueEntry] = {}

    async def get(self, entry_id: str) -> ReviewQueueEntry | None:
        return self.entries.get(entry_id)

    async def find_pending(self, listing_key: str) -> ReviewQueueEntry | None:
        for entry in self.entries.values():
            if (
                entry.listing_key == listing_key
                and entry.review_status == ReviewStatus.PENDING
            ):
                return entry
        return None

    async def upsert_pending(self, listing_key: str, fields: dict[str, Any]) -> str:
        existing = await self.find_pending(listing_key)
        if existing is not None:
            await self.update(existing.id, fields)
            return existing.id
        await asyncio.sleep(0)
        # Same constraint as the pending-key unique index
        if await self.find_pending(listing_key) is not None:
            raise PersistenceError("insert", "pending_motor_matches", "duplicate pending key")
        entry_id = f"rq-{len(self.entries) + 1}"
        self.entries[entry_id] = ReviewQueueEntry.model_validate(
            {**fields, "id": entry_id, "listing_key": listing_key}
        )
        return entry_id

    async def update(self, entry_id: str, fields: dict[str, Any]) -> None:
        entry = self.entries[entry_id]
        data = {**entry.model_dump(), **fields}
        self.entries[entry_id] = ReviewQueueEntry.model_validate(data)

    async def list_entries(self, page=1, page_size=20, status=ReviewStatus.PENDING):
        rows = [
            e for e in self.entries.values() if status is None or e.review_status == status
        ]
        start = (page - 1) * page_size
        return rows[start : start + page_size], len(rows)


class FakeSyncLogs:
    def __init__(self, fail_create: bool = False) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.fail_create = fail_create

    async def create(self, run: SyncRun) -> None:
        if self.fail_create:
            raise PersistenceError("insert", "sync_logs", "simulated failure")
        self.rows[run.id] = {
            "id": run.id,
            "sync_type": run.mode.value,
            "status": run.status.value,
            "started_at": run.started_at,
        }

    async def finalize(self, run: SyncRun, motors_in_stock: int, details: dict) -> None:
        self.rows[run.id].update(
            {
                "status": run.status.value,
                "completed_at": run.completed_at,
                "motors_processed": run.counters.processed,
                "motors_matched": run.counters.matched,
                "motors_in_stock": motors_in_stock,
                "details": details,
                "error_message": run.error,
            }
        )

    async def list_recent(self, limit: int = 20) -> list[SyncLogEntry]:
        rows = sorted(self.rows.values(), key=lambda r: r["started_at"], reverse=True)
        return [SyncLogEntry.model_validate(r) for r in rows[:limit]]


class FakeSources:
    def __init__(self, descriptors: list[SourceDescriptor] | None = None) -> None:
        self.descriptors = descriptors or []
        self.nudges: list[tuple[str, int]] = []

    async def list_sources(self) -> list[SourceDescriptor]:
        return list(self.descriptors)

    async def nudge_success_rate(self, name: str, delta: int) -> None:
        self.nudges.append((name, delta))


class FakeMappings:
    def __init__(self, mappings: dict[str, str] | None = None) -> None:
        self.mappings = dict(mappings or {})
        self.recorded: list[tuple[str, str, int]] = []

    async def active_mappings(self) -> dict[str, str]:
        return dict(self.mappings)

    async def record_mapping(self, pattern: str, record_id: str, confidence: int) -> None:
        self.mappings[pattern] = record_id
        self.recorded.append((pattern, record_id, confidence))


class SlowAdapter(SourceAdapter):
    """A stock feed that never answers in time."""

    kind = SourceKind.STOCK

    def __init__(self, timeout: float, delay: float = 5.0, name: str = "slow_feed"):
        super().__init__(None, timeout)
        self.name = name
        self.delay = delay

    async def fetch(self) -> str:
        await asyncio.sleep(self.delay)
        return ""

    def parse(self, raw: str) -> list[ScrapedListing]:
        return []


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_listing(
    title: str,
    source: str = "inventory_xml",
    kind: SourceKind = SourceKind.STOCK,
    **kwargs: Any,
) -> ScrapedListing:
    return ScrapedListing(
        title=title,
        source=source,
        kind=kind,
        parsed=parse_motor_description(title),
        **kwargs,
    )


def mock_http_client(routes: dict[str, str | int]) -> httpx.AsyncClient:
    """AsyncClient answering from a url -> body (or status code) map."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(str(request.url))
        if body is None:
            return httpx.Response(404, text="not found")
        if isinstance(body, int):
            return httpx.Response(body, text="error")
        return httpx.Response(200, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


INVENTORY_XML = """<?xml version="1.0" encoding="UTF-8"?>
<inventory>
  <item>
    <manufacturer>Mercury</manufacturer>
    <condition>New</condition>
    <title>2025 Mercury 9.9MH FourStroke EFI</title>
    <stocknumber>M1001</stocknumber>
    <price>$3,450</price>
  </item>
  <item>
    <manufacturer>Mercury</manufacturer>
    <condition>New</condition>
    <title>2025 Mercury 9.9MH FourStroke EFI</title>
    <stocknumber>M1002</stocknumber>
    <price>3300</price>
  </item>
  <item>
    <manufacturer>Mercury</manufacturer>
    <condition>New</condition>
    <title>2025 Mercury 115ELPT Pro XS</title>
    <stocknumber>M2001</stocknumber>
    <price>13999</price>
  </item>
  <item>
    <manufacturer>Mercury</manufacturer>
    <condition>New</condition>
    <title>2025 Mercury 20ELH FourStroke</title>
    <stocknumber>M3001</stocknumber>
    <price>5200</price>
  </item>
  <item>
    <manufacturer>Mercury</manufacturer>
    <condition>New</condition>
    <title>Mercury Outboard Motor Cover</title>
    <stocknumber>M4001</stocknumber>
    <price>150</price>
  </item>
  <item>
    <manufacturer>Mercury</manufacturer>
    <condition>Used</condition>
    <title>2019 Mercury 60ELPT FourStroke</title>
    <stocknumber>U5001</stocknumber>
    <price>6000</price>
  </item>
  <item>
    <manufacturer>Yamaha</manufacturer>
    <condition>New</condition>
    <title>2025 Yamaha F150 XB</title>
    <stocknumber>Y6001</stocknumber>
    <price>17000</price>
  </item>
  <item>
    <manufacturer>Mercury</manufacturer>
    <condition>New</condition>
    <title>2025 Legend 16 Xcalibur Boat 40ELPT</title>
    <stocknumber>B7001</stocknumber>
    <price>31000</price>
  </item>
</inventory>
"""

PRICE_LIST_MD = """# Mercury Outboard Price List

| Model # | Description | MSRP |
|---|---|---|
| 1F10201LK | 9.9MH FourStroke | $3,615 |
| 1X99999ZZ | 40ELPT FourStroke | $9,100 |

| 1Z00000AA | 300 Verado | $40,000 |
"""


def catalog_records() -> list[CatalogMotorRecord]:
    return [
        CatalogMotorRecord(
            id="m-009-9mh",
            model_display="9.9MH FourStroke",
            model_number="1F10201LK",
            horsepower=9.9,
            family="FourStroke",
        ),
        CatalogMotorRecord(
            id="m-025-elh",
            model_display="25ELH FourStroke",
            horsepower=25,
            family="FourStroke",
            in_stock=True,
            stock_quantity=1,
            stock_number="OLD-1",
        ),
        CatalogMotorRecord(
            id="m-040-elpt",
            model_display="40ELPT FourStroke",
            horsepower=40,
            family="FourStroke",
        ),
        CatalogMotorRecord(
            id="m-090-proxs",
            model_display="90ELPT Pro XS",
            horsepower=90,
            family="Pro XS",
        ),
        CatalogMotorRecord(
            id="m-150-l",
            model_display="150L FourStroke",
            horsepower=150,
            family="FourStroke",
        ),
    ]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SUPABASE_URL="https://example.supabase.co",
        SUPABASE_KEY="test-key",
        INVENTORY_FEED_URL=INVENTORY_URL,
        PRICE_LIST_URL=PRICE_LIST_URL,
    )
