"""Human adjudication of queued matches.

Approving an entry writes to the catalog through the same path as an
auto-accepted match and records a confirmed mapping so the same listing
matches directly on later runs.
"""

from typing import Any

from ..core.enums import ReviewStatus, SourceKind
from ..core.errors import ReviewActionError
from ..core.logging import logger
from ..db.catalog import CatalogRepository
from ..db.mappings import MatchMappingRepository
from ..db.review_queue import ReviewQueueRepository
from ..models.motor import ReviewQueueEntry
from ..models.pipeline import normalize_title, utcnow
from ..utils.converters import parse_price, safe_int
from .record_writer import RecordLocks, RecordWriter, StockAssertion


class ReviewService:
    def __init__(
        self,
        review_queue: ReviewQueueRepository,
        catalog: CatalogRepository,
        mappings: MatchMappingRepository,
        locks: RecordLocks | None = None,
    ) -> None:
        self._queue = review_queue
        self._catalog = catalog
        self._mappings = mappings
        self._writer = RecordWriter(catalog, locks)

    async def list_entries(
        self, page: int = 1, page_size: int = 20, status: str | None = "pending"
    ) -> dict[str, Any]:
        """Paginated queue listing. ``status="all"`` disables the filter."""
        status_enum = None
        if status and status != "all":
            status_enum = ReviewStatus.from_string(status)
            if status_enum is None:
                raise ReviewActionError(f"Unknown review status '{status}'")
        entries, total = await self._queue.list_entries(page, page_size, status_enum)
        return {
            "items": [e.model_dump(mode="json") for e in entries],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    async def _pending_entry(self, entry_id: str) -> ReviewQueueEntry:
        entry = await self._queue.get(entry_id)
        if entry is None:
            raise ReviewActionError(f"Review entry {entry_id} not found")
        if entry.review_status != ReviewStatus.PENDING:
            raise ReviewActionError(
                f"Review entry {entry_id} is already {entry.review_status.value}"
            )
        return entry

    async def approve(
        self, entry_id: str, record_id: str, reviewer: str | None = None
    ) -> ReviewQueueEntry:
        """Accept a queued match for the chosen catalog record."""
        entry = await self._pending_entry(entry_id)
        record = await self._catalog.get_record(record_id)
        if record is None:
            raise ReviewActionError(f"Catalog record {record_id} not found")

        data = entry.scraped_motor_data
        title = str(data.get("title") or "")
        kind = SourceKind(data.get("kind") or SourceKind.STOCK.value)
        price = parse_price(data.get("price"))

        if kind == SourceKind.STOCK:
            assertion = StockAssertion()
            assertion.add(
                title, safe_int(data.get("quantity"), 1), price, data.get("stock_number")
            )
            # Never between an apply run's stock reset and its stock writes.
            async with self._writer.locks.stock_phase:
                await self._writer.assert_stock(record, assertion, entry.source)
        elif kind == SourceKind.PRICE and price is not None:
            await self._writer.assert_price(record, price, entry.source)

        if title:
            await self._mappings.record_mapping(
                normalize_title(title), record.id, entry.confidence_score
            )

        reviewed_at = utcnow()
        await self._queue.update(
            entry.id,
            {
                "review_status": ReviewStatus.APPROVED.value,
                "selected_match_id": record.id,
                "reviewed_by": reviewer,
                "reviewed_at": reviewed_at.isoformat(),
            },
        )
        logger.info(f"Review entry {entry.id} approved -> record {record.id}")
        return entry.model_copy(
            update={
                "review_status": ReviewStatus.APPROVED,
                "selected_match_id": record.id,
                "reviewed_by": reviewer,
                "reviewed_at": reviewed_at,
            }
        )

    async def reject(
        self, entry_id: str, reviewer: str | None = None, no_match: bool = False
    ) -> ReviewQueueEntry:
        """Reject a queued match; ``no_match`` marks the listing as having no catalog record."""
        entry = await self._pending_entry(entry_id)
        status = ReviewStatus.NO_MATCH if no_match else ReviewStatus.REJECTED
        reviewed_at = utcnow()
        await self._queue.update(
            entry.id,
            {
                "review_status": status.value,
                "reviewed_by": reviewer,
                "reviewed_at": reviewed_at.isoformat(),
            },
        )
        logger.info(f"Review entry {entry.id} marked {status.value}")
        return entry.model_copy(
            update={"review_status": status, "reviewed_by": reviewer, "reviewed_at": reviewed_at}
        )
