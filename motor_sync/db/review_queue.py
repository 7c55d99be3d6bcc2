"""Review queue (pending_motor_matches) operations."""

from datetime import datetime, timezone
from typing import Any

from ..core.enums import ReviewStatus
from ..core.errors import PersistenceError
from ..models.motor import ReviewQueueEntry
from .client import SupabaseRepository


class ReviewQueueRepository(SupabaseRepository):
    table = "pending_motor_matches"

    async def get(self, entry_id: str) -> ReviewQueueEntry | None:
        def _query():
            return (
                self.client.table(self.table)
                .select("*")
                .eq("id", entry_id)
                .limit(1)
                .execute()
            )

        rows = self._rows(await self._execute("select", _query))
        return ReviewQueueEntry.model_validate(rows[0]) if rows else None

    async def find_pending(self, listing_key: str) -> ReviewQueueEntry | None:
        def _query():
            return (
                self.client.table(self.table)
                .select("*")
                .eq("listing_key", listing_key)
                .eq("review_status", ReviewStatus.PENDING.value)
                .limit(1)
                .execute()
            )

        rows = self._rows(await self._execute("select", _query))
        return ReviewQueueEntry.model_validate(rows[0]) if rows else None

    async def upsert_pending(self, listing_key: str, fields: dict[str, Any]) -> str:
        """Update the pending entry for a listing, or insert one.

        Returns the entry id.

        The pending-key unique index rejects a second pending row; when a
        concurrent writer inserted first, its row is updated instead.
        """
        existing = await self.find_pending(listing_key)
        now = datetime.now(timezone.utc).isoformat()
        if existing is not None:
            await self.update(existing.id, {**fields, "updated_at": now})
            return existing.id

        row = {
            **fields,
            "listing_key": listing_key,
            "review_status": ReviewStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }

        def _query():
            return self.client.table(self.table).insert(row).execute()

        try:
            rows = self._rows(await self._execute("insert", _query))
        except PersistenceError:
            existing = await self.find_pending(listing_key)
            if existing is None:
                raise
            await self.update(existing.id, {**fields, "updated_at": now})
            return existing.id
        return str(rows[0]["id"]) if rows else ""

    async def update(self, entry_id: str, fields: dict[str, Any]) -> None:
        def _query():
            return (
                self.client.table(self.table)
                .update(fields)
                .eq("id", entry_id)
                .execute()
            )

        await self._execute("update", _query)

    async def list_entries(
        self,
        page: int = 1,
        page_size: int = 20,
        status: ReviewStatus | None = ReviewStatus.PENDING,
    ) -> tuple[list[ReviewQueueEntry], int]:
        """One page of entries, newest first, plus the total count."""
        offset = (page - 1) * page_size

        def _query():
            query = self.client.table(self.table).select("*", count="exact")
            if status is not None:
                query = query.eq("review_status", status.value)
            return (
                query.order("created_at", desc=True)
                .range(offset, offset + page_size - 1)
                .execute()
            )

        result = await self._execute("select", _query)
        entries = [ReviewQueueEntry.model_validate(r) for r in self._rows(result)]
        total = getattr(result, "count", None)
        return entries, total if total is not None else len(entries)
