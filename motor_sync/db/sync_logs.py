"""Sync log (sync_logs) operations."""

from typing import Any

from ..models.motor import SyncLogEntry
from ..models.pipeline import SyncRun
from .client import SupabaseRepository


class SyncLogRepository(SupabaseRepository):
    table = "sync_logs"

    async def create(self, run: SyncRun) -> None:
        row = {
            "id": run.id,
            "sync_type": run.mode.value,
            "status": run.status.value,
            "started_at": run.started_at.isoformat(),
        }

        def _query():
            return self.client.table(self.table).insert(row).execute()

        await self._execute("insert", _query)

    async def finalize(
        self, run: SyncRun, motors_in_stock: int, details: dict[str, Any]
    ) -> None:
        row = {
            "status": run.status.value,
            "completed_at": run.completed_at.isoformat() if run.completed_at else None,
            "motors_processed": run.counters.processed,
            "motors_matched": run.counters.matched,
            "motors_in_stock": motors_in_stock,
            "details": details,
            "error_message": run.error,
        }

        def _query():
            return self.client.table(self.table).update(row).eq("id", run.id).execute()

        await self._execute("update", _query)

    async def list_recent(self, limit: int = 20) -> list[SyncLogEntry]:
        def _query():
            return (
                self.client.table(self.table)
                .select("*")
                .order("started_at", desc=True)
                .limit(limit)
                .execute()
            )

        result = await self._execute("select", _query)
        return [SyncLogEntry.model_validate(row) for row in self._rows(result)]
