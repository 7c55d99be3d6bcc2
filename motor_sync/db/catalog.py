"""Catalog (motor_models) operations."""

from datetime import datetime
from typing import Any

from ..core.enums import AVAILABILITY_BROCHURE
from ..models.motor import CatalogMotorRecord
from .client import SupabaseRepository


class CatalogRepository(SupabaseRepository):
    table = "motor_models"

    async def list_records(
        self, ids: list[str] | None = None, limit: int | None = None
    ) -> list[CatalogMotorRecord]:
        """Catalog records ordered by id, optionally restricted to ids."""

        def _query():
            query = self.client.table(self.table).select("*")
            if ids:
                query = query.in_("id", ids)
            query = query.order("id")
            if limit:
                query = query.limit(limit)
            return query.execute()

        result = await self._execute("select", _query)
        return [CatalogMotorRecord.model_validate(row) for row in self._rows(result)]

    async def get_record(self, record_id: str) -> CatalogMotorRecord | None:
        def _query():
            return (
                self.client.table(self.table)
                .select("*")
                .eq("id", record_id)
                .limit(1)
                .execute()
            )

        rows = self._rows(await self._execute("select", _query))
        return CatalogMotorRecord.model_validate(rows[0]) if rows else None

    async def reset_stock(self, checked_at: datetime) -> int:
        """Mark every sync-eligible record out of stock. Returns rows touched."""

        def _query():
            return (
                self.client.table(self.table)
                .update(
                    {
                        "in_stock": False,
                        "stock_quantity": 0,
                        "availability": AVAILABILITY_BROCHURE,
                        "last_stock_check": checked_at.isoformat(),
                    }
                )
                .eq("is_brochure", True)
                .execute()
            )

        return len(self._rows(await self._execute("reset_stock", _query)))

    async def update_record(self, record_id: str, fields: dict[str, Any]) -> None:
        payload = {
            k: v.isoformat() if isinstance(v, datetime) else v
            for k, v in fields.items()
        }

        def _query():
            return (
                self.client.table(self.table)
                .update(payload)
                .eq("id", record_id)
                .execute()
            )

        await self._execute("update", _query)
