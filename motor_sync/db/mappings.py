"""Confirmed listing-to-record mappings (motor_match_mappings)."""

from .client import SupabaseRepository


class MatchMappingRepository(SupabaseRepository):
    table = "motor_match_mappings"

    async def active_mappings(self) -> dict[str, str]:
        """Normalized listing title -> catalog record id."""

        def _query():
            return (
                self.client.table(self.table)
                .select("scraped_pattern, motor_model_id")
                .eq("is_active", True)
                .execute()
            )

        result = await self._execute("select", _query)
        return {
            str(row["scraped_pattern"]): str(row["motor_model_id"])
            for row in self._rows(result)
            if row.get("scraped_pattern") and row.get("motor_model_id")
        }

    async def record_mapping(
        self, pattern: str, record_id: str, confidence: int
    ) -> None:
        row = {
            "scraped_pattern": pattern,
            "motor_model_id": record_id,
            "confidence_score": confidence,
            "is_active": True,
        }

        def _query():
            return (
                self.client.table(self.table)
                .upsert(row, on_conflict="scraped_pattern")
                .execute()
            )

        await self._execute("upsert", _query)
