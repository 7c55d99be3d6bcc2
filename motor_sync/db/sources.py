"""Data source descriptor (motor_data_sources) operations."""

from ..models.motor import SourceDescriptor
from .client import SupabaseRepository


class SourceRepository(SupabaseRepository):
    table = "motor_data_sources"

    async def list_sources(self) -> list[SourceDescriptor]:
        def _query():
            return (
                self.client.table(self.table)
                .select("*")
                .order("priority")
                .execute()
            )

        result = await self._execute("select", _query)
        return [SourceDescriptor.model_validate(row) for row in self._rows(result)]

    async def nudge_success_rate(self, name: str, delta: int) -> None:
        """Atomically shift a source's success rate, clamped to [0, 100]."""

        def _query():
            return self.client.rpc(
                "nudge_source_success_rate",
                {"p_name": name, "p_delta": delta},
            ).execute()

        await self._execute("rpc_nudge", _query)
