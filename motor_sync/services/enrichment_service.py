"""Enrichment coordinator: gathers descriptive data and merges it per record."""

import asyncio
import time
from typing import Any

from ..core.enums import SOURCE_FAILURE_NUDGE, SOURCE_SUCCESS_NUDGE
from ..core.errors import PersistenceError
from ..core.logging import log_error, logger
from ..db.catalog import CatalogRepository
from ..db.sources import SourceRepository
from ..models.motor import CatalogMotorRecord, EnrichmentRunResult, SourceDescriptor
from ..models.pipeline import EnrichmentResult, utcnow
from .adapters.base import EnrichmentAdapter
from .enrichment_merger import merge_enrichment
from .record_writer import RecordLocks, RecordWriter

# Existing catalog data is merged as the lowest-priority source
EXISTING_DATA_SOURCE = "catalog"
DEFAULT_PRIORITY = 100


def existing_data(record: CatalogMotorRecord) -> EnrichmentResult:
    return EnrichmentResult(
        source=EXISTING_DATA_SOURCE,
        description=record.description,
        features=list(record.features),
        specifications={k: str(v) for k, v in record.specifications.items()},
        images=list(record.images),
    )


def ledger_entry(result: EnrichmentResult) -> dict[str, Any]:
    return {
        "scraped_at": result.fetched_at.isoformat(),
        "success": result.success,
        "fields": result.populated_fields(),
        "error": result.error,
    }


class EnrichmentCoordinator:
    """Runs every active enrichment adapter over a batch of records."""

    def __init__(
        self,
        adapters: list[EnrichmentAdapter],
        catalog: CatalogRepository,
        sources: SourceRepository,
        concurrency: int = 4,
        batch_size: int | None = None,
        locks: RecordLocks | None = None,
    ) -> None:
        self._adapters = adapters
        self._catalog = catalog
        self._sources = sources
        self._concurrency = concurrency
        self._batch_size = batch_size
        self._writer = RecordWriter(catalog, locks)

    async def _ordered_adapters(self) -> list[EnrichmentAdapter]:
        """Active adapters, highest priority (lowest rank) first."""
        try:
            descriptors: dict[str, SourceDescriptor] = {
                d.name: d for d in await self._sources.list_sources()
            }
        except PersistenceError as e:
            logger.warning(f"Source descriptors unavailable, using defaults: {e}")
            descriptors = {}

        active = [
            a
            for a in self._adapters
            if a.name not in descriptors or descriptors[a.name].is_active
        ]
        return sorted(
            active,
            key=lambda a: (
                descriptors[a.name].priority if a.name in descriptors else DEFAULT_PRIORITY
            ),
        )

    async def enrich_record(
        self, record: CatalogMotorRecord, adapters: list[EnrichmentAdapter]
    ) -> list[EnrichmentResult]:
        """Enrich and persist one record. Returns the per-source results.

        Raises PersistenceError when the write fails.
        """
        results = list(await asyncio.gather(*(a.enrich(record) for a in adapters)))
        merged = merge_enrichment(results + [existing_data(record)], record.overrides())

        ledger = dict(record.data_sources)
        for result in results:
            ledger[result.source] = ledger_entry(result)

        fields = {
            "description": merged.description,
            "features": merged.features,
            "specifications": merged.specifications,
            "images": merged.images,
            "data_quality_score": merged.quality_score,
            "data_sources": ledger,
            "last_enriched": utcnow(),
        }
        await self._writer.write(record.id, fields)
        return results

    async def run(
        self, record_ids: list[str] | None = None, limit: int | None = None
    ) -> EnrichmentRunResult:
        """Enrich a batch of records. Never raises.

        Without explicit ids or a limit, at most ``batch_size`` records are
        processed.
        """
        start = time.time()
        if record_ids is None and limit is None:
            limit = self._batch_size
        try:
            adapters = await self._ordered_adapters()
            records = await self._catalog.list_records(ids=record_ids, limit=limit)
        except PersistenceError as e:
            log_error("Enrichment run could not start", e)
            return EnrichmentRunResult(success=False, error=str(e))

        semaphore = asyncio.Semaphore(self._concurrency)
        outcome = EnrichmentRunResult(success=True, records_processed=len(records))
        source_ok: dict[str, bool] = {a.name: False for a in adapters}

        async def _one(record: CatalogMotorRecord) -> None:
            async with semaphore:
                try:
                    results = await self.enrich_record(record, adapters)
                except PersistenceError as e:
                    log_error("Enrichment write failed", e, record=record.id)
                    outcome.failures.append({"record_id": record.id, "error": str(e)})
                    return
            outcome.records_updated += 1
            for result in results:
                if result.success:
                    source_ok[result.source] = True
                else:
                    outcome.source_errors[result.source] = (
                        outcome.source_errors.get(result.source, 0) + 1
                    )

        await asyncio.gather(*(_one(r) for r in records))

        if records:
            for name, ok in source_ok.items():
                delta = SOURCE_SUCCESS_NUDGE if ok else SOURCE_FAILURE_NUDGE
                try:
                    await self._sources.nudge_success_rate(name, delta)
                except PersistenceError as e:
                    logger.warning(f"Could not update success rate for {name}: {e}")

        logger.info(
            f"Enrichment run: {outcome.records_updated}/{outcome.records_processed} "
            f"records updated in {(time.time() - start) * 1000:.0f}ms"
        )
        return outcome
