"""The single write path for stock and price assertions.

Used both by automatic reconciliation and by reviewer approvals, so an
approved match updates the catalog exactly like an auto-accepted one.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from ..core.enums import AVAILABILITY_IN_STOCK, PRICE_SOURCE_ESTIMATE
from ..db.catalog import CatalogRepository
from ..models.motor import CatalogMotorRecord
from ..models.pipeline import utcnow


@dataclass
class StockAssertion:
    """Aggregated stock evidence for one catalog record."""

    quantity: int = 0
    price: float | None = None
    stock_number: str | None = None
    titles: list[str] = field(default_factory=list)

    def add(
        self, title: str, quantity: int, price: float | None, stock_number: str | None
    ) -> None:
        self.quantity += quantity
        if price is not None and (self.price is None or price > self.price):
            self.price = price
        if self.stock_number is None and stock_number:
            self.stock_number = stock_number
        self.titles.append(title)


def stock_fields(
    record: CatalogMotorRecord, assertion: StockAssertion, source: str
) -> dict[str, Any]:
    """Columns written when a record is asserted in stock."""
    quantity = max(assertion.quantity, 1)
    fields: dict[str, Any] = {
        "in_stock": True,
        "stock_quantity": quantity,
        "availability": AVAILABILITY_IN_STOCK,
        "last_stock_check": utcnow(),
    }
    if assertion.stock_number:
        fields["stock_number"] = assertion.stock_number
    overrides = record.overrides()
    if assertion.price is not None and not (overrides and overrides.defines("dealer_price")):
        fields["dealer_price_live"] = assertion.price
        if record.price_source == PRICE_SOURCE_ESTIMATE:
            fields["price_source"] = source
    return fields


def price_fields(
    record: CatalogMotorRecord, price: float, source: str
) -> dict[str, Any]:
    """Columns written for a price-list match; empty when overridden."""
    overrides = record.overrides()
    if overrides and overrides.defines("base_price"):
        return {}
    fields: dict[str, Any] = {"base_price": price}
    if record.price_source == PRICE_SOURCE_ESTIMATE:
        fields["price_source"] = source
    return fields


class RecordLocks:
    """Process-wide per-record write locks.

    One instance is shared by every writer in the process (sync runs, review
    actions, enrichment) so writes to one catalog row never interleave.
    ``stock_phase`` is held by an apply run from its stock reset until its
    stock writes finish; manual stock assertions wait for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self.stock_phase = asyncio.Lock()

    def lock(self, record_id: str) -> asyncio.Lock:
        lock = self._locks.get(record_id)
        if lock is None:
            lock = self._locks[record_id] = asyncio.Lock()
        return lock


class RecordWriter:
    """Applies field updates to one catalog record under its lock."""

    def __init__(
        self, catalog: CatalogRepository, locks: RecordLocks | None = None
    ) -> None:
        self._catalog = catalog
        self.locks = locks or RecordLocks()

    async def write(self, record_id: str, fields: dict[str, Any]) -> bool:
        """Write fields; returns False when there was nothing to write.

        Raises PersistenceError.
        """
        if not fields:
            return False
        async with self.locks.lock(record_id):
            await self._catalog.update_record(record_id, fields)
        return True

    async def assert_stock(
        self,
        record: CatalogMotorRecord,
        assertion: StockAssertion,
        source: str,
    ) -> bool:
        return await self.write(record.id, stock_fields(record, assertion, source))

    async def assert_price(
        self,
        record: CatalogMotorRecord,
        price: float,
        source: str,
    ) -> bool:
        return await self.write(record.id, price_fields(record, price, source))
