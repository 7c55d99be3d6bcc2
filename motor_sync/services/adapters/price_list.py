"""Dealer price-list adapter.

The price list is published as a pipe-delimited table:

    | Model # | Description | MSRP |
    |---|---|---|
    | 1F02201KK | 2.5MH FourStroke | $1,270 |

Parsing starts after the header and separator rows and stops at the first
blank line. Pages served as HTML fall back to reading <table> rows.
"""

import re
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup

from ...core.enums import SourceKind
from ...core.errors import SourceFetchError
from ...core.logging import logger
from ...models.pipeline import ScrapedListing
from ...utils.converters import clean_text, parse_price
from ...utils.motor_parsing import parse_motor_description
from ..fetch_cache import FetchCache
from .base import SourceAdapter

PRICE_ROW_RE = re.compile(r"\|\s*([A-Z0-9]+)\s*\|\s*([^|]+?)\s*\|\s*\$([0-9,]+(?:\.\d{2})?)\s*\|")
SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-{3,}")
MODEL_CODE_RE = re.compile(r"^[A-Z0-9]+$")


@dataclass
class PriceRow:
    model_code: str
    description: str
    price: float


def parse_price_table(text: str) -> list[PriceRow]:
    """Parse a pipe-delimited price table.

    Rows before the first table line are ignored, header and separator rows
    are skipped, and the first blank line after the table starts ends it.

    Examples:
        >>> rows = parse_price_table("| Model | Desc | Price |\\n|---|---|---|\\n| 1A | 9.9MH FourStroke | $3,450 |")
        >>> rows[0].price
        3450.0
    """
    rows: list[PriceRow] = []
    in_table = False
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            if in_table:
                break
            continue
        if not stripped.startswith("|"):
            continue
        in_table = True
        if SEPARATOR_RE.match(stripped):
            continue
        match = PRICE_ROW_RE.search(stripped)
        if not match:
            # header or malformed row
            continue
        price = parse_price(match.group(3))
        if price is None:
            continue
        rows.append(
            PriceRow(
                model_code=match.group(1).strip(),
                description=clean_text(match.group(2)),
                price=price,
            )
        )
    return rows


def parse_price_html(html: str) -> list[PriceRow]:
    """Read (model code, description, price) rows from HTML tables."""
    soup = BeautifulSoup(html, "lxml")
    rows: list[PriceRow] = []
    for tr in soup.select("table tr"):
        cells = [clean_text(td.get_text()) for td in tr.find_all("td")]
        if len(cells) < 3:
            continue
        code, description, price_text = cells[0], cells[1], cells[-1]
        if not MODEL_CODE_RE.match(code) or "$" not in price_text:
            continue
        price = parse_price(price_text)
        if price is None:
            continue
        rows.append(PriceRow(model_code=code, description=description, price=price))
    return rows


class PriceListAdapter(SourceAdapter):
    """Price-providing adapter for the dealer MSRP list."""

    kind = SourceKind.PRICE

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        timeout: float = 30.0,
        name: str = "price_list",
        cache: FetchCache | None = None,
    ) -> None:
        super().__init__(client, timeout, cache)
        self.url = url
        self.name = name

    async def fetch(self) -> str:
        return await self._get_text(self.url)

    def parse(self, raw: str) -> list[ScrapedListing]:
        rows = parse_price_table(raw)
        if not rows and "<table" in raw.lower():
            rows = parse_price_html(raw)
        if not rows:
            raise SourceFetchError(self.name, "no price rows found")
        logger.info(f"Price list {self.name}: {len(rows)} rows parsed")

        return [
            ScrapedListing(
                title=row.description,
                source=self.name,
                kind=self.kind,
                parsed=parse_motor_description(row.description),
                price=row.price,
                quantity=0,
                model_code=row.model_code,
            )
            for row in rows
        ]
