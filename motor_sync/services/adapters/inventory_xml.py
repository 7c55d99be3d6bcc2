"""Dealer unit-inventory XML feed adapter.

The feed lists every physical unit on the lot (boats, trailers, motors,
used and new). Items are filtered to the configured manufacturer and
condition, non-motor units are excluded, and duplicate titles are
aggregated into one listing with a quantity, since one motor model can
appear as several units.
"""

from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup, Tag

from ...core.enums import SourceKind
from ...core.errors import SourceFetchError
from ...core.logging import logger
from ...models.pipeline import ScrapedListing
from ...utils.converters import clean_text, parse_price
from ...utils.motor_parsing import parse_motor_description
from ..fetch_cache import FetchCache
from .base import SourceAdapter

# Alternate tag names seen across feed versions, in preference order
MANUFACTURER_TAGS = ("manufacturer", "make", "brand", "mfg")
CONDITION_TAGS = ("condition", "unitcondition", "status", "state")
CATEGORY_TAGS = ("category", "type", "producttype", "vehicletype", "unittype")
TITLE_TAGS = ("title", "name", "model", "unitname")
DESCRIPTION_TAGS = ("description", "desc")
STOCK_NUMBER_TAGS = ("stocknumber", "stock_number", "vin", "id")
PRICE_TAGS = ("price", "cost", "msrp")

USED_KEYWORDS = ("used", "pre-owned", "preowned")

NON_MOTOR_KEYWORDS = (
    "pontoon", "deck boat", "fishing boat", "bass boat", "jon boat",
    "boat", "vessel", "watercraft", "hull",
    "trailer", "pwc", "jet ski", "atv", "utv", "snowmobile",
    "parts", "accessories", "accessory", "propeller",
)

MOTOR_KEYWORDS = (
    "fourstroke", "four stroke", "four-stroke", "proxs", "pro xs", "pro-xs",
    "seapro", "sea pro", "verado", "outboard", "efi", "command thrust", "tiller",
)


@dataclass
class InventoryItem:
    title: str
    manufacturer: str
    condition: str
    category: str
    description: str
    stock_number: str | None
    price: float | None


def _first_text(item: Tag, names: tuple[str, ...]) -> str:
    for name in names:
        node = item.find(name, recursive=False) or item.find(name)
        if node is not None:
            text = clean_text(node.get_text())
            if text:
                return text
    return ""


def parse_inventory_items(raw: str) -> list[InventoryItem]:
    """Parse every <item> of the feed into an InventoryItem."""
    soup = BeautifulSoup(raw, "xml")
    items: list[InventoryItem] = []
    for node in soup.find_all("item"):
        title = _first_text(node, TITLE_TAGS)
        if not title:
            continue
        items.append(
            InventoryItem(
                title=title,
                manufacturer=_first_text(node, MANUFACTURER_TAGS).lower(),
                condition=_first_text(node, CONDITION_TAGS).lower(),
                category=_first_text(node, CATEGORY_TAGS).lower(),
                description=_first_text(node, DESCRIPTION_TAGS),
                stock_number=_first_text(node, STOCK_NUMBER_TAGS) or None,
                price=parse_price(_first_text(node, PRICE_TAGS)),
            )
        )
    return items


def condition_matches(condition: str, target: str) -> bool:
    """Match the configured condition; "new" means anything not used."""
    target = target.lower()
    if target == "new":
        return not any(word in condition for word in USED_KEYWORDS)
    return target in condition


def manufacturer_matches(item: InventoryItem, target: str) -> bool:
    target = target.lower()
    if item.manufacturer:
        return target in item.manufacturer
    return target in item.title.lower()


def is_motor_item(item: InventoryItem) -> bool:
    """Exclude boats, trailers and parts; require some motor indicator."""
    if any(
        k in text for k in NON_MOTOR_KEYWORDS for text in (item.title.lower(), item.category)
    ):
        return False
    parsed = parse_motor_description(item.title)
    if parsed.horsepower is not None or parsed.shaft_code is not None:
        return True
    haystacks = (item.title.lower(), item.description.lower(), item.category)
    return any(k in text for k in MOTOR_KEYWORDS for text in haystacks)


def aggregate_by_title(items: list[InventoryItem]) -> list[tuple[str, int, float | None, str | None]]:
    """Collapse duplicate titles into (title, quantity, max price, first stock number).

    Order follows the first occurrence of each title.
    """
    grouped: dict[str, list] = {}
    for item in items:
        entry = grouped.get(item.title)
        if entry is None:
            grouped[item.title] = [item.title, 1, item.price, item.stock_number]
            continue
        entry[1] += 1
        if item.price is not None and (entry[2] is None or item.price > entry[2]):
            entry[2] = item.price
        if entry[3] is None and item.stock_number:
            entry[3] = item.stock_number
    return [tuple(e) for e in grouped.values()]


class InventoryXmlAdapter(SourceAdapter):
    """Stock-providing adapter for the dealer unit-inventory XML feed."""

    kind = SourceKind.STOCK

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        manufacturer: str = "mercury",
        condition: str = "new",
        timeout: float = 30.0,
        name: str = "inventory_xml",
        cache: FetchCache | None = None,
    ) -> None:
        super().__init__(client, timeout, cache)
        self.url = url
        self.name = name
        self.manufacturer = manufacturer
        self.condition = condition

    async def fetch(self) -> str:
        return await self._get_text(self.url)

    def parse(self, raw: str) -> list[ScrapedListing]:
        if not raw or "<item" not in raw:
            raise SourceFetchError(self.name, "feed contains no <item> elements")

        items = parse_inventory_items(raw)
        selected = [
            item
            for item in items
            if manufacturer_matches(item, self.manufacturer)
            and condition_matches(item.condition, self.condition)
            and is_motor_item(item)
        ]
        logger.info(
            f"Inventory feed {self.name}: {len(selected)} of {len(items)} items selected"
        )

        return [
            ScrapedListing(
                title=title,
                source=self.name,
                kind=self.kind,
                parsed=parse_motor_description(title),
                price=price,
                stock_number=stock_number,
                quantity=quantity,
            )
            for title, quantity, price, stock_number in aggregate_by_title(selected)
        ]
