"""Facet catalog: room-conditional facet sequences, search payloads and option lists."""

import re
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Optional

from abyat.schemas.design import FacetBucket, PriceRange
from abyat.services.design_response import parse_facet

if TYPE_CHECKING:
    from abyat.services.design_state import DesignSearchState

PRICES = "prices"
ROOMS = "rooms"

DEFAULT_FACET_SEQUENCE = ["rooms", "colors", "styles", "lightingAndAtmospheres", "prices"]

ROOM_DYNAMIC_FILTER_KEYS = {
    "LIVING_ROOM": ["livingRoomLayout", "livingRoomSpace"],
    "DINING_ROOM": ["diningRoomType", "diningRoomTableSize"],
    "BEDROOM": ["bedroomType", "bedroomBedSize"],
    "OUTDOOR": ["outdoorFeature", "outdoorSpace"],
}

ALL_DYNAMIC_FILTER_KEYS = sorted({key for keys in ROOM_DYNAMIC_FILTER_KEYS.values() for key in keys})

ROOM_FACET_SEQUENCE = {
    room: ["rooms", "colors", "styles", "lightingAndAtmospheres", *dynamic_keys, "prices"]
    for room, dynamic_keys in ROOM_DYNAMIC_FILTER_KEYS.items()
}

# Filter keys -> facet tokens understood by the search API.
FILTER_KEY_TO_FACET = {
    "rooms": "ROOM",
    "colors": "COLORS",
    "styles": "STYLES",
    "lightingAndAtmospheres": "LIGHTING_ATMOSPHERE",
    "livingRoomLayout": "LIVING_ROOM_LAYOUT",
    "livingRoomSpace": "LIVING_ROOM_SPACE",
    "diningRoomType": "DINING_ROOM_TYPE",
    "diningRoomTableSize": "DINING_ROOM_TABLE_SIZE",
    "bedroomType": "BEDROOM_TYPE",
    "bedroomBedSize": "BEDROOM_BED_SIZE",
    "outdoorSpace": "OUTDOOR_SPACE",
    "outdoorFeature": "OUTDOOR_FEATURE",
    "prices": "PRICE",
}

# Dynamic filter keys are plural in the search payload.
FILTER_KEY_TO_API_KEY = {
    "livingRoomLayout": "livingRoomLayouts",
    "livingRoomSpace": "livingRoomSpaces",
    "diningRoomType": "diningRoomTypes",
    "diningRoomTableSize": "diningRoomTableSizes",
    "bedroomType": "bedroomTypes",
    "bedroomBedSize": "bedroomBedSizes",
    "outdoorSpace": "outdoorSpaces",
    "outdoorFeature": "outdoorFeatures",
}

BASE_ARRAY_FILTER_KEYS = ["rooms", "colors", "styles", "lightingAndAtmospheres"]

FACET_LABELS = {
    "rooms": "a room type",
    "colors": "a color palette",
    "styles": "a style",
    "lightingAndAtmospheres": "lighting & atmosphere",
    "livingRoomLayout": "a living room layout",
    "livingRoomSpace": "a living room space",
    "diningRoomType": "a dining room type",
    "diningRoomTableSize": "a dining room table size",
    "bedroomType": "a bedroom type",
    "bedroomBedSize": "a bed size",
    "outdoorSpace": "an outdoor space",
    "outdoorFeature": "an outdoor feature",
    "prices": "a price range",
}

IN_STOCK_MIN_PERCENTAGE = 80
DEFAULT_OPTION_LIMIT = 10
OPTION_TITLE_MAX = 24
OPTION_DESCRIPTION_MAX = 60
PRICE_OPTION_DESCRIPTION = "Tap to set budget range"

_COUNT_SUFFIX = re.compile(r"\s*\(\s*\d[\d,]*(\.\d+)?\s*\)\s*$")


@dataclass
class FacetOption:
    id: str
    title: str
    value: str
    count: Optional[float] = None
    description: str = ""


def sequence_for_state(state: Optional["DesignSearchState"]) -> list[str]:
    """Facet keys to ask about, in order, for the state's selected room."""
    room = state.room if state is not None else None
    return list(ROOM_FACET_SEQUENCE.get(room, DEFAULT_FACET_SEQUENCE))


def sequence_to_facet_tokens(sequence: list[str]) -> list[str]:
    return [FILTER_KEY_TO_FACET.get(key, str(key).upper()) for key in sequence if key]


def needs_selection(filters: dict[str, Any], facet_key: Optional[str]) -> bool:
    if not facet_key:
        return False
    if facet_key == PRICES:
        prices = filters.get(PRICES)
        return prices is None or not prices.is_set
    value = filters.get(facet_key)
    if isinstance(value, list):
        return len(value) == 0
    return True


def next_unanswered_facet(state: "DesignSearchState", previous_key: Optional[str]) -> Optional[str]:
    """First facet after ``previous_key`` that still needs a selection.

    Scans from the start when ``previous_key`` is None or not part of the
    current sequence. A single call visits each key at most once.
    """
    sequence = sequence_for_state(state)
    start = 0
    if previous_key and previous_key in sequence:
        start = sequence.index(previous_key) + 1

    for candidate in sequence[start:]:
        if needs_selection(state.filters, candidate):
            return candidate
    return None


def _serialize_prices(prices) -> list[dict[str, float]]:
    if prices is None or prices.skipped:
        return []
    if prices.min is None and prices.max is None:
        return []
    low = prices.min if prices.min is not None else prices.max
    high = prices.max if prices.max is not None else prices.min
    return [{"min": low, "max": high}]


def build_search_payload(state: "DesignSearchState") -> dict[str, Any]:
    filters = state.filters
    payload_filters: dict[str, Any] = {key: list(filters.get(key) or []) for key in BASE_ARRAY_FILTER_KEYS}
    payload_filters["prices"] = _serialize_prices(filters.get(PRICES))
    payload_filters["categorization"] = []
    payload_filters["inStockPercentage"] = {"min": IN_STOCK_MIN_PERCENTAGE}

    for filter_key, api_key in FILTER_KEY_TO_API_KEY.items():
        value = filters.get(filter_key)
        if isinstance(value, list) and value:
            payload_filters[api_key] = list(value)

    payload: dict[str, Any] = {
        "locale": state.locale,
        "currency": state.currency,
        "marketplace": state.marketplace,
        "size": state.size,
        "page": state.page,
        "filters": payload_filters,
        "facets": list(state.current_facets),
    }
    if state.seed is not None:
        payload["seed"] = state.seed
    return payload


def humanize_label(value: str) -> str:
    label = re.sub(r"[_-]+", " ", str(value))
    label = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", label)
    label = re.sub(r"\s+", " ", label).strip()
    return label[:1].upper() + label[1:]


def humanize_facet_key(key: str) -> str:
    if not key:
        return ""
    return humanize_label(key)


def facet_label(key: str) -> str:
    return FACET_LABELS.get(key) or humanize_facet_key(key)


def title_case(value: Any) -> str:
    if not value:
        return ""
    text = re.sub(r"[_-]+", " ", str(value))
    text = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
    words = re.sub(r"\s+", " ", text).strip().split(" ")
    return " ".join(word[:1].upper() + word[1:].lower() for word in words if word)


def truncate(value: str, max_length: int = OPTION_TITLE_MAX) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[:max(0, max_length - 3)]}..."


def format_number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def plain_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def format_currency(amount: Any, currency: str = "SAR") -> Optional[str]:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return None
    return f"{currency} {amount:,.0f}"


def _price_options(ranges: list[PriceRange], limit: int, include_counts: bool) -> list[FacetOption]:
    seen: set[tuple[float, float]] = set()
    normalized: list[PriceRange] = []
    for price_range in ranges:
        low, high = price_range.min, price_range.max
        if low is None or high is None or low == high:
            continue
        if low > high:
            low, high = high, low
        if (low, high) in seen:
            continue
        seen.add((low, high))
        normalized.append(PriceRange(min=low, max=high, count=price_range.count))

    normalized.sort(key=lambda price_range: price_range.min)

    options = []
    for index, price_range in enumerate(normalized[:limit], start=1):
        label = f"{format_currency(price_range.min)} - {format_currency(price_range.max)}"
        if include_counts and price_range.count is not None:
            label = f"{label} ({format_number(price_range.count)})"
        options.append(
            FacetOption(
                id=f"prices_{index}",
                title=label,
                value=f"{plain_number(price_range.min)}-{plain_number(price_range.max)}",
                count=price_range.count,
                description=PRICE_OPTION_DESCRIPTION,
            )
        )
    return options


def extract_options(
    facet_counts: Optional[dict[str, Any]],
    facet_key: Optional[str],
    limit: int = DEFAULT_OPTION_LIMIT,
    include_counts: bool = True,
) -> list[FacetOption]:
    """Options to offer for ``facet_key``, most popular first (prices: cheapest first).

    ``facet_counts`` may hold raw backend shapes or already-parsed buckets.
    """
    if not facet_key or not facet_counts:
        return []
    raw = facet_counts.get(facet_key)
    if not raw:
        return []

    parsed = parse_facet(facet_key, raw)
    if facet_key == PRICES:
        return _price_options(parsed, limit, include_counts)

    buckets: list[FacetBucket] = parsed
    entries = [(bucket, humanize_label(bucket.value)) for bucket in buckets]
    entries.sort(key=lambda entry: (-(entry[0].count if entry[0].count is not None else -1), entry[1]))

    options = []
    for index, (bucket, label) in enumerate(entries[:limit], start=1):
        title = truncate(label, OPTION_TITLE_MAX)
        if include_counts and bucket.count is not None:
            title = f"{title} ({format_number(bucket.count)})"
        options.append(
            FacetOption(
                id=bucket.id or f"{facet_key}_{index}",
                title=title,
                value=bucket.value,
                count=bucket.count,
                description=bucket.value if bucket.value != label else "",
            )
        )
    return options


def sanitize_options(options: list[FacetOption], facet_key: Optional[str] = None) -> list[FacetOption]:
    """Fit options to WhatsApp list rows: short titles, canonical values.

    Price labels keep their currency casing; everything else is title-cased.
    """
    sanitized = []
    for index, option in enumerate(options, start=1):
        bare_title = _COUNT_SUFFIX.sub("", option.title or "")
        canonical = (
            option.value
            or option.id
            or (bare_title and re.sub(r"\s+", "_", bare_title.upper()))
            or f"option_{index}"
        )
        description = f"Count: {format_number(option.count)}" if option.count is not None else option.description
        display = bare_title or canonical
        if facet_key != PRICES:
            display = title_case(display)
        sanitized.append(
            replace(
                option,
                id=option.id or canonical,
                value=canonical,
                title=truncate(display, OPTION_TITLE_MAX),
                description=truncate(description or "", OPTION_DESCRIPTION_MAX),
            )
        )
    return sanitized
