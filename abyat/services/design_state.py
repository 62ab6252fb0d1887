import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from abyat.services.facet_catalog import (
    ALL_DYNAMIC_FILTER_KEYS,
    PRICES,
    ROOM_DYNAMIC_FILTER_KEYS,
    ROOMS,
    sequence_for_state,
    sequence_to_facet_tokens,
)

DEFAULT_SEED = "b7bae4da-de63-4620-af62-61c380c69248"
SKIP_KEYWORD = "skip"


@dataclass
class PriceFilter:
    min: Optional[float] = None
    max: Optional[float] = None
    skipped: bool = False

    @property
    def is_set(self) -> bool:
        return self.skipped or self.min is not None or self.max is not None

    def to_dict(self) -> dict[str, Any]:
        if self.skipped:
            return {"skipped": True}
        data = {}
        if self.min is not None:
            data["min"] = self.min
        if self.max is not None:
            data["max"] = self.max
        return data


def default_filters() -> dict[str, Any]:
    return {
        "rooms": [],
        "colors": [],
        "styles": [],
        "lightingAndAtmospheres": [],
        PRICES: PriceFilter(),
    }


@dataclass
class DesignSearchState:
    """Per-user search parameters and filter selections."""

    locale: str = "en-US"
    currency: str = "SAR"
    marketplace: str = "SA"
    seed: Optional[str] = DEFAULT_SEED
    size: int = 1
    page: int = 1
    filters: dict[str, Any] = field(default_factory=default_filters)

    @property
    def room(self) -> Optional[str]:
        rooms = self.filters.get(ROOMS) or []
        return rooms[0] if rooms else None

    @property
    def prices(self) -> PriceFilter:
        return self.filters.get(PRICES) or PriceFilter()

    @property
    def current_facets(self) -> list[str]:
        """Facet tokens for the search API; derived from the selected room only."""
        return sequence_to_facet_tokens(sequence_for_state(self))

    def clone(self) -> "DesignSearchState":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        filters = {key: (value.to_dict() if isinstance(value, PriceFilter) else list(value)) for key, value in self.filters.items()}
        return {
            "locale": self.locale,
            "currency": self.currency,
            "marketplace": self.marketplace,
            "seed": self.seed,
            "size": self.size,
            "page": self.page,
            "filters": filters,
            "currentFacets": self.current_facets,
        }


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def _to_float(raw: str) -> Optional[float]:
    try:
        return float(raw.strip())
    except (TypeError, ValueError):
        return None


def coerce_price_filter(raw_value: Any, current: Optional[PriceFilter] = None) -> PriceFilter:
    """Accept a PriceFilter, a {min,max}/{skipped} dict, "skip" or a "min-max" option value."""
    if isinstance(raw_value, PriceFilter):
        return PriceFilter(min=raw_value.min, max=raw_value.max, skipped=raw_value.skipped)
    if isinstance(raw_value, str) and raw_value.strip().lower() == SKIP_KEYWORD:
        return PriceFilter(skipped=True)
    if isinstance(raw_value, dict):
        if raw_value.get("skip") or raw_value.get("skipped"):
            return PriceFilter(skipped=True)
        return PriceFilter(min=_number(raw_value.get("min")), max=_number(raw_value.get("max")))
    if isinstance(raw_value, str) and "-" in raw_value:
        low_raw, _, high_raw = raw_value.partition("-")
        return PriceFilter(min=_to_float(low_raw), max=_to_float(high_raw))
    return current if current is not None else PriceFilter()


def _as_value_list(raw_value: Any) -> list[str]:
    values = raw_value if isinstance(raw_value, (list, tuple, set)) else [raw_value]
    result: list[str] = []
    for value in values:
        if value and value not in result:
            result.append(value)
    return result


def apply_selection(state: DesignSearchState, facet_key: Optional[str], raw_value: Any) -> DesignSearchState:
    """Return a new state with ``raw_value`` applied to ``facet_key``.

    The input state is never mutated, so a failure later in the request
    leaves the stored state untouched.
    """
    next_state = state.clone()
    if not facet_key:
        return next_state

    filters = next_state.filters
    if facet_key == ROOMS:
        rooms = _as_value_list(raw_value)[:1]
        filters[ROOMS] = rooms
        for key in ALL_DYNAMIC_FILTER_KEYS:
            filters.pop(key, None)
        for key in ROOM_DYNAMIC_FILTER_KEYS.get(rooms[0] if rooms else None, []):
            filters[key] = []
    elif facet_key == PRICES:
        filters[PRICES] = coerce_price_filter(raw_value, filters.get(PRICES))
    else:
        filters[facet_key] = _as_value_list(raw_value)

    return next_state
