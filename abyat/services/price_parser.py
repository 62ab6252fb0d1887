import re
from dataclasses import dataclass
from typing import Optional

from abyat.services.design_state import SKIP_KEYWORD, PriceFilter
from abyat.services.facet_catalog import format_currency

PRICE_TOKEN = re.compile(r"(\d+(?:[.,]\d+)*)\s*([kKmM](?![a-zA-Z]))?")
SUFFIX_MULTIPLIERS = {"k": 1_000, "m": 1_000_000}

SINGLE_VALUE = "single_value"

PRICE_PROMPT_TEXT = (
    "Reply with your budget range in SAR (example: 2000-5000). "
    "You can also type *skip* if you want to move on without setting a price."
)
PRICE_SINGLE_VALUE_TEXT = (
    "I saw one price value. Please include both a minimum and a maximum like 2000-5000 so I can filter properly."
)


@dataclass
class PriceParseResult:
    selection: Optional[PriceFilter] = None
    error: Optional[str] = None
    value: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.selection is None and self.error is None


def parse_price_tokens(text: str) -> list[float]:
    if not text or not text.strip():
        return []
    tokens = []
    for match in PRICE_TOKEN.finditer(text):
        try:
            value = float(match.group(1).replace(",", ""))
        except ValueError:
            continue
        suffix = (match.group(2) or "").lower()
        tokens.append(value * SUFFIX_MULTIPLIERS.get(suffix, 1))
    return tokens


def parse_price_input(text: str) -> PriceParseResult:
    """Turn free text into a budget range.

    Two numbers give a range (order-insensitive), one number is rejected
    because a range needs both ends, no numbers is a no-op.
    """
    if text and text.strip().lower() == SKIP_KEYWORD:
        return PriceParseResult(selection=PriceFilter(skipped=True))

    tokens = parse_price_tokens(text)
    if len(tokens) >= 2:
        low, high = min(tokens[0], tokens[1]), max(tokens[0], tokens[1])
        if low == high:
            return PriceParseResult(error=SINGLE_VALUE, value=low)
        return PriceParseResult(selection=PriceFilter(min=low, max=high))
    if len(tokens) == 1:
        return PriceParseResult(error=SINGLE_VALUE, value=tokens[0])
    return PriceParseResult()


def format_price_range(price: PriceFilter, currency: str = "SAR") -> Optional[str]:
    low = format_currency(price.min, currency)
    high = format_currency(price.max, currency)
    if low and high:
        return f"{low} - {high}"
    if low:
        return f"from {low}"
    if high:
        return f"up to {high}"
    return None
