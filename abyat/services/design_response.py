"""Parsers for the payload shapes returned by the search backend and the workflow agent.

Every known raw shape is mapped onto the canonical models in ``abyat.schemas.design``.
Anything else raises ``UnrecognizedShapeError`` so callers can log and degrade
instead of guessing.
"""

from typing import Any, Optional

from pydantic import ValidationError

from abyat.logging_config import get_logger
from abyat.schemas.design import AgentResponse, DesignResponse, FacetBucket, GeneratedDesign, PriceRange

logger = get_logger("design_response")

EDIT_IMAGE_TOOL = "gemini-edit-images-(nano-banana)"
SUMMARY_TOOL = "owncondition"

# Older backends suffix room-specific facets with "Counts".
LEGACY_FACET_KEYS = {
    "livingRoomLayoutCounts": "livingRoomLayout",
    "livingRoomSpaceCounts": "livingRoomSpace",
    "diningRoomTypeCounts": "diningRoomType",
    "diningRoomTableSizeCounts": "diningRoomTableSize",
    "bedroomTypeCounts": "bedroomType",
    "bedroomBedSizeCounts": "bedroomBedSize",
    "outdoorSpaceCounts": "outdoorSpace",
    "outdoorFeatureCounts": "outdoorFeature",
}

RESULT_MARKER_KEYS = ("facetCounts", "inspirations", "results")
NESTED_RESULT_KEYS = ("data", "payload", "value", "result", "response")
MAX_UNWRAP_DEPTH = 4

VALUE_FIELDS = ("value", "name", "option", "id")
COUNT_FIELDS = ("count", "total", "valueCount", "score")
PRICE_COUNT_FIELDS = ("count", "total", "valueCount")


class UnrecognizedShapeError(ValueError):
    def __init__(self, what: str, raw: Any):
        self.what = what
        self.raw_type = type(raw).__name__
        super().__init__(f"Unrecognized {what} shape: {self.raw_type}")


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def _first_number(record: dict, fields: tuple[str, ...]) -> Optional[float]:
    for field in fields:
        number = _number(record.get(field))
        if number is not None:
            return number
    return None


def _parse_price_range(entry: Any) -> Optional[PriceRange]:
    if isinstance(entry, PriceRange):
        return entry
    if not isinstance(entry, dict):
        return None
    low = _number(entry.get("min"))
    high = _number(entry.get("max"))
    if low is None and high is None:
        return None
    return PriceRange(min=low, max=high, count=_first_number(entry, PRICE_COUNT_FIELDS))


def parse_price_facet(raw: Any) -> list[PriceRange]:
    """Accepts a list of range records or a ``{"ranges": [...]}`` summary object."""
    if raw is None:
        return []
    if isinstance(raw, dict):
        ranges = raw.get("ranges")
        if not isinstance(ranges, list):
            raise UnrecognizedShapeError("price facet", raw)
        raw = ranges
    if not isinstance(raw, list):
        raise UnrecognizedShapeError("price facet", raw)
    return [parsed for parsed in (_parse_price_range(entry) for entry in raw) if parsed is not None]


def _parse_bucket(item: Any) -> Optional[FacetBucket]:
    if isinstance(item, FacetBucket):
        return item
    if isinstance(item, str):
        return FacetBucket(value=item) if item else None
    if not isinstance(item, dict):
        return None
    value = next((item[field] for field in VALUE_FIELDS if item.get(field)), None)
    if value is None:
        return None
    raw_id = item.get("id")
    return FacetBucket(
        value=str(value),
        count=_first_number(item, COUNT_FIELDS),
        id=str(raw_id) if raw_id else None,
    )


def parse_facet(facet_key: str, raw: Any) -> list[FacetBucket] | list[PriceRange]:
    """Normalize one facet's counts into canonical buckets."""
    if facet_key == "prices":
        return parse_price_facet(raw)
    if raw is None:
        return []
    if isinstance(raw, list):
        return [bucket for bucket in (_parse_bucket(item) for item in raw) if bucket is not None]
    if isinstance(raw, dict):
        return [FacetBucket(value=str(value), count=_number(count)) for value, count in raw.items() if value]
    raise UnrecognizedShapeError(f"facet '{facet_key}'", raw)


def parse_facet_counts(raw: Any) -> dict[str, list]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise UnrecognizedShapeError("facetCounts", raw)

    facet_counts: dict[str, list] = {}
    for key, value in raw.items():
        canonical_key = LEGACY_FACET_KEYS.get(key, key)
        try:
            facet_counts[canonical_key] = parse_facet(canonical_key, value)
        except UnrecognizedShapeError as exc:
            logger.warning(
                "Dropping facet with unrecognized shape",
                extra={"context": {"facet": canonical_key, "error": str(exc)}},
            )
    return facet_counts


def is_design_result(candidate: Any) -> bool:
    if not isinstance(candidate, dict):
        return False
    if any(candidate.get(key) for key in RESULT_MARKER_KEYS):
        return True
    return _number(candidate.get("total")) is not None


def parse_design_response(candidate: Any) -> DesignResponse:
    """Map a raw search result object onto DesignResponse."""
    if not is_design_result(candidate):
        raise UnrecognizedShapeError("design response", candidate)

    inspirations = candidate.get("inspirations")
    if not isinstance(inspirations, list):
        inspirations = candidate.get("results")
    if not isinstance(inspirations, list):
        inspirations = []
    inspirations = [item for item in inspirations if isinstance(item, dict)]

    total = _number(candidate.get("total"))
    if total is None:
        total = _number(candidate.get("totalHits"))
    if total is None:
        total = len(inspirations)

    return DesignResponse(
        inspirations=inspirations,
        total=int(total),
        facet_counts=parse_facet_counts(candidate.get("facetCounts")),
    )


def _unwrap_design_result(candidate: Any, depth: int = 0) -> Optional[dict]:
    if candidate is None or depth > MAX_UNWRAP_DEPTH:
        return None
    if isinstance(candidate, list):
        for item in candidate:
            found = _unwrap_design_result(item, depth + 1)
            if found is not None:
                return found
        return None
    if not isinstance(candidate, dict):
        return None
    if is_design_result(candidate):
        return candidate
    for key in NESTED_RESULT_KEYS:
        if candidate.get(key):
            found = _unwrap_design_result(candidate[key], depth + 1)
            if found is not None:
                return found
    return None


def parse_agent_response(agent_data: Any) -> AgentResponse:
    try:
        return AgentResponse.model_validate(agent_data)
    except ValidationError as exc:
        raise UnrecognizedShapeError("agent workflow log", agent_data) from exc


def _task_data(result: Any) -> Any:
    if isinstance(result, dict) and result.get("data") is not None:
        return result["data"]
    return result


def extract_design_response(agent_data: Any) -> Optional[DesignResponse]:
    """Return the first design search result found in the agent's task log."""
    response = parse_agent_response(agent_data)
    for task in response.workflowlog.tasks:
        candidate = _unwrap_design_result(_task_data(task.result))
        if candidate is not None:
            return parse_design_response(candidate)
    return None


def extract_agent_summary_text(agent_data: Any) -> Optional[str]:
    response = parse_agent_response(agent_data)
    for task in response.workflowlog.tasks:
        if task.tool != SUMMARY_TOOL:
            continue
        data = _task_data(task.result)
        if isinstance(data, str):
            return data
        if isinstance(data, dict):
            for field in ("message", "text"):
                if isinstance(data.get(field), str):
                    return data[field]
    return None


def extract_generated_design(agent_data: Any) -> Optional[GeneratedDesign]:
    """Locate the image-edit task result and return the generated image."""
    response = parse_agent_response(agent_data)
    task = next((task for task in response.workflowlog.tasks if task.tool == EDIT_IMAGE_TOOL), None)
    if task is None:
        return None
    data = _task_data(task.result)
    if not isinstance(data, dict) or not data.get("s3_url"):
        return None

    generated = GeneratedDesign(image_url=str(data["s3_url"]))
    if data.get("name"):
        generated.name = str(data["name"])
    if data.get("description"):
        generated.description = str(data["description"])
    return generated
