from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class FacetBucket(BaseModel):
    value: str
    count: Optional[float] = None
    id: Optional[str] = None


class PriceRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    count: Optional[float] = None


class DesignResponse(BaseModel):
    """Canonical search result.

    facet_counts maps a facet key to a list of FacetBucket, or of PriceRange for `prices`.
    """

    inspirations: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    facet_counts: dict[str, list[Any]] = Field(default_factory=dict)

    @property
    def has_inspirations(self) -> bool:
        return len(self.inspirations) > 0


class GeneratedDesign(BaseModel):
    image_url: str
    name: str = "AI Design Preview"
    description: str = "Here’s the updated design based on your preferences."


class AgentTask(BaseModel):
    model_config = ConfigDict(extra="allow")

    tool: Optional[str] = None
    result: Any = None


class WorkflowLog(BaseModel):
    model_config = ConfigDict(extra="allow")

    tasks: list[AgentTask]


class AgentResponse(BaseModel):
    """Envelope returned by the workflow agent start endpoint."""

    model_config = ConfigDict(extra="allow")

    workflowlog: WorkflowLog
