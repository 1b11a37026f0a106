"""Coverage goal and snapshot models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

DIMENSIONS = ("routes", "elements", "forms", "assertions", "flows")


class CoverageGoals(BaseModel):
    """Targets per dimension; an unset dimension is not checked."""
    routes: Optional[float] = None  # percent
    elements: Optional[float] = None  # percent
    forms: Optional[float] = None  # percent
    assertions: Optional[int] = None  # raw count
    flows: Optional[int] = None  # raw count

    @classmethod
    def defaults(cls) -> "CoverageGoals":
        return cls(routes=90, elements=70, forms=80, assertions=2, flows=3)

    def requested(self) -> dict[str, float]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class DimensionCoverage(BaseModel):
    total: int = 0
    covered: int = 0
    percentage: int = 0


class CoverageSnapshot(BaseModel):
    routes: DimensionCoverage = Field(default_factory=DimensionCoverage)
    elements: DimensionCoverage = Field(default_factory=DimensionCoverage)
    forms: DimensionCoverage = Field(default_factory=DimensionCoverage)
    assertions: int = 0
    flows: int = 0
    covered_node_ids: list[str] = Field(default_factory=list)
    covered_element_ids: list[str] = Field(default_factory=list)
    covered_form_ids: list[str] = Field(default_factory=list)

    def value(self, dimension: str) -> float:
        """Comparable value for a goal dimension (percentage or raw count)."""
        current = getattr(self, dimension)
        if isinstance(current, DimensionCoverage):
            return current.percentage
        return current
