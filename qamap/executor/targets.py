"""Turn a step or assertion target into something a page driver can act on."""

from __future__ import annotations

from typing import Optional

from qamap.models.graph import ElementDescriptor
from qamap.models.test_plan import DescriptorTarget, RawTarget, StepTarget


class ResolvedTarget:
    """Selector to try first, plus the crawled element when healing is possible."""

    def __init__(self, selector: str, element: Optional[ElementDescriptor] = None):
        self.selector = selector
        self.element = element

    @property
    def healable(self) -> bool:
        return self.element is not None


def resolve_target(target: Optional[StepTarget]) -> Optional[ResolvedTarget]:
    match target:
        case None:
            return None
        case RawTarget(selector=selector):
            return ResolvedTarget(selector)
        case DescriptorTarget(element=element):
            return ResolvedTarget(element.selector.primary, element)
        case _:
            raise TypeError(f"Unsupported step target: {target!r}")
