"""Application graph data structures produced by the crawler."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

CURRENT_GRAPH_VERSION = "6.1.0"


class SelectorStrategy(BaseModel):
    primary: str
    fallbacks: list[str] = Field(default_factory=list)
    stability: float = Field(default=0.5, ge=0.0, le=1.0)
    type: str = "css"  # data-testid, role, label, css, xpath

    def all_selectors(self) -> list[str]:
        return [self.primary] + [s for s in self.fallbacks if s != self.primary]


class ElementDescriptor(BaseModel):
    id: str
    role: str
    name: Optional[str] = None
    type: str = "other"  # button, link, input, heading, select, checkbox, radio, image, other
    selector: SelectorStrategy
    attributes: dict[str, str] = Field(default_factory=dict)
    text: Optional[str] = None
    placeholder: Optional[str] = None
    confidence: float = 0.8


class FieldConstraints(BaseModel):
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    step: Optional[str] = None


class FormField(BaseModel):
    name: str
    type: str = "text"  # text, email, password, number, tel, url, date, select, checkbox, radio
    selector: SelectorStrategy
    required: bool = False
    placeholder: Optional[str] = None
    label: Optional[str] = None
    constraints: FieldConstraints = Field(default_factory=FieldConstraints)
    validation_hints: list[str] = Field(default_factory=list)


class ValidationRule(BaseModel):
    field: str
    rule: str  # required, email, min, max, pattern
    message: Optional[str] = None


class FormDescriptor(BaseModel):
    id: str
    selector: SelectorStrategy
    fields: list[FormField] = Field(default_factory=list)
    submit_button: Optional[ElementDescriptor] = None
    validation_rules: list[ValidationRule] = Field(default_factory=list)
    method: str = "POST"
    action: str = ""


class NodeMetadata(BaseModel):
    first_seen: str = ""
    last_seen: str = ""
    visit_count: int = 1
    response_time_ms: Optional[float] = None
    status_code: Optional[int] = None


class AppNode(BaseModel):
    id: str
    type: str = "route"  # route, component, modal, flow
    url: Optional[str] = None
    route: Optional[str] = None
    name: str = ""
    elements: list[ElementDescriptor] = Field(default_factory=list)
    forms: list[FormDescriptor] = Field(default_factory=list)
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)

    def elements_by_role(self, role: str) -> list[ElementDescriptor]:
        return [e for e in self.elements if e.role == role]


class AppEdge(BaseModel):
    from_id: str
    to_id: str
    type: str = "navigate"  # navigate, submit, modal, tab
    trigger: ElementDescriptor
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.from_id}->{self.to_id}->{self.type}"


class PageSignature(BaseModel):
    dom_hash: str
    state_signature: str = ""
    screenshot: Optional[str] = None
    timestamp: str = ""


class GraphMetadata(BaseModel):
    total_nodes: int = 0
    total_edges: int = 0
    total_elements: int = 0
    total_forms: int = 0
    crawl_duration_ms: float = 0.0
    crawl_method: str = "dynamic"  # static, dynamic, hybrid


class AppGraph(BaseModel):
    version: str = CURRENT_GRAPH_VERSION
    app_name: str = ""
    base_url: str = ""
    timestamp: str = ""
    framework: Optional[str] = None
    nodes: list[AppNode] = Field(default_factory=list)
    edges: list[AppEdge] = Field(default_factory=list)
    signatures: dict[str, PageSignature] = Field(default_factory=dict)
    metadata: GraphMetadata = Field(default_factory=GraphMetadata)

    def node_map(self) -> dict[str, AppNode]:
        return {node.id: node for node in self.nodes}

    def route_nodes(self) -> list[AppNode]:
        return [node for node in self.nodes if node.type == "route"]

    def adjacency(self) -> dict[str, list[AppEdge]]:
        """Outgoing edges keyed by source node id."""
        out: dict[str, list[AppEdge]] = {}
        for edge in self.edges:
            out.setdefault(edge.from_id, []).append(edge)
        return out
