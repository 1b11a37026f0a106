"""Assemble crawl output into an AppGraph and merge partial graphs."""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

from qamap.crawler.state_signature import create_state_signature
from qamap.models.graph import (
    CURRENT_GRAPH_VERSION,
    AppEdge,
    AppGraph,
    AppNode,
    ElementDescriptor,
    GraphMetadata,
    PageSignature,
)
from qamap.utils.hashing import hash_object

logger = logging.getLogger(__name__)


def _element_key(element: ElementDescriptor) -> str:
    return element.selector.primary or element.text or element.id


def _dedupe_edges(edges: Iterable[AppEdge], node_ids: set[str]) -> list[AppEdge]:
    """Drop edges with unknown endpoints and repeated ``from->to->type`` keys."""
    kept: list[AppEdge] = []
    seen: set[str] = set()
    dropped = 0
    for edge in edges:
        if edge.from_id not in node_ids or edge.to_id not in node_ids:
            dropped += 1
            continue
        if edge.key in seen:
            continue
        seen.add(edge.key)
        kept.append(edge)
    if dropped:
        logger.debug("Dropped %d edges pointing outside the graph", dropped)
    return kept


def _signature(node: AppNode, timestamp: str, screenshot: Optional[str] = None) -> PageSignature:
    dom_hash = hash_object([e.model_dump() for e in node.elements])
    state = {"elements": len(node.elements), "forms": len(node.forms)}
    return PageSignature(
        dom_hash=dom_hash,
        state_signature=create_state_signature(node.route or "/", dom_hash, state),
        screenshot=screenshot,
        timestamp=timestamp,
    )


def _metadata(nodes: list[AppNode], edges: list[AppEdge], crawl_duration_ms: float) -> GraphMetadata:
    return GraphMetadata(
        total_nodes=len(nodes),
        total_edges=len(edges),
        total_elements=sum(len(n.elements) for n in nodes),
        total_forms=sum(len(n.forms) for n in nodes),
        crawl_duration_ms=crawl_duration_ms,
        crawl_method="dynamic",
    )


class AppGraphBuilder:
    """Builds and merges application graphs."""

    def build(
        self,
        app_name: str,
        base_url: str,
        nodes: list[AppNode],
        edges: list[AppEdge],
        crawl_duration_ms: float = 0.0,
        framework: Optional[str] = None,
        screenshots: Optional[dict[str, str]] = None,
    ) -> AppGraph:
        timestamp = time.strftime("%Y-%m-%dT%H:%M:%SZ")
        screenshots = screenshots or {}
        kept_edges = _dedupe_edges(edges, {n.id for n in nodes})
        graph = AppGraph(
            version=CURRENT_GRAPH_VERSION,
            app_name=app_name,
            base_url=base_url,
            timestamp=timestamp,
            framework=framework,
            nodes=nodes,
            edges=kept_edges,
            signatures={n.id: _signature(n, timestamp, screenshots.get(n.id)) for n in nodes},
            metadata=_metadata(nodes, kept_edges, crawl_duration_ms),
        )
        logger.info(
            "Built graph: %d nodes, %d edges, %d elements, %d forms",
            graph.metadata.total_nodes, graph.metadata.total_edges,
            graph.metadata.total_elements, graph.metadata.total_forms,
        )
        return graph

    def merge(self, graphs: list[AppGraph]) -> AppGraph:
        """Union nodes by id, union their elements and forms, dedupe edges."""
        if not graphs:
            raise ValueError("merge() needs at least one graph")

        merged: dict[str, AppNode] = {}
        for graph in graphs:
            for node in graph.nodes:
                existing = merged.get(node.id)
                if existing is None:
                    merged[node.id] = node.model_copy(deep=True)
                    continue
                keys = {_element_key(e) for e in existing.elements}
                for element in node.elements:
                    if _element_key(element) not in keys:
                        keys.add(_element_key(element))
                        existing.elements.append(element.model_copy(deep=True))
                form_ids = {f.id for f in existing.forms}
                existing.forms.extend(f.model_copy(deep=True) for f in node.forms if f.id not in form_ids)
                existing.metadata.visit_count += node.metadata.visit_count
                existing.metadata.last_seen = max(existing.metadata.last_seen, node.metadata.last_seen)

        nodes = list(merged.values())
        edges = _dedupe_edges((e.model_copy(deep=True) for g in graphs for e in g.edges), set(merged))
        timestamp = time.strftime("%Y-%m-%dT%H:%M:%SZ")
        screenshots = {}
        for graph in graphs:
            for node_id, sig in graph.signatures.items():
                if sig.screenshot and node_id not in screenshots:
                    screenshots[node_id] = sig.screenshot

        return AppGraph(
            version=CURRENT_GRAPH_VERSION,
            app_name=graphs[0].app_name,
            base_url=graphs[0].base_url,
            timestamp=timestamp,
            framework=graphs[0].framework,
            nodes=nodes,
            edges=edges,
            signatures={n.id: _signature(n, timestamp, screenshots.get(n.id)) for n in nodes},
            metadata=_metadata(nodes, edges, sum(g.metadata.crawl_duration_ms for g in graphs)),
        )
