"""Tests for AppGraphBuilder."""

import pytest

from qamap.graph.builder import AppGraphBuilder
from qamap.models.graph import AppEdge

from conftest import BASE_URL, make_element, make_graph, make_node


class TestBuild:
    """Tests for AppGraphBuilder.build."""

    def test_metadata_and_signatures(self):
        source = make_graph()
        graph = AppGraphBuilder().build("Example", BASE_URL, source.nodes, source.edges, crawl_duration_ms=1200)
        assert graph.metadata.total_nodes == 3
        assert graph.metadata.total_edges == 2
        assert graph.metadata.total_elements == 9
        assert graph.metadata.total_forms == 1
        assert graph.metadata.crawl_duration_ms == 1200
        assert set(graph.signatures) == {"node-login", "node-dashboard", "node-users"}
        assert graph.signatures["node-login"].state_signature

    def test_dangling_and_duplicate_edges_dropped(self):
        source = make_graph()
        trigger = make_element("x", "link", "X")
        edges = source.edges + [
            source.edges[0],
            AppEdge(from_id="node-login", to_id="node-missing", trigger=trigger),
        ]
        graph = AppGraphBuilder().build("Example", BASE_URL, source.nodes, edges)
        assert len(graph.edges) == 2

    def test_screenshots_attached(self):
        source = make_graph()
        graph = AppGraphBuilder().build(
            "Example", BASE_URL, source.nodes, source.edges, screenshots={"node-users": "/tmp/users.png"},
        )
        assert graph.signatures["node-users"].screenshot == "/tmp/users.png"
        assert graph.signatures["node-login"].screenshot is None

    def test_same_content_same_signature(self):
        first = AppGraphBuilder().build("A", BASE_URL, make_graph().nodes, [])
        second = AppGraphBuilder().build("A", BASE_URL, make_graph().nodes, [])
        assert first.signatures["node-login"].dom_hash == second.signatures["node-login"].dom_hash


class TestMerge:
    """Tests for AppGraphBuilder.merge."""

    def test_union_of_nodes_elements_and_edges(self):
        builder = AppGraphBuilder()
        first = make_graph()
        extra = make_node(
            "node-login", "/", "Login",
            elements=[make_element("btn-forgot", text="Forgot password"), first.nodes[0].elements[0]],
        )
        settings = make_node("node-settings", "/settings", "Settings")
        link = make_element("link-settings", "link", "Settings")
        second = builder.build(
            "Example", BASE_URL, [extra, settings],
            [AppEdge(from_id="node-login", to_id="node-settings", trigger=link)],
        )

        merged = builder.merge([first, second])

        assert [n.id for n in merged.nodes] == ["node-login", "node-dashboard", "node-users", "node-settings"]
        login = merged.node_map()["node-login"]
        assert [e.id for e in login.elements][-1] == "btn-forgot"
        assert len(login.elements) == 4
        assert login.metadata.visit_count == 2
        assert len(merged.edges) == 3
        assert merged.metadata.total_nodes == 4

    def test_merge_does_not_mutate_inputs(self):
        first = make_graph()
        second = make_graph()
        AppGraphBuilder().merge([first, second])
        assert first.nodes[0].metadata.visit_count == 1

    def test_merge_empty(self):
        with pytest.raises(ValueError):
            AppGraphBuilder().merge([])

    def test_merged_graph_owns_its_objects(self):
        first = make_graph()
        second = make_graph()
        second.nodes[0].elements.append(make_element("btn-forgot", text="Forgot password"))
        merged = AppGraphBuilder().merge([first, second])

        merged.node_map()["node-login"].elements[0].text = "Changed"
        merged.node_map()["node-login"].elements[-1].text = "Changed"
        merged.node_map()["node-login"].forms[0].fields[0].name = "changed"
        assert first.nodes[0].elements[0].text == "Sign in"
        assert second.nodes[0].elements[-1].text == "Forgot password"
        assert first.nodes[0].forms[0].fields[0].name != "changed"
        assert all(e is not o for e in merged.edges for o in first.edges + second.edges)
