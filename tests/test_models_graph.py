"""Tests for graph models, state signatures and graph migrations."""

from qamap.crawler.state_signature import create_state_signature
from qamap.models.graph import CURRENT_GRAPH_VERSION, AppGraph, SelectorStrategy
from qamap.models.graph_migrations import migrate_app_graph, migrate_graph_data
from qamap.utils.hashing import hash_object, stable_id

from conftest import make_graph


# ============================================================================
# Hashing / State Signatures
# ============================================================================


class TestStableIds:
    """Tests for deterministic id helpers."""

    def test_stable_id_is_deterministic(self):
        assert stable_id("test", 42, "node", "form") == stable_id("test", 42, "node", "form")

    def test_stable_id_changes_with_parts(self):
        assert stable_id("test", 42, "node") != stable_id("test", 7, "node")

    def test_stable_id_prefix(self):
        assert stable_id("journey", "a->b").startswith("journey-")

    def test_hash_object_ignores_key_order(self):
        assert hash_object({"a": 1, "b": 2}) == hash_object({"b": 2, "a": 1})


class TestStateSignature:
    """Tests for create_state_signature."""

    def test_key_order_independent(self):
        first = create_state_signature("/cart", "abc", {"items": 2, "user": "bob"})
        second = create_state_signature("/cart", "abc", {"user": "bob", "items": 2})
        assert first == second

    def test_state_changes_signature(self):
        assert create_state_signature("/cart", "abc", {"items": 2}) != create_state_signature(
            "/cart", "abc", {"items": 3}
        )

    def test_missing_state_equals_empty_state(self):
        assert create_state_signature("/", "abc") == create_state_signature("/", "abc", {})


# ============================================================================
# Graph Model
# ============================================================================


class TestAppGraph:
    """Tests for AppGraph helpers."""

    def test_node_map_and_routes(self):
        graph = make_graph()
        assert set(graph.node_map()) == {"node-login", "node-dashboard", "node-users"}
        assert len(graph.route_nodes()) == 3

    def test_adjacency(self):
        adjacency = make_graph().adjacency()
        assert [e.to_id for e in adjacency["node-login"]] == ["node-dashboard"]
        assert "node-users" not in adjacency

    def test_edge_key(self):
        edge = make_graph().edges[0]
        assert edge.key == "node-login->node-dashboard->navigate"

    def test_selector_strategy_all_selectors(self):
        strategy = SelectorStrategy(primary="#a", fallbacks=["#b", "#a", "#c"])
        assert strategy.all_selectors() == ["#a", "#b", "#c"]

    def test_json_round_trip(self):
        graph = make_graph()
        restored = AppGraph.model_validate_json(graph.model_dump_json())
        assert restored == graph


# ============================================================================
# Migrations
# ============================================================================


def _legacy_graph() -> dict:
    return {
        "version": "5.0.0",
        "nodes": [{
            "id": "n1",
            "route": "/signup",
            "forms": [{
                "id": "f1",
                "selector": {"primary": "form"},
                "method": "post",
                "validationRules": ["Email is invalid"],
                "fields": [{
                    "name": "email",
                    "type": "email",
                    "selector": {"primary": "#email"},
                    "maxLength": 40,
                    "pattern": ".+@.+",
                    "validationHints": ["required"],
                }],
            }],
        }],
    }


class TestGraphMigrations:
    """Tests for migrating persisted graphs."""

    def test_backfills_constraints_from_legacy_fields(self):
        migrated = migrate_graph_data(_legacy_graph())
        field = migrated["nodes"][0]["forms"][0]["fields"][0]
        assert field["constraints"] == {"max_length": 40, "pattern": ".+@.+"}
        assert "maxLength" not in field
        assert field["validation_hints"] == ["required"]

    def test_normalizes_form_method_and_rules(self):
        form = migrate_graph_data(_legacy_graph())["nodes"][0]["forms"][0]
        assert form["method"] == "POST"
        assert form["action"] == ""
        assert form["validation_rules"] == [
            {"field": "unknown", "rule": "pattern", "message": "Email is invalid"}
        ]

    def test_sets_current_version(self):
        assert migrate_graph_data(_legacy_graph())["version"] == CURRENT_GRAPH_VERSION

    def test_idempotent(self):
        once = migrate_graph_data(_legacy_graph())
        twice = migrate_graph_data(once)
        assert once == twice

    def test_does_not_mutate_input(self):
        data = _legacy_graph()
        migrate_graph_data(data)
        assert data["nodes"][0]["forms"][0]["fields"][0]["maxLength"] == 40

    def test_migrate_app_graph_validates(self):
        graph = migrate_app_graph(_legacy_graph())
        field = graph.nodes[0].forms[0].fields[0]
        assert field.constraints.max_length == 40
        assert graph.version == CURRENT_GRAPH_VERSION

    def test_current_graph_unchanged(self):
        data = make_graph().model_dump()
        data["version"] = CURRENT_GRAPH_VERSION
        assert migrate_app_graph(data) == AppGraph.model_validate(data)
