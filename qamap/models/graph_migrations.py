"""One-way migration of persisted graphs to the current schema version."""

from __future__ import annotations

import copy
import logging
from typing import Any

from qamap.models.graph import CURRENT_GRAPH_VERSION, AppGraph

logger = logging.getLogger(__name__)

# Legacy flat field attributes -> FieldConstraints keys
_LEGACY_CONSTRAINT_KEYS = {
    "minLength": "min_length",
    "min_length": "min_length",
    "maxLength": "max_length",
    "max_length": "max_length",
    "min": "min",
    "max": "max",
    "pattern": "pattern",
    "step": "step",
}


def _migrate_field(field: dict[str, Any]) -> dict[str, Any]:
    constraints = field.get("constraints")
    if constraints is None:
        constraints = {}
        for legacy, key in _LEGACY_CONSTRAINT_KEYS.items():
            if legacy in field:
                value = field.pop(legacy)
                if value is not None and key not in constraints:
                    constraints[key] = value
    field["constraints"] = constraints

    hints = field.get("validation_hints", field.pop("validationHints", None))
    field["validation_hints"] = list(hints) if hints else []
    return field


def _migrate_rule(rule: Any) -> dict[str, Any]:
    if isinstance(rule, str):
        return {"field": "unknown", "rule": "pattern", "message": rule}
    return rule


def _migrate_form(form: dict[str, Any]) -> dict[str, Any]:
    form["method"] = str(form.get("method") or "POST").upper()
    form["action"] = form.get("action") or ""
    rules = form.get("validation_rules", form.pop("validationRules", None)) or []
    form["validation_rules"] = [_migrate_rule(r) for r in rules]
    form["fields"] = [_migrate_field(f) for f in form.get("fields", [])]
    return form


def migrate_graph_data(data: dict[str, Any]) -> dict[str, Any]:
    """Return a migrated copy of raw graph JSON. Safe to apply repeatedly."""
    migrated = copy.deepcopy(data)
    version = migrated.get("version", "0.0.0")
    if version != CURRENT_GRAPH_VERSION:
        logger.info("Migrating graph from version %s to %s", version, CURRENT_GRAPH_VERSION)

    for node in migrated.get("nodes", []):
        node["forms"] = [_migrate_form(f) for f in node.get("forms", [])]
    migrated["version"] = CURRENT_GRAPH_VERSION
    return migrated


def migrate_app_graph(data: dict[str, Any]) -> AppGraph:
    """Migrate raw graph JSON and validate it into an AppGraph."""
    return AppGraph.model_validate(migrate_graph_data(data))
