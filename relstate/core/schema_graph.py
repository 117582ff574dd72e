from typing import Any, Iterator, List, Mapping, Tuple

import networkx as nx

from relstate.core.exceptions import ConfigError
from relstate.core.types import SchemaMap


def _iter_relationship_types(record: Any) -> Iterator[Tuple[str, str]]:
    """Yield ``(relationship_name, related_type)`` for every reference in ``record``."""
    if not isinstance(record, Mapping):
        return
    for name, relationship in (record.get("relationships") or {}).items():
        data = relationship.get("data") if isinstance(relationship, Mapping) else None
        references = data if isinstance(data, list) else [data]
        for reference in references:
            if isinstance(reference, Mapping) and reference.get("type"):
                yield name, reference["type"]


def build_schema_graph(schema_map: SchemaMap) -> nx.DiGraph:
    """
    Build a directed graph of schemas connected by the relationships found in
    their records. Edge data holds the relationship field names.
    """
    graph = nx.DiGraph()
    for schema, records in schema_map.items():
        graph.add_node(schema, known=True)
        for record in (records or {}).values():
            for name, related_type in _iter_relationship_types(record):
                if not graph.has_node(related_type):
                    graph.add_node(related_type, known=related_type in schema_map)
                if graph.has_edge(schema, related_type):
                    graph.edges[schema, related_type]["fields"].add(name)
                else:
                    graph.add_edge(schema, related_type, fields={name})
    return graph


def validate_schema_map(schema_map: SchemaMap) -> bool:
    """
    Check that every relationship points at a schema present in the map.

    Raises:
        ConfigError: If a record references a schema the map does not contain
    """
    graph = build_schema_graph(schema_map)
    for source, target, data in graph.edges(data=True):
        if not graph.nodes[target].get("known"):
            fields = ", ".join(sorted(data["fields"]))
            raise ConfigError(
                f"Schema '{source}' has relationship(s) '{fields}' to schema "
                f"'{target}' which is not in the schema map. Register a storage "
                f"path for '{target}' or remove the relationship."
            )
    return True


def relationship_cycles(graph: nx.DiGraph) -> List[List[str]]:
    """Schema-level relationship cycles; a self-referencing schema is a cycle of one."""
    return [sorted(cycle) for cycle in nx.simple_cycles(graph)]
