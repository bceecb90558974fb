from __future__ import annotations
from typing import Dict

from askdb.core.models import SchemaSnapshot, TableEdges


def build_relationship_graph(snapshot: SchemaSnapshot) -> Dict[str, TableEdges]:
    """Foreign keys as edges, both directions. Derived on demand, never persisted."""
    graph: Dict[str, TableEdges] = {t.name: TableEdges() for t in snapshot.tables}
    for t in snapshot.tables:
        for fk in t.foreign_keys:
            graph[t.name].outgoing.append({
                "table": fk.references_table,
                "column": fk.column,
                "referencedColumn": fk.references_column,
            })
            # FK to a table outside the snapshot (other schema) still gets a node
            target = graph.setdefault(fk.references_table, TableEdges())
            target.incoming.append({
                "table": t.name,
                "column": fk.references_column,
                "referencingColumn": fk.column,
            })
    return graph
