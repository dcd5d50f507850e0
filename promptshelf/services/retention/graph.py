# promptshelf/services/retention/graph.py
"""
Entity ownership graph.

Declares which entity type owns which, and the foreign key on the child that
points at its owner. The cascade engine, reconciler and stats all walk this
one declaration; adding a child type means adding one Edge.

Ownership must be a tree: every type has at most one owning parent and no
type may (transitively) own itself. Both are checked when the graph is built.
"""

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

from promptshelf.services.retention.errors import GraphConfigurationError


class EntityType(str, Enum):
    """Entity types under retention management (values are table names)."""
    USERS = "users"
    EXPERIENCES = "experiences"
    PROMPTS = "prompts"
    COMMENTS = "comments"
    REACTIONS = "reactions"
    PROMPT_RATINGS = "prompt_ratings"


@dataclass(frozen=True)
class Edge:
    """Ownership edge: `parent` owns `child` through `child.<foreign_key>`."""
    parent: EntityType
    child: EntityType
    foreign_key: str


class DescendantWalk:
    """
    Breadth-first walk over the descendants of one entity type.

    Iterating yields (child_type, edge) pairs. Each iteration starts a fresh
    traversal, so the same walk can be consumed any number of times.
    """

    def __init__(self, graph: "EntityGraph", root: EntityType):
        self._graph = graph
        self._root = root

    def __iter__(self) -> Iterator[tuple[EntityType, Edge]]:
        queue = deque([self._root])
        while queue:
            current = queue.popleft()
            for edge in self._graph.children_of(current):
                yield edge.child, edge
                queue.append(edge.child)

    def __repr__(self) -> str:
        return f"DescendantWalk(root={self._root.value})"


class EntityGraph:
    """Static ownership graph, validated once at construction."""

    def __init__(self, root: EntityType, edges: list[Edge]):
        self.root = root
        self._children: dict[EntityType, list[Edge]] = {}
        self._parent_edge: dict[EntityType, Edge] = {}

        for edge in edges:
            if edge.child in self._parent_edge:
                existing = self._parent_edge[edge.child]
                raise GraphConfigurationError(
                    f"{edge.child.value} is owned by both {existing.parent.value} and {edge.parent.value}"
                )
            if edge.child == root:
                raise GraphConfigurationError(f"Root type {root.value} cannot have an owner")
            self._parent_edge[edge.child] = edge
            self._children.setdefault(edge.parent, []).append(edge)

        self._check_acyclic()

    def _check_acyclic(self) -> None:
        """Follow each type's owner chain; revisiting a type means a cycle."""
        for start in self._parent_edge:
            seen = {start}
            current = start
            while current in self._parent_edge:
                current = self._parent_edge[current].parent
                if current in seen:
                    raise GraphConfigurationError(f"Ownership cycle detected through {current.value}")
                seen.add(current)

    @property
    def types(self) -> list[EntityType]:
        """Root first, then every owned type in breadth-first order."""
        return [self.root] + [child for child, _ in self.descendants(self.root)]

    def parent_of(self, entity_type: EntityType) -> EntityType | None:
        edge = self._parent_edge.get(entity_type)
        return edge.parent if edge else None

    def edge_to(self, entity_type: EntityType) -> Edge | None:
        """The edge through which `entity_type` is owned (None for the root)."""
        return self._parent_edge.get(entity_type)

    def children_of(self, entity_type: EntityType) -> list[Edge]:
        return list(self._children.get(entity_type, []))

    def descendants(self, entity_type: EntityType) -> DescendantWalk:
        return DescendantWalk(self, entity_type)

    def ancestors(self, entity_type: EntityType) -> list[Edge]:
        """Edges from `entity_type` up to the root, nearest first."""
        chain = []
        edge = self._parent_edge.get(entity_type)
        while edge is not None:
            chain.append(edge)
            edge = self._parent_edge.get(edge.parent)
        return chain

    def purge_order(self, entity_type: EntityType) -> list[Edge]:
        """
        Descendant edges in depth-first post-order (leaves first).

        Deleting in this order never removes a row while rows that reference
        it still exist.
        """
        order: list[Edge] = []

        def visit(current: EntityType) -> None:
            for edge in self._children.get(current, []):
                visit(edge.child)
                order.append(edge)

        visit(entity_type)
        return order

    def all_edges(self) -> list[Edge]:
        """Every edge in the graph, breadth-first from the root."""
        return [edge for _, edge in self.descendants(self.root)]


DEFAULT_GRAPH = EntityGraph(
    root=EntityType.USERS,
    edges=[
        Edge(EntityType.USERS, EntityType.EXPERIENCES, "user_id"),
        Edge(EntityType.EXPERIENCES, EntityType.PROMPTS, "experience_id"),
        Edge(EntityType.EXPERIENCES, EntityType.COMMENTS, "experience_id"),
        Edge(EntityType.EXPERIENCES, EntityType.REACTIONS, "experience_id"),
        Edge(EntityType.PROMPTS, EntityType.PROMPT_RATINGS, "prompt_id"),
    ],
)
