# tests/unit/test_retention/test_graph.py
"""Unit tests for the entity ownership graph."""

import pytest

from promptshelf.services.retention.errors import GraphConfigurationError
from promptshelf.services.retention.graph import DEFAULT_GRAPH, Edge, EntityGraph, EntityType


class TestDescendants:
    """Tests for EntityGraph.descendants()."""

    def test_breadth_first_order(self):
        """Experience children come before the prompt ratings under prompts."""
        order = [child for child, _ in DEFAULT_GRAPH.descendants(EntityType.USERS)]
        assert order == [
            EntityType.EXPERIENCES,
            EntityType.PROMPTS,
            EntityType.COMMENTS,
            EntityType.REACTIONS,
            EntityType.PROMPT_RATINGS,
        ]

    def test_walk_is_restartable(self):
        """Iterating the same walk twice yields the same sequence."""
        walk = DEFAULT_GRAPH.descendants(EntityType.EXPERIENCES)
        assert list(walk) == list(walk)

    def test_edges_carry_foreign_key(self):
        pairs = dict(DEFAULT_GRAPH.descendants(EntityType.PROMPTS))
        assert pairs[EntityType.PROMPT_RATINGS].foreign_key == "prompt_id"

    def test_leaf_has_no_descendants(self):
        assert list(DEFAULT_GRAPH.descendants(EntityType.COMMENTS)) == []


class TestGraphNavigation:
    """Tests for parent, ancestor and purge-order lookups."""

    def test_parent_of(self):
        assert DEFAULT_GRAPH.parent_of(EntityType.PROMPT_RATINGS) == EntityType.PROMPTS
        assert DEFAULT_GRAPH.parent_of(EntityType.USERS) is None

    def test_ancestors_nearest_first(self):
        chain = [edge.parent for edge in DEFAULT_GRAPH.ancestors(EntityType.PROMPT_RATINGS)]
        assert chain == [EntityType.PROMPTS, EntityType.EXPERIENCES, EntityType.USERS]

    def test_purge_order_deletes_leaves_first(self):
        """Every child is deleted before its parent."""
        order = [edge.child for edge in DEFAULT_GRAPH.purge_order(EntityType.USERS)]
        assert order.index(EntityType.PROMPT_RATINGS) < order.index(EntityType.PROMPTS)
        assert order.index(EntityType.PROMPTS) < order.index(EntityType.EXPERIENCES)
        assert order[-1] == EntityType.EXPERIENCES

    def test_types_lists_every_type_once(self):
        assert sorted(DEFAULT_GRAPH.types) == sorted(EntityType)


class TestGraphValidation:
    """Configuration errors are rejected at construction."""

    def test_rejects_cycle(self):
        with pytest.raises(GraphConfigurationError, match="cycle"):
            EntityGraph(
                root=EntityType.USERS,
                edges=[
                    Edge(EntityType.EXPERIENCES, EntityType.PROMPTS, "experience_id"),
                    Edge(EntityType.PROMPTS, EntityType.EXPERIENCES, "prompt_id"),
                ],
            )

    def test_rejects_two_owners(self):
        with pytest.raises(GraphConfigurationError, match="owned by both"):
            EntityGraph(
                root=EntityType.USERS,
                edges=[
                    Edge(EntityType.USERS, EntityType.COMMENTS, "user_id"),
                    Edge(EntityType.EXPERIENCES, EntityType.COMMENTS, "experience_id"),
                ],
            )

    def test_rejects_owned_root(self):
        with pytest.raises(GraphConfigurationError, match="cannot have an owner"):
            EntityGraph(
                root=EntityType.USERS,
                edges=[Edge(EntityType.EXPERIENCES, EntityType.USERS, "experience_id")],
            )
