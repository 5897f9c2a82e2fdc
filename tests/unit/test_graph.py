"""Unit tests for the dependency graph primitive."""

from plansmith.planning.graph import DependencyGraph, parallel_levels, topological_sort


class TestDependencyGraph:
    """Tests for DependencyGraph mutation and queries."""

    def test_add_dependency_is_symmetric(self) -> None:
        """Test that both edge directions are recorded."""
        graph = DependencyGraph()
        graph.add_dependency("b", "a")

        assert graph.get_dependencies("b") == ["a"]
        assert graph.get_dependents("a") == ["b"]
        assert "a" in graph and "b" in graph

    def test_from_tasks(self, sample_tasks: list) -> None:
        """Test building a graph from task dependencies."""
        graph = DependencyGraph.from_tasks(sample_tasks)

        assert graph.size() == 4
        assert graph.get_dependencies("F-1.4") == ["F-1.2", "F-1.3"]
        assert graph.get_dependents("F-1.1") == ["F-1.2", "F-1.3"]
        assert graph.get_roots() == ["F-1.1"]
        assert graph.get_leaves() == ["F-1.4"]

    def test_remove_node_leaves_no_dangling_references(self) -> None:
        """Test that removing a node strips it from every neighbor."""
        graph = DependencyGraph.from_mapping({"a": [], "b": ["a"], "c": ["b"]})

        graph.remove_node("b")

        assert "b" not in graph
        assert graph.get_dependents("a") == []
        assert graph.get_dependencies("c") == []
        for node in graph:
            data = graph.get_node_data(node)
            assert "b" not in data["dependencies"]
            assert "b" not in data["dependents"]

    def test_remove_unknown_node_is_noop(self) -> None:
        """Test removing a node that does not exist."""
        graph = DependencyGraph.from_mapping({"a": []})
        graph.remove_node("zzz")
        assert graph.nodes() == ["a"]

    def test_remove_dependency(self) -> None:
        """Test removing a single edge."""
        graph = DependencyGraph.from_mapping({"a": [], "b": ["a"]})
        graph.remove_dependency("b", "a")

        assert not graph.has_dependencies("b")
        assert not graph.has_dependents("a")

    def test_transitive_queries(self, sample_tasks: list) -> None:
        """Test transitive dependency and dependent walks."""
        graph = DependencyGraph.from_tasks(sample_tasks)

        assert sorted(graph.get_all_dependencies("F-1.4")) == ["F-1.1", "F-1.2", "F-1.3"]
        assert sorted(graph.get_all_dependents("F-1.1")) == ["F-1.2", "F-1.3", "F-1.4"]
        assert graph.get_all_dependencies("missing") == []

    def test_get_node_data_unknown(self) -> None:
        """Test node data for an absent node."""
        assert DependencyGraph().get_node_data("x") is None

    def test_copy_is_independent(self) -> None:
        """Test that a copy does not share edge sets."""
        graph = DependencyGraph.from_mapping({"a": [], "b": ["a"]})
        clone = graph.copy()
        clone.remove_node("a")

        assert graph.get_dependencies("b") == ["a"]
        assert clone.get_dependencies("b") == []

    def test_clear(self) -> None:
        """Test removing everything."""
        graph = DependencyGraph.from_mapping({"a": [], "b": ["a"]})
        graph.clear()
        assert graph.is_empty()
        assert len(graph) == 0


class TestOrdering:
    """Tests for topological sort and parallel levels."""

    def test_topological_sort(self, sample_tasks: list) -> None:
        """Test that every node follows its dependencies."""
        graph = DependencyGraph.from_tasks(sample_tasks)
        order = topological_sort(graph)

        assert order[0] == "F-1.1"
        assert order[-1] == "F-1.4"
        for node in order:
            for dep in graph.get_dependencies(node):
                assert order.index(dep) < order.index(node)

    def test_topological_sort_partial_on_cycle(self) -> None:
        """Test that cyclic nodes are left out of the order."""
        graph = DependencyGraph.from_mapping({"a": [], "b": ["c"], "c": ["b"]})
        assert topological_sort(graph) == ["a"]

    def test_parallel_levels(self, sample_tasks: list) -> None:
        """Test grouping into execution waves."""
        graph = DependencyGraph.from_tasks(sample_tasks)

        assert parallel_levels(graph) == [
            ["F-1.1"],
            ["F-1.2", "F-1.3"],
            ["F-1.4"],
        ]

    def test_parallel_levels_forces_cycle_into_last_wave(self) -> None:
        """Test that unplaceable nodes end up in a final wave."""
        graph = DependencyGraph.from_mapping({"a": [], "b": ["c"], "c": ["b"]})
        assert parallel_levels(graph) == [["a"], ["b", "c"]]
