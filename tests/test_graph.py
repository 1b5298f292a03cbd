"""
Tests for references, graph building, cycle detection and run order.
"""

import random
from pathlib import Path

import pytest

from terrastack.core.engine.graph import build_graph, render_dot, run_order
from terrastack.core.engine.references import (
    PathRef,
    TagQueryRef,
    parse_reference,
    resolve_field,
)
from terrastack.core.errors import CycleError, StackConfigError


def _paths(stacks):
    return [s.path for s in stacks]


# ── References ───────────────────────────────────────────────────────


class TestReferences:
    def test_parse_path(self):
        assert parse_reference("after", "/a") == PathRef("/a")
        assert parse_reference("wants", "../b") == PathRef("../b")

    def test_parse_tag_query(self):
        ref = parse_reference("before", "tag:prod,db")
        assert isinstance(ref, TagQueryRef)
        assert ref.query == "prod,db"

    @pytest.mark.parametrize("field", ["wants", "wanted_by"])
    def test_tag_query_not_allowed(self, field):
        with pytest.raises(StackConfigError, match="not allowed"):
            parse_reference(field, "tag:prod")

    def test_invalid_tag_query(self):
        with pytest.raises(StackConfigError):
            parse_reference("after", "tag:Bad")

    def test_relative_and_directory_expansion(self, project: Path, make_registry):
        registry = make_registry(project, {
            "/stacks/app": "after: [../net, /shared]\n",
            "/stacks/net": "",
            "/shared/dns": "",
            "/shared/certs": "",
        })
        app = registry.get("/stacks/app")
        assert _paths(resolve_field("after", app, registry)) == [
            "/shared/certs", "/shared/dns", "/stacks/net",
        ]

    def test_dangling_reference_resolves_to_nothing(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/missing, ../../../../etc]\n"})
        assert resolve_field("after", registry.get("/a"), registry) == []

    def test_directory_without_stacks(self, project: Path, make_registry):
        (project / "empty").mkdir()
        registry = make_registry(project, {"/a": "after: [/empty]\n"})
        assert resolve_field("after", registry.get("/a"), registry) == []


# ── Ordering ─────────────────────────────────────────────────────────


class TestRunOrder:
    def test_lexicographic_without_constraints(self, project: Path, make_registry):
        registry = make_registry(project, {"/c": "", "/a": "", "/b": ""})
        assert _paths(run_order(registry.stacks, registry)) == ["/a", "/b", "/c"]

    def test_after(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/c]\n", "/b": "", "/c": ""})
        assert _paths(run_order(registry.stacks, registry)) == ["/c", "/a", "/b"]

    def test_before(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "", "/z": "before: [/a]\n"})
        assert _paths(run_order(registry.stacks, registry)) == ["/z", "/a"]

    def test_reverse_is_reversed_order(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/c]\n", "/b": "", "/c": ""})
        forward = _paths(run_order(registry.stacks, registry))
        backward = _paths(run_order(registry.stacks, registry, reverse=True))
        assert backward == list(reversed(forward))

    def test_deterministic_regardless_of_input_order(self, project: Path, make_registry):
        registry = make_registry(project, {
            "/a": "after: [/d]\n",
            "/b": "before: [/a]\n",
            "/c": "",
            "/d": "",
            "/e/f": "after: [/c]\n",
        })
        expected = _paths(run_order(registry.stacks, registry))
        stacks = list(registry.stacks)
        for seed in range(5):
            random.Random(seed).shuffle(stacks)
            assert _paths(run_order(stacks, registry)) == expected

    def test_parent_before_child(self, project: Path, make_registry):
        registry = make_registry(project, {
            "/": "",
            "/infra": "",
            "/infra/vpc": "",
            "/app": "",
        })
        order = _paths(run_order(registry.stacks, registry))
        assert order.index("/") < order.index("/infra") < order.index("/infra/vpc")
        assert order.index("/") < order.index("/app")

    def test_child_ordered_by_explicit_constraint_still_after_parent(self, project, make_registry):
        registry = make_registry(project, {
            "/infra": "",
            "/infra/vpc": "",
            "/zone": "before: [/infra/vpc]\n",
        })
        order = _paths(run_order(registry.stacks, registry))
        assert order.index("/infra") < order.index("/infra/vpc")
        assert order.index("/zone") < order.index("/infra/vpc")

    def test_tag_query_edges(self, project: Path, make_registry):
        registry = make_registry(project, {
            "/app": "after: ['tag:db']\n",
            "/db1": "tags: [db]\n",
            "/db2": "tags: [db]\n",
        })
        assert _paths(run_order(registry.stacks, registry)) == ["/db1", "/db2", "/app"]

    def test_tag_query_expands_over_selection(self, project: Path, make_registry):
        registry = make_registry(project, {
            "/app": "after: ['tag:db']\n",
            "/db": "tags: [db]\n",
        })
        graph = build_graph([registry.get("/app")], registry)
        assert list(graph.nodes) == ["/app"]

    def test_non_selected_stacks_keep_transitive_order(self, project: Path, make_registry):
        registry = make_registry(project, {
            "/a": "after: [/b]\n",
            "/b": "after: [/c]\n",
            "/c": "",
        })
        selected = [registry.get("/a"), registry.get("/c")]
        assert _paths(run_order(selected, registry)) == ["/c", "/a"]

        graph = build_graph(selected, registry)
        assert graph.is_auxiliary("/b")

    def test_wants_orders_selected_stacks(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "wants: [/b]\n", "/b": ""})
        assert _paths(run_order(registry.stacks, registry)) == ["/b", "/a"]

    def test_wanted_by_orders_selected_stacks(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "", "/b": "wanted_by: [/a]\n"})
        assert _paths(run_order(registry.stacks, registry)) == ["/b", "/a"]

    def test_circular_wants_still_ordered(self, project: Path, make_registry, caplog):
        registry = make_registry(project, {
            "/a": "wants: [/b]\n",
            "/b": "wants: [/c]\n",
            "/c": "wants: [/a]\n",
        })
        with caplog.at_level("WARNING"):
            order = run_order(registry.stacks, registry)
        assert _paths(order) == ["/c", "/b", "/a"]
        assert "/c wants /a" in caplog.text

    def test_wants_against_after_is_dropped(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/b]\n", "/b": "wants: [/a]\n"})
        assert _paths(run_order(registry.stacks, registry)) == ["/b", "/a"]

    def test_after_cycle_still_fatal(self, project: Path, make_registry):
        registry = make_registry(project, {
            "/a": "after: [/b]\nwants: [/b]\n",
            "/b": "after: [/a]\n",
        })
        with pytest.raises(CycleError):
            run_order(registry.stacks, registry)

    def test_wants_does_not_add_unselected_nodes(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "wants: [/b]\n", "/b": ""})
        graph = build_graph([registry.get("/a")], registry)
        assert list(graph.nodes) == ["/a"]

    def test_tag_query_in_wants_rejected(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "wants: ['tag:db']\n"})
        with pytest.raises(StackConfigError):
            build_graph(registry.stacks, registry)


# ── Cycles ───────────────────────────────────────────────────────────


class TestCycles:
    def test_direct_cycle(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/b]\n", "/b": "after: [/a]\n"})
        with pytest.raises(CycleError) as exc:
            run_order(registry.stacks, registry)
        assert exc.value.cycle == ["/a", "/b", "/a"]
        assert exc.value.reason == "/a -> /b -> /a"

    def test_reports_minimal_loop(self, project: Path, make_registry):
        registry = make_registry(project, {
            "/a": "after: [/b]\n",
            "/b": "after: [/c]\n",
            "/c": "after: [/b]\n",
        })
        with pytest.raises(CycleError) as exc:
            run_order(registry.stacks, registry)
        assert exc.value.cycle == ["/b", "/c", "/b"]

    def test_self_reference(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [.]\n"})
        with pytest.raises(CycleError) as exc:
            run_order(registry.stacks, registry)
        assert exc.value.cycle == ["/a", "/a"]

    def test_cycle_with_implicit_parent_edge(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/a/x]\n", "/a/x": ""})
        with pytest.raises(CycleError) as exc:
            run_order(registry.stacks, registry)
        assert exc.value.cycle == ["/a", "/a/x", "/a"]

    def test_cycle_through_before(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "before: [/b]\n", "/b": "before: [/a]\n"})
        with pytest.raises(CycleError):
            run_order(registry.stacks, registry)

    def test_back_edges(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/b]\n", "/b": "after: [/a]\n"})
        graph = build_graph(registry.stacks, registry)
        assert graph.back_edges() == {("/b", "/a")}


# ── DOT rendering ────────────────────────────────────────────────────


class TestRenderDot:
    def test_simple_graph(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/b]\n", "/b": ""})
        dot = render_dot(build_graph(registry.stacks, registry))
        assert dot == (
            "digraph {\n"
            '  n1 [label="a"];\n'
            '  n2 [label="b"];\n'
            "  n1 -> n2;\n"
            "}\n"
        )

    def test_cycle_edge_is_red(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "after: [/b]\n", "/b": "after: [/a]\n"})
        dot = render_dot(build_graph(registry.stacks, registry))
        assert "  n1 -> n2;\n" in dot
        assert '  n2 -> n1 [color="red"];\n' in dot

    def test_ambiguous_basenames_use_paths(self, project: Path, make_registry):
        registry = make_registry(project, {"/x/net": "", "/y/net": "", "/z": ""})
        dot = render_dot(build_graph(registry.stacks, registry))
        assert 'label="/x/net"' in dot
        assert 'label="/y/net"' in dot
        assert 'label="z"' in dot

    def test_name_and_dir_labels(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": "name: alpha\n"})
        graph = build_graph(registry.stacks, registry)
        assert 'label="alpha"' in render_dot(graph, "stack.name")
        assert 'label="/a"' in render_dot(graph, "stack.dir")

    def test_unknown_label(self, project: Path, make_registry):
        registry = make_registry(project, {"/a": ""})
        with pytest.raises(ValueError):
            render_dot(build_graph(registry.stacks, registry), "colour")
