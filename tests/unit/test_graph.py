"""Tests for graph module."""

import unittest

from taskweave.graph import (
    CyclicDependencyError,
    build_dependency_tree,
    resolve_execution_order,
    transitive_dependents,
)
from taskweave.registry import RegistryFrozenError, Task, TaskRegistry, UnknownTaskError


def make_registry(deps_by_task: dict[str, list[str]]) -> TaskRegistry:
    return TaskRegistry([Task(name=name, deps=deps) for name, deps in deps_by_task.items()])


class TestResolveExecutionOrder(unittest.TestCase):
    def test_single_task(self):
        """Test execution order for single task with no dependencies."""
        registry = make_registry({"build": []})
        self.assertEqual(resolve_execution_order(registry, "build"), ["build"])

    def test_linear_dependencies(self):
        """Test Clean -> Build -> Test resolves dependencies first."""
        registry = make_registry({"Clean": [], "Build": ["Clean"], "Test": ["Build"]})
        self.assertEqual(resolve_execution_order(registry, "Test"), ["Clean", "Build", "Test"])

    def test_registration_order_does_not_matter(self):
        registry = make_registry({"Test": ["Build"], "Build": ["Clean"], "Clean": []})
        self.assertEqual(resolve_execution_order(registry, "Test"), ["Clean", "Build", "Test"])

    def test_diamond_dependencies(self):
        """Test a shared ancestor appears once, before both dependents."""
        registry = make_registry({"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]})

        order = resolve_execution_order(registry, "d")

        self.assertEqual(order, ["a", "b", "c", "d"])
        self.assertEqual(order.count("a"), 1)

    def test_multiple_targets_share_dependencies(self):
        """Test two targets with a common ancestor flatten to one plan."""
        registry = make_registry({"setup": [], "lint": ["setup"], "docs": ["setup"]})

        order = resolve_execution_order(registry, ["lint", "docs"])

        self.assertEqual(order, ["setup", "lint", "docs"])

    def test_tie_break_follows_discovery_order(self):
        """Test independent tasks keep the order they were discovered in."""
        registry = make_registry({"all": ["z", "y", "x"], "x": [], "y": [], "z": []})
        self.assertEqual(resolve_execution_order(registry, "all"), ["z", "y", "x", "all"])

    def test_deterministic(self):
        """Test resolving twice gives the identical plan."""
        registry = make_registry(
            {"a": [], "b": ["a"], "c": ["a", "b"], "d": ["c", "b"], "e": ["d", "a"]}
        )
        first = resolve_execution_order(registry, ["e", "c"])
        second = resolve_execution_order(registry, ["e", "c"])
        self.assertEqual(first, second)

    def test_every_dependency_precedes_dependent(self):
        registry = make_registry(
            {
                "compile": ["generate", "configure"],
                "generate": ["configure"],
                "configure": [],
                "package": ["compile", "docs"],
                "docs": ["generate"],
                "publish": ["package", "test"],
                "test": ["compile"],
            }
        )

        order = resolve_execution_order(registry, "publish")

        self.assertEqual(len(order), len(set(order)))
        self.assertEqual(set(order), set(registry.task_names()))
        for name in order:
            for dep in registry.get(name).deps:
                self.assertLess(order.index(dep), order.index(name))

    def test_only_reachable_tasks_planned(self):
        registry = make_registry({"build": [], "test": ["build"], "deploy": []})
        self.assertEqual(resolve_execution_order(registry, "test"), ["build", "test"])

    def test_task_not_found(self):
        """Test error when target task doesn't exist."""
        registry = make_registry({"build": []})
        with self.assertRaises(UnknownTaskError) as cm:
            resolve_execution_order(registry, "nonexistent")
        self.assertEqual(cm.exception.name, "nonexistent")

    def test_unknown_dependency_names_missing_task(self):
        registry = make_registry({"build": ["generate"]})
        with self.assertRaises(UnknownTaskError) as cm:
            resolve_execution_order(registry, "build")
        self.assertEqual(cm.exception.name, "generate")
        self.assertEqual(cm.exception.required_by, "build")
        self.assertIn("generate", str(cm.exception))

    def test_two_task_cycle(self):
        """Test A -> B -> A fails with the full cycle path."""
        registry = make_registry({"A": ["B"], "B": ["A"]})
        with self.assertRaises(CyclicDependencyError) as cm:
            resolve_execution_order(registry, "A")
        self.assertEqual(cm.exception.cycle, ["A", "B", "A"])
        self.assertIn("A -> B -> A", str(cm.exception))

    def test_self_dependency(self):
        registry = make_registry({"A": ["A"]})
        with self.assertRaises(CyclicDependencyError) as cm:
            resolve_execution_order(registry, "A")
        self.assertEqual(cm.exception.cycle, ["A", "A"])

    def test_cycle_below_entry_point(self):
        """Test the reported cycle excludes the path leading into it."""
        registry = make_registry({"top": ["x"], "x": ["y"], "y": ["z"], "z": ["x"]})
        with self.assertRaises(CyclicDependencyError) as cm:
            resolve_execution_order(registry, "top")
        self.assertEqual(cm.exception.cycle, ["x", "y", "z", "x"])

    def test_long_chain(self):
        """Test a chain deeper than the interpreter recursion limit resolves."""
        depth = 5000
        registry = make_registry(
            {f"t{i}": [f"t{i - 1}"] if i else [] for i in range(depth)}
        )

        order = resolve_execution_order(registry, f"t{depth - 1}")

        self.assertEqual(order, [f"t{i}" for i in range(depth)])

    def test_cycle_at_end_of_long_chain(self):
        depth = 3000
        deps = {f"t{i}": [f"t{i + 1}"] for i in range(depth - 1)}
        deps[f"t{depth - 1}"] = [f"t{depth - 2}"]
        registry = make_registry(deps)

        with self.assertRaises(CyclicDependencyError) as cm:
            resolve_execution_order(registry, "t0")
        self.assertEqual(cm.exception.cycle, [f"t{depth - 2}", f"t{depth - 1}", f"t{depth - 2}"])

    def test_empty_targets_rejected(self):
        with self.assertRaises(ValueError):
            resolve_execution_order(make_registry({"a": []}), [])

    def test_resolution_freezes_registry(self):
        registry = make_registry({"build": []})
        resolve_execution_order(registry, "build")
        with self.assertRaises(RegistryFrozenError):
            registry.register(Task(name="late"))


class TestTransitiveDependents(unittest.TestCase):
    def test_collects_direct_and_indirect_dependents(self):
        registry = make_registry(
            {"Clean": [], "Build": ["Clean"], "Test": ["Build"], "Docs": ["Clean"], "Lint": []}
        )
        plan = resolve_execution_order(registry, ["Test", "Docs", "Lint"])

        self.assertEqual(transitive_dependents(registry, plan, "Build"), ["Test"])
        self.assertEqual(transitive_dependents(registry, plan, "Clean"), ["Build", "Test", "Docs"])
        self.assertEqual(transitive_dependents(registry, plan, "Lint"), [])


class TestBuildDependencyTree(unittest.TestCase):
    def test_nested_tree(self):
        registry = make_registry({"Clean": [], "Build": ["Clean"], "Test": ["Build"]})
        tree = build_dependency_tree(registry, "Test")
        self.assertEqual(
            tree,
            {
                "name": "Test",
                "deps": [{"name": "Build", "deps": [{"name": "Clean", "deps": []}]}],
            },
        )

    def test_cycle_marked(self):
        registry = make_registry({"A": ["B"], "B": ["A"]})
        tree = build_dependency_tree(registry, "A")
        self.assertTrue(tree["deps"][0]["deps"][0]["cycle"])

    def test_unknown_target(self):
        with self.assertRaises(UnknownTaskError):
            build_dependency_tree(make_registry({}), "missing")


if __name__ == "__main__":
    unittest.main()
