"""Dependency graph of the units of work in a workflow definition.

Graphs are assembled with `GraphBuilder` and frozen by `build()`, which rejects
duplicate ids, dangling parents and cycles. A built `DependencyGraph` is
read-only and can be shared by every run of the workflow.

Groups split a long workflow into checkpoints. For every group above 0 the
builder inserts a marker action named `checkpoint:<n>` that waits for the
leaves of the parent group; every unit of group n depends on it, directly or
through another unit of the same group. Once the marker is in a run's history,
the groups it waits for, directly or through their own checkpoints, are no
longer evaluated. Older history need not be loaded when every other group starts
after the marker.
"""

from __future__ import annotations

import dataclasses
import heapq
import logging
import re
from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import timedelta
from types import MappingProxyType

from .actions import Action, MarkerAction
from .policy import RetryPolicy

logger = logging.getLogger(__name__)

CHECKPOINT_PREFIX = "checkpoint:"


class GraphDefinitionError(ValueError):
    pass


def checkpoint_id(group: int) -> str:
    return f"{CHECKPOINT_PREFIX}{group}"


def parse_checkpoint(name: str) -> int | None:
    """Group number of a checkpoint marker or signal name, None for other names."""

    if not name.startswith(CHECKPOINT_PREFIX):
        return None
    suffix = name[len(CHECKPOINT_PREFIX) :]
    return int(suffix) if suffix.isdigit() else None


def _components(children: Mapping[str, Sequence[str]]) -> dict[str, int]:
    """Strongly connected component index per node (iterative Kosaraju)."""

    finished: list[str] = []
    seen: set[str] = set()
    for start in children:
        if start in seen:
            continue
        seen.add(start)
        stack = [(start, iter(children[start]))]
        while stack:
            node, pending = stack[-1]
            for child in pending:
                if child not in seen:
                    seen.add(child)
                    stack.append((child, iter(children[child])))
                    break
            else:
                stack.pop()
                finished.append(node)

    parents: dict[str, list[str]] = {node: [] for node in children}
    for node, node_children in children.items():
        for child in node_children:
            parents[child].append(node)

    component: dict[str, int] = {}
    index = 0
    for start in reversed(finished):
        if start in component:
            continue
        index += 1
        component[start] = index
        todo = [start]
        while todo:
            node = todo.pop()
            for parent in parents[node]:
                if parent not in component:
                    component[parent] = index
                    todo.append(parent)
    return component


def find_cycles(parents: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Every distinct cycle in the parent relation, as closed paths.

    Paths follow parent -> child edges and start at the smallest id of the
    cycle, e.g. ``["a", "b", "c", "a"]``. A self-loop is ``["a", "a"]``.
    """

    children: dict[str, list[str]] = {node: [] for node in parents}
    for node, node_parents in parents.items():
        for parent in node_parents:
            if parent in children:
                children[parent].append(node)

    component = _components(children)
    cycles: list[list[str]] = []

    for root in sorted(children):
        # Depth-first over nodes greater than the root, so each cycle is
        # reported once, from its smallest member.
        path = [root]
        on_path = {root}
        stack = [iter(children[root])]
        while stack:
            for child in stack[-1]:
                if child == root:
                    cycles.append([*path, root])
                elif (
                    child > root
                    and child not in on_path
                    and component[child] == component[root]
                ):
                    path.append(child)
                    on_path.add(child)
                    stack.append(iter(children[child]))
                    break
            else:
                stack.pop()
                on_path.discard(path.pop())
    return cycles


class DependencyGraph:
    """Read-only dependency graph produced by `GraphBuilder.build()`.

    Parents are held as ids. Iteration yields actions in a deterministic
    topological order: among units whose parents are all placed, the one
    declared first comes first.
    """

    def __init__(
        self,
        actions: Mapping[str, Action],
        parents: Mapping[str, Sequence[str]],
        groups: Mapping[str, int],
        checkpoint_parents: Mapping[int, int] | None = None,
    ) -> None:
        self._actions = MappingProxyType(dict(actions))
        self._parents = MappingProxyType({k: tuple(v) for k, v in parents.items()})
        self._groups = MappingProxyType(dict(groups))
        self._checkpoint_parents = MappingProxyType(dict(checkpoint_parents or {}))
        self._children: Mapping[str, tuple[str, ...]] | None = None
        self._order = self._topological_order()

    def _topological_order(self) -> tuple[str, ...]:
        position = {action_id: i for i, action_id in enumerate(self._actions)}
        waiting = {k: len(set(self._parents[k])) for k in self._actions}
        ready = [(position[k], k) for k, n in waiting.items() if n == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            _, action_id = heapq.heappop(ready)
            order.append(action_id)
            for child in self.children(action_id):
                waiting[child] -= 1
                if waiting[child] == 0:
                    heapq.heappush(ready, (position[child], child))
        if len(order) != len(self._actions):
            raise GraphDefinitionError("Dependency graph is not acyclic")
        return tuple(order)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[Action]:
        return (self._actions[action_id] for action_id in self._order)

    def __getitem__(self, action_id: str) -> Action:
        return self._actions[action_id]

    def get(self, action_id: str) -> Action | None:
        return self._actions.get(action_id)

    @property
    def order(self) -> tuple[str, ...]:
        return self._order

    def parents(self, action_id: str) -> tuple[str, ...]:
        return self._parents[action_id]

    def children(self, action_id: str) -> tuple[str, ...]:
        if self._children is None:
            index: dict[str, list[str]] = {k: [] for k in self._actions}
            for child, parents in self._parents.items():
                for parent in dict.fromkeys(parents):
                    index[parent].append(child)
            self._children = MappingProxyType({k: tuple(v) for k, v in index.items()})
        return self._children[action_id]

    def group(self, action_id: str) -> int:
        return self._groups[action_id]

    @property
    def checkpoints(self) -> tuple[int, ...]:
        return tuple(sorted(self._checkpoint_parents))

    def earlier_groups(self, group: int) -> frozenset[int]:
        """Groups that must finish before the checkpoint of `group` is recorded.

        Follows parent groups transitively, so with ``group(1)`` then
        ``group_and_parent(2, 0)`` group 2 depends on group 0 only.
        """

        found: set[int] = set()
        while group in self._checkpoint_parents:
            group = self._checkpoint_parents[group]
            found.add(group)
        return frozenset(found)

    def superseded_groups(self, checkpoints: Iterable[int]) -> frozenset[int]:
        """Groups no longer evaluated once the given checkpoints are recorded."""

        found: set[int] = set()
        for checkpoint in checkpoints:
            found |= self.earlier_groups(checkpoint)
        return frozenset(found)

    def is_history_boundary(self, checkpoint: int) -> bool:
        """True if no live unit has history older than the marker of `checkpoint`.

        Every group must either finish before the checkpoint or start after
        it. A group running beside it, such as a sibling with the same parent
        group, may have events anywhere in the history.
        """

        if checkpoint not in self._checkpoint_parents:
            return False
        before = self.earlier_groups(checkpoint)
        return all(
            g in before or g == checkpoint or checkpoint in self.earlier_groups(g)
            for g in set(self._groups.values())
        )


class Selection:
    """A working set of actions for applying one setting to many at once."""

    def __init__(self, builder: GraphBuilder, action_ids: Sequence[str]) -> None:
        self._builder = builder
        self.action_ids = tuple(action_ids)

    def _update(self, **changes: object) -> Selection:
        for action_id in self.action_ids:
            self._builder._replace(action_id, **changes)
        return self

    def retry(self, policy: RetryPolicy) -> Selection:
        return self._update(retry_policy=policy)

    def fail_workflow_on_error(self, flag: bool) -> Selection:
        return self._update(fail_workflow_on_error=flag)

    def timeouts(self, **timeouts: timedelta | None) -> Selection:
        """Set timeout fields, e.g. ``start_to_close_timeout=timedelta(minutes=5)``.

        Raises:
            GraphDefinitionError: if a selected action has no such timeout.
        """

        for name in timeouts:
            if not name.endswith("_timeout"):
                raise GraphDefinitionError(f"{name!r} is not a timeout")
        for action_id in self.action_ids:
            action = self._builder._actions[action_id]
            names = {f.name for f in dataclasses.fields(action)}
            missing = sorted(set(timeouts) - names)
            if missing:
                raise GraphDefinitionError(
                    f"{type(action).__name__} {action_id!r} has no timeout(s) {missing}"
                )
        return self._update(**timeouts)


class GraphBuilder:
    """Collects actions, parent edges and groups for a `DependencyGraph`.

    Example:
        builder = GraphBuilder()
        builder.add(extract).add(transform, "extract").group(1).add(load)
        builder.with_each(pattern="^(transform|load)$").retry(RetryPolicy())
        graph = builder.build()
    """

    def __init__(self) -> None:
        self._actions: dict[str, Action] = {}
        self._parents: dict[str, list[str]] = {}
        self._groups: dict[str, int] = {}
        self._group = 0
        self._checkpoint_parents: dict[int, int] = {}

    def add(self, action: Action, *parents: str) -> GraphBuilder:
        action_id = action.action_id
        if action_id in self._actions:
            raise GraphDefinitionError(f"Duplicate action id: {action_id!r}")
        if action_id.startswith(CHECKPOINT_PREFIX):
            raise GraphDefinitionError(
                f"Action ids starting with {CHECKPOINT_PREFIX!r} are reserved"
            )
        self._actions[action_id] = action
        self._parents[action_id] = list(dict.fromkeys(parents))
        self._groups[action_id] = self._group
        return self

    def group(self, number: int) -> GraphBuilder:
        """Start group `number`, checkpointed after the current group."""

        return self.group_and_parent(number, self._group)

    def group_and_parent(self, number: int, parent_group: int) -> GraphBuilder:
        """Start group `number`, checkpointed after the leaves of `parent_group`."""

        if number < self._group:
            raise GraphDefinitionError(
                f"Groups must not decrease: {number} declared after {self._group}"
            )
        if number == self._group:
            return self
        if not 0 <= parent_group < number:
            raise GraphDefinitionError(
                f"Parent group of {number} must be between 0 and {number - 1}, got {parent_group}"
            )
        self._checkpoint_parents[number] = parent_group
        self._group = number
        return self

    def with_each(self, *action_ids: str, pattern: str | None = None) -> Selection:
        """Select actions by id, or by a regular expression searched in each id."""

        if pattern is not None:
            if action_ids:
                raise GraphDefinitionError("Pass either action ids or a pattern, not both")
            regex = re.compile(pattern)
            selected = [k for k in self._actions if regex.search(k)]
            if not selected:
                raise GraphDefinitionError(f"Pattern {pattern!r} matches no action")
            return Selection(self, selected)

        if not action_ids:
            raise GraphDefinitionError("with_each() needs action ids or a pattern")
        unknown = [k for k in action_ids if k not in self._actions]
        if unknown:
            raise GraphDefinitionError(f"Unknown action ids: {unknown}")
        return Selection(self, action_ids)

    def _replace(self, action_id: str, **changes: object) -> None:
        self._actions[action_id] = dataclasses.replace(self._actions[action_id], **changes)

    def build(self) -> DependencyGraph:
        if not self._actions:
            raise GraphDefinitionError("Workflow graph has no actions")

        actions: dict[str, Action] = dict(self._actions)
        parents = {k: list(v) for k, v in self._parents.items()}
        groups = dict(self._groups)

        dangling = sorted(
            f"{child} -> {parent}"
            for child, child_parents in parents.items()
            for parent in child_parents
            if parent not in actions
        )
        if dangling:
            raise GraphDefinitionError(f"Unknown parent ids: {', '.join(dangling)}")

        later = sorted(
            f"{child} (group {groups[child]}) -> {parent} (group {groups[parent]})"
            for child, child_parents in parents.items()
            for parent in child_parents
            if groups[parent] > groups[child]
        )
        if later:
            raise GraphDefinitionError(f"Parents must not be in a later group: {', '.join(later)}")

        cycles = find_cycles(parents)
        if cycles:
            raise GraphDefinitionError(
                "Cycles detected:\n" + "\n".join(" -> ".join(cycle) for cycle in cycles)
            )

        for number in sorted(self._checkpoint_parents):
            marker = checkpoint_id(number)
            for action_id, group in self._groups.items():
                if group == number and not any(groups[p] == number for p in parents[action_id]):
                    parents[action_id].append(marker)
            actions[marker] = MarkerAction(marker, details=str(number))
            parents[marker] = []
            groups[marker] = number

        for number, parent_group in self._checkpoint_parents.items():
            parents[checkpoint_id(number)] = self._leaves(parent_group, parents, groups)

        logger.debug(
            f"Built dependency graph with {len(self._actions)} actions "
            f"and {len(self._checkpoint_parents)} checkpoints"
        )
        return DependencyGraph(actions, parents, groups, self._checkpoint_parents)

    @staticmethod
    def _leaves(
        group: int, parents: Mapping[str, Sequence[str]], groups: Mapping[str, int]
    ) -> list[str]:
        members = [k for k, g in groups.items() if g == group]
        inner_parents = {p for k in members for p in parents[k] if groups[p] == group}
        return [k for k in members if k not in inner_parents]
