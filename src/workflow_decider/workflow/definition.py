from __future__ import annotations

from typing import TYPE_CHECKING

from . import decisions
from .decisions import Decision
from .graph import DependencyGraph

if TYPE_CHECKING:
    from workflow_decider.core.decider import Decider


class Workflow:
    """A named, versioned workflow definition.

    The definition is shared by all runs and never mutated. The default
    `decide` walks the dependency graph; subclasses may override it with
    custom logic built on the graph's actions. Anything it raises becomes a
    workflow-failure decision for the run.

    Args:
        name: Registered workflow type name.
        version: Registered workflow type version.
        graph: The built dependency graph.
        task_list: Default task list for activities that do not set one.
        complete_when_finished: Complete the run once every unit is finished
            and nothing else was decided.
    """

    def __init__(
        self,
        *,
        name: str,
        version: str,
        graph: DependencyGraph,
        task_list: str | None = None,
        complete_when_finished: bool = True,
    ) -> None:
        self.name = name
        self.version = version
        self.graph = graph
        self.task_list = task_list
        self.complete_when_finished = complete_when_finished

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, version={self.version!r})"

    def is_satisfied(self, run: Decider, parent_id: str) -> bool:
        """True if dependents of `parent_id` may be decided in this run."""

        if self.graph.group(parent_id) in run.skipped_groups:
            return True
        return self.graph[parent_id].is_finished(run)

    def decide(self, run: Decider) -> list[Decision]:
        skipped = run.skipped_groups
        live = [a for a in self.graph if self.graph.group(a.action_id) not in skipped]

        batch: list[Decision] = []
        for action in live:
            parents = self.graph.parents(action.action_id)
            if all(self.is_satisfied(run, p) for p in parents):
                batch.extend(action.decide(run))

        if not batch and self.complete_when_finished and all(a.is_finished(run) for a in live):
            batch.append(decisions.complete_workflow())
        return batch
