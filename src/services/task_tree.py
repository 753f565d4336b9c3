"""Immutable task tree snapshots.

The tree is stored as an arena: a flat mapping from task id to node, with
parent and children held as id references. Every mutating operation returns a
new snapshot and leaves the receiver untouched. The id map is a persistent
hash map, so a snapshot costs in proportion to the nodes it touches and the
nodes that did not change are shared, letting identity comparison detect what
changed.

Operations that cannot find their target return the same snapshot object
instead of raising. Callers detect no-ops with `new_tree is old_tree`.
"""

import logging
from collections import deque
from collections.abc import Iterable, Iterator, Mapping

from immutables import Map

from src.domain.task import Task, TaskPatch


logger = logging.getLogger(__name__)


def normalize_id(task_id: object) -> str | None:
    """Trim an id coming from the remote layer; non-strings and blanks are not ids."""
    if not isinstance(task_id, str):
        return None
    return task_id.strip() or None


class TaskTree:
    """Ordered forest of tasks."""

    __slots__ = ("_nodes", "_roots")

    def __init__(self, nodes: Mapping[str, Task] | None = None, roots: Iterable[str] = ()) -> None:
        self._nodes: Map = Map(nodes or {})
        self._roots: tuple[str, ...] = tuple(roots)

    @classmethod
    def _derive(cls, nodes: Map, roots: tuple[str, ...]) -> "TaskTree":
        tree = cls.__new__(cls)
        tree._nodes = nodes
        tree._roots = roots
        return tree

    @classmethod
    def from_records(cls, tasks: Iterable[Task]) -> "TaskTree":
        """Build a tree from flat gateway records linked by `parent_id`.

        Records whose parent is unknown become roots. Records caught in a parent
        cycle are detached and promoted to roots so the result is always acyclic.
        """
        nodes: dict[str, Task] = {}
        order: list[str] = []
        for task in tasks:
            task_id = normalize_id(task.id)
            if task_id is None or task_id in nodes:
                logger.warning("Skipping task record with missing or duplicate id: %r", task.id)
                continue
            nodes[task_id] = task.model_copy(
                update={"id": task_id, "parent_id": normalize_id(task.parent_id), "children": ()}
            )
            order.append(task_id)

        children: dict[str, list[str]] = {task_id: [] for task_id in order}
        roots: list[str] = []
        for task_id in order:
            parent_id = nodes[task_id].parent_id
            if parent_id is not None and parent_id in nodes and parent_id != task_id:
                children[parent_id].append(task_id)
            else:
                roots.append(task_id)

        reachable: set[str] = set()
        queue = deque(roots)
        while queue:
            current = queue.popleft()
            reachable.add(current)
            queue.extend(children[current])

        for task_id in order:
            if task_id in reachable:
                continue
            # Break the cycle at the first unreachable record in input order
            parent_id = nodes[task_id].parent_id
            if parent_id is not None:
                children[parent_id].remove(task_id)
            logger.warning("Detaching task %s from parent %s to break a cycle", task_id, parent_id)
            roots.append(task_id)
            queue.append(task_id)
            while queue:
                current = queue.popleft()
                reachable.add(current)
                queue.extend(children[current])

        root_ids = set(roots)
        for task_id in order:
            update: dict[str, object] = {"children": tuple(children[task_id])}
            if task_id in root_ids:
                update["parent_id"] = None
            nodes[task_id] = nodes[task_id].model_copy(update=update)

        return cls._derive(Map(nodes), tuple(roots))

    # Queries

    def find(self, task_id: str) -> Task | None:
        """Return the task with the given (trimmed) id, or None."""
        key = normalize_id(task_id)
        if key is None:
            return None
        return self._nodes.get(key)

    def __contains__(self, task_id: object) -> bool:
        key = normalize_id(task_id)
        return key is not None and key in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Task]:
        """Depth-first, pre-order walk over every root in order."""
        for root_id in self._roots:
            yield from self._walk(root_id)

    def _walk(self, task_id: str) -> Iterator[Task]:
        stack = [task_id]
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    @property
    def roots(self) -> list[Task]:
        return [self._nodes[root_id] for root_id in self._roots]

    def parent_of(self, task_id: str) -> Task | None:
        node = self.find(task_id)
        if node is None or node.parent_id is None:
            return None
        return self._nodes.get(node.parent_id)

    def children_of(self, task_id: str) -> list[Task]:
        node = self.find(task_id)
        if node is None:
            return []
        return [self._nodes[child_id] for child_id in node.children]

    def ancestors(self, task_id: str) -> list[Task]:
        """Ancestors from the direct parent up to the root."""
        result = []
        parent = self.parent_of(task_id)
        while parent is not None:
            result.append(parent)
            parent = self.parent_of(parent.id)
        return result

    def subtree(self, task_id: str) -> list[Task]:
        """The task and all its descendants, parents before children."""
        key = normalize_id(task_id)
        if key is None or key not in self._nodes:
            return []
        return list(self._walk(key))

    def all_children_completed(self, task_id: str) -> bool:
        """True when the task has at least one child and every child is completed."""
        children = self.children_of(task_id)
        return bool(children) and all(child.completed for child in children)

    def is_auto_complete_eligible(self, task_id: str) -> bool:
        node = self.find(task_id)
        return node is not None and not node.completed and self.all_children_completed(node.id)

    # Snapshot-producing operations

    def update(self, task_id: str, patch: TaskPatch) -> "TaskTree":
        """Replace the node with its old fields merged with `patch`."""
        node = self.find(task_id)
        if node is None:
            return self
        updated = node.with_patch(patch)
        if updated is node:
            return self
        return self._derive(self._nodes.set(node.id, updated), self._roots)

    def merge(self, task: Task) -> "TaskTree":
        """Apply a canonical record from the gateway, keeping the node's place in the tree."""
        node = self.find(task.id)
        if node is None:
            return self
        merged = task.model_copy(update={"id": node.id, "parent_id": node.parent_id, "children": node.children})
        if merged == node:
            return self
        return self._derive(self._nodes.set(node.id, merged), self._roots)

    def remove(self, task_id: str) -> "TaskTree":
        """Remove the task and its whole subtree, detaching it from its parent or the roots."""
        node = self.find(task_id)
        if node is None:
            return self
        roots = self._roots
        with self._nodes.mutate() as nodes:
            for task in self._walk(node.id):
                del nodes[task.id]
            if node.parent_id is not None and node.parent_id in self._nodes:
                parent = self._nodes[node.parent_id]
                nodes[parent.id] = parent.model_copy(
                    update={"children": tuple(child_id for child_id in parent.children if child_id != node.id)}
                )
            else:
                roots = tuple(root_id for root_id in roots if root_id != node.id)
            remaining = nodes.finish()
        return self._derive(remaining, roots)

    def insert_child(self, parent_id: str, child: Task) -> "TaskTree":
        """Append `child` as the last child of `parent_id`.

        Unchanged when the parent is missing or the child id is already in the tree.
        The child is inserted as a leaf.
        """
        parent = self.find(parent_id)
        child_id = normalize_id(child.id)
        if parent is None or child_id is None or child_id in self._nodes:
            return self
        with self._nodes.mutate() as nodes:
            nodes[child_id] = child.model_copy(update={"id": child_id, "parent_id": parent.id, "children": ()})
            nodes[parent.id] = parent.model_copy(update={"children": (*parent.children, child_id)})
            inserted = nodes.finish()
        return self._derive(inserted, self._roots)

    def insert_root(self, task: Task) -> "TaskTree":
        """Append `task` as the last root; unchanged if the id is already in the tree."""
        task_id = normalize_id(task.id)
        if task_id is None or task_id in self._nodes:
            return self
        node = task.model_copy(update={"id": task_id, "parent_id": None, "children": ()})
        return self._derive(self._nodes.set(task_id, node), (*self._roots, task_id))

    def insert(self, task: Task) -> "TaskTree":
        """Insert under `task.parent_id` when that parent is present, otherwise as a root."""
        if task.parent_id is not None and task.parent_id in self:
            return self.insert_child(task.parent_id, task)
        return self.insert_root(task)
