"""Materialized path maintenance.

`path` and `path_segments` are a cache of a node's position. A structural
change computes the new values first and then applies them to the node and
every descendant, top-down, inside the caller's transaction.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from foldertree.server.constants import ROOT_ID
from foldertree.server.db.models.node import FolderDO, NodeDO

from .exceptions import NotFoundException
from .store import HierarchyStore

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_UNSAFE = re.compile(r'[/\\:*?"<>|]')


def sanitize_segment(name: str) -> str:
    """Lowercase a name for use in a path, hyphenating whitespace."""
    segment = _WHITESPACE.sub("-", name.strip())
    return _UNSAFE.sub("", segment).lower()


@dataclass
class PathData:
    path: str
    path_segments: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class PathUpdate:
    """A pending rewrite of one row."""

    node: NodeDO
    data: PathData

    @property
    def changed(self) -> bool:
        return (
            self.node.path != self.data.path
            or self.node.path_segments != self.data.path_segments
        )


def compute_path(
    name: str, parent: FolderDO | None, parent_data: PathData | None = None
) -> PathData:
    """Path data for a node named `name` directly under `parent`.

    `parent_data` overrides the parent's stored path, for parents whose own
    rewrite is still pending.
    """
    segment = sanitize_segment(name)
    if parent is None:
        return PathData(path=f"/{segment}", path_segments=[])
    if parent_data is None:
        parent_data = PathData(parent.path, parent.path_segments)
    return PathData(
        path=f"{parent_data.path}/{segment}",
        path_segments=[
            *parent_data.path_segments,
            {"id": parent.id, "name": parent.name},
        ],
    )


def replace_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """Swap the leading `old_prefix` of `path`, respecting segment boundaries."""
    if path == old_prefix:
        return new_prefix
    if path.startswith(old_prefix + "/"):
        return new_prefix + path[len(old_prefix) :]
    return path


class PathMaterializer:
    def __init__(self, store: HierarchyStore) -> None:
        self.store = store

    async def parent_of(self, node: NodeDO) -> FolderDO | None:
        """The node's parent folder, None for root level nodes."""
        if node.parent_id == ROOT_ID:
            return None
        parent = await self.store.get_folder(node.parent_id)
        if parent is None:
            raise NotFoundException(f"Parent folder {node.parent_id} not found")
        return parent

    def compute_new_path(
        self, node: NodeDO, new_parent: FolderDO | None = None
    ) -> PathData:
        """Path data for `node` under `new_parent` using its current name."""
        return compute_path(node.name, new_parent)

    def apply(self, node: NodeDO, data: PathData) -> bool:
        """Write path data to a row. Returns False when nothing changed."""
        update = PathUpdate(node, data)
        if not update.changed:
            return False
        node.path = data.path
        node.path_segments = data.path_segments
        return True

    async def plan_cascade(self, root: NodeDO) -> list[PathUpdate]:
        """Compute path data for every descendant of `root`, top-down.

        Each descendant is derived from its parent's planned values, never
        from the stored ones, so re-running the plan after a partial
        application converges on the same result.
        """
        folders: dict[int, tuple[FolderDO, PathData]] = {}
        if isinstance(root, FolderDO):
            folders[root.id] = (root, PathData(root.path, root.path_segments))
        updates: list[PathUpdate] = []
        for descendant in await self.store.list_descendants(root):
            if descendant.parent_id not in folders:
                raise NotFoundException(
                    f"Parent {descendant.parent_id} of node {descendant.id} not found"
                )
            parent, parent_data = folders[descendant.parent_id]
            data = compute_path(descendant.name, parent, parent_data)
            updates.append(PathUpdate(descendant, data))
            if isinstance(descendant, FolderDO):
                folders[descendant.id] = (descendant, data)
        return updates

    async def cascade_rewrite(self, root: NodeDO, old_prefix: str | None = None) -> int:
        """Rewrite the paths of all descendants of `root` after it changed.

        `root` must already carry its new path. Returns the number of rows
        rewritten. A rename that leaves both the path and the segment names
        untouched rewrites nothing.
        """
        updates = await self.plan_cascade(root)
        changed = 0
        for update in updates:
            if old_prefix is not None and update.node.path != update.data.path:
                expected = replace_prefix(update.node.path, old_prefix, root.path)
                if expected != update.data.path:
                    logger.warning(
                        f"Repairing stale path for node {update.node.id}: "
                        f"'{update.node.path}' -> '{update.data.path}'"
                    )
            if self.apply(update.node, update.data):
                changed += 1
        if changed:
            logger.info(
                f"Rewrote {changed} descendant path(s) below node {root.id} ({root.path})"
            )
        return changed
