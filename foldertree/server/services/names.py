"""Sibling name resolution.

Names are unique among living siblings of the same kind, owner and parent.
Files compare the name together with the extension. A collision is resolved
by appending " (2)", " (3)", ... until a free name is found.
"""

import logging
from dataclasses import dataclass

from foldertree.models.node import DuplicateAction, NodeKind
from foldertree.server.constants import ROOT_ID
from foldertree.server.db.models.node import NodeDO

from .exceptions import InvalidNameException, NameConflictException
from .store import HierarchyStore

logger = logging.getLogger(__name__)


def validate_name(name: str) -> str:
    """Return the trimmed name, rejecting names that cannot be stored."""
    name = (name or "").strip()
    if not name or name in (".", ".."):
        raise InvalidNameException("Name must not be empty")
    if "/" in name:
        raise InvalidNameException(f"Name must not contain '/': {name}")
    return name


def split_file_name(file_name: str) -> tuple[str, str]:
    """Split "report.PDF" into ("report", "pdf").

    Names without a dot, dotfiles and names ending in a dot have no extension.
    """
    base, dot, extension = file_name.rpartition(".")
    if not dot or not base or not extension:
        return file_name, ""
    return base, extension.lower()


def with_counter(name: str, counter: int) -> str:
    return f"{name} ({counter})"


@dataclass
class NameResolution:
    """Outcome of resolving a requested name against the existing siblings."""

    name: str
    """Final name to write."""

    replaced: NodeDO | None = None
    """Conflicting sibling that must be permanently deleted first."""


class NameResolver:
    def __init__(self, store: HierarchyStore) -> None:
        self.store = store

    async def find_conflict(
        self,
        name: str,
        kind: NodeKind,
        user_id: int,
        parent_id: int,
        extension: str = "",
        exclude_id: int | None = None,
    ) -> NodeDO | None:
        """Return the living sibling already using the name, if any."""
        existing: NodeDO | None
        if kind == NodeKind.FOLDER:
            existing = await self.store.find_live_folder(user_id, parent_id, name)
        else:
            existing = await self.store.find_live_file(
                user_id, parent_id, name, extension
            )
        if existing is not None and existing.id == exclude_id:
            return None
        return existing

    async def resolve(
        self,
        desired: str,
        kind: NodeKind,
        user_id: int,
        parent_id: int,
        extension: str = "",
        exclude_id: int | None = None,
    ) -> str:
        """Return `desired` or the first free suffixed variant of it."""
        if not await self.find_conflict(
            desired, kind, user_id, parent_id, extension, exclude_id
        ):
            return desired
        counter = 2
        while True:
            candidate = with_counter(desired, counter)
            if not await self.find_conflict(
                candidate, kind, user_id, parent_id, extension, exclude_id
            ):
                logger.debug(f"Resolved {kind.value} name '{desired}' to '{candidate}'")
                return candidate
            counter += 1

    async def resolve_with_action(
        self,
        desired: str,
        kind: NodeKind,
        user_id: int,
        parent_id: int,
        duplicate_action: DuplicateAction | None,
        extension: str = "",
        exclude_id: int | None = None,
    ) -> NameResolution:
        """Resolve a name following the caller's duplicate directive.

        Without a directive a collision raises NameConflictException carrying
        the suffixed name the caller could offer instead.
        """
        existing = await self.find_conflict(
            desired, kind, user_id, parent_id, extension, exclude_id
        )
        if existing is None:
            return NameResolution(name=desired)

        if duplicate_action == DuplicateAction.REPLACE:
            return NameResolution(name=desired, replaced=existing)

        suggested = await self.resolve(
            desired, kind, user_id, parent_id, extension, exclude_id
        )
        if duplicate_action == DuplicateAction.KEEP_BOTH:
            return NameResolution(name=suggested)

        raise NameConflictException(
            name=desired,
            kind=kind,
            parent_id=None if parent_id == ROOT_ID else parent_id,
            suggested_name=suggested,
            extension=extension or None,
        )
