from abc import ABC, abstractmethod

from foldertree.models.base import BaseEnum


class PermissionLevel(str, BaseEnum):
    """Access level a non-owner actor may hold on a node."""

    VIEW = "view"
    EDIT = "edit"


class PermissionService(ABC):
    """Interface to the sharing subsystem.

    Only consulted when a non-owner asks to read a node. Mutations always
    require the actor to be the owner.
    """

    @abstractmethod
    async def has_permission(
        self, node_id: int, actor_id: int, owner_id: int, level: PermissionLevel
    ) -> bool:
        """Return True if the actor holds `level` on the node."""
        pass


class OwnerOnlyPermissions(PermissionService):
    """Grants nothing to non-owners."""

    async def has_permission(
        self, node_id: int, actor_id: int, owner_id: int, level: PermissionLevel
    ) -> bool:
        return False
