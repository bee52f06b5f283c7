"""Exceptions raised by the hierarchy services.

All of them are recoverable by the caller: retry with a duplicate action,
pick another destination, or show the message to a human.
"""

from foldertree.models.base import BaseResponse, create_error_response
from foldertree.models.node import NodeKind

__all__ = [
    "HierarchyException",
    "InvalidNameException",
    "NotFoundException",
    "NotOwnerException",
    "NameConflictException",
    "CyclicOperationException",
    "InvalidStateException",
    "ParentDeletedException",
    "ConcurrentModificationException",
    "LocationUnavailableException",
]


class HierarchyException(Exception):
    """Base exception raised by the hierarchy services."""

    error_code = "E400"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, str] | None:
        return None

    def to_response(self) -> BaseResponse:
        return create_error_response(self.message, self.error_code, self.details())


class InvalidNameException(HierarchyException):
    """The requested name is empty or contains a path separator."""


class NotFoundException(HierarchyException):
    """The node, parent or destination does not exist."""

    error_code = "E404"


class NotOwnerException(HierarchyException):
    """The actor does not own the node."""

    error_code = "E403"


class NameConflictException(HierarchyException):
    """A living sibling of the same kind already uses the name."""

    error_code = "E409"

    def __init__(
        self,
        name: str,
        kind: NodeKind,
        parent_id: int | None,
        suggested_name: str,
        extension: str | None = None,
    ) -> None:
        display = f"{name}.{extension}" if extension else name
        super().__init__(f"A {kind.value} named '{display}' already exists")
        self.name = name
        self.kind = kind
        self.parent_id = parent_id
        self.suggested_name = suggested_name
        self.extension = extension

    def details(self) -> dict[str, str] | None:
        details = {
            "field": "name",
            "name": self.name,
            "kind": self.kind.value,
            "suggestedName": self.suggested_name,
        }
        if self.extension:
            details["extension"] = self.extension
        return details


class CyclicOperationException(HierarchyException):
    """The move would make a folder its own ancestor."""


class InvalidStateException(HierarchyException):
    """The node is not in a state that allows the operation."""

    error_code = "E409"


class ParentDeletedException(InvalidStateException):
    """The destination folder is in the trash."""


class ConcurrentModificationException(InvalidStateException):
    """The operation kept losing races with concurrent writers."""


class LocationUnavailableException(HierarchyException):
    """Restore is blocked because the original parent is gone or trashed."""

    error_code = "E409"

    def __init__(self, message: str, parent_id: int) -> None:
        super().__init__(message)
        self.parent_id = parent_id

    def details(self) -> dict[str, str] | None:
        return {"field": "parent", "parentId": str(self.parent_id)}
