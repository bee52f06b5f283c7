"""Folder and file data models returned by the hierarchy service."""

from dataclasses import dataclass, field

from mashumaro import field_options
from mashumaro.config import BaseConfig
from mashumaro.mixins.json import DataClassJSONMixin

from .base import BaseEnum


class NodeKind(str, BaseEnum):
    """Kind of a node in the hierarchy."""

    FOLDER = "folder"
    FILE = "file"


class DuplicateAction(str, BaseEnum):
    """Caller directive for resolving a sibling name collision."""

    REPLACE = "replace"
    """Permanently delete the conflicting node, then write the new one."""

    KEEP_BOTH = "keepBoth"
    """Keep the conflicting node and suffix the new name with a counter."""


@dataclass
class PathSegment(DataClassJSONMixin):
    """One breadcrumb entry: an ancestor folder id and its display name."""

    id: int
    name: str


@dataclass
class NodeEntity(DataClassJSONMixin):
    """Domain object with the fields shared by folders and files."""

    id: int
    kind: NodeKind
    owner: int
    name: str

    parent_id: int | None = field(metadata=field_options(alias="parent"))
    """Containing folder id, or None for a root level node."""

    path: str
    """Materialized path, e.g. "/docs/reports"."""

    path_segments: list[PathSegment] = field(
        metadata=field_options(alias="pathSegments")
    )
    """Ancestor folders from the root down, excluding the node itself."""

    is_pinned: bool = field(metadata=field_options(alias="isPinned"))

    delete_time: int | None = field(metadata=field_options(alias="deletedAt"))
    """Epoch milliseconds when the node was moved to the trash."""

    create_time: int = field(metadata=field_options(alias="createdAt"))
    update_time: int = field(metadata=field_options(alias="updatedAt"))

    has_deleted_ancestor: bool = field(
        metadata=field_options(alias="hasDeletedAncestor"), default=False
    )
    """True if this node or any ancestor up to the root is in the trash."""

    class Config(BaseConfig):
        serialize_by_alias = True

    @property
    def is_deleted(self) -> bool:
        return self.delete_time is not None


@dataclass
class FolderEntity(NodeEntity):
    """A container node."""

    items: int = 0
    """Number of living direct children (folders and files)."""

    color: str | None = None


@dataclass
class FileEntity(NodeEntity):
    """A leaf node. The name is stored without its extension."""

    extension: str = ""
    size: int = 0
    storage_key: str | None = field(
        metadata=field_options(alias="storageKey"), default=None
    )
    mime_type: str | None = field(
        metadata=field_options(alias="mimeType"), default=None
    )

    @property
    def display_name(self) -> str:
        if not self.extension:
            return self.name
        return f"{self.name}.{self.extension}"


@dataclass
class FolderListing(DataClassJSONMixin):
    """Direct children of a folder (or the root) with breadcrumbs."""

    folder: FolderEntity | None
    """The listed folder, or None when listing the root."""

    folders: list[FolderEntity] = field(default_factory=list)
    files: list[FileEntity] = field(default_factory=list)

    breadcrumbs: list[PathSegment] = field(default_factory=list)
    """Starts with a "Root" entry, or "Trash" when the folder sits in the trash."""

    in_trash: bool = field(metadata=field_options(alias="inTrash"), default=False)

    class Config(BaseConfig):
        serialize_by_alias = True

    @property
    def children(self) -> list[NodeEntity]:
        return [*self.folders, *self.files]


@dataclass
class TrashListing(DataClassJSONMixin):
    """Flat trash view: only nodes with their own deletion marker."""

    folders: list[FolderEntity] = field(default_factory=list)
    files: list[FileEntity] = field(default_factory=list)


@dataclass
class DeletionCounts(DataClassJSONMixin):
    """Number of records removed by a permanent delete."""

    deleted_folder_count: int = field(
        metadata=field_options(alias="deletedFolderCount"), default=0
    )
    deleted_file_count: int = field(
        metadata=field_options(alias="deletedFileCount"), default=0
    )

    class Config(BaseConfig):
        serialize_by_alias = True

    @property
    def total_deleted(self) -> int:
        return self.deleted_folder_count + self.deleted_file_count

    def add(self, other: "DeletionCounts") -> None:
        self.deleted_folder_count += other.deleted_folder_count
        self.deleted_file_count += other.deleted_file_count
