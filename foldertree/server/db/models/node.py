import time
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, Boolean, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from foldertree.models.node import NodeKind
from foldertree.server.constants import ROOT_ID
from foldertree.server.db.base import Base
from foldertree.server.utils.snowflake import next_id

_LIVE_ROWS = text("delete_time IS NULL")


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class NodeMixin:
    """Columns shared by folders and files."""

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, default=next_id)
    """Snowflake id, unique across folders and files."""

    user_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    """Owner user id. Never changes after creation."""

    name: Mapped[str] = mapped_column(String, nullable=False)
    """Display name. Files store the name without the extension."""

    parent_id: Mapped[int] = mapped_column(
        BigInteger, index=True, nullable=False, default=ROOT_ID
    )
    """Containing folder id, ROOT_ID for root level nodes."""

    path: Mapped[str] = mapped_column(String, index=True, nullable=False)
    """Materialized path built from sanitized names."""

    path_segments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    """Ancestor folders as [{"id": ..., "name": ...}], root first."""

    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    delete_time: Mapped[Optional[int]] = mapped_column(
        BigInteger, index=True, nullable=True
    )
    """Set when the node itself is in the trash. Never stamped on descendants."""

    create_time: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)
    update_time: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=now_ms, onupdate=now_ms
    )

    @property
    def is_deleted(self) -> bool:
        return self.delete_time is not None


class FolderDO(NodeMixin, Base):
    """Database model for folders."""

    __tablename__ = "f_folder"

    kind = NodeKind.FOLDER

    items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Count of living direct children. Not recursive."""

    color: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    """Optimistic concurrency counter, bumped on every update."""

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index(
            "uq_f_folder_live_name",
            "user_id",
            "parent_id",
            "name",
            unique=True,
            sqlite_where=_LIVE_ROWS,
            postgresql_where=_LIVE_ROWS,
        ),
    )

    def __repr__(self) -> str:
        return f"<FolderDO(id={self.id}, name='{self.name}', path='{self.path}')>"


class FileDO(NodeMixin, Base):
    """Database model for files. Bytes live in blob storage under storage_key."""

    __tablename__ = "f_file"

    kind = NodeKind.FILE

    extension: Mapped[str] = mapped_column(String, nullable=False, default="")
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    storage_key: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    """Optimistic concurrency counter, bumped on every update."""

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index(
            "uq_f_file_live_name",
            "user_id",
            "parent_id",
            "name",
            "extension",
            unique=True,
            sqlite_where=_LIVE_ROWS,
            postgresql_where=_LIVE_ROWS,
        ),
    )

    @property
    def display_name(self) -> str:
        if not self.extension:
            return self.name
        return f"{self.name}.{self.extension}"

    def __repr__(self) -> str:
        return f"<FileDO(id={self.id}, name='{self.display_name}', path='{self.path}')>"


NodeDO = FolderDO | FileDO
