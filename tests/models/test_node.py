"""Tests for the node models."""

import pytest

from foldertree.models.base import create_error_response
from foldertree.models.node import (
    DeletionCounts,
    DuplicateAction,
    FileEntity,
    FolderEntity,
    NodeKind,
    PathSegment,
)
from foldertree.server.services.exceptions import (
    LocationUnavailableException,
    NameConflictException,
    NotFoundException,
)


def make_file_entity(**kwargs) -> FileEntity:
    values = {
        "id": 7,
        "kind": NodeKind.FILE,
        "owner": 1,
        "name": "report",
        "parent_id": 3,
        "path": "/docs/report",
        "path_segments": [PathSegment(id=3, name="Docs")],
        "is_pinned": False,
        "delete_time": None,
        "create_time": 1000,
        "update_time": 2000,
        "extension": "pdf",
    }
    values.update(kwargs)
    return FileEntity(**values)


def test_create_error_response() -> None:
    """Test create_error_response."""
    error_response = create_error_response("test error")
    assert error_response.error_msg == "test error"
    assert error_response.error_code is None
    assert error_response.to_dict() == {"success": False, "errorMsg": "test error"}


def test_file_entity_serializes_by_alias() -> None:
    data = make_file_entity(storage_key="abc").to_dict()

    assert data["parent"] == 3
    assert data["pathSegments"] == [{"id": 3, "name": "Docs"}]
    assert data["isPinned"] is False
    assert data["deletedAt"] is None
    assert data["hasDeletedAncestor"] is False
    assert data["storageKey"] == "abc"
    assert data["kind"] == "file"


def test_file_entity_display_name() -> None:
    assert make_file_entity().display_name == "report.pdf"
    assert make_file_entity(extension="").display_name == "report"


def test_folder_entity_is_deleted() -> None:
    folder = FolderEntity(
        id=1,
        kind=NodeKind.FOLDER,
        owner=1,
        name="Docs",
        parent_id=None,
        path="/docs",
        path_segments=[],
        is_pinned=False,
        delete_time=5,
        create_time=1,
        update_time=1,
    )
    assert folder.is_deleted
    assert folder.items == 0
    assert folder.to_dict()["parent"] is None


def test_deletion_counts() -> None:
    counts = DeletionCounts(deleted_folder_count=1, deleted_file_count=2)
    counts.add(DeletionCounts(deleted_folder_count=3))

    assert counts.total_deleted == 6
    assert counts.to_dict() == {"deletedFolderCount": 4, "deletedFileCount": 2}


def test_duplicate_action_from_value() -> None:
    assert DuplicateAction.from_value("keepBoth") is DuplicateAction.KEEP_BOTH
    with pytest.raises(ValueError):
        DuplicateAction.from_value("overwrite")


def test_name_conflict_response() -> None:
    err = NameConflictException(
        "report", NodeKind.FILE, None, "report (2)", extension="pdf"
    )

    response = err.to_response().to_dict()

    assert response["success"] is False
    assert response["errorCode"] == "E409"
    assert response["errorMsg"] == "A file named 'report.pdf' already exists"
    assert response["details"]["suggestedName"] == "report (2)"
    assert response["details"]["extension"] == "pdf"


def test_location_unavailable_response() -> None:
    err = LocationUnavailableException("Parent is in the trash", 42)
    assert err.to_response().details == {"field": "parent", "parentId": "42"}


def test_plain_exception_has_no_details() -> None:
    response = NotFoundException("Node 1 not found").to_response().to_dict()
    assert "details" not in response
    assert response["errorCode"] == "E404"
