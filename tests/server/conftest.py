"""Shared pytest fixtures for server tests."""

import pytest

from foldertree.server.db.session import DatabaseSessionManager
from foldertree.server.services.hierarchy import HierarchyService
from foldertree.server.services.integrity import IntegrityService
from tests.server.services.fakes import FakeBlobStorage, FakePermissionService


@pytest.fixture
def blob_storage() -> FakeBlobStorage:
    return FakeBlobStorage()


@pytest.fixture
def permissions() -> FakePermissionService:
    return FakePermissionService()


@pytest.fixture
def hierarchy_service(
    session_manager: DatabaseSessionManager,
    blob_storage: FakeBlobStorage,
    permissions: FakePermissionService,
) -> HierarchyService:
    return HierarchyService(
        session_manager, blob_storage=blob_storage, permissions=permissions
    )


@pytest.fixture
def integrity_service(
    session_manager: DatabaseSessionManager, blob_storage: FakeBlobStorage
) -> IntegrityService:
    return IntegrityService(session_manager, blob_storage)
