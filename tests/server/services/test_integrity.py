from foldertree.server.constants import ROOT_ID
from foldertree.server.db.models.node import FileDO, FolderDO
from foldertree.server.db.session import DatabaseSessionManager
from foldertree.server.services.hierarchy import HierarchyService
from foldertree.server.services.integrity import IntegrityService
from tests.conftest import USER_ID
from tests.server.services.fakes import FakeBlobStorage


async def test_clean_tree_verifies(
    hierarchy_service: HierarchyService, integrity_service: IntegrityService
) -> None:
    a = await hierarchy_service.create_folder(USER_ID, "A")
    await hierarchy_service.create_file(USER_ID, "f.txt", a.id)

    report = await integrity_service.verify_user_tree(USER_ID)

    assert report.ok
    assert report.scanned == 2
    assert report.problems == []


async def test_detects_and_repairs_drift(
    hierarchy_service: HierarchyService,
    integrity_service: IntegrityService,
    session_manager: DatabaseSessionManager,
) -> None:
    a = await hierarchy_service.create_folder(USER_ID, "A")
    b = await hierarchy_service.create_folder(USER_ID, "B", a.id)
    f = await hierarchy_service.create_file(USER_ID, "f.txt", b.id)
    async with session_manager.session() as session:
        folder_b = await session.get(FolderDO, b.id)
        folder_b.path = "/stale/b"
        folder_a = await session.get(FolderDO, a.id)
        folder_a.items = 7
        await session.commit()

    report = await integrity_service.verify_user_tree(USER_ID)
    assert not report.ok
    assert report.bad_path == 1
    assert report.bad_count == 1
    assert report.repaired == 0

    repaired = await integrity_service.repair_user_tree(USER_ID)
    assert repaired.repaired == 2

    assert (await integrity_service.verify_user_tree(USER_ID)).ok
    assert (await hierarchy_service.get_node(USER_ID, a.id)).items == 1
    assert (await hierarchy_service.get_node(USER_ID, b.id)).path == "/a/b"
    assert (await hierarchy_service.get_node(USER_ID, f.id)).path == "/a/b/f"


async def test_repair_reattaches_orphans(
    hierarchy_service: HierarchyService,
    integrity_service: IntegrityService,
    session_manager: DatabaseSessionManager,
) -> None:
    parent = await hierarchy_service.create_folder(USER_ID, "Parent")
    orphan = await hierarchy_service.create_folder(USER_ID, "Docs", parent.id)
    await hierarchy_service.create_folder(USER_ID, "Docs")
    async with session_manager.session() as session:
        await session.delete(await session.get(FolderDO, parent.id))
        await session.commit()

    report = await integrity_service.verify_user_tree(USER_ID)
    assert report.orphaned == 1

    await integrity_service.repair_user_tree(USER_ID)

    node = await hierarchy_service.get_node(USER_ID, orphan.id)
    assert node.parent_id is None
    assert node.name == "Docs (2)"
    assert node.path == "/docs-(2)"
    assert (await integrity_service.verify_user_tree(USER_ID)).ok


async def test_reports_missing_blobs(
    hierarchy_service: HierarchyService,
    integrity_service: IntegrityService,
    blob_storage: FakeBlobStorage,
    session_manager: DatabaseSessionManager,
) -> None:
    key = await blob_storage.write_blob(b"present")
    await hierarchy_service.create_file(USER_ID, "present.txt", storage_key=key)
    missing = await hierarchy_service.create_file(
        USER_ID, "missing.txt", storage_key="not-there"
    )

    report = await integrity_service.verify_user_tree(USER_ID)

    assert report.missing_blob == 1
    assert any(str(missing.id) in problem for problem in report.problems)
    async with session_manager.session() as session:
        row = await session.get(FileDO, missing.id)
        assert row.parent_id == ROOT_ID
