import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from foldertree.server.db.models.node import FolderDO
from foldertree.server.services.paths import (
    PathMaterializer,
    compute_path,
    replace_prefix,
    sanitize_segment,
)
from foldertree.server.services.store import HierarchyStore
from tests.conftest import USER_ID
from tests.server.services.factories import make_file, make_folder


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Docs", "docs"),
        ("  My  Docs ", "my-docs"),
        ("Tabs\tand spaces", "tabs-and-spaces"),
        ('a:b*c?"d<e>f|g\\h', "abcdefgh"),
        ("a / b", "a--b"),
        ("A (2)", "a-(2)"),
    ],
)
def test_sanitize_segment(name: str, expected: str) -> None:
    assert sanitize_segment(name) == expected


def test_compute_path_root() -> None:
    data = compute_path("My Docs", None)
    assert data.path == "/my-docs"
    assert data.path_segments == []


def test_compute_path_under_parent() -> None:
    parent = FolderDO(
        id=7,
        name="Reports",
        path="/docs/reports",
        path_segments=[{"id": 3, "name": "Docs"}],
    )
    data = compute_path("Q1 Summary", parent)
    assert data.path == "/docs/reports/q1-summary"
    assert data.path_segments == [
        {"id": 3, "name": "Docs"},
        {"id": 7, "name": "Reports"},
    ]


def test_replace_prefix() -> None:
    assert replace_prefix("/a", "/a", "/z") == "/z"
    assert replace_prefix("/a/b/c", "/a", "/z") == "/z/b/c"
    assert replace_prefix("/ab/c", "/a", "/z") == "/ab/c"


async def test_cascade_rewrite_after_rename(db_session: AsyncSession) -> None:
    store = HierarchyStore(db_session)
    paths = PathMaterializer(store)
    a = await make_folder(db_session, USER_ID, "A")
    b = await make_folder(db_session, USER_ID, "B", parent=a)
    c = await make_folder(db_session, USER_ID, "C", parent=b, deleted=True)
    f = await make_file(db_session, USER_ID, "f", parent=b)

    old_path = a.path
    a.name = "Renamed"
    assert paths.apply(a, paths.compute_new_path(a, None))
    changed = await paths.cascade_rewrite(a, old_path)

    assert changed == 3
    assert a.path == "/renamed"
    assert b.path == "/renamed/b"
    assert c.path == "/renamed/b/c"
    assert f.path == "/renamed/b/f"
    assert b.path_segments == [{"id": a.id, "name": "Renamed"}]
    assert c.path_segments == [
        {"id": a.id, "name": "Renamed"},
        {"id": b.id, "name": "B"},
    ]

    # Re-running converges without writing anything.
    assert await paths.cascade_rewrite(a, old_path) == 0


async def test_cascade_rewrite_case_only_rename(db_session: AsyncSession) -> None:
    store = HierarchyStore(db_session)
    paths = PathMaterializer(store)
    docs = await make_folder(db_session, USER_ID, "Docs")
    child = await make_folder(db_session, USER_ID, "Child", parent=docs)

    docs.name = "DOCS"
    assert not paths.apply(docs, paths.compute_new_path(docs, None))
    changed = await paths.cascade_rewrite(docs, docs.path)

    assert docs.path == "/docs"
    assert child.path == "/docs/child"
    assert changed == 1
    assert child.path_segments == [{"id": docs.id, "name": "DOCS"}]


async def test_cascade_rewrite_repairs_stale_descendants(
    db_session: AsyncSession,
) -> None:
    store = HierarchyStore(db_session)
    paths = PathMaterializer(store)
    a = await make_folder(db_session, USER_ID, "A")
    b = await make_folder(db_session, USER_ID, "B", parent=a)
    c = await make_folder(db_session, USER_ID, "C", parent=b)
    b.path = "/stale/b"
    await db_session.flush()

    await paths.cascade_rewrite(a)

    assert b.path == "/a/b"
    assert c.path == "/a/b/c"


async def test_cascade_on_file_is_noop(db_session: AsyncSession) -> None:
    paths = PathMaterializer(HierarchyStore(db_session))
    f = await make_file(db_session, USER_ID, "f")

    assert await paths.plan_cascade(f) == []
    assert await paths.cascade_rewrite(f, f.path) == 0
