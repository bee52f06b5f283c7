"""Folder tree CLI commands."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, is_dataclass
from typing import Any, AsyncIterator

from foldertree.models.node import DuplicateAction
from foldertree.server.config import ServerConfig
from foldertree.server.db.session import DatabaseSessionManager
from foldertree.server.services.blob import LocalBlobStorage
from foldertree.server.services.exceptions import HierarchyException
from foldertree.server.services.hierarchy import HierarchyService
from foldertree.server.services.integrity import IntegrityService

_LOGGER = logging.getLogger(__name__)


def setup_logging(config: ServerConfig, verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else config.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    if config.echo_sql:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)


@asynccontextmanager
async def open_services(
    config: ServerConfig,
) -> AsyncIterator[tuple[HierarchyService, IntegrityService]]:
    """Create the services against the configured database."""
    session_manager = DatabaseSessionManager(config.database_url)
    await session_manager.create_all()
    blob_storage = LocalBlobStorage(config.storage_path)
    try:
        yield (
            HierarchyService(
                session_manager,
                blob_storage=blob_storage,
                conflict_retries=config.conflict_retries,
            ),
            IntegrityService(session_manager, blob_storage),
        )
    finally:
        await session_manager.close()


def _print_json(value: Any) -> None:
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    elif is_dataclass(value):
        value = asdict(value)
    elif isinstance(value, list):
        value = [item.to_dict() if hasattr(item, "to_dict") else item for item in value]
    print(json.dumps(value, indent=2, default=str))


def _duplicate_action(args) -> DuplicateAction | None:
    if getattr(args, "on_conflict", None):
        return DuplicateAction.from_value(args.on_conflict)
    return None


def _run(
    args,
    command: Callable[[HierarchyService, IntegrityService], Awaitable[Any]],
) -> None:
    config = ServerConfig.load(args.config_dir)
    setup_logging(config, args.verbose)

    async def _main() -> Any:
        async with open_services(config) as (hierarchy, integrity):
            return await command(hierarchy, integrity)

    try:
        result = asyncio.run(_main())
    except HierarchyException as err:
        _LOGGER.debug("Command failed", exc_info=True)
        print(err.to_response().to_json(), file=sys.stderr)
        sys.exit(1)
    _print_json(result)


def subcommand_ls(args) -> None:
    """Handler for ls subcommand."""
    _run(
        args,
        lambda h, _: h.list_children(args.user, args.folder, args.include_deleted),
    )


def subcommand_mkdir(args) -> None:
    """Handler for mkdir subcommand."""
    _run(
        args,
        lambda h, _: h.create_folder(
            args.user, args.name, args.parent, _duplicate_action(args)
        ),
    )


def subcommand_touch(args) -> None:
    """Handler for touch subcommand."""
    _run(
        args,
        lambda h, _: h.create_file(
            args.user,
            args.name,
            args.parent,
            size=args.size,
            duplicate_action=_duplicate_action(args),
        ),
    )


def subcommand_mv(args) -> None:
    """Handler for mv subcommand."""
    _run(
        args,
        lambda h, _: h.move(
            args.user, args.node, args.destination, _duplicate_action(args)
        ),
    )


def subcommand_rename(args) -> None:
    """Handler for rename subcommand."""
    _run(
        args,
        lambda h, _: h.rename(args.user, args.node, args.name, _duplicate_action(args)),
    )


def subcommand_rm(args) -> None:
    """Handler for rm subcommand."""
    _run(args, lambda h, _: h.delete(args.user, args.node))


def subcommand_restore(args) -> None:
    """Handler for restore subcommand."""
    _run(args, lambda h, _: h.restore(args.user, args.node))


def subcommand_purge(args) -> None:
    """Handler for purge subcommand."""
    _run(args, lambda h, _: h.permanent_delete(args.user, args.node))


def subcommand_trash(args) -> None:
    """Handler for trash subcommand."""
    _run(args, lambda h, _: h.list_trash(args.user))


def subcommand_empty_trash(args) -> None:
    """Handler for empty-trash subcommand."""
    _run(args, lambda h, _: h.empty_trash(args.user))


def subcommand_pin(args) -> None:
    """Handler for pin subcommand."""
    _run(args, lambda h, _: h.set_pinned(args.user, args.node, not args.off))


def subcommand_pins(args) -> None:
    """Handler for pins subcommand."""
    _run(args, lambda h, _: h.list_pinned(args.user))


def subcommand_verify(args) -> None:
    """Handler for verify subcommand."""
    _run(args, lambda _, i: i.verify_user_tree(args.user))


def subcommand_repair(args) -> None:
    """Handler for repair subcommand."""
    _run(args, lambda _, i: i.repair_user_tree(args.user))


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--user", type=int, default=1, help="Owner user id (default: 1)"
    )
    parser.add_argument(
        "--config-dir", type=str, default=None, help="Directory holding config.yaml"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )


def _add_conflict(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--on-conflict",
        choices=[action.value for action in DuplicateAction],
        default=None,
        help="How to handle a sibling with the same name",
    )


def add_parser(subparsers):
    # 'ls' subcommand
    parser_ls = subparsers.add_parser("ls", help="list the children of a folder")
    parser_ls.add_argument(
        "folder", type=int, nargs="?", default=None, help="folder id (default: root)"
    )
    parser_ls.add_argument(
        "--include-deleted", action="store_true", help="also show trashed children"
    )
    _add_common(parser_ls)
    parser_ls.set_defaults(func=subcommand_ls)

    # 'mkdir' subcommand
    parser_mkdir = subparsers.add_parser("mkdir", help="create a folder")
    parser_mkdir.add_argument("name", type=str, help="folder name")
    parser_mkdir.add_argument("--parent", type=int, default=None, help="parent folder id")
    _add_conflict(parser_mkdir)
    _add_common(parser_mkdir)
    parser_mkdir.set_defaults(func=subcommand_mkdir)

    # 'touch' subcommand
    parser_touch = subparsers.add_parser("touch", help="create a file record")
    parser_touch.add_argument("name", type=str, help="file name with extension")
    parser_touch.add_argument("--parent", type=int, default=None, help="parent folder id")
    parser_touch.add_argument("--size", type=int, default=0, help="size in bytes")
    _add_conflict(parser_touch)
    _add_common(parser_touch)
    parser_touch.set_defaults(func=subcommand_touch)

    # 'mv' subcommand
    parser_mv = subparsers.add_parser("mv", help="move a node to another folder")
    parser_mv.add_argument("node", type=int, help="node id")
    parser_mv.add_argument(
        "destination", type=int, nargs="?", default=None, help="folder id (default: root)"
    )
    _add_conflict(parser_mv)
    _add_common(parser_mv)
    parser_mv.set_defaults(func=subcommand_mv)

    # 'rename' subcommand
    parser_rename = subparsers.add_parser("rename", help="rename a node")
    parser_rename.add_argument("node", type=int, help="node id")
    parser_rename.add_argument("name", type=str, help="new name")
    _add_conflict(parser_rename)
    _add_common(parser_rename)
    parser_rename.set_defaults(func=subcommand_rename)

    # Trash subcommands
    for name, help_text, func in (
        ("rm", "move a node to the trash", subcommand_rm),
        ("restore", "restore a trashed node", subcommand_restore),
        ("purge", "permanently delete a node and its subtree", subcommand_purge),
    ):
        parser_node = subparsers.add_parser(name, help=help_text)
        parser_node.add_argument("node", type=int, help="node id")
        _add_common(parser_node)
        parser_node.set_defaults(func=func)

    parser_pin = subparsers.add_parser("pin", help="pin or unpin a node")
    parser_pin.add_argument("node", type=int, help="node id")
    parser_pin.add_argument("--off", action="store_true", help="unpin instead")
    _add_common(parser_pin)
    parser_pin.set_defaults(func=subcommand_pin)

    for name, help_text, func in (
        ("trash", "list the trash", subcommand_trash),
        ("empty-trash", "permanently delete everything in the trash", subcommand_empty_trash),
        ("pins", "list pinned nodes", subcommand_pins),
        ("verify", "check paths and counts", subcommand_verify),
        ("repair", "re-derive paths and counts", subcommand_repair),
    ):
        parser_user = subparsers.add_parser(name, help=help_text)
        _add_common(parser_user)
        parser_user.set_defaults(func=func)
