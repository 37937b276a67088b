# Kestrel Console - Command Line Entry Point
#
# Thin front end over ConsoleApp. Every invocation:
#   1. loads config (.env / environment, --api-url override)
#   2. restores a persisted session if one exists
#   3. runs one command, printing notices to stderr
#
# Exit status is 0 when the command succeeded, 1 otherwise.

import argparse
import asyncio
import getpass
import sys
from typing import List, Optional, Sequence

from . import __version__
from .admin.errors import ConsoleError
from .admin.models import (
    AccessLevel,
    INDICATOR_CATEGORIES,
    IndicatorDraft,
    IOCType,
    KeyRole,
    SessionStatus,
)
from .admin.notices import Notice
from .app import ConsoleApp
from .config import configure_logging, load_config, set_config

# Commands that work without a signed-in session
ANONYMOUS_COMMANDS = {"login", "logout", "whoami"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kestrel-console",
        description="Kestrel CTI administration console",
    )
    parser.add_argument("--api-url", help="Backend URL (overrides KESTREL_API_URL)")
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Do not ask for confirmation before deleting",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Kestrel Console v{__version__}",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    login = commands.add_parser("login", help="Sign in and remember the session")
    login.add_argument("--username", "-u")
    login.add_argument("--password", "-p", help="Prompted for when omitted")

    commands.add_parser("logout", help="Forget the stored session")
    commands.add_parser("whoami", help="Show the signed-in operator")
    commands.add_parser("stats", help="Totals of IOCs, feeds and API keys")

    # iocs
    iocs = commands.add_parser("iocs", help="Indicators of compromise")
    iocs_cmd = iocs.add_subparsers(dest="action", required=True)

    iocs_list = iocs_cmd.add_parser("list")
    iocs_list.add_argument("--feed")

    iocs_add = iocs_cmd.add_parser("add")
    iocs_add.add_argument("--type", choices=[t.value for t in IOCType], default=IOCType.DOMAIN.value)
    iocs_add.add_argument("--value", required=True)
    iocs_add.add_argument("--feed", required=True)
    iocs_add.add_argument("--category", default=INDICATOR_CATEGORIES[0])
    iocs_add.add_argument("--comment", default="")
    iocs_add.add_argument(
        "--access-level",
        choices=[AccessLevel.FREE.value, AccessLevel.PAID.value],
        default=AccessLevel.PAID.value,
    )

    iocs_update = iocs_cmd.add_parser("update")
    iocs_update.add_argument("value")
    iocs_update.add_argument("--feed")
    iocs_update.add_argument("--new-value")
    iocs_update.add_argument("--category")
    iocs_update.add_argument("--comment")
    iocs_update.add_argument("--access-level", choices=[a.value for a in AccessLevel])

    iocs_delete = iocs_cmd.add_parser("delete")
    iocs_delete.add_argument("value")
    iocs_delete.add_argument("--feed")

    # feeds
    feeds = commands.add_parser("feeds", help="Feeds and their access tiers")
    feeds_cmd = feeds.add_subparsers(dest="action", required=True)
    feeds_cmd.add_parser("list")
    set_access = feeds_cmd.add_parser("set-access")
    set_access.add_argument("name")
    set_access.add_argument("level", choices=[a.value for a in AccessLevel])

    # keys
    keys = commands.add_parser("keys", help="API keys")
    keys_cmd = keys.add_subparsers(dest="action", required=True)
    keys_cmd.add_parser("list")
    keys_create = keys_cmd.add_parser("create")
    keys_create.add_argument("name")
    keys_create.add_argument("--role", choices=[r.value for r in KeyRole], default=KeyRole.READER.value)
    keys_delete = keys_cmd.add_parser("delete")
    keys_delete.add_argument("id")

    return parser


def _print_notice(notice: Notice) -> None:
    print(f"[{notice.title}] {notice.description}", file=sys.stderr)


def _make_confirm(assume_yes: bool):
    def confirm(prompt: str) -> bool:
        if assume_yes:
            return True
        try:
            answer = input(f"{prompt} [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")
    return confirm


def _table(rows: Sequence[Sequence[str]], headers: Sequence[str]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]
    lines = ["  ".join(h.ljust(w) for h, w in zip(headers, widths))]
    lines.append("  ".join("-" * w for w in widths))
    for row in rows:
        lines.append("  ".join(cell.ljust(w) for cell, w in zip(row, widths)))
    return "\n".join(lines)


async def _run(args: argparse.Namespace, app: ConsoleApp) -> int:
    await app.start()

    if args.command == "login":
        username = args.username or input("Username: ")
        password = args.password or getpass.getpass("Password: ")
        try:
            session = await app.session.login(username, password)
        except ConsoleError as exc:
            print(f"Login failed: {exc.message}", file=sys.stderr)
            return 1
        role = "admin" if session.user.is_admin else "operator"
        print(f"Signed in as {session.user.username} ({role})")
        return 0

    if args.command == "logout":
        app.session.logout()
        print("Signed out")
        return 0

    if args.command == "whoami":
        user = app.session.user
        if user is None:
            print("Not signed in")
            return 1
        print(f"{user.username} ({'admin' if user.is_admin else 'operator'})")
        return 0

    if app.session.status != SessionStatus.AUTHENTICATED:
        print("Not signed in. Run 'kestrel-console login' first.", file=sys.stderr)
        return 1

    resources = app.resources
    errors_before = _error_count(app)

    if args.command == "stats":
        stats = await resources.dashboard_stats()
        print(f"Total IOCs:   {stats.total_iocs}")
        print(f"Active feeds: {stats.total_feeds}")
        print(f"API keys:     {stats.total_keys}")

    elif args.command == "iocs":
        ok = await _run_iocs(args, resources)
        if not ok:
            return 1

    elif args.command == "feeds":
        if args.action == "list":
            feeds = await resources.list_feeds()
            print(_table(
                [(f.name, str(f.indicator_count), f.access_level.value, f.endpoint) for f in feeds],
                ("FEED", "IOCS", "ACCESS", "ENDPOINT"),
            ))
        else:
            confirmed = await resources.set_feed_access_level(args.name, args.level)
            if confirmed is None:
                return 1 if _error_count(app) > errors_before else 0
            print(f"{confirmed.name}: {confirmed.access_level.value}")

    elif args.command == "keys":
        if args.action == "list":
            keys = await resources.list_api_keys()
            print(_table(
                [
                    (
                        k.name,
                        k.masked_secret,
                        k.role.value,
                        k.created_at.date().isoformat() if k.created_at else "-",
                        k.id,
                    )
                    for k in keys
                ],
                ("NAME", "KEY", "ROLE", "CREATED", "ID"),
            ))
        elif args.action == "create":
            created = await resources.create_api_key(args.name, args.role)
            if created is not None:
                print("Store this key now, it will not be shown again:")
                print(created.secret)
        else:
            await resources.delete_api_key(args.id)

    return 1 if _error_count(app) > errors_before else 0


async def _run_iocs(args: argparse.Namespace, resources) -> bool:
    if args.action == "list":
        iocs = await resources.list_indicators(feed=args.feed)
        print(_table(
            [
                (i.value, i.type.value, i.feed or "-", i.stix_id or "-", i.misp_event_id or "-")
                for i in iocs
            ],
            ("VALUE", "TYPE", "FEED", "STIX ID", "MISP EVENT"),
        ))
        print(f"Total: {len(iocs)} indicators")
        return True

    if args.action == "add":
        draft = IndicatorDraft(
            type=IOCType(args.type),
            value=args.value,
            feed=args.feed,
            category=args.category,
            comment=args.comment,
            access_level=AccessLevel(args.access_level),
        )
        return await resources.create_indicator(draft)

    # update / delete act on a listed indicator so the feed qualifier is
    # the backend's, not a guess
    matches = [
        i for i in await resources.list_indicators(feed=args.feed)
        if i.value == args.value
    ]
    if not matches:
        print(f"IOC {args.value} not found", file=sys.stderr)
        return False
    if len(matches) > 1:
        feeds = ", ".join(sorted(i.feed or "-" for i in matches))
        print(f"IOC {args.value} is in several feeds ({feeds}); pass --feed", file=sys.stderr)
        return False

    if args.action == "delete":
        return await resources.delete_indicator(matches[0])
    return await resources.update_indicator(
        matches[0],
        new_value=args.new_value,
        category=args.category,
        comment=args.comment,
        access_level=args.access_level,
    )


def _error_count(app: ConsoleApp) -> int:
    return sum(1 for n in app.notices.history if n.is_error)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the Kestrel console."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config()
    if args.api_url:
        config.api_url = args.api_url.rstrip("/")
    set_config(config)
    configure_logging(config)

    async def runner() -> int:
        async with ConsoleApp(config, confirm=_make_confirm(args.yes)) as app:
            app.notices.subscribe(_print_notice)
            return await _run(args, app)

    try:
        return asyncio.run(runner())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
