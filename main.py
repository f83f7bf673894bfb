#!/usr/bin/env python3
"""
rtest -- session authentication and user directory for the rtest school
testing platform.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py create-user alice --password s3cret --first-name Alice --last-name Smith --grade 11A
  python main.py create-user bob --password s3cret --teacher
  python main.py delete-user alice
  python main.py list-users
  python main.py list-users --students --grade 11

Environment variables (or .env):
  DATABASE_URL   SQLAlchemy URL of the user database (default: SQLite next to auth/)
  LOG_LEVEL      Logging level name (default: INFO)
  HOST, PORT     Bind address for `serve` (default: 127.0.0.1:8080)
  BCRYPT_ROUNDS  Cost factor for new password hashes (default: 12)
"""

import argparse
import sys

from sqlalchemy.exc import IntegrityError

from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings
from core.errors import ValidationError
from handlers.directory import build_filter, normalize_grade


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "asgi:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.effective_log_level.lower(),
    )
    return 0


def _cmd_create_user(store: UserStore, args: argparse.Namespace) -> int:
    if args.teacher and args.grade:
        print("  [!] Teachers have no grade; drop --grade or --teacher.")
        return 2
    grade = None
    if args.grade is not None:
        try:
            grade = normalize_grade(args.grade)
        except ValidationError:
            print(f"  [!] Malformed grade '{args.grade}'; expected a class such as 11A or 9.")
            return 2
    try:
        user_id = store.create_user(
            args.username,
            hash_password(args.password),
            first_name=args.first_name,
            last_name=args.last_name,
            student=not args.teacher,
            grade=grade,
        )
    except IntegrityError:
        print(f"  [!] A user named '{args.username}' already exists.")
        return 1
    print(f"  Created {'teacher' if args.teacher else 'student'} {args.username} ({user_id})")
    return 0


def _cmd_delete_user(store: UserStore, args: argparse.Namespace) -> int:
    user = store.get_by_username(args.username)
    if user is None or not store.delete_user(user.id):
        print(f"  [!] No user named '{args.username}'.")
        return 1
    print(f"  Deleted {args.username} ({user.id})")
    return 0


def _cmd_list_users(store: UserStore, args: argparse.Namespace) -> int:
    try:
        criteria = build_filter(
            "true" if args.students else None,
            "true" if args.teachers else None,
            args.grade,
        )
    except ValidationError as exc:
        print(f"  [!] {exc.reason}")
        return 2

    users = store.list_users(criteria)
    if not users:
        print("  No matching users.")
        return 0
    for user in users:
        role = f"student {user.grade or '-'}" if user.student else "teacher"
        name = " ".join(part for part in (user.first_name, user.last_name) if part)
        print(f"  {user.username:<24} {role:<14} {name}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="rtest",
        description="Session authentication and user directory server for rtest.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (default: HOST setting)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: PORT setting)")

    create = sub.add_parser("create-user", help="Create a student or teacher account")
    create.add_argument("username")
    create.add_argument("--password", required=True)
    create.add_argument("--first-name", default=None)
    create.add_argument("--last-name", default=None)
    create.add_argument("--teacher", action="store_true", help="Create a teacher instead of a student")
    create.add_argument("--grade", default=None, metavar="CLASS", help="Class designator for students, e.g. 11A")

    delete = sub.add_parser("delete-user", help="Delete an account (its sessions self-heal on next use)")
    delete.add_argument("username")

    listing = sub.add_parser("list-users", help="List accounts")
    role = listing.add_mutually_exclusive_group()
    role.add_argument("--students", action="store_true")
    role.add_argument("--teachers", action="store_true")
    listing.add_argument("--grade", default=None, metavar="CLASS", help="Class (11A) or grade number (11)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "serve":
        return _cmd_serve(args)

    store = UserStore(get_settings().database_url)
    try:
        if args.command == "create-user":
            return _cmd_create_user(store, args)
        if args.command == "delete-user":
            return _cmd_delete_user(store, args)
        return _cmd_list_users(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
