#!/usr/bin/env python3
"""
Member directory management for the OB/OG auth core.

The admin-only API cannot create the first admin, so the directory is seeded
from here. Uses the same DATABASE_URL as the server unless --db is given.

Usage:
  python main.py add-member alice@example.com --name "Alice" --role admin
  python main.py add-member bob@example.com --name "Bob" --role alumnus
  python main.py import-members --file members.csv
  python main.py list-members
  python main.py set-status bob@example.com suspended
"""

import argparse
import csv
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Member, MemberStatus, Role
from auth.store import AuthStore


def _load_members(path: str) -> list[Member]:
    """Read members from a CSV file with columns email,role,display_name.

    Blank lines and lines starting with # are ignored. Resolves the path and
    verifies it is a regular file before reading.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return []

    members: list[Member] = []
    with file_path.open(newline="", encoding="utf-8") as fh:
        rows = (line for line in fh if line.strip() and not line.lstrip().startswith("#"))
        for lineno, row in enumerate(csv.reader(rows), start=1):
            if len(row) != 3:
                print(f"  [!] Row {lineno}: expected email,role,display_name -- skipped.")
                continue
            email, role, name = (c.strip() for c in row)
            try:
                members.append(Member(email=email.lower(), role=Role(role), display_name=name))
            except ValueError:
                print(f"  [!] Row {lineno}: unknown role '{role}' -- skipped.")
    return members


def _add(store: AuthStore, member: Member) -> bool:
    try:
        store.create_member(member)
    except IntegrityError:
        print(f"  [!] {member.email} is already a member.")
        return False
    print(f"  Added {member.email} ({member.role.value}).")
    return True


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="obog-auth",
        description="Manage the member directory used by the OTP login flow.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command")

    add = sub.add_parser("add-member", help="Add a single member")
    add.add_argument("email")
    add.add_argument("--name", required=True, help="Display name shown in the UI")
    add.add_argument("--role", choices=[r.value for r in Role], default=Role.current.value)

    imp = sub.add_parser("import-members", help="Bulk-add members from a CSV file")
    imp.add_argument("--file", required=True, metavar="PATH", help="CSV with email,role,display_name rows")

    sub.add_parser("list-members", help="Print the member directory")

    status = sub.add_parser("set-status", help="Activate, deactivate, or suspend a member")
    status.add_argument("email")
    status.add_argument("status", choices=[s.value for s in MemberStatus])

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    if args.db is None:
        # Imported lazily: Settings validates server secrets, which --db users may not have set.
        from core.config import get_settings

        args.db = get_settings().database_url

    store = AuthStore(args.db)
    try:
        if args.command == "add-member":
            _add(store, Member(email=args.email.strip().lower(), role=Role(args.role), display_name=args.name))

        elif args.command == "import-members":
            members = _load_members(args.file)
            added = sum(1 for m in members if _add(store, m))
            print(f"\n  {added} of {len(members)} member(s) added.")

        elif args.command == "list-members":
            members = store.list_members()
            if not members:
                print("  No members yet. Add one with: python main.py add-member EMAIL --name NAME --role admin")
            for m in members:
                print(f"  {m.email:<40} {m.role.value:<8} {m.status.value:<10} {m.display_name}")

        elif args.command == "set-status":
            if store.set_member_status(args.email, MemberStatus(args.status)):
                print(f"  {args.email} is now {args.status}.")
            else:
                print(f"  [!] No member with email {args.email}.")
    finally:
        store.close()


if __name__ == "__main__":
    main()
