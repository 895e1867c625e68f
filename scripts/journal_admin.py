"""Manage digest users and journal entries in the local database.

Usage:
    python scripts/journal_admin.py add-user kiran kiran@example.com --opt-in
    python scripts/journal_admin.py add-entry kiran "Had a good day at work"
    python scripts/journal_admin.py opt-in kiran
    python scripts/journal_admin.py opt-out kiran
    python scripts/journal_admin.py list
    python scripts/journal_admin.py delete-user kiran
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import settings
from journal_digest import database

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger("journal_admin")


def _require_user(username: str, db_path: Path) -> dict:
    user = database.get_user_by_username(username, db_path=db_path)
    if not user:
        logger.error("User not found: %s", username)
        sys.exit(1)
    return user


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--db", default=settings.db_path, help="SQLite database path")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add-user")
    p.add_argument("username")
    p.add_argument("email")
    p.add_argument("--opt-in", action="store_true", help="enable the weekly sentiment digest")

    p = sub.add_parser("add-entry")
    p.add_argument("username")
    p.add_argument("content")
    p.add_argument("--title", default="")

    for name in ("opt-in", "opt-out", "delete-user"):
        sub.add_parser(name).add_argument("username")

    sub.add_parser("list")

    args = parser.parse_args(argv)
    db_path = Path(args.db)

    if args.command == "add-user":
        try:
            user_id = database.create_user(args.username, args.email, args.opt_in, db_path=db_path)
        except ValueError as e:
            logger.error("%s", e)
            sys.exit(1)
        print(f"Created user {args.username} (id {user_id})")
    elif args.command == "add-entry":
        user = _require_user(args.username, db_path)
        entry_id = database.add_entry(user["id"], args.content, title=args.title, db_path=db_path)
        print(f"Added entry {entry_id} for {args.username}")
    elif args.command in ("opt-in", "opt-out"):
        user = _require_user(args.username, db_path)
        database.set_sentiment_analysis(user["id"], args.command == "opt-in", db_path=db_path)
        print(f"{args.username}: sentiment digest {'enabled' if args.command == 'opt-in' else 'disabled'}")
    elif args.command == "delete-user":
        if not database.delete_user(args.username, db_path=db_path):
            logger.error("User not found: %s", args.username)
            sys.exit(1)
        print(f"Deleted {args.username}")
    elif args.command == "list":
        for user in database.list_users(db_path=db_path):
            entries = database.list_entries(user["id"], db_path=db_path)
            flag = "opted-in" if user["sentiment_analysis"] else "opted-out"
            print(f"{user['id']:>4}  {user['username']:<20} {user['email']:<30} {flag:<10} {len(entries)} entries")


if __name__ == "__main__":
    main()
