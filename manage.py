"""Storefront management CLI.

Usage:
    python manage.py setup-db                                   # Create indexes
    python manage.py create-admin --name Ada --email a@b.c --password secret
"""

import argparse
import sys

from pymongo.database import Database


def setup_database(db: Database) -> None:
    from stores import UserStore

    UserStore(db).ensure_indexes()
    db["session"].create_index("token", unique=True)
    db["cart"].create_index("user_id", unique=True)
    db["order"].create_index([("user_id", 1), ("created_at", -1)])


def create_admin(db: Database, name: str, email: str, password: str) -> dict:
    """Create an admin account, or promote the existing account with that email."""
    from auth import hash_password
    from schemas import User
    from stores import UserStore

    users = UserStore(db)
    existing = users.get_by_email(email)
    if existing:
        return users.update(existing["id"], {"role": "admin", "is_active": True})
    pwd_hash, salt = hash_password(password)
    return users.create(User(name=name, email=email, password_hash=pwd_hash, salt=salt, role="admin"))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Storefront management commands")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("setup-db", help="Create collection indexes")
    admin = sub.add_parser("create-admin", help="Create or promote an admin user")
    admin.add_argument("--name", required=True)
    admin.add_argument("--email", required=True)
    admin.add_argument("--password", required=True)
    args = parser.parse_args(argv)

    from database import db

    if db is None:
        print("DATABASE_URL and DATABASE_NAME must be set.", file=sys.stderr)
        return 1

    if args.command == "setup-db":
        setup_database(db)
        print("Indexes ready.")
    elif args.command == "create-admin":
        user = create_admin(db, args.name, args.email, args.password)
        print(f"Admin ready: {user['email']} ({user['id']})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
