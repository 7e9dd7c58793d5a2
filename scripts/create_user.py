import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userservice.config import load_settings
from userservice.database import Database, resolve_database_url


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Insert a user into the directory")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--db",
        dest="database_url",
        default=None,
        help="Database connection string (defaults to DATABASE_URL or data/users.sqlite3)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    url = args.database_url or load_settings().database_url
    database = Database(resolve_database_url(url))
    try:
        database.migrate()
        user = database.create_user(args.name.strip(), args.email.strip())
    except ValueError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        database.dispose()

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
