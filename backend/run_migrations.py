#!/usr/bin/env python3
"""
Run Welldash migrations against the database from WELLDASH_DSN (.env or env),
or against the DSN given as the first argument.

Requires a database user with CREATE privileges. The API itself only reads.

Usage: from backend dir: python run_migrations.py [dsn]
"""
import os
import sys
from pathlib import Path

# Load .env from backend directory
_backend_dir = Path(__file__).resolve().parent
_env = _backend_dir / ".env"
if _env.exists():
    from dotenv import load_dotenv
    load_dotenv(_env)

MIGRATIONS_DIR = _backend_dir.parent / "migrations"

import psycopg


def apply_migrations(dsn: str, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """Execute every migrations/*.sql file in name order; returns the names applied."""
    sql_files = sorted(migrations_dir.glob("*.sql"))
    applied = []
    with psycopg.connect(dsn) as conn:
        with conn.cursor() as cur:
            for f in sql_files:
                cur.execute(f.read_text())
                conn.commit()
                applied.append(f.name)
    return applied


def main():
    dsn = sys.argv[1] if len(sys.argv) > 1 else os.environ.get("WELLDASH_DSN")
    if not dsn:
        print("WELLDASH_DSN not set. Set it in backend/.env or the environment.", file=sys.stderr)
        sys.exit(1)
    if not MIGRATIONS_DIR.is_dir():
        print(f"Migrations dir not found: {MIGRATIONS_DIR}", file=sys.stderr)
        sys.exit(1)
    if not any(MIGRATIONS_DIR.glob("*.sql")):
        print("No .sql files in migrations/", file=sys.stderr)
        sys.exit(1)
    print("Connecting and running migrations...")
    try:
        for name in apply_migrations(dsn):
            print(f"  OK {name}")
        print("Done.")
    except psycopg.errors.InsufficientPrivilege:
        print("", file=sys.stderr)
        print("Permission denied: this database user cannot CREATE tables.", file=sys.stderr)
        print("Ask your DBA to run the SQL in migrations/ once, or use a DB where you have CREATE rights.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
