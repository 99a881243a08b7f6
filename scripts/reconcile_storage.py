#!/usr/bin/env python3
"""
Delete object-store files that no exam row refers to.
Usage:
  python scripts/reconcile_storage.py            # delete orphans
  python scripts/reconcile_storage.py --dry-run  # only list them
Run from the repository root so DATABASE_URL / STORAGE_ROOT from .env apply.
"""
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv()

from database.database import SessionLocal
from services.storage_reconciler import delete_orphaned_keys
from storage.object_store import get_object_store


def main():
    dry_run = "--dry-run" in sys.argv[1:]
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    store = get_object_store()
    db = SessionLocal()
    try:
        keys = delete_orphaned_keys(db, store, dry_run=dry_run)
    finally:
        db.close()

    verb = "Would delete" if dry_run else "Deleted"
    print(f"{verb} {len(keys)} orphaned object(s) under {store.root}")
    for key in keys:
        print(f"  {key}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
