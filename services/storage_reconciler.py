"""
Storage reconciliation

Image uploads happen before the persistence transaction, so a failed
transaction (or a crash) can leave objects no row refers to. This job lists
objects under the managed prefixes and deletes the ones the database does not
reference.

Objects belonging to exams that are still pending/processing are kept: their
rows are not written yet.
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from database import crud
from database.models import Exam, ExamStatus
from storage.keys import IMAGE_PREFIX, PDF_PREFIX

log = logging.getLogger(__name__)

MANAGED_PREFIXES = (f"{IMAGE_PREFIX}/", f"{PDF_PREFIX}/")


def _in_flight_image_prefixes(db: Session) -> List[str]:
    active = (
        db.query(Exam.id)
        .filter(Exam.status.in_([ExamStatus.PENDING, ExamStatus.PROCESSING]))
        .all()
    )
    return [f"{IMAGE_PREFIX}/{exam_id}/" for (exam_id,) in active]


def find_orphaned_keys(db: Session, store) -> List[str]:
    referenced = crud.all_referenced_keys(db)
    protected = _in_flight_image_prefixes(db)

    orphans = []
    for prefix in MANAGED_PREFIXES:
        for key in store.list_keys(prefix):
            if key in referenced:
                continue
            if any(key.startswith(p) for p in protected):
                continue
            orphans.append(key)
    return orphans


def delete_orphaned_keys(db: Session, store, dry_run: bool = False) -> List[str]:
    """Delete (or just report, with dry_run) unreferenced objects. Returns the keys."""
    orphans = find_orphaned_keys(db, store)
    if dry_run:
        log.info("reconcile (dry run): %s orphaned object(s)", len(orphans))
        return orphans

    deleted = []
    for key in orphans:
        if store.delete(key):
            deleted.append(key)
    log.info("reconcile: deleted %s of %s orphaned object(s)", len(deleted), len(orphans))
    return deleted
