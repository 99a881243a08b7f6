from database import crud
from database.models import ExamStatus, Image
from services.storage_reconciler import delete_orphaned_keys, find_orphaned_keys


def _setup(db, store, pending_exam):
    done = crud.create_exam(db, filename="done.pdf", pdf_key="pdfs/done.pdf", file_hash="c" * 64)
    crud.update_exam_status(db, done.id, ExamStatus.COMPLETED)
    db.add(Image(exam_id=done.id, source_image_id="img-0.jpeg", storage_key=f"images/{done.id}/img-0.jpg"))
    db.commit()

    for key in (
        "pdfs/done.pdf",
        f"images/{done.id}/img-0.jpg",
        f"images/{done.id}/img-1.jpg",        # rolled-back upload
        "pdfs/abandoned.pdf",                 # exam row never created
        f"images/{pending_exam.id}/img-0.jpg",  # run still in progress
    ):
        store.upload_bytes(key, b"x")
    return done


def test_find_orphans_skips_referenced_and_in_flight(db, store, pending_exam):
    done = _setup(db, store, pending_exam)
    assert sorted(find_orphaned_keys(db, store)) == sorted([
        f"images/{done.id}/img-1.jpg",
        "pdfs/abandoned.pdf",
    ])


def test_dry_run_deletes_nothing(db, store, pending_exam):
    _setup(db, store, pending_exam)
    before = store.list_keys()
    assert len(delete_orphaned_keys(db, store, dry_run=True)) == 2
    assert store.list_keys() == before


def test_delete_orphans(db, store, pending_exam):
    done = _setup(db, store, pending_exam)
    deleted = delete_orphaned_keys(db, store)

    assert len(deleted) == 2
    assert store.exists(f"images/{done.id}/img-0.jpg")
    assert store.exists(f"images/{pending_exam.id}/img-0.jpg")
    assert store.exists(pending_exam.pdf_key)
    assert not store.exists("pdfs/abandoned.pdf")
