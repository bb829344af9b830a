# Overview: Per-tenant document numbering (invoice numbers).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(org_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(org_id=org_id, document_type=document_type)
        .scalar()
    )


def next_document_number(
    *,
    org_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for an org/type.

    Runs inside the caller's transaction (no commit, no retry of its own), so a
    rolled-back invoice also gives its number back. The increment is a single
    UPDATE, so two writers can never read the same value.
    """
    if not org_id:
        raise DocumentSequenceError("org_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(org_id, document_type) - 1
    else:
        seq = DocumentSequence(org_id=org_id, document_type=document_type, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(org_id, document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"


def reserve_through(*, org_id: int, document_type: str, number: int) -> None:
    """
    Move the sequence so the next allocation is above ``number``.

    Never moves a sequence backwards. Does not commit.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.next_number <= number,
        )
        .values(next_number=number + 1)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount:
        return
    if _current_number(org_id, document_type) is not None:
        return

    seq = DocumentSequence(org_id=org_id, document_type=document_type, next_number=number + 1)
    try:
        with db.session.begin_nested():
            db.session.add(seq)
    except IntegrityError:
        db.session.execute(stmt)
