# Overview: Service-layer operations for document sequences (invoice numbers).

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import DocumentSequence, Payment

DOC_TYPE_INVOICE = "invoice"

_TRAILING_NUMBER = re.compile(r"(\d+)\s*$")


def _highest_existing_invoice_number(org_id: int) -> int:
    """Largest trailing integer among the organization's invoice numbers (0 if none)."""
    highest = 0
    rows = db.session.query(Payment.invoice_number).filter(Payment.org_id == org_id).all()
    for (invoice_number,) in rows:
        match = _TRAILING_NUMBER.search(invoice_number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def _allocate(org_id: int, document_type: str, seed) -> int:
    """
    Atomically allocate the next number for an org/document type.

    Must run inside the caller's transaction. The first allocation creates the
    sequence row starting at seed(); a concurrent creator hitting the unique
    constraint surfaces as StaleDataError so run_with_retry replays the whole
    operation.
    """
    if not org_id:
        raise ValueError("org_id is required")

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
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(org_id=org_id, document_type=document_type)
            .scalar()
        )
        return current - 1

    first = seed()
    seq = DocumentSequence(org_id=org_id, document_type=document_type, next_number=first + 1)
    db.session.add(seq)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise StaleDataError(f"document sequence {document_type} for org {org_id} created concurrently") from exc
    return first


def next_invoice_number(org_id: int) -> str:
    """
    Next invoice number for the organization, e.g. "INV-004".

    Numbering continues from the highest existing invoice number, so the
    first allocation after INV-003 yields INV-004; a fresh organization
    starts at INV-001.
    """
    prefix = current_app.config.get("INVOICE_PREFIX", "INV")
    pad = int(current_app.config.get("INVOICE_NUMBER_PAD", 3))

    number = _allocate(
        org_id,
        DOC_TYPE_INVOICE,
        seed=lambda: _highest_existing_invoice_number(org_id) + 1,
    )
    return f"{prefix}-{number:0{pad}d}"
