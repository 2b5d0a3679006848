"""
Line allocation: one JobTransaction per matched, nonzero transaction line
"""

import logging
from typing import List, Optional

from job_costs.classifier import ClassificationTables, classify_header, classify_ref
from job_costs.models import JobTransaction, Line, RawTransaction, Ref

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 500

# Presentation lines that carry no cost of their own
SKIPPED_DETAIL_TYPES = frozenset({'SubTotalLineDetail', 'GroupLineDetail', 'DiscountLineDetail'})


def job_display_name(name: Optional[str]) -> Optional[str]:
    """
    Display name of a "Customer:Job" reference

    Only the text after the first colon is kept; names without a colon are
    used whole.
    """
    if not name:
        return None
    if ':' in name:
        return name.split(':', 1)[1].strip() or None
    return name.strip() or None


def resolve_description(txn: RawTransaction, line: Line) -> str:
    first_line_description = txn.lines[0].description if txn.lines else None
    description = (
        line.description
        or first_line_description
        or txn.private_note
        or f"Doc {txn.doc_number or txn.id}"
    )
    return description[:MAX_DESCRIPTION_LENGTH]


def class_job_ref(tables: ClassificationTables, category_ref: Optional[Ref]) -> Optional[Ref]:
    """
    Job reference carried by a class, for companies that track jobs by Class

    A class that classifies as a cost category is a category, not a job.
    """
    if not category_ref or classify_ref(tables, None, category_ref) is not None:
        return None
    return category_ref


def allocate_lines(txn: RawTransaction, tables: ClassificationTables,
                   header_project_ref: Optional[Ref] = None,
                   sign: int = 1) -> List[JobTransaction]:
    """
    Expand a transaction into job-cost rows

    Args:
        txn: normalized transaction
        tables: classification lookups for this run
        header_project_ref: job reference used when a line carries none;
            defaults to the transaction's own job reference, then to
            its header class when that class is not a cost category
        sign: +1 keeps the source sign, -1 forces amounts negative

    A header class that classifies tags every line with its type. Lines
    that do not classify are skipped.
    """
    if header_project_ref is None:
        header_project_ref = txn.job_ref or class_job_ref(tables, txn.category_ref)

    header_type = classify_header(txn, tables)
    rows: List[JobTransaction] = []

    for line in txn.lines:
        if line.detail_type in SKIPPED_DETAIL_TYPES or line.amount == 0:
            continue

        account_type = header_type or classify_ref(tables, line.account_ref, line.category_ref)
        if account_type is None:
            logger.debug(f"{txn.entity_type.value} {txn.id} line {line.effective_id}: no category match")
            continue

        project_ref = line.job_ref or header_project_ref or class_job_ref(tables, line.category_ref)
        amount = -abs(line.amount) if sign < 0 else line.amount

        rows.append(JobTransaction(
            external_txn_id=txn.id,
            external_txn_type=txn.entity_type.value,
            line_id=line.effective_id,
            vendor_name=txn.vendor_name,
            date=txn.date,
            doc_number=txn.doc_number or txn.private_note or '',
            amount=amount,
            account_type=account_type,
            project_external_id=project_ref.value if project_ref else None,
            project_name=job_display_name(project_ref.name) if project_ref else None,
            description=resolve_description(txn, line),
        ))

    return rows
