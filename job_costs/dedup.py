"""
Import-state dedup and per-project totals
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from job_costs.models import ImportKey, JobTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportState:
    """
    What the internal ledger has already imported

    keys holds per-line ImportKeys. legacy holds (type, id) pairs recorded
    before per-line tracking, meaning every line of that transaction.
    """

    keys: FrozenSet[ImportKey] = frozenset()
    legacy: FrozenSet[Tuple[str, str]] = frozenset()


def import_state_from_rows(rows: Iterable[Tuple[Optional[str], Optional[str], Optional[str]]]) -> ImportState:
    """Build import state from (transaction_id, transaction_type, line_id) triples"""
    keys = set()
    legacy = set()
    for txn_id, txn_type, line_id in rows:
        if not txn_id or not txn_type:
            continue
        if line_id in (None, ''):
            legacy.add((str(txn_type), str(txn_id)))
        else:
            keys.add(ImportKey(str(txn_type), str(txn_id), str(line_id)))
    return ImportState(frozenset(keys), frozenset(legacy))


def is_imported(row: JobTransaction, state: ImportState) -> bool:
    return (
        row.import_key in state.keys
        or (row.external_txn_type, row.external_txn_id) in state.legacy
    )


def dedupe(rows: Iterable[JobTransaction], state: ImportState) -> List[JobTransaction]:
    """Rows not yet recorded in the ledger"""
    return [row for row in rows if not is_imported(row, state)]


def project_totals(rows: Iterable[JobTransaction]) -> Dict[str, Decimal]:
    """Signed running total per job id (or job name when no id), import status ignored"""
    totals: Dict[str, Decimal] = OrderedDict()
    for row in rows:
        key = row.project_key
        if key is None:
            continue
        totals[key] = totals.get(key, Decimal("0")) + row.amount
    return totals


def sort_pending(rows: Iterable[JobTransaction]) -> List[JobTransaction]:
    """
    Newest first by ISO date string

    Ties keep a stable order by (type, id, line id) so repeated runs
    return identical lists.
    """
    by_identity = sorted(rows, key=lambda r: (r.external_txn_type, r.external_txn_id, r.line_id))
    return sorted(by_identity, key=lambda r: r.date or '', reverse=True)
