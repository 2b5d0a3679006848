"""
Shape normalization at the QuickBooks API boundary

QuickBooks returns a single record as an object, many as an array, and
none as an absent key. Everything past this module sees plain lists and
the frozen models in job_costs.models.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from job_costs.models import EntityType, Line, RawTransaction, Ref

logger = logging.getLogger(__name__)

LINE_DETAIL_KEYS = (
    'AccountBasedExpenseLineDetail',
    'ItemBasedExpenseLineDetail',
    'ExpenseDetail',
)

CREDIT_FLAG_KEYS = ('Credit', 'credit', 'IsCredit', 'isCredit')


def as_list(value: Any) -> List[Any]:
    """Normalize an object, array or missing value into a list"""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def parse_ref(value: Any) -> Optional[Ref]:
    if not isinstance(value, dict):
        return None
    raw_value = value.get('value')
    ref = Ref(
        value=str(raw_value) if raw_value not in (None, '') else None,
        name=value.get('name') or None,
    )
    return ref if ref else None


def parse_amount(value: Any) -> Decimal:
    if value is None or value == '':
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning(f"Unparseable amount {value!r}; using 0")
        return Decimal("0")


def parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def line_detail(line: Dict[str, Any]) -> Dict[str, Any]:
    for key in LINE_DETAIL_KEYS:
        detail = line.get(key)
        if isinstance(detail, dict):
            return detail
    return {}


def parse_line(line: Dict[str, Any], index: int) -> Line:
    detail = line_detail(line)
    raw_id = line.get('Id')
    return Line(
        index=index,
        amount=parse_amount(line.get('Amount')),
        line_id=str(raw_id) if raw_id not in (None, '') else None,
        account_ref=parse_ref(detail.get('AccountRef')),
        category_ref=parse_ref(detail.get('ClassRef') or line.get('ClassRef')),
        job_ref=parse_ref(detail.get('CustomerRef') or detail.get('ProjectRef')),
        description=line.get('Description') or None,
        detail_type=line.get('DetailType'),
    )


def is_credit(record: Dict[str, Any]) -> bool:
    """Credit-card credit flag, which appears under several spellings"""
    return any(parse_flag(record.get(key)) for key in CREDIT_FLAG_KEYS if key in record)


def parse_transaction(entity_type: EntityType, record: Dict[str, Any]) -> RawTransaction:
    """Convert one QuickBooks entity record into a RawTransaction"""
    lines = tuple(
        parse_line(line, index)
        for index, line in enumerate(as_list(record.get('Line')))
        if isinstance(line, dict)
    )
    doc_number = record.get('DocNumber')
    return RawTransaction(
        entity_type=entity_type,
        id=str(record.get('Id', '')),
        date=record.get('TxnDate') or '',
        vendor_ref=parse_ref(record.get('VendorRef') or record.get('EntityRef')),
        category_ref=parse_ref(record.get('ClassRef')),
        job_ref=parse_ref(record.get('ProjectRef') or record.get('CustomerRef')),
        doc_number=str(doc_number) if doc_number not in (None, '') else None,
        private_note=record.get('PrivateNote') or None,
        total_amount=parse_amount(record.get('TotalAmt')),
        is_credit=is_credit(record),
        lines=lines,
        raw=record,
    )


def parse_transactions(entity_type: EntityType, records: List[Any]) -> List[RawTransaction]:
    return [
        parse_transaction(entity_type, record)
        for record in as_list(records)
        if isinstance(record, dict)
    ]
