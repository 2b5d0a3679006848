"""
Account and class (category) classification into job-cost categories

Names are matched against an ordered rule table of lowercase substring
patterns; the first AccountType whose pattern list hits wins. Accounts and
classes are matched once per run into id lookup tables.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from job_costs.models import AccountType, RawTransaction, Ref

logger = logging.getLogger(__name__)

# Evaluated top to bottom; order decides overlapping patterns
CLASSIFICATION_RULES: Tuple[Tuple[AccountType, Tuple[str, ...]], ...] = (
    (AccountType.JOB_MATERIALS, (
        'job materials', 'job material', 'materials', 'job cost - materials', 'cost of materials',
        'material', 'job cost materials', 'materials expense', 'construction materials',
        'job materials expense',
    )),
    (AccountType.SUBCONTRACTOR_EXPENSE, (
        'subcontractor expense', 'sub expense', 'subcontractors', 'subcontractor', 'job cost - sub',
        'subs', 'subcontractor cost', 'subcontract', 'sub contractor', '1099', 'contract labor',
        'job cost - subcontractor',
    )),
    (AccountType.UTILITIES, (
        'utilities', 'utility', 'temporary power', 'temp power', 'electric service',
        'water & sewer', 'water and sewer',
    )),
    (AccountType.DISPOSAL_FEES, (
        'disposal fees', 'disposal', 'dump fees', 'dumpster', 'landfill', 'debris removal',
        'waste removal', 'haul off',
    )),
    (AccountType.FUEL_EXPENSE, (
        'fuel expense', 'fuel', 'gasoline', 'diesel', 'gas & oil', 'gas and oil',
    )),
)


def match_name(name: Optional[str]) -> Optional[AccountType]:
    """First AccountType with a pattern contained in the lowercased name"""
    if not name:
        return None
    lowered = name.lower()
    for account_type, patterns in CLASSIFICATION_RULES:
        if any(pattern in lowered for pattern in patterns):
            return account_type
    return None


@dataclass(frozen=True)
class ClassificationTables:
    """id -> AccountType lookups built once per reconciliation run"""

    accounts: Dict[str, AccountType] = field(default_factory=dict)
    categories: Dict[str, AccountType] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.accounts and not self.categories

    def to_debug(self) -> Dict[str, Any]:
        return {
            'accounts': {k: v.value for k, v in self.accounts.items()},
            'categories': {k: v.value for k, v in self.categories.items()},
        }


def _match_records(records: List[Dict[str, Any]]) -> Dict[str, AccountType]:
    table: Dict[str, AccountType] = {}
    for record in records:
        record_id = record.get('Id')
        if record_id in (None, ''):
            continue
        account_type = match_name(record.get('Name') or record.get('FullyQualifiedName'))
        if account_type is not None:
            table[str(record_id)] = account_type
    return table


def build_tables(accounts: List[Dict[str, Any]], classes: List[Dict[str, Any]]) -> ClassificationTables:
    """Resolve the chart of accounts and class list into lookup tables"""
    tables = ClassificationTables(
        accounts=_match_records(accounts),
        categories=_match_records(classes),
    )
    logger.info(
        f"Classification tables: {len(tables.accounts)} of {len(accounts)} accounts, "
        f"{len(tables.categories)} of {len(classes)} classes matched"
    )
    return tables


def classify(tables: ClassificationTables,
             account_id: Optional[str] = None,
             account_name: Optional[str] = None,
             category_id: Optional[str] = None,
             category_name: Optional[str] = None) -> Optional[AccountType]:
    """
    Resolve an AccountType, first match wins:

    1. account id in the account table
    2. category id in the category table
    3. category name against the pattern rules
    4. account name against the pattern rules
    """
    if account_id and account_id in tables.accounts:
        return tables.accounts[account_id]
    if category_id and category_id in tables.categories:
        return tables.categories[category_id]
    return match_name(category_name) or match_name(account_name)


def classify_ref(tables: ClassificationTables, account_ref: Optional[Ref],
                 category_ref: Optional[Ref]) -> Optional[AccountType]:
    return classify(
        tables,
        account_id=account_ref.value if account_ref else None,
        account_name=account_ref.name if account_ref else None,
        category_id=category_ref.value if category_ref else None,
        category_name=category_ref.name if category_ref else None,
    )


def classify_header(txn: RawTransaction, tables: ClassificationTables) -> Optional[AccountType]:
    """AccountType of the transaction-level class, if it has one that matches"""
    if not txn.category_ref:
        return None
    return classify_ref(tables, None, txn.category_ref)


@dataclass(frozen=True)
class TransactionMatch:
    """Coarse whole-transaction match, used for per-entity summaries"""

    account_type: Optional[AccountType]
    amount: Decimal
    via_header: bool = False


def match_transaction(txn: RawTransaction, tables: ClassificationTables) -> TransactionMatch:
    """
    Coarse match of a whole transaction

    A matching header class tags the whole document and sums every line.
    Otherwise lines are matched by account id, class id or class name only;
    account-name patterns are not consulted here, unlike classify(). Line
    allocation keeps its own precedence, so the two may disagree.
    """
    header_type = classify_header(txn, tables)
    if header_type is not None and txn.lines:
        total = sum((line.amount for line in txn.lines), Decimal("0"))
        return TransactionMatch(header_type, total, via_header=True)

    matched: Optional[AccountType] = None
    total = Decimal("0")
    for line in txn.lines:
        account_id = line.account_ref.value if line.account_ref else None
        category = line.category_ref
        line_type = None
        if account_id and account_id in tables.accounts:
            line_type = tables.accounts[account_id]
        elif category and category.value and category.value in tables.categories:
            line_type = tables.categories[category.value]
        elif category:
            line_type = match_name(category.name)

        if line_type is not None:
            total += line.amount
            if matched is None:
                matched = line_type
    return TransactionMatch(matched, total)
