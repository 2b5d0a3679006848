"""
Data models for job-cost reconciliation
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Tuple


class AccountType(Enum):
    """Coarse job-cost category a line is attributed to"""

    JOB_MATERIALS = "Job Materials"
    SUBCONTRACTOR_EXPENSE = "Subcontractor Expense"
    UTILITIES = "Utilities"
    DISPOSAL_FEES = "Disposal Fees"
    FUEL_EXPENSE = "Fuel Expense"


class EntityType(Enum):
    """QuickBooks transaction entities read by the reconciliation"""

    BILL = "Bill"
    PURCHASE = "Purchase"
    CHECK = "Check"
    VENDOR_CREDIT = "VendorCredit"
    BILL_PAYMENT = "BillPayment"


@dataclass(frozen=True)
class Ref:
    """QuickBooks reference object ({"value": ..., "name": ...})"""

    value: Optional[str] = None
    name: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.value or self.name)


@dataclass(frozen=True)
class Line:
    """One line item of a transaction, already normalized"""

    index: int
    amount: Decimal
    line_id: Optional[str] = None
    account_ref: Optional[Ref] = None
    category_ref: Optional[Ref] = None
    job_ref: Optional[Ref] = None
    description: Optional[str] = None
    detail_type: Optional[str] = None

    @property
    def effective_id(self) -> str:
        """Line id, falling back to the positional index"""
        return self.line_id if self.line_id else str(self.index)


@dataclass(frozen=True)
class RawTransaction:
    """A Bill, Purchase, Check, VendorCredit or BillPayment as read from QuickBooks"""

    entity_type: EntityType
    id: str
    date: str
    vendor_ref: Optional[Ref] = None
    category_ref: Optional[Ref] = None
    job_ref: Optional[Ref] = None
    doc_number: Optional[str] = None
    private_note: Optional[str] = None
    total_amount: Decimal = Decimal("0")
    is_credit: bool = False
    lines: Tuple[Line, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def vendor_name(self) -> str:
        if self.vendor_ref:
            return self.vendor_ref.name or self.vendor_ref.value or 'Unknown'
        return 'Unknown'

    @property
    def vendor_key(self) -> str:
        """Stable vendor identity used for cross-entity matching"""
        if self.vendor_ref:
            return self.vendor_ref.value or (self.vendor_ref.name or '').strip().lower()
        return ''


class ImportKey(NamedTuple):
    """Dedup identity of one emitted row"""

    txn_type: str
    txn_id: str
    line_id: str


@dataclass(frozen=True)
class JobTransaction:
    """
    One matched transaction line attributed to a job

    The amount is already signed for its transaction type; consumers
    must not re-sign it.
    """

    external_txn_id: str
    external_txn_type: str
    line_id: str
    vendor_name: str
    date: str
    doc_number: str
    amount: Decimal
    account_type: AccountType
    project_external_id: Optional[str]
    project_name: Optional[str]
    description: str

    @property
    def import_key(self) -> ImportKey:
        return ImportKey(self.external_txn_type, self.external_txn_id, self.line_id)

    @property
    def project_key(self) -> Optional[str]:
        """Job identifier, or display name when no identifier is present"""
        return self.project_external_id or self.project_name or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'externalTxnId': self.external_txn_id,
            'externalTxnType': self.external_txn_type,
            'lineId': self.line_id,
            'vendorName': self.vendor_name,
            'date': self.date,
            'docNumber': self.doc_number,
            'amount': float(self.amount),
            'accountType': self.account_type.value,
            'projectExternalId': self.project_external_id,
            'projectName': self.project_name,
            'description': self.description,
        }


@dataclass(frozen=True)
class ProjectRecord:
    """An internal project and its link to a QuickBooks job"""

    id: str
    name: str
    external_id: Optional[str] = None
    external_name: Optional[str] = None
    include_in_job_costs: Optional[bool] = None
    visible: Optional[bool] = None
