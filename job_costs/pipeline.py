"""
Per-entity inclusion, sign and exclusion rules

Bills are the source of truth for vendor costs. A Check that settles a
Bill is a payment, not a second cost, so Checks matching a BillPayment on
(vendor, total, date) are suppressed. BillPayments are never emitted.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, NamedTuple, Tuple

from job_costs.models import EntityType, RawTransaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class PaymentKey(NamedTuple):
    vendor_key: str
    amount: Decimal
    date: str


@dataclass(frozen=True)
class EntityRule:
    emitted: bool
    sign: int = 1
    credit_flips_sign: bool = False
    excluded_by_bill_payment: bool = False


ENTITY_RULES: Dict[EntityType, EntityRule] = {
    EntityType.BILL: EntityRule(emitted=True),
    EntityType.PURCHASE: EntityRule(emitted=True, credit_flips_sign=True),
    EntityType.CHECK: EntityRule(emitted=True, excluded_by_bill_payment=True),
    EntityType.VENDOR_CREDIT: EntityRule(emitted=True, sign=-1),
    EntityType.BILL_PAYMENT: EntityRule(emitted=False),
}

# Entities queried for rows
EMITTED_ENTITIES: Tuple[EntityType, ...] = tuple(
    entity for entity, rule in ENTITY_RULES.items() if rule.emitted
)


def payment_key(txn: RawTransaction) -> PaymentKey:
    return PaymentKey(txn.vendor_key, abs(txn.total_amount).quantize(CENT), txn.date)


def build_bill_payment_keys(bill_payments: Iterable[RawTransaction]) -> FrozenSet[PaymentKey]:
    keys = frozenset(payment_key(bp) for bp in bill_payments)
    logger.info(f"Built {len(keys)} bill payment keys")
    return keys


def transaction_sign(txn: RawTransaction) -> int:
    """-1 when amounts must be emitted negative, +1 to keep the source sign"""
    rule = ENTITY_RULES[txn.entity_type]
    if rule.credit_flips_sign and txn.is_credit:
        return -1
    return rule.sign


def is_bill_payment_check(txn: RawTransaction, bill_payment_keys: FrozenSet[PaymentKey]) -> bool:
    return payment_key(txn) in bill_payment_keys


def is_included(txn: RawTransaction, bill_payment_keys: FrozenSet[PaymentKey]) -> bool:
    rule = ENTITY_RULES[txn.entity_type]
    if not rule.emitted:
        return False
    if rule.excluded_by_bill_payment and is_bill_payment_check(txn, bill_payment_keys):
        logger.debug(f"Check {txn.id} settles a bill payment; excluded")
        return False
    return True


@dataclass
class Selection:
    """Transactions of one entity type that passed the rules, with their signs"""

    entity_type: EntityType
    included: List[Tuple[RawTransaction, int]] = field(default_factory=list)
    excluded: List[RawTransaction] = field(default_factory=list)


def select_transactions(entity_type: EntityType, transactions: Iterable[RawTransaction],
                        bill_payment_keys: FrozenSet[PaymentKey]) -> Selection:
    selection = Selection(entity_type)
    for txn in transactions:
        if is_included(txn, bill_payment_keys):
            selection.included.append((txn, transaction_sign(txn)))
        else:
            selection.excluded.append(txn)

    if selection.excluded:
        logger.info(f"{entity_type.value}: {len(selection.excluded)} excluded, {len(selection.included)} included")
    return selection
