"""
Job-cost reconciliation run

Fetches accounts, classes and transaction entities from QuickBooks,
classifies and allocates lines to jobs, restricts them to visible projects
and drops lines the internal ledger already imported. Every run starts
from scratch; nothing is cached between runs.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set

import requests

from config.settings import Settings
from job_costs.allocator import allocate_lines
from job_costs.classifier import ClassificationTables, build_tables, match_transaction
from job_costs.dedup import dedupe, project_totals, sort_pending
from job_costs.ledger import SQLiteLedger
from job_costs.models import EntityType, JobTransaction
from job_costs.pipeline import EMITTED_ENTITIES, build_bill_payment_keys, select_transactions
from job_costs.scope import build_scope, filter_rows
from qbo_api.auth import QBOAuth
from qbo_api.data_fetcher import QBODataFetcher
from qbo_api.normalize import parse_transactions
from utils.exceptions import EntityNotSupportedError, NotConnectedError

logger = logging.getLogger(__name__)

NO_RULES_ERROR = (
    'Could not find Job Materials, Subcontractor Expense, Utilities, Disposal Fees '
    'or Fuel Expense accounts or classes in QuickBooks'
)
NO_RULES_HELP = (
    'In QuickBooks, add at least one Expense account or Class whose name contains '
    '"Job Materials" or "Materials", "Subcontractor Expense" or "Subcontractors", '
    '"Utilities", "Disposal" or "Fuel". Chart of Accounts: Settings > Chart of Accounts. '
    'Classes: Settings > All Lists > Classes. Then tag your bills, checks and expenses '
    'with that account or class so they appear here.'
)
NOT_CONNECTED_ERROR = 'QuickBooks not connected'


@dataclass
class FetchedData:
    """Raw QuickBooks records gathered for one run"""

    accounts: List[Dict[str, Any]] = field(default_factory=list)
    classes: List[Dict[str, Any]] = field(default_factory=list)
    entities: Dict[EntityType, List[Dict[str, Any]]] = field(default_factory=dict)
    unsupported: Set[str] = field(default_factory=set)


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01")))


class JobCostReconciler:
    """Runs one reconciliation pass for one QuickBooks company"""

    def __init__(self, fetcher: QBODataFetcher, ledger: SQLiteLedger, settings: Settings):
        self.fetcher = fetcher
        self.ledger = ledger
        self.settings = settings

    def fetch(self, start_date: str) -> FetchedData:
        """Issue the independent reads concurrently; paging inside each stays sequential"""
        jobs: Dict[str, Callable[[], List[Dict[str, Any]]]] = {
            'accounts': self.fetcher.get_active_accounts,
            'classes': self.fetcher.get_active_classes,
        }
        for entity in EMITTED_ENTITIES + (EntityType.BILL_PAYMENT,):
            jobs[entity.value] = (lambda e=entity: self.fetcher.query_since(e.value, start_date))

        data = FetchedData()
        with ThreadPoolExecutor(max_workers=max(1, self.settings.max_workers)) as executor:
            futures = {name: executor.submit(job) for name, job in jobs.items()}

            for name, future in futures.items():
                try:
                    records = future.result()
                except EntityNotSupportedError as e:
                    logger.warning(f"{e.entity} cannot be queried on this company: {e.fault_text}")
                    data.unsupported.add(e.entity)
                    records = []

                if name == 'accounts':
                    data.accounts = records
                elif name == 'classes':
                    data.classes = records
                else:
                    data.entities[EntityType(name)] = records

        return data

    def run(self, start_date: Optional[str] = None, include_unassigned: bool = False,
            debug: bool = False) -> Dict[str, Any]:
        start_date = start_date or self.settings.start_date
        logger.info(f"Reconciling job costs since {start_date}")

        fetched = self.fetch(start_date)
        tables = build_tables(fetched.accounts, fetched.classes)

        if tables.is_empty:
            return self._no_rules_payload(fetched, tables, debug)

        bill_payments = parse_transactions(
            EntityType.BILL_PAYMENT, fetched.entities.get(EntityType.BILL_PAYMENT, [])
        )
        bill_payment_keys = build_bill_payment_keys(bill_payments)

        candidates: List[JobTransaction] = []
        summaries: Dict[str, Any] = {}
        for entity in EMITTED_ENTITIES:
            transactions = parse_transactions(entity, fetched.entities.get(entity, []))
            selection = select_transactions(entity, transactions, bill_payment_keys)

            entity_rows: List[JobTransaction] = []
            matched_total = Decimal("0")
            header_matches = 0
            for txn, sign in selection.included:
                entity_rows.extend(allocate_lines(txn, tables, sign=sign))
                match = match_transaction(txn, tables)
                if match.account_type is not None:
                    matched_total += match.amount
                    header_matches += int(match.via_header)

            candidates.extend(entity_rows)
            summaries[entity.value] = {
                'fetched': len(transactions),
                'included': len(selection.included),
                'excluded': len(selection.excluded),
                'rows': len(entity_rows),
                'headerMatched': header_matches,
                'matchedTotal': _money(matched_total),
            }

        scope = build_scope(self.ledger.load_projects())
        in_scope = filter_rows(candidates, scope, include_unassigned)
        totals = project_totals(in_scope)

        import_state = self.ledger.load_import_state()
        pending = sort_pending(dedupe(in_scope, import_state))

        logger.info(
            f"Job costs: {len(candidates)} candidate rows, {len(in_scope)} in scope, "
            f"{len(pending)} pending"
        )

        payload: Dict[str, Any] = {
            'transactions': [row.to_dict() for row in pending],
            'projectTotals': {key: _money(total) for key, total in totals.items()},
        }
        if EntityType.CHECK.value in fetched.unsupported:
            payload['checkEntityUnsupported'] = True

        if debug:
            payload['debug'] = {
                'stages': {
                    'candidates': len(candidates),
                    'inScope': len(in_scope),
                    'alreadyImported': len(in_scope) - len(pending),
                    'pending': len(pending),
                },
                'entities': summaries,
                'billPaymentKeys': len(bill_payment_keys),
                'classification': tables.to_debug(),
                'scope': {
                    'jobIds': sorted(scope.job_ids),
                    'jobNames': sorted(scope.job_names),
                },
                'unsupportedEntities': sorted(fetched.unsupported),
            }
        return payload

    def _no_rules_payload(self, fetched: FetchedData, tables: ClassificationTables,
                          debug: bool) -> Dict[str, Any]:
        logger.warning("No account or class matched any job-cost category")
        account_list = [
            {'name': a.get('Name') or '', 'type': a.get('AccountType') or ''}
            for a in fetched.accounts
        ]
        class_list = [c.get('Name') or '' for c in fetched.classes]
        payload: Dict[str, Any] = {
            'transactions': [],
            'projectTotals': {},
            'error': NO_RULES_ERROR,
            'help': NO_RULES_HELP,
            'yourAccounts': account_list,
            'yourClasses': class_list,
        }
        if EntityType.CHECK.value in fetched.unsupported:
            payload['checkEntityUnsupported'] = True
        if debug:
            payload['debug'] = {'classification': tables.to_debug()}
        return payload


def reconcile_job_costs(settings: Settings, ledger: SQLiteLedger, auth: QBOAuth,
                        start_date: Optional[str] = None, include_unassigned: bool = False,
                        debug: bool = False,
                        session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """
    Top-level entry point; always returns a payload, never raises

    Missing or unrefreshable tokens give an empty "not connected" payload.
    Any other failure gives an empty list plus the error message.
    """
    try:
        token = auth.get_valid_token()
        fetcher = QBODataFetcher(token, settings, session=session)
        reconciler = JobCostReconciler(fetcher, ledger, settings)
        return reconciler.run(start_date, include_unassigned=include_unassigned, debug=debug)
    except NotConnectedError as e:
        logger.warning(f"QuickBooks not connected: {e}")
        return {'transactions': [], 'projectTotals': {}, 'error': NOT_CONNECTED_ERROR}
    except Exception as e:
        logger.exception(f"Job-cost reconciliation failed: {e}")
        return {'transactions': [], 'projectTotals': {}, 'error': str(e)}
