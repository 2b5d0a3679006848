"""
QuickBooks Online query client
Paged entity queries against the v3 query endpoint
"""

import requests
import logging
from requests.adapters import HTTPAdapter
from typing import Dict, List, Any, Optional

from config.settings import Settings
from qbo_api.auth import QBOToken
from qbo_api.normalize import as_list
from utils.exceptions import EntityNotSupportedError, QBOFaultError

logger = logging.getLogger(__name__)

# Fault text returned when an entity cannot be queried on this company
UNSUPPORTED_ENTITY_FAULT = 'invalid context declaration'

# urllib3 keeps 10 connections per host unless told otherwise
DEFAULT_POOL_SIZE = 10


def is_unsupported_entity_fault(fault: QBOFaultError) -> bool:
    return UNSUPPORTED_ENTITY_FAULT in fault.text.lower()


def _fault_from(data: Dict[str, Any], status_code: int) -> Optional[QBOFaultError]:
    fault = data.get('Fault') if isinstance(data, dict) else None
    if not fault:
        return None
    errors = as_list(fault.get('Error'))
    if errors:
        error = errors[0]
        return QBOFaultError(
            message=error.get('Message', 'Unknown error'),
            detail=error.get('Detail', ''),
            code=str(error.get('code', '')),
            status_code=status_code,
        )
    return QBOFaultError(message=str(fault), status_code=status_code)


class QBODataFetcher:
    """Class to handle QuickBooks Online API queries for one company"""

    def __init__(self, token: QBOToken, settings: Settings,
                 session: Optional[requests.Session] = None):
        """
        Initialize the QBO query client

        Args:
            token: valid bearer token and realm ID
            settings: service settings (environment, paging, timeouts)
            session: optional shared requests session
        """
        self.realm_id = token.realm_id
        self.settings = settings
        self.base_url = settings.api_base
        self.session = session or self._new_session(settings)
        self.headers = {
            'Authorization': f'Bearer {token.access_token}',
            'Accept': 'application/json'
        }

    @staticmethod
    def _new_session(settings: Settings) -> requests.Session:
        """Session whose connection pool fits every concurrent fetch worker"""
        pool_size = max(DEFAULT_POOL_SIZE, settings.max_workers)
        session = requests.Session()
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        session.mount('https://', adapter)
        session.mount('http://', adapter)
        return session

    def _make_request(self, endpoint: str, params: Dict = None) -> Optional[Dict]:
        """
        Make a GET request to the QuickBooks API

        Returns:
            JSON response, or None on transport or HTTP failure

        Raises:
            QBOFaultError: the response carried a Fault object
        """
        url = f"{self.base_url}/v3/company/{self.realm_id}/{endpoint}"
        try:
            response = self.session.get(
                url, headers=self.headers, params=params, timeout=self.settings.http_timeout
            )
        except requests.RequestException as e:
            logger.error(f"Error making API request: {e}")
            return None

        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict):
            fault = _fault_from(data, response.status_code)
            if fault is not None:
                logger.error(f"QuickBooks API Fault [{fault.code}]: {fault.message}")
                if fault.detail:
                    logger.error(f"Fault detail: {fault.detail}")
                raise fault

        if response.status_code != 200 or data is None:
            logger.error(f"API request failed: {response.status_code} - {response.text[:500]}")
            return None

        return data

    def query(self, statement: str) -> Optional[Dict[str, Any]]:
        """Run one query statement and return its QueryResponse block"""
        params = {'query': statement, 'minorversion': str(self.settings.minor_version)}
        data = self._make_request('query', params)
        if data is None:
            return None
        return data.get('QueryResponse') or {}

    def query_all(self, entity: str, where: str = '') -> List[Dict[str, Any]]:
        """
        Fetch every record of an entity, one page at a time

        Pages start at position 1 and advance by the page size; paging stops
        on a short page or after the page ceiling. A failed page ends paging
        and keeps what was already fetched.

        Raises:
            EntityNotSupportedError: the entity cannot be queried on this company
        """
        page_size = self.settings.page_size
        records: List[Dict[str, Any]] = []
        start_position = 1
        clause = f" WHERE {where}" if where else ''

        for page in range(self.settings.max_pages):
            statement = (
                f"SELECT * FROM {entity}{clause} "
                f"STARTPOSITION {start_position} MAXRESULTS {page_size}"
            )
            try:
                response = self.query(statement)
            except QBOFaultError as fault:
                if is_unsupported_entity_fault(fault):
                    raise EntityNotSupportedError(entity, fault.text) from fault
                logger.warning(f"{entity} page {page + 1} faulted; keeping {len(records)} records")
                break

            if response is None:
                logger.warning(f"{entity} page {page + 1} failed; keeping {len(records)} records")
                break

            batch = as_list(response.get(entity))
            records.extend(batch)
            logger.debug(f"{entity} page {page + 1}: {len(batch)} records")

            if len(batch) < page_size:
                break
            start_position += page_size
        else:
            logger.warning(f"{entity}: stopped at page ceiling ({self.settings.max_pages} pages)")

        logger.info(f"Fetched {len(records)} {entity} records")
        return records

    def query_since(self, entity: str, min_date: str) -> List[Dict[str, Any]]:
        """All records of an entity with TxnDate on or after min_date"""
        return self.query_all(entity, f"TxnDate >= '{min_date}'")

    def get_active_accounts(self) -> List[Dict[str, Any]]:
        return self.query_all('Account', 'Active = true')

    def get_active_classes(self) -> List[Dict[str, Any]]:
        return self.query_all('Class', 'Active = true')

    def get_company_info(self) -> Optional[Dict[str, Any]]:
        """
        First CompanyInfo record, or None when the request fails

        Raises:
            QBOFaultError: QuickBooks rejected the query
        """
        response = self.query('SELECT * FROM CompanyInfo MAXRESULTS 1')
        if response is None:
            return None
        records = as_list(response.get('CompanyInfo'))
        return records[0] if records else {}

    def get_active_projects(self) -> List[Dict[str, Any]]:
        """Active QuickBooks Projects (jobs); not every company exposes this entity"""
        return self.query_all('Project', 'Active = true')

