"""Shared fixtures: settings, in-memory keyring, ledger and a fake QuickBooks query endpoint."""

import json
import re
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import keyring
import keyring.errors
import pytest
import responses

from config.settings import Settings, SANDBOX_API_BASE
from job_costs.ledger import SQLiteLedger
from utils.credentials import CredentialManager

REALM_ID = "9130350000000001"
QUERY_URL = f"{SANDBOX_API_BASE}/v3/company/{REALM_ID}/query"

FROM_PATTERN = re.compile(r"FROM\s+(\w+)", re.IGNORECASE)
START_PATTERN = re.compile(r"STARTPOSITION\s+(\d+)", re.IGNORECASE)
MAX_PATTERN = re.compile(r"MAXRESULTS\s+(\d+)", re.IGNORECASE)


class InMemoryKeyring:
    """Stands in for the OS keyring backend during tests."""

    def __init__(self):
        self.store = {}

    def get_password(self, service, key):
        return self.store.get((service, key))

    def set_password(self, service, key, value):
        self.store[(service, key)] = value

    def delete_password(self, service, key):
        if (service, key) not in self.store:
            raise keyring.errors.PasswordDeleteError(key)
        del self.store[(service, key)]


class FakeQBO:
    """
    Serves QuickBooks query responses from in-memory entity lists.

    Honors STARTPOSITION/MAXRESULTS so paging behaves like the real API.
    Entities listed in `faults` answer with a 400 Fault instead.
    """

    def __init__(self):
        self.entities = {}
        self.faults = {}
        self.failures = set()
        self.statements = []

    def add(self, entity, *records):
        self.entities.setdefault(entity, []).extend(records)

    def callback(self, request):
        params = parse_qs(urlparse(request.url).query)
        statement = params["query"][0]
        self.statements.append(statement)
        entity = FROM_PATTERN.search(statement).group(1)

        if entity in self.failures:
            return (500, {}, "upstream error")
        if entity in self.faults:
            body = {"Fault": {"Error": [{"Message": "Invalid query", "Detail": self.faults[entity], "code": "4000"}], "type": "ValidationFault"}}
            return (400, {}, json.dumps(body))

        start_match = START_PATTERN.search(statement)
        max_match = MAX_PATTERN.search(statement)
        start = int(start_match.group(1)) if start_match else 1
        size = int(max_match.group(1)) if max_match else 1000
        page = self.entities.get(entity, [])[start - 1:start - 1 + size]

        query_response = {"startPosition": start, "maxResults": len(page)}
        if page:
            query_response[entity] = page
        return (200, {}, json.dumps({"QueryResponse": query_response, "time": "2024-03-02T10:00:00.000-08:00"}))

    def statements_for(self, entity):
        return [s for s in self.statements if re.search(rf"FROM\s+{entity}\b", s)]


@pytest.fixture
def settings():
    return Settings(
        environment="sandbox",
        client_id="client-id",
        client_secret="client-secret",
        start_date="2024-01-01",
        page_size=500,
        max_pages=10,
        max_workers=2,
        http_timeout=5,
        jwt_secret="test-jwt-secret",
        api_clients={
            "demo_client": {
                "api_key": "demo_key",
                "api_secret": "demo_secret",
                "name": "Demo Client",
                "permissions": ["read_company", "read_job_costs"],
            },
            "reports_client": {
                "api_key": "reports_key",
                "api_secret": "reports_secret",
                "name": "Reports Client",
                "permissions": ["read_company"],
            },
        },
    )


@pytest.fixture
def fake_keyring(monkeypatch):
    backend = InMemoryKeyring()
    monkeypatch.setattr(keyring, "get_password", backend.get_password)
    monkeypatch.setattr(keyring, "set_password", backend.set_password)
    monkeypatch.setattr(keyring, "delete_password", backend.delete_password)
    return backend


@pytest.fixture
def credential_manager(fake_keyring):
    return CredentialManager(profile="test")


@pytest.fixture
def connected(credential_manager):
    """A stored, unexpired token for REALM_ID."""
    expires_at = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    credential_manager.store_tokens("access-123", "refresh-456", REALM_ID, expires_at)
    return credential_manager


@pytest.fixture
def ledger(tmp_path):
    store = SQLiteLedger(tmp_path / "ledger.db")
    store.ensure_schema()
    return store


@pytest.fixture
def fake_qbo():
    fake = FakeQBO()
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add_callback(responses.GET, QUERY_URL, callback=fake.callback)
        fake.rsps = rsps
        yield fake


# Record builders -----------------------------------------------------------

def account(account_id, name, account_type="Expense"):
    return {"Id": account_id, "Name": name, "AccountType": account_type, "Active": True}


def qb_class(class_id, name):
    return {"Id": class_id, "Name": name, "Active": True}


def expense_line(amount, account_ref=None, line_id=None, job=None, class_ref=None, description=None):
    detail = {}
    if account_ref:
        detail["AccountRef"] = {"value": account_ref[0], "name": account_ref[1]}
    if job:
        detail["CustomerRef"] = {"value": job[0], "name": job[1]}
    if class_ref:
        detail["ClassRef"] = {"value": class_ref[0], "name": class_ref[1]}
    line = {
        "Amount": amount,
        "DetailType": "AccountBasedExpenseLineDetail",
        "AccountBasedExpenseLineDetail": detail,
    }
    if line_id is not None:
        line["Id"] = line_id
    if description:
        line["Description"] = description
    return line


def txn(txn_id, date, lines, vendor=("V1", "Acme Supply"), total=None, doc_number=None, **extra):
    record = {
        "Id": txn_id,
        "TxnDate": date,
        "VendorRef": {"value": vendor[0], "name": vendor[1]},
        "TotalAmt": total if total is not None else sum(l["Amount"] for l in lines),
        "Line": lines,
    }
    if doc_number:
        record["DocNumber"] = doc_number
    record.update(extra)
    return record
