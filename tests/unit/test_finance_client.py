"""Unit tests for the finance backend client's wire mapping and caches"""

import json
from decimal import Decimal

import httpx
import pytest

from billpay_gateway.domain.exceptions import FinanceAPIError
from billpay_gateway.domain.models import ConversionPrompt, ExportFile, ExportFormat
from billpay_gateway.infrastructure.clients.finance import FinanceClient, parse_bill
from billpay_gateway.infrastructure.clients.http import AuthenticatedHttpClient

BANKS_BODY = {
    "banks": [
        {"id": 1, "name": "Stanbic Bank Uganda", "short_name": "Stanbic", "code": "031", "swift_code": "SBICUGKX"},
        {"id": 3, "name": "DFCU Bank", "short_name": None, "code": "022", "swift_code": "DFCUUGKA"},
    ],
    "count": 2,
}


class Recorder:
    """MockTransport handler that records requests and replays canned responses"""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]


def _finance(recorder: Recorder) -> FinanceClient:
    http = AuthenticatedHttpClient(base_url="http://finance.test", token="tok", transport=httpx.MockTransport(recorder))
    return FinanceClient(http=http, bank_cache_seconds=300, bill_cache_seconds=30)


async def test_list_payment_sources_returns_raw_payload():
    """Test the listing is passed through for the registry to normalize"""
    recorder = Recorder(httpx.Response(200, json={"mobile_money_accounts": [], "bank_accounts": [], "total_sources": 0}))

    data = await _finance(recorder).list_payment_sources("org_1")

    assert data["total_sources"] == 0
    assert recorder.requests[0].url.params["organization"] == "org_1"


async def test_get_banks_parses_and_caches():
    """Test bank lists are cached per country and search"""
    recorder = Recorder(httpx.Response(200, json=BANKS_BODY))
    client = _finance(recorder)

    banks = await client.get_banks("UG")
    again = await client.get_banks("ug")
    await client.get_banks("UG", "stan")

    assert [b.id for b in banks] == [1, 3]
    assert banks[1].short_name == ""
    assert banks[1].display_name == "DFCU Bank"
    assert again is banks
    assert len(recorder.requests) == 2
    assert recorder.requests[1].url.params["search"] == "stan"


async def test_get_banks_malformed():
    """Test unusable bank rows are a backend error"""
    recorder = Recorder(httpx.Response(200, json={"banks": [{"name": "No id"}]}))

    with pytest.raises(FinanceAPIError):
        await _finance(recorder).get_banks("UG")


async def test_contact_payment_details():
    """Test ERP contact routing details mapping"""
    recorder = Recorder(httpx.Response(200, json={
        "contact_id": "11",
        "name": "Acme Supplies",
        "bank_account_number": "0101234567",
        "phone_numbers": [{"type": "MOBILE", "number": "0700123456"}],
    }))

    details = await _finance(recorder).get_contact_payment_details(11)

    assert recorder.requests[0].url.path == "/api/v1/xero/contacts/11/payment-details/"
    assert details.bank_account_number == "0101234567"
    assert details.bank_account_name is None
    assert details.phone_numbers[0].number == "0700123456"


async def test_list_bills_cache_and_invalidate():
    """Test the bill listing is re-read after invalidation"""
    rows = [{"id": 301, "vendor_name": "Acme", "invoice_number": "INV-301", "currency_code": "UGX", "amount_due": "1200000"}]
    recorder = Recorder(httpx.Response(200, json=rows))
    client = _finance(recorder)

    await client.list_bills("org_1")
    await client.list_bills("org_1")
    assert len(recorder.requests) == 1

    client.invalidate_bills("org_1")
    bills = await client.list_bills("org_1")
    assert len(recorder.requests) == 2
    assert bills[0].amount_due == Decimal("1200000")


def test_parse_bill_normalizes_currency():
    """Test enum-style currency codes from the ERP"""
    bill = parse_bill({"id": "7", "vendor_name": "V", "currency_code": "CurrencyCode.USD", "amount_due": 250.5, "contact_id": "13"})

    assert bill.id == 7
    assert bill.currency_code == "USD"
    assert bill.amount_due == Decimal("250.5")
    assert bill.contact_id == 13
    assert bill.invoice_number is None


async def test_pay_bills_sends_idempotency_key_and_parses():
    """Test batch payment request and response mapping"""
    recorder = Recorder(httpx.Response(200, json={
        "success": False,
        "results": [
            {"bill_id": 1, "success": True, "reference": "PAY-501", "payment_event_id": 501},
            {"bill_id": "2", "success": False, "error_message": "Payee account could not be verified"},
        ],
        "summary": {"total": 2, "successful": 1, "failed": 1},
    }))

    response = await _finance(recorder).pay_bills({"bill_ids": [1, 2]}, idempotency_key="abc")

    request = recorder.requests[0]
    assert request.headers["Idempotency-Key"] == "abc"
    assert json.loads(request.content) == {"bill_ids": [1, 2]}
    assert response.results[0].bill_id == "1"
    assert response.results[0].payment_event_id == 501
    assert response.results[1].payment_event_id is None
    assert response.summary.failed == 1
    assert response.success is False


async def test_pay_bills_recomputes_missing_summary():
    """Test summary counts are derived from results when absent"""
    recorder = Recorder(httpx.Response(200, json={
        "results": [
            {"bill_id": 1, "success": True, "payment_event_id": 501},
            {"bill_id": 2, "success": False},
            {"bill_id": 3, "success": True, "payment_event_id": 503},
        ],
    }))

    response = await _finance(recorder).pay_bills({"bill_ids": [1, 2, 3]})

    assert (response.summary.total, response.summary.successful, response.summary.failed) == (3, 2, 1)
    assert "Idempotency-Key" not in recorder.requests[0].headers


async def test_pay_bills_malformed_result():
    """Test results missing required fields are a backend error"""
    recorder = Recorder(httpx.Response(200, json={"results": [{"success": True}]}))

    with pytest.raises(FinanceAPIError, match="Invalid payment response"):
        await _finance(recorder).pay_bills({})


async def test_export_returns_file():
    """Test a generated export file descriptor"""
    recorder = Recorder(httpx.Response(200, json={
        "filename": "bill_payments_501.xml",
        "payment_count": 2,
        "format": "xml",
        "file_url": "/media/exports/bill_payments_501.xml",
    }))

    response = await _finance(recorder).export_bill_payment([501, 502], ExportFormat.XML, False, "ba_1")

    assert isinstance(response, ExportFile)
    assert response.payment_count == 2
    assert json.loads(recorder.requests[0].content) == {
        "payment_event_ids": [501, 502],
        "file_format": "xml",
        "allow_currency_conversion": False,
        "source_account_id": "ba_1",
    }


async def test_export_conversion_prompt():
    """Test a 400 requires_conversion reply becomes a prompt"""
    recorder = Recorder(httpx.Response(400, json={
        "requires_conversion": True,
        "message": "1 payment(s) are not in UGX",
        "prompt": "Convert?",
        "bank_account_currency": "UGX",
        "mismatched_payments": [
            {"payment_event_id": 501, "bill_id": 3, "bill_number": "INV-003", "amount": "250",
             "from_currency": "USD", "to_currency": "UGX"},
        ],
    }))

    response = await _finance(recorder).export_bill_payment([501])

    assert isinstance(response, ConversionPrompt)
    assert response.bank_account_currency == "UGX"
    assert response.mismatched_payments[0].amount == Decimal("250")
    assert response.mismatched_payments[0].reference == "INV-003"
