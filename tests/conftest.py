"""Pytest fixtures for testing"""

from decimal import Decimal
from typing import Callable, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from billpay_gateway.api.dependencies import get_finance_client, get_sessions
from billpay_gateway.api.main import create_app
from billpay_gateway.domain.models import (
    Bank,
    BillToPay,
    ContactPaymentDetails,
    ContactPhone,
    ExportFile,
    PaymentResponse,
    PaymentResult,
    SubmissionSummary,
    WorkflowStep,
)
from billpay_gateway.domain.workflow import PayBillsWorkflow
from billpay_gateway.infrastructure.clients.finance import FinanceClient
from billpay_gateway.infrastructure.sessions import WorkflowSessions


@pytest.fixture
def bills() -> List[BillToPay]:
    """Three UGX bills of 100 each"""
    return [
        BillToPay(
            id=1,
            vendor_name="Acme Supplies",
            invoice_number="INV-001",
            currency_code="UGX",
            amount_due=Decimal("100"),
            contact_id=11,
            vendor_phone="0700123456",
        ),
        BillToPay(
            id=2,
            vendor_name="Kampala Movers",
            invoice_number="INV-002",
            currency_code="UGX",
            amount_due=Decimal("100"),
            contact_id=12,
        ),
        BillToPay(
            id=3,
            vendor_name="Nile Energy",
            invoice_number="INV-003",
            currency_code="UGX",
            amount_due=Decimal("100"),
        ),
    ]


@pytest.fixture
def sources_payload() -> dict:
    """Backend payment source listing: one of each kind plus a low-balance bank account"""
    return {
        "mobile_money_accounts": [
            {
                "id": "mm_1",
                "name": "MTN Collections",
                "currency": "UGX",
                "balance": "1000",
                "provider": "mtn",
                "provider_name": "MTN Mobile Money",
                "phone_number": "+256700000001",
            }
        ],
        "bank_accounts": [
            {
                "id": "ba_1",
                "name": "Operating Account",
                "currency": "UGX",
                "balance": "5000",
                "is_default": True,
                "bank_name": "Stanbic Bank Uganda",
                "account_number": "9030001234567",
            },
            {
                "id": "ba_2",
                "name": "Petty Cash",
                "currency": "UGX",
                "balance": "50",
                "bank_name": "DFCU Bank",
                "account_number": "01100200",
            },
        ],
        "centry_wallets": [
            {"id": "w_1", "name": "Centry Wallet", "currency": "UGX", "balance": "400"},
        ],
        "total_sources": 4,
    }


@pytest.fixture
def banks() -> List[Bank]:
    return [
        Bank(id=1, name="Stanbic Bank Uganda", short_name="Stanbic", swift_code="SBICUGKX", code="031"),
        Bank(id=2, name="Centenary Rural Development Bank", short_name="Centenary", swift_code="CERBUGKA", code="016"),
    ]


@pytest.fixture
def contact_details() -> ContactPaymentDetails:
    """ERP contact with both bank and phone details"""
    return ContactPaymentDetails(
        contact_id="11",
        name="Acme Supplies",
        bank_account_details="Stanbic Bank Uganda - Kampala Road",
        bank_account_number="0101234567",
        bank_account_name="Stanbic Bank Uganda",
        phone_numbers=[
            ContactPhone(type="DEFAULT", number="0772000111"),
            ContactPhone(type="MOBILE", number="0700123456"),
        ],
    )


@pytest.fixture
def make_payment_response() -> Callable[..., PaymentResponse]:
    """Build a PaymentResponse from (bill_id, payment_event_id or None for failure) pairs"""

    def build(*outcomes) -> PaymentResponse:
        results = [
            PaymentResult(
                bill_id=str(bill_id),
                success=event_id is not None,
                reference=f"PAY-{event_id}" if event_id is not None else None,
                payment_event_id=event_id,
                error_message=None if event_id is not None else "Payee account could not be verified",
            )
            for bill_id, event_id in outcomes
        ]
        successful = sum(1 for r in results if r.success)
        return PaymentResponse(
            success=successful == len(results),
            results=results,
            summary=SubmissionSummary(total=len(results), successful=successful, failed=len(results) - successful),
        )

    return build


@pytest.fixture
def finance_client(sources_payload, banks, bills, contact_details, make_payment_response) -> MagicMock:
    """Finance client double; every backend call is an AsyncMock"""
    client = MagicMock(spec=FinanceClient)
    client.list_payment_sources = AsyncMock(return_value=sources_payload)
    client.get_banks = AsyncMock(return_value=banks)
    client.get_contact_payment_details = AsyncMock(return_value=contact_details)
    client.list_bills = AsyncMock(return_value=bills)
    client.pay_bills = AsyncMock(return_value=make_payment_response((1, 501), (2, 502), (3, 503)))
    client.export_bill_payment = AsyncMock(
        return_value=ExportFile(filename="bill_payments_501.csv", payment_count=3, format="csv")
    )
    client.invalidate_bills = MagicMock()
    return client


@pytest.fixture
def workflow(bills, finance_client) -> PayBillsWorkflow:
    return PayBillsWorkflow("org_1", bills, finance_client, workflow_id="wf_test")


@pytest.fixture
async def opened_workflow(workflow) -> PayBillsWorkflow:
    await workflow.open()
    return workflow


@pytest.fixture
async def confirm_workflow(opened_workflow, banks) -> PayBillsWorkflow:
    """Workflow paying from the default bank account with every recipient filled in"""
    wf = opened_workflow
    wf.select_source("bank_account", "ba_1")
    wf.continue_from_source()
    for bill in wf.bills:
        wf.recipients.select_bank(bill.id, banks[0])
        wf.set_recipient_bank_account(bill.id, f"01000{bill.id}", bill.vendor_name)
    wf.continue_from_recipients()
    assert wf.step == WorkflowStep.CONFIRM
    return wf


@pytest.fixture
def client(finance_client) -> TestClient:
    """Create FastAPI test client backed by the finance client double"""
    app = create_app()
    sessions = WorkflowSessions()

    app.dependency_overrides[get_finance_client] = lambda: finance_client
    app.dependency_overrides[get_sessions] = lambda: sessions
    return TestClient(app)
