"""Unit tests for payload assembly and the submission coordinator"""

from decimal import Decimal
from unittest.mock import AsyncMock

from billpay_gateway.domain.exceptions import FinanceAPIError
from billpay_gateway.domain.models import (
    BankRecipient,
    MobileRecipient,
    PaymentResponse,
    PaymentResult,
    PaymentSource,
    SourceKind,
    SubmissionSummary,
)
from billpay_gateway.domain.submission import (
    ALL_BILLS,
    SubmissionCoordinator,
    build_submission,
    payment_event_ids,
)

AMOUNTS = {"1": "100", "2": "60", "3": "100"}


def _bank_source() -> PaymentSource:
    return PaymentSource(
        id="ba_1",
        kind=SourceKind.BANK_ACCOUNT,
        name="Operating Account",
        currency="UGX",
        balance=Decimal("5000"),
        bank_name="Stanbic Bank Uganda",
        account_number="9030001234567",
    )


def test_build_submission_bank_source(bills):
    """Test bank payments carry bank fields and per-bill recipients"""
    recipients = {
        bill.id: BankRecipient(bank_id=1, bank_name="Stanbic", swift_code="SBICUGKX", account_number=f"0{bill.id}", account_name="V")
        for bill in bills
    }

    payload = build_submission("org_1", bills, _bank_source(), AMOUNTS, "UGX", note="  March run ", recipients=recipients)

    assert payload["organization_id"] == "org_1"
    assert payload["bill_ids"] == [1, 2, 3]
    assert payload["amounts"] == AMOUNTS
    assert payload["currency_code"] == "UGX"
    assert payload["note"] == "March run"
    assert payload["payment_method"] == "bank"
    assert payload["bank_account_id"] == "ba_1"
    assert payload["account_number"] == "9030001234567"
    assert "mobile_money_account_id" not in payload
    assert payload["recipients"][1] == {
        "bill_id": 2,
        "recipient_type": "bank",
        "recipient_bank_id": 1,
        "bank_name": "Stanbic",
        "swift_code": "SBICUGKX",
        "account_number": "02",
        "account_name": "V",
    }


def test_build_submission_mobile_source(bills):
    """Test mobile money payments carry provider fields and phone recipients"""
    source = PaymentSource(
        id="mm_1", kind=SourceKind.MOBILE_MONEY, name="MTN", currency="UGX", balance=Decimal("1000"),
        provider="mtn", phone_number="+256700000001",
    )
    recipients = {bill.id: MobileRecipient(phone_number="0700123456") for bill in bills}

    payload = build_submission("org_1", bills, source, AMOUNTS, "UGX", recipients=recipients)

    assert payload["payment_method"] == "mobile_money"
    assert payload["mobile_money_account_id"] == "mm_1"
    assert payload["payment_provider"] == "mtn"
    assert "note" not in payload
    assert payload["recipients"][0] == {"bill_id": 1, "recipient_type": "mobile", "phone_number": "0700123456"}


def test_build_submission_wallet_source(bills):
    """Test wallet payments send no recipients"""
    source = PaymentSource(id="w_1", kind=SourceKind.WALLET, name="Wallet", currency="UGX", balance=Decimal("400"))

    payload = build_submission("org_1", bills, source, AMOUNTS, "UGX", note="   ")

    assert payload["payment_method"] == "wallet"
    assert payload["wallet_id"] == "w_1"
    assert "recipients" not in payload
    assert "note" not in payload


def test_payment_event_ids_only_successes_with_ids():
    """Test export ids are the successful results that carry an event id"""
    results = [
        PaymentResult(bill_id="1", success=True, payment_event_id=501),
        PaymentResult(bill_id="2", success=False),
        PaymentResult(bill_id="3", success=True, payment_event_id=None),
        PaymentResult(bill_id="4", success=True, payment_event_id=502),
    ]
    assert payment_event_ids(results) == [501, 502]


async def test_coordinator_success(finance_client, make_payment_response):
    """Test mixed results pass through and the bill cache is invalidated"""
    finance_client.pay_bills.return_value = make_payment_response((1, 501), (2, 502), (3, None))
    coordinator = SubmissionCoordinator(finance_client)

    outcome = await coordinator.submit("org_1", {"bill_ids": [1, 2, 3]})

    assert [r.success for r in outcome.results] == [True, True, False]
    assert outcome.payment_event_ids == [501, 502]
    assert outcome.summary.successful == 2
    assert outcome.transport_failed is False
    finance_client.invalidate_bills.assert_called_once_with("org_1")


async def test_coordinator_sends_idempotency_key(finance_client):
    """Test each submission carries a fresh idempotency key"""
    coordinator = SubmissionCoordinator(finance_client)
    await coordinator.submit("org_1", {"bill_ids": [1]})
    await coordinator.submit("org_1", {"bill_ids": [1]})

    keys = [call.kwargs["idempotency_key"] for call in finance_client.pay_bills.await_args_list]
    assert all(keys)
    assert keys[0] != keys[1]


async def test_coordinator_transport_failure_synthesizes_all_row(finance_client):
    """Test a failed call becomes one failure row standing for every bill"""
    finance_client.pay_bills = AsyncMock(side_effect=FinanceAPIError("Finance API timeout after 10.0s"))
    coordinator = SubmissionCoordinator(finance_client)

    outcome = await coordinator.submit("org_1", {"bill_ids": [1, 2, 3]})

    assert len(outcome.results) == 1
    assert outcome.results[0].bill_id == ALL_BILLS
    assert outcome.results[0].success is False
    assert outcome.results[0].error_message == "Finance API timeout after 10.0s"
    assert outcome.transport_failed is True
    assert outcome.payment_event_ids == []
    assert outcome.summary.failed == 3
    finance_client.invalidate_bills.assert_called_once_with("org_1")


async def test_coordinator_empty_results(finance_client):
    """Test an empty result list is reported as a failure"""
    finance_client.pay_bills.return_value = PaymentResponse(
        success=False, results=[], summary=SubmissionSummary(total=0, successful=0, failed=0)
    )

    outcome = await SubmissionCoordinator(finance_client).submit("org_1", {"bill_ids": [1]})

    assert outcome.all_failed
    assert outcome.results[0].bill_id == ALL_BILLS
