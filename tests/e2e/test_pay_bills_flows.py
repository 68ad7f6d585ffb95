"""
E2E tests driving the workflow against the mock finance backend.

The mock server is mounted in-process through httpx.ASGITransport, so the
real HTTP client, wire mapping and caches are exercised without a network.

Scenarios:
- bank account batch with one vendor rejected, exported in UGX
- USD bill paid from a UGX account, export needs conversion consent
- mobile money batch filled from saved and ERP phone numbers
- wallet batch without recipients
- expired backend session
"""

import httpx
import pytest

from billpay_gateway.domain.exceptions import RecipientLookupError
from billpay_gateway.domain.models import DeliveryMode, ExportStatus, WorkflowStep
from billpay_gateway.domain.workflow import PayBillsWorkflow
from billpay_gateway.infrastructure.clients.finance import FinanceClient
from billpay_gateway.infrastructure.clients.http import AuthenticatedHttpClient
from mock_finance_server.main import app as mock_app
from mock_finance_server.main import reset_state, state

ORG = "org_demo"


@pytest.fixture(autouse=True)
def fresh_backend():
    reset_state()
    yield
    reset_state()


def _finance_client(token: str = "test-token") -> FinanceClient:
    http = AuthenticatedHttpClient(
        base_url="http://finance.test",
        token=token,
        csrf_token="csrf-token",
        transport=httpx.ASGITransport(app=mock_app),
    )
    return FinanceClient(http=http)


async def _open(client: FinanceClient, bill_ids) -> PayBillsWorkflow:
    listing = {bill.id: bill for bill in await client.list_bills(ORG)}
    workflow = PayBillsWorkflow(ORG, [listing[i] for i in bill_ids], client)
    await workflow.open()
    return workflow


@pytest.mark.integration
async def test_bank_batch_with_rejected_vendor():
    """
    Bank account batch: Acme auto-filled, the others entered manually.
    Expected: 2 of 3 paid, export of the 2 payment events, paid bill leaves the listing
    """
    client = _finance_client()
    workflow = await _open(client, [301, 302, 304])

    assert workflow.sources[0].id == "ba_1"
    workflow.select_source("bank_account", "ba_1")
    workflow.continue_from_source()

    acme = await workflow.autofill_recipient(301)
    assert acme.bank_id == 1
    assert acme.account_number == "0101234567"

    with pytest.raises(RecipientLookupError):
        await workflow.autofill_recipient(302)
    for bill_id in (302, 304):
        await workflow.choose_recipient_bank(bill_id, 3)
        workflow.set_recipient_bank_account(bill_id, f"77{bill_id}", "Vendor Account")
    workflow.continue_from_recipients()

    workflow.set_amount(302, "150000")
    outcome = await workflow.submit()

    assert outcome.summary.successful == 2
    assert outcome.payment_event_ids == [501, 502]
    assert workflow.step == WorkflowStep.EXPORT

    export = await workflow.export()
    assert export.status == ExportStatus.COMPLETED
    assert export.file.payment_count == 2
    assert workflow.step == WorkflowStep.RESULT

    view = workflow.result_view()
    assert [row.success for row in view.rows] == [True, True, False]
    assert view.rows[2].error_message == "Payee account could not be verified"

    remaining = {bill.id: bill for bill in await client.list_bills(ORG)}
    assert 301 not in remaining
    assert str(remaining[302].amount_due) == "300000"


@pytest.mark.integration
async def test_cross_currency_export_with_consent():
    """
    USD bill paid from the UGX operating account.
    Expected: provisional balance check passes, export asks for conversion, one re-attempt
    """
    client = _finance_client()
    workflow = await _open(client, [303])
    assert workflow.currency == "USD"

    workflow.select_source("bank_account", "ba_1")
    assert workflow.has_sufficient_balance
    workflow.continue_from_source()

    recipient = await workflow.autofill_recipient(303)
    assert recipient.bank_id == 2
    workflow.continue_from_recipients()
    await workflow.submit()

    prompts = []

    def consent(prompt):
        prompts.append(prompt)
        return True

    export = await workflow.export(consent=consent)

    assert export.status == ExportStatus.COMPLETED
    assert export.attempts == 2
    assert prompts[0].mismatched_payments[0].from_currency == "USD"
    assert [call["allow_currency_conversion"] for call in state["export_calls"]] == [False, True]


@pytest.mark.integration
async def test_cross_currency_export_declined():
    """
    Same USD payment, operator declines conversion.
    Expected: stays on export with no file, can still skip
    """
    client = _finance_client()
    workflow = await _open(client, [303])
    workflow.select_source("bank_account", "ba_1")
    workflow.continue_from_source()
    await workflow.autofill_recipient(303)
    workflow.continue_from_recipients()
    await workflow.submit()

    export = await workflow.export(consent=lambda prompt: False)

    assert export.status == ExportStatus.CONVERSION_REQUIRED
    assert workflow.step == WorkflowStep.EXPORT
    assert len(state["export_calls"]) == 1
    assert workflow.skip_export() == WorkflowStep.RESULT


@pytest.mark.integration
async def test_mobile_money_batch():
    """
    Mobile money source: delivery locked to mobile.
    Expected: saved and ERP phone numbers accepted, result without export
    """
    client = _finance_client()
    workflow = await _open(client, [301, 302])
    workflow.select_source("mobile_money", "mm_1")
    workflow.continue_from_source()
    assert workflow.recipients.mode == DeliveryMode.MOBILE

    workflow.use_saved_phone(301)
    recipient = await workflow.autofill_recipient(302)
    assert recipient.phone_number == "0701555444"
    workflow.continue_from_recipients()

    outcome = await workflow.submit()

    assert outcome.any_succeeded
    assert workflow.step == WorkflowStep.RESULT
    assert state["export_calls"] == []


@pytest.mark.integration
async def test_wallet_batch():
    """
    Wallet source: no recipients step.
    Expected: straight to confirm and result
    """
    client = _finance_client()
    workflow = await _open(client, [302])
    workflow.select_source("wallet", "w_1")

    assert workflow.continue_from_source() == WorkflowStep.CONFIRM
    await workflow.submit()
    assert workflow.step == WorkflowStep.RESULT
    assert workflow.result_view().successful == 1


@pytest.mark.integration
async def test_duplicate_request_replayed_by_idempotency_key():
    """
    Same idempotency key sent twice.
    Expected: the backend pays once and replays the first response
    """
    client = _finance_client()
    payload = {"organization_id": ORG, "bill_ids": [302], "amounts": {"302": "1000"},
               "currency_code": "UGX", "payment_method": "wallet", "wallet_id": "w_1"}

    first = await client.pay_bills(payload, idempotency_key="same-key")
    second = await client.pay_bills(payload, idempotency_key="same-key")

    assert first.results[0].payment_event_id == second.results[0].payment_event_id
    assert state["pay_calls"] == 1


@pytest.mark.integration
async def test_expired_session():
    """
    Backend rejects the token.
    Expected: workflow opens with a source error and the client session is dropped
    """
    bills = await _finance_client().list_bills(ORG)
    client = _finance_client(token="expired")
    workflow = PayBillsWorkflow(ORG, bills[:1], client)

    await workflow.open()

    assert workflow.sources == []
    assert "log in again" in workflow.sources_error
    assert client.http.has_session is False
