"""/v1/workflows - pay-bills workflow session endpoints"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response

from billpay_gateway.api.dependencies import get_finance_client, get_request_id, get_sessions
from billpay_gateway.api.v1.schemas import (
    AmountIssueSchema,
    AmountRequest,
    BankAccountRequest,
    BankSelectionRequest,
    BillSchema,
    BillView,
    ConversionPromptSchema,
    DeliveryModeRequest,
    ExportFileSchema,
    ExportOutcomeSchema,
    ExportRequest,
    MismatchedPaymentSchema,
    NoteRequest,
    OpenWorkflowRequest,
    PaymentResultSchema,
    PhoneRequest,
    RecipientSchema,
    ResultRowSchema,
    ResultViewSchema,
    SelectSourceRequest,
    SourceSchema,
    SummarySchema,
    WorkflowResponse,
)
from billpay_gateway.domain.exceptions import UnknownBillError, WorkflowStateError
from billpay_gateway.domain.export import describe_conversion
from billpay_gateway.domain.models import (
    BankRecipient,
    BillToPay,
    ExportOutcome,
    MobileRecipient,
    PaymentSource,
    WorkflowStep,
)
from billpay_gateway.domain.workflow import PayBillsWorkflow
from billpay_gateway.infrastructure.clients.finance import FinanceClient
from billpay_gateway.infrastructure.sessions import WorkflowSessions
from billpay_gateway.utils.formatting import format_currency, format_phone, normalize_currency_code

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/workflows", response_model=WorkflowResponse, status_code=201)
async def open_workflow(
    request_body: OpenWorkflowRequest,
    request: Request,
    sessions: WorkflowSessions = Depends(get_sessions),
    client: FinanceClient = Depends(get_finance_client),
):
    """
    Open a pay-bills workflow for a batch of bills.

    Bills are either supplied inline or picked by id from the organization's
    ERP listing. Payment sources are snapshotted once, here; a listing
    failure still opens the workflow and is reported in ``sources_error``.
    """
    if request_body.bills is not None:
        bills = [_to_bill(b) for b in request_body.bills]
    else:
        bills = await _lookup_bills(client, request_body.organization_id, request_body.bill_ids)

    workflow = sessions.create(
        request_body.organization_id,
        bills,
        client,
        country_code=request_body.country_code,
    )
    await workflow.open()
    logger.info(
        "Workflow opened",
        extra={
            "request_id": get_request_id(request),
            "workflow_id": workflow.id,
            "source_count": len(workflow.sources),
        },
    )
    return workflow_response(workflow)


@router.get("/workflows/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(workflow_id: str, sessions: WorkflowSessions = Depends(get_sessions)):
    return workflow_response(sessions.get(workflow_id))


@router.delete("/workflows/{workflow_id}", status_code=204)
async def close_workflow(workflow_id: str, sessions: WorkflowSessions = Depends(get_sessions)):
    """Discard the workflow; a payment still in flight settles unseen"""
    sessions.close(workflow_id)
    return Response(status_code=204)


# Navigation


@router.post("/workflows/{workflow_id}/source", response_model=WorkflowResponse)
async def select_source(
    workflow_id: str,
    request_body: SelectSourceRequest,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    workflow = sessions.get(workflow_id)
    workflow.select_source(request_body.kind, request_body.source_id)
    return workflow_response(workflow)


@router.post("/workflows/{workflow_id}/continue", response_model=WorkflowResponse)
async def continue_workflow(workflow_id: str, sessions: WorkflowSessions = Depends(get_sessions)):
    workflow = sessions.get(workflow_id)
    if workflow.step == WorkflowStep.SOURCE:
        workflow.continue_from_source()
    elif workflow.step == WorkflowStep.RECIPIENTS:
        workflow.continue_from_recipients()
    else:
        raise WorkflowStateError(f"Cannot continue from {workflow.step.value}")
    return workflow_response(workflow)


@router.post("/workflows/{workflow_id}/back", response_model=WorkflowResponse)
async def go_back(workflow_id: str, sessions: WorkflowSessions = Depends(get_sessions)):
    workflow = sessions.get(workflow_id)
    workflow.back()
    return workflow_response(workflow)


# Recipients


@router.put("/workflows/{workflow_id}/delivery-mode", response_model=WorkflowResponse)
async def set_delivery_mode(
    workflow_id: str,
    request_body: DeliveryModeRequest,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    workflow = sessions.get(workflow_id)
    workflow.set_delivery_mode(request_body.mode)
    return workflow_response(workflow)


@router.put("/workflows/{workflow_id}/recipients/{bill_id}/phone", response_model=WorkflowResponse)
async def set_recipient_phone(
    workflow_id: str,
    bill_id: int,
    request_body: PhoneRequest,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    workflow = sessions.get(workflow_id)
    workflow.set_recipient_phone(bill_id, request_body.phone_number)
    return workflow_response(workflow)


@router.post("/workflows/{workflow_id}/recipients/{bill_id}/saved-phone", response_model=WorkflowResponse)
async def use_saved_phone(workflow_id: str, bill_id: int, sessions: WorkflowSessions = Depends(get_sessions)):
    workflow = sessions.get(workflow_id)
    workflow.use_saved_phone(bill_id)
    return workflow_response(workflow)


@router.put("/workflows/{workflow_id}/recipients/{bill_id}/bank", response_model=WorkflowResponse)
async def choose_recipient_bank(
    workflow_id: str,
    bill_id: int,
    request_body: BankSelectionRequest,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    workflow = sessions.get(workflow_id)
    await workflow.choose_recipient_bank(bill_id, request_body.bank_id)
    return workflow_response(workflow)


@router.put("/workflows/{workflow_id}/recipients/{bill_id}/account", response_model=WorkflowResponse)
async def set_recipient_bank_account(
    workflow_id: str,
    bill_id: int,
    request_body: BankAccountRequest,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    workflow = sessions.get(workflow_id)
    workflow.set_recipient_bank_account(bill_id, request_body.account_number, request_body.account_name)
    return workflow_response(workflow)


@router.post("/workflows/{workflow_id}/recipients/{bill_id}/autofill", response_model=WorkflowResponse)
async def autofill_recipient(
    workflow_id: str,
    bill_id: int,
    request: Request,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    """Fill the bill's recipient from its ERP contact for the current delivery mode"""
    workflow = sessions.get(workflow_id)
    await workflow.autofill_recipient(bill_id)
    logger.info(
        "Recipient auto-filled",
        extra={"request_id": get_request_id(request), "workflow_id": workflow_id, "bill_id": bill_id},
    )
    return workflow_response(workflow)


# Confirm


@router.put("/workflows/{workflow_id}/amounts/{bill_id}", response_model=WorkflowResponse)
async def set_amount(
    workflow_id: str,
    bill_id: int,
    request_body: AmountRequest,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    workflow = sessions.get(workflow_id)
    workflow.set_amount(bill_id, request_body.amount or "")
    return workflow_response(workflow)


@router.put("/workflows/{workflow_id}/note", response_model=WorkflowResponse)
async def set_note(workflow_id: str, request_body: NoteRequest, sessions: WorkflowSessions = Depends(get_sessions)):
    workflow = sessions.get(workflow_id)
    workflow.set_note(request_body.note)
    return workflow_response(workflow)


@router.post("/workflows/{workflow_id}/submit", response_model=WorkflowResponse)
async def submit_payment(
    workflow_id: str,
    request: Request,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    """
    Pay every bill in the batch with one backend call.

    Per-bill failures come back as result rows with a 200; the workflow moves
    to export when a bank-account payment had any success, else to result.
    """
    workflow = sessions.get(workflow_id)
    outcome = await workflow.submit()
    if outcome is None:
        # Closed while the payment was in flight
        raise WorkflowStateError("Workflow was closed before the payment completed")

    if outcome.transport_failed:
        logger.error(
            "Payment submission failed",
            extra={"request_id": get_request_id(request), "workflow_id": workflow_id},
        )
    return workflow_response(workflow)


# Export


@router.post("/workflows/{workflow_id}/export", response_model=WorkflowResponse)
async def export_payment_file(
    workflow_id: str,
    request_body: ExportRequest,
    sessions: WorkflowSessions = Depends(get_sessions),
):
    """
    Generate the bank upload file.

    When the backend needs currency conversion the response carries the
    prompt and the workflow stays on export; repeat the call with
    ``allow_conversion=true`` to consent.
    """
    workflow = sessions.get(workflow_id)
    if request_body.format is not None:
        workflow.set_export_format(request_body.format)
    await workflow.export(allow_conversion=request_body.allow_conversion)
    return workflow_response(workflow)


@router.post("/workflows/{workflow_id}/export/skip", response_model=WorkflowResponse)
async def skip_export(workflow_id: str, sessions: WorkflowSessions = Depends(get_sessions)):
    workflow = sessions.get(workflow_id)
    workflow.skip_export()
    return workflow_response(workflow)


# Presentation


def workflow_response(workflow: PayBillsWorkflow) -> WorkflowResponse:
    currency = workflow.currency
    recipients = workflow.recipients
    return WorkflowResponse(
        workflow_id=workflow.id,
        organization_id=workflow.organization_id,
        step=workflow.step,
        progress_index=workflow.progress_index,
        currency=currency,
        bills=[_bill_view(workflow, bill) for bill in workflow.bills],
        sources=[_source_schema(s) for s in workflow.sources],
        sources_error=workflow.sources_error,
        selected_source=_source_schema(workflow.selected_source) if workflow.selected_source else None,
        has_sufficient_balance=workflow.has_sufficient_balance,
        requires_recipients=workflow.requires_recipients,
        delivery_mode=recipients.mode,
        delivery_mode_locked=recipients.mode_locked,
        recipients=[
            _recipient_schema(bill_id, r, recipients.country_code) for bill_id, r in recipients.entries.items()
        ],
        missing_recipient_bill_ids=recipients.missing_bill_ids(),
        total_amount=workflow.total_amount,
        total_display=format_currency(workflow.total_amount, currency),
        partial_bill_ids=workflow.partial_bill_ids,
        amount_issues=[AmountIssueSchema.model_validate(i) for i in workflow.amount_issues],
        note=workflow.note,
        can_continue_from_source=workflow.can_continue_from_source,
        can_continue_from_recipients=workflow.can_continue_from_recipients,
        can_submit=workflow.can_submit,
        can_export=workflow.can_export,
        is_submitting=workflow.is_submitting,
        is_exporting=workflow.is_exporting,
        summary=SummarySchema.model_validate(workflow.summary) if workflow.summary else None,
        results=[PaymentResultSchema.model_validate(r) for r in workflow.results],
        payment_event_ids=workflow.payment_event_ids,
        export_format=workflow.export_format,
        export=_export_schema(workflow.export_outcome) if workflow.export_outcome else None,
        result=_result_schema(workflow) if workflow.step == WorkflowStep.RESULT else None,
    )


def _to_bill(schema: BillSchema) -> BillToPay:
    return BillToPay(
        id=schema.id,
        vendor_name=schema.vendor_name,
        invoice_number=schema.invoice_number,
        currency_code=normalize_currency_code(schema.currency_code),
        amount_due=schema.amount_due,
        contact_id=schema.contact_id,
        vendor_phone=schema.vendor_phone,
    )


async def _lookup_bills(client: FinanceClient, organization_id: str, bill_ids: Optional[List[int]]) -> List[BillToPay]:
    listing = {bill.id: bill for bill in await client.list_bills(organization_id)}
    missing = [bill_id for bill_id in bill_ids if bill_id not in listing]
    if missing:
        raise UnknownBillError(f"Bills not found for organization: {', '.join(str(b) for b in missing)}")
    return [listing[bill_id] for bill_id in bill_ids]


def _bill_view(workflow: PayBillsWorkflow, bill: BillToPay) -> BillView:
    amount = workflow.amounts.resolved(bill)
    return BillView(
        id=bill.id,
        vendor_name=bill.vendor_name,
        invoice_number=bill.invoice_number,
        currency_code=bill.currency_code,
        amount_due=bill.amount_due,
        amount=amount,
        amount_display=format_currency(amount, bill.currency_code),
        amount_entry=workflow.amounts.entries.get(bill.id),
        is_partial=workflow.amounts.is_partial(bill),
    )


def _source_schema(source: PaymentSource) -> SourceSchema:
    return SourceSchema(
        id=source.id,
        kind=source.kind,
        name=source.name,
        currency=source.currency,
        balance=source.balance,
        balance_display=format_currency(source.balance, source.currency),
        is_default=source.is_default,
        provider=source.provider,
        provider_name=source.provider_name,
        phone_number=source.phone_number,
        bank_name=source.bank_name,
        account_number=source.account_number,
    )


def _recipient_schema(bill_id: int, recipient, country_code: str) -> RecipientSchema:
    if isinstance(recipient, MobileRecipient):
        return RecipientSchema(
            bill_id=bill_id,
            mode=recipient.mode,
            complete=recipient.is_complete,
            phone_number=recipient.phone_number,
            phone_display=format_phone(recipient.phone_number, country_code) if recipient.phone_number else None,
            contact_id=recipient.contact_id,
            contact_name=recipient.contact_name,
        )
    if isinstance(recipient, BankRecipient):
        return RecipientSchema(
            bill_id=bill_id,
            mode=recipient.mode,
            complete=recipient.is_complete,
            bank_id=recipient.bank_id,
            bank_name=recipient.bank_name,
            swift_code=recipient.swift_code,
            account_number=recipient.account_number,
            account_name=recipient.account_name,
        )
    raise TypeError(f"Unsupported recipient type: {type(recipient).__name__}")


def _export_schema(outcome: ExportOutcome) -> ExportOutcomeSchema:
    prompt = None
    if outcome.prompt is not None:
        prompt = ConversionPromptSchema(
            message=outcome.prompt.message,
            prompt=outcome.prompt.prompt,
            description=describe_conversion(outcome.prompt),
            bank_account_currency=outcome.prompt.bank_account_currency,
            mismatched_payments=[
                MismatchedPaymentSchema.model_validate(p) for p in outcome.prompt.mismatched_payments
            ],
        )
    return ExportOutcomeSchema(
        status=outcome.status,
        attempts=outcome.attempts,
        error=outcome.error,
        file=ExportFileSchema.model_validate(outcome.file) if outcome.file else None,
        prompt=prompt,
    )


def _result_schema(workflow: PayBillsWorkflow) -> ResultViewSchema:
    view = workflow.result_view()
    return ResultViewSchema(
        rows=[ResultRowSchema.model_validate(row) for row in view.rows],
        successful=view.successful,
        failed=view.failed,
        all_failed=view.all_failed,
        export_file=ExportFileSchema.model_validate(view.export_file) if view.export_file else None,
    )
