"""Pay-bills workflow - the step machine an operator walks through to pay a batch of bills"""

import logging
import time
import uuid
from decimal import Decimal
from typing import Dict, List, Optional

from billpay_gateway.config import settings
from billpay_gateway.domain.amounts import PaymentAmounts
from billpay_gateway.domain.exceptions import (
    SubmissionInFlightError,
    WorkflowStateError,
)
from billpay_gateway.domain.export import ConsentCallback, ExportNegotiator
from billpay_gateway.domain.models import (
    AmountIssue,
    BillToPay,
    DeliveryMode,
    ExportFormat,
    ExportOutcome,
    ExportStatus,
    PaymentResult,
    PaymentSource,
    RecipientDetails,
    SourceKind,
    SubmissionOutcome,
    SubmissionSummary,
    WorkflowStep,
)
from billpay_gateway.domain.recipients import RecipientCollector
from billpay_gateway.domain.results import ResultView, present_results
from billpay_gateway.domain.sources import PaymentSourceRegistry, has_sufficient_balance
from billpay_gateway.domain.submission import SubmissionCoordinator, build_submission
from billpay_gateway.infrastructure.observability.logging import log_export, log_submission
from billpay_gateway.utils.formatting import normalize_currency_code

logger = logging.getLogger(__name__)

# Progress indicator position per step
STEP_INDEX = {
    WorkflowStep.SOURCE: 0,
    WorkflowStep.RECIPIENTS: 1,
    WorkflowStep.CONFIRM: 2,
    WorkflowStep.PROCESSING: 2,
    WorkflowStep.EXPORT: 2,
    WorkflowStep.RESULT: 2,
}

EDITABLE_STEPS = (WorkflowStep.SOURCE, WorkflowStep.RECIPIENTS, WorkflowStep.CONFIRM)


class PayBillsWorkflow:
    """
    Orchestrates paying a batch of bills.

    Steps: source -> [recipients] -> confirm -> processing -> {export | result}.
    Each forward transition is guarded by a readiness predicate; forcing one
    raises WorkflowStateError. All state is discarded on ``close()``, and any
    response that arrives after a close is ignored.
    """

    def __init__(
        self,
        organization_id: str,
        bills: List[BillToPay],
        client,
        country_code: str | None = None,
        workflow_id: str | None = None,
    ):
        if not bills:
            raise WorkflowStateError("Select at least one bill to pay")
        if len({bill.id for bill in bills}) != len(bills):
            raise WorkflowStateError("A bill can only appear once in a payment batch")

        self.id = workflow_id or uuid.uuid4().hex
        self.organization_id = organization_id
        self.bills = list(bills)
        self.client = client
        self.currency = normalize_currency_code(bills[0].currency_code, settings.default_currency)

        self.registry = PaymentSourceRegistry(client)
        self.recipients = RecipientCollector(self.bills, client, country_code or settings.default_country_code)
        self.amounts = PaymentAmounts(self.bills)
        self.coordinator = SubmissionCoordinator(client)
        self.negotiator = ExportNegotiator(client)

        self.is_open = False
        # Bumped on close so late responses can tell they belong to a dead session
        self._generation = 0
        # Bumped on skip so an export still in flight is abandoned
        self._export_token = 0
        self._reset_state()

    def _reset_state(self) -> None:
        self.step = WorkflowStep.SOURCE
        self.selected_source: Optional[PaymentSource] = None
        self.note = ""
        self.results: List[PaymentResult] = []
        self.summary: Optional[SubmissionSummary] = None
        self.payment_event_ids: List[int] = []
        self.export_format = ExportFormat(settings.default_export_format)
        self.export_outcome: Optional[ExportOutcome] = None
        self.is_submitting = False
        self.is_exporting = False
        self.registry.clear()
        self.recipients.reset()
        self.amounts.clear()

    # Lifecycle

    async def open(self) -> List[PaymentSource]:
        """Start a fresh session and snapshot the organization's payment sources"""
        self._generation += 1
        self._reset_state()
        self.is_open = True
        generation = self._generation

        sources = await self.registry.load(self.organization_id)
        if generation != self._generation:
            return []
        return sources

    def close(self) -> None:
        """Discard every piece of workflow state; in-flight calls are left to settle unseen"""
        self._generation += 1
        self._reset_state()
        self.is_open = False

    # Derived values

    @property
    def sources(self) -> List[PaymentSource]:
        return list(self.registry.sources)

    @property
    def sources_error(self) -> Optional[str]:
        return self.registry.error

    @property
    def total_amount(self) -> Decimal:
        return self.amounts.total()

    @property
    def has_sufficient_balance(self) -> bool:
        if self.selected_source is None:
            return False
        return has_sufficient_balance(self.selected_source, self.total_amount, self.currency)

    @property
    def requires_recipients(self) -> bool:
        """Pooled wallets route funds server-side; every other source needs per-bill routing"""
        return self.selected_source is not None and self.selected_source.kind != SourceKind.WALLET

    @property
    def progress_index(self) -> int:
        return STEP_INDEX[self.step]

    @property
    def partial_bill_ids(self) -> List[int]:
        return self.amounts.partial_bill_ids()

    @property
    def amount_issues(self) -> List[AmountIssue]:
        return self.amounts.validate()

    def resolved_amounts(self) -> Dict[int, Decimal]:
        return {bill.id: self.amounts.resolved(bill) for bill in self.bills}

    # Readiness predicates

    @property
    def can_continue_from_source(self) -> bool:
        return self.step == WorkflowStep.SOURCE and self.has_sufficient_balance

    @property
    def can_continue_from_recipients(self) -> bool:
        return self.step == WorkflowStep.RECIPIENTS and self.recipients.is_complete()

    @property
    def can_submit(self) -> bool:
        return (
            self.step == WorkflowStep.CONFIRM
            and not self.is_submitting
            and self.has_sufficient_balance
            and not self.amount_issues
            and (not self.requires_recipients or self.recipients.is_complete())
        )

    @property
    def can_export(self) -> bool:
        return self.step == WorkflowStep.EXPORT and not self.is_exporting and bool(self.payment_event_ids)

    # Source step

    def select_source(self, kind: SourceKind | str, source_id: str) -> PaymentSource:
        self._require_step(WorkflowStep.SOURCE)
        source = self.registry.find(kind, source_id)
        if source is None:
            raise WorkflowStateError(f"Unknown payment source {kind}:{source_id}")

        self.selected_source = source
        if source.kind == SourceKind.MOBILE_MONEY:
            self.recipients.configure(DeliveryMode.MOBILE, locked=True)
        elif source.kind == SourceKind.BANK_ACCOUNT:
            self.recipients.configure(DeliveryMode.BANK, locked=False)
        return source

    def continue_from_source(self) -> WorkflowStep:
        if not self.can_continue_from_source:
            if self.selected_source is None:
                raise WorkflowStateError("Select a payment source to continue")
            raise WorkflowStateError("Insufficient balance. Please top up or select another source.")
        self.step = WorkflowStep.RECIPIENTS if self.requires_recipients else WorkflowStep.CONFIRM
        return self.step

    # Recipients step

    def set_delivery_mode(self, mode: DeliveryMode | str) -> None:
        self._require_step(WorkflowStep.RECIPIENTS)
        self.recipients.set_mode(DeliveryMode(mode))

    def set_recipient_phone(self, bill_id: int, phone_number: str) -> RecipientDetails:
        self._require_step(WorkflowStep.RECIPIENTS)
        return self.recipients.set_phone(bill_id, phone_number)

    def use_saved_phone(self, bill_id: int) -> RecipientDetails:
        self._require_step(WorkflowStep.RECIPIENTS)
        return self.recipients.use_saved_phone(bill_id)

    async def choose_recipient_bank(self, bill_id: int, bank_id: int) -> RecipientDetails:
        self._require_step(WorkflowStep.RECIPIENTS)
        return await self.recipients.choose_bank(bill_id, bank_id)

    def set_recipient_bank_account(
        self,
        bill_id: int,
        account_number: str | None = None,
        account_name: str | None = None,
    ) -> RecipientDetails:
        self._require_step(WorkflowStep.RECIPIENTS)
        return self.recipients.set_bank_account(bill_id, account_number, account_name)

    async def autofill_recipient(self, bill_id: int) -> RecipientDetails:
        """Pull routing details from the bill's ERP contact; lookup misses raise RecipientLookupError"""
        self._require_step(WorkflowStep.RECIPIENTS)
        return await self.recipients.autofill(bill_id)

    def continue_from_recipients(self) -> WorkflowStep:
        if not self.can_continue_from_recipients:
            self._require_step(WorkflowStep.RECIPIENTS)
            missing = ", ".join(str(b) for b in self.recipients.missing_bill_ids())
            raise WorkflowStateError(f"Recipient details missing for bills: {missing}")
        self.step = WorkflowStep.CONFIRM
        return self.step

    # Confirm step

    def set_amount(self, bill_id: int, value: str) -> None:
        self._require_editable()
        self.amounts.set(bill_id, value)

    def set_note(self, note: str) -> None:
        self._require_editable()
        self.note = note or ""

    def back(self) -> WorkflowStep:
        if self.step == WorkflowStep.CONFIRM:
            self.step = WorkflowStep.RECIPIENTS if self.requires_recipients else WorkflowStep.SOURCE
        elif self.step == WorkflowStep.RECIPIENTS:
            self.step = WorkflowStep.SOURCE
        else:
            raise WorkflowStateError(f"Cannot go back from {self.step.value}")
        return self.step

    async def submit(self) -> Optional[SubmissionOutcome]:
        """
        Submit the batch as a single request.

        Returns None when the workflow was closed before the response arrived.
        """
        if self.is_submitting:
            raise SubmissionInFlightError("Payment is already being processed")
        self._require_step(WorkflowStep.CONFIRM)
        if not self.can_submit:
            issues = "; ".join(f"bill {i.bill_id}: {i.reason}" for i in self.amount_issues)
            raise WorkflowStateError(issues or "Payment is not ready to submit")

        source = self.selected_source
        payload = build_submission(
            organization_id=self.organization_id,
            bills=self.bills,
            source=source,
            amounts=self.amounts.resolved_map(),
            currency=self.currency,
            note=self.note,
            recipients=self.recipients.entries if self.requires_recipients else None,
        )

        generation = self._generation
        self.is_submitting = True
        self.step = WorkflowStep.PROCESSING
        start_time = time.time()
        try:
            outcome = await self.coordinator.submit(self.organization_id, payload)
        finally:
            if generation == self._generation:
                self.is_submitting = False

        if generation != self._generation:
            logger.info("Discarding payment response for closed workflow", extra={"workflow_id": self.id})
            return None

        self.results = outcome.results
        self.summary = outcome.summary
        self.payment_event_ids = outcome.payment_event_ids
        if source.kind == SourceKind.BANK_ACCOUNT and outcome.any_succeeded:
            self.step = WorkflowStep.EXPORT
        else:
            self.step = WorkflowStep.RESULT

        log_submission(
            workflow_id=self.id,
            organization_id=self.organization_id,
            source_kind=source.kind.value,
            bill_count=len(self.bills),
            successful=sum(1 for r in outcome.results if r.success),
            failed=sum(1 for r in outcome.results if not r.success),
            duration_ms=(time.time() - start_time) * 1000,
        )
        return outcome

    # Export step

    def set_export_format(self, export_format: ExportFormat | str) -> None:
        self._require_step(WorkflowStep.EXPORT)
        self.export_format = ExportFormat(export_format)

    async def export(
        self,
        allow_conversion: bool = False,
        consent: Optional[ConsentCallback] = None,
    ) -> Optional[ExportOutcome]:
        """
        Generate the bank upload file for the successful payments.

        Completed exports move to the result step; declined conversions and
        failures stay on the export step.
        """
        self._require_step(WorkflowStep.EXPORT)
        if self.is_exporting:
            raise WorkflowStateError("Export already in progress")
        if not self.payment_event_ids:
            raise WorkflowStateError("No successful payments to export")

        self._export_token += 1
        generation, token = self._generation, self._export_token
        self.is_exporting = True
        try:
            outcome = await self.negotiator.attempt_export(
                payment_event_ids=list(self.payment_event_ids),
                export_format=self.export_format,
                source_account_id=self.selected_source.id,
                allow_conversion=allow_conversion,
                consent=consent,
            )
        finally:
            if generation == self._generation and token == self._export_token:
                self.is_exporting = False

        if generation != self._generation:
            return None
        if token != self._export_token:
            logger.info("Discarding export outcome after skip", extra={"workflow_id": self.id})
            return None

        self.export_outcome = outcome
        if outcome.status == ExportStatus.COMPLETED:
            self.step = WorkflowStep.RESULT

        log_export(
            workflow_id=self.id,
            status=outcome.status.value,
            attempts=outcome.attempts,
            payment_count=outcome.file.payment_count if outcome.file else None,
        )
        return outcome

    def skip_export(self) -> WorkflowStep:
        self._require_step(WorkflowStep.EXPORT)
        self._export_token += 1
        self.is_exporting = False
        self.step = WorkflowStep.RESULT
        return self.step

    # Result step

    def result_view(self) -> ResultView:
        export_file = None
        if self.export_outcome is not None and self.export_outcome.status == ExportStatus.COMPLETED:
            export_file = self.export_outcome.file
        return present_results(self.results, self.bills, self.resolved_amounts(), self.currency, export_file)

    # Helpers

    def _require_step(self, *steps: WorkflowStep) -> None:
        if not self.is_open:
            raise WorkflowStateError("Workflow is closed")
        if self.step not in steps:
            expected = " or ".join(s.value for s in steps)
            raise WorkflowStateError(f"Action requires the {expected} step, workflow is at {self.step.value}")

    def _require_editable(self) -> None:
        self._require_step(*EDITABLE_STEPS)
