"""Payment submission coordinator - one batch request, per-bill results"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from billpay_gateway.config import settings
from billpay_gateway.domain.exceptions import FinanceAPIError
from billpay_gateway.domain.models import (
    BankRecipient,
    BillToPay,
    MobileRecipient,
    PaymentResult,
    PaymentSource,
    RecipientDetails,
    SourceKind,
    SubmissionOutcome,
    SubmissionSummary,
)
from billpay_gateway.infrastructure.observability.metrics import (
    record_submission,
    submission_latency_histogram,
)

logger = logging.getLogger(__name__)

ALL_BILLS = "all"


def recipient_payload(bill_id: int, recipient: RecipientDetails) -> Dict[str, Any]:
    """Wire form of one recipient; only the variant's own fields are sent"""
    if isinstance(recipient, MobileRecipient):
        return {
            "bill_id": bill_id,
            "recipient_type": recipient.mode.value,
            "phone_number": recipient.phone_number,
        }
    if isinstance(recipient, BankRecipient):
        return {
            "bill_id": bill_id,
            "recipient_type": recipient.mode.value,
            "recipient_bank_id": recipient.bank_id,
            "bank_name": recipient.bank_name,
            "swift_code": recipient.swift_code,
            "account_number": recipient.account_number,
            "account_name": recipient.account_name,
        }
    raise TypeError(f"Unsupported recipient type: {type(recipient).__name__}")


def build_submission(
    organization_id: str,
    bills: List[BillToPay],
    source: PaymentSource,
    amounts: Dict[str, str],
    currency: str,
    note: str = "",
    recipients: Optional[Dict[int, RecipientDetails]] = None,
) -> Dict[str, Any]:
    """
    Assemble the batch payment request.

    ``amounts`` must already be resolved to one value per bill. The payment
    method discriminant decides which source fields are attached.
    """
    payload: Dict[str, Any] = {
        "organization_id": organization_id,
        "bill_ids": [bill.id for bill in bills],
        "amounts": {str(bill.id): amounts[str(bill.id)] for bill in bills},
        "currency_code": currency,
    }
    if note and note.strip():
        payload["note"] = note.strip()

    if source.kind == SourceKind.WALLET:
        payload["payment_method"] = "wallet"
        payload["wallet_id"] = source.id
    elif source.kind == SourceKind.BANK_ACCOUNT:
        payload["payment_method"] = "bank"
        payload["bank_account_id"] = source.id
        payload["account_number"] = source.account_number
        payload["bank_name"] = source.bank_name
    else:
        payload["payment_method"] = "mobile_money"
        payload["mobile_money_account_id"] = source.id
        payload["payment_provider"] = source.provider
        payload["phone_number"] = source.phone_number

    if recipients:
        payload["recipients"] = [
            recipient_payload(bill.id, recipients[bill.id]) for bill in bills if bill.id in recipients
        ]
    return payload


def payment_event_ids(results: List[PaymentResult]) -> List[int]:
    """Ids handed to export: successful results that carry an event id, in result order"""
    return [r.payment_event_id for r in results if r.success and r.payment_event_id is not None]


def failure_result(message: str) -> PaymentResult:
    """Single row standing in for every bill when the whole call failed"""
    return PaymentResult(bill_id=ALL_BILLS, success=False, error_message=message or "Payment failed")


class SubmissionCoordinator:
    """Dispatches one batch payment and normalizes whatever comes back"""

    def __init__(self, client):
        self.client = client

    async def submit(self, organization_id: str, payload: Dict[str, Any]) -> SubmissionOutcome:
        idempotency_key = uuid.uuid4().hex if settings.send_idempotency_key else None
        try:
            with submission_latency_histogram.time():
                response = await self.client.pay_bills(payload, idempotency_key=idempotency_key)
        except FinanceAPIError as e:
            logger.error(f"Payment submission failed: {e}", extra={"organization_id": organization_id})
            record_submission([False], transport_failed=True)
            bill_count = len(payload.get("bill_ids", []))
            return SubmissionOutcome(
                results=[failure_result(str(e))],
                payment_event_ids=[],
                summary=SubmissionSummary(total=bill_count, successful=0, failed=bill_count),
                transport_failed=True,
            )
        finally:
            self.client.invalidate_bills(organization_id)

        results = list(response.results)
        if not results:
            results = [failure_result("Payment service returned no results")]

        record_submission([r.success for r in results], transport_failed=False)
        return SubmissionOutcome(
            results=results,
            payment_event_ids=payment_event_ids(results),
            summary=response.summary,
        )
