"""Bank payment file export with currency conversion negotiation"""

import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union

from billpay_gateway.domain.exceptions import FinanceAPIError
from billpay_gateway.domain.models import (
    ConversionPrompt,
    ExportFormat,
    ExportOutcome,
    ExportStatus,
)
from billpay_gateway.infrastructure.observability.metrics import (
    conversion_prompt_counter,
    export_attempt_counter,
)
from billpay_gateway.utils.formatting import format_currency

logger = logging.getLogger(__name__)

ConsentCallback = Callable[[ConversionPrompt], Union[bool, Awaitable[bool]]]


def describe_conversion(prompt: ConversionPrompt) -> str:
    """Operator-facing text: message, one line per mismatched bill, then the question"""
    lines = [
        f"• Bill {p.reference}: {format_currency(p.amount, p.from_currency)} → {p.to_currency}"
        for p in prompt.mismatched_payments
    ]
    return "\n\n".join(part for part in (prompt.message, "\n".join(lines), prompt.prompt) if part)


class ExportNegotiator:
    """
    Runs one export action.

    A conversion prompt is answered through ``consent``; with consent the
    request is re-issued once with conversion allowed. A second prompt is a
    failure, never another request.
    """

    def __init__(self, client):
        self.client = client

    async def attempt_export(
        self,
        payment_event_ids: List[int],
        export_format: ExportFormat,
        source_account_id: Optional[str],
        allow_conversion: bool = False,
        consent: Optional[ConsentCallback] = None,
    ) -> ExportOutcome:
        attempts = 0
        try:
            attempts += 1
            response = await self.client.export_bill_payment(
                payment_event_ids, export_format, allow_conversion, source_account_id
            )

            if isinstance(response, ConversionPrompt) and not allow_conversion:
                conversion_prompt_counter.inc()
                approved = await _ask(consent, response)
                if not approved:
                    logger.info("Currency conversion declined", extra={"mismatched": len(response.mismatched_payments)})
                    return self._finish(ExportOutcome(ExportStatus.CONVERSION_REQUIRED, prompt=response, attempts=attempts))

                attempts += 1
                response = await self.client.export_bill_payment(
                    payment_event_ids, export_format, True, source_account_id
                )

            if isinstance(response, ConversionPrompt):
                return self._finish(ExportOutcome(
                    ExportStatus.FAILED,
                    prompt=response,
                    error=response.message or "Currency conversion could not be applied",
                    attempts=attempts,
                ))

        except FinanceAPIError as e:
            logger.error(f"Payment file export failed: {e}")
            error = str(e) or "Failed to export payment file"
            return self._finish(ExportOutcome(ExportStatus.FAILED, error=error, attempts=attempts))

        return self._finish(ExportOutcome(ExportStatus.COMPLETED, file=response, attempts=attempts))

    @staticmethod
    def _finish(outcome: ExportOutcome) -> ExportOutcome:
        export_attempt_counter.labels(outcome=outcome.status.value).inc()
        return outcome


async def _ask(consent: Optional[ConsentCallback], prompt: ConversionPrompt) -> bool:
    if consent is None:
        return False
    answer = consent(prompt)
    if inspect.isawaitable(answer):
        answer = await answer
    return bool(answer)
