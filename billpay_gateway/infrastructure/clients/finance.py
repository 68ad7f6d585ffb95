"""Finance backend client: payment sources, banks, contacts, bill payment, and file export"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from billpay_gateway.config import settings
from billpay_gateway.domain.exceptions import FinanceAPIError
from billpay_gateway.domain.models import (
    Bank,
    BillToPay,
    ContactPaymentDetails,
    ContactPhone,
    ConversionPrompt,
    ExportFile,
    ExportFormat,
    ExportResponse,
    MismatchedPayment,
    PaymentResponse,
    PaymentResult,
    SubmissionSummary,
)
from billpay_gateway.infrastructure.cache import ExpiringCache
from billpay_gateway.infrastructure.clients.http import AuthenticatedHttpClient
from billpay_gateway.utils.formatting import normalize_currency_code

BANKING_BASE = "/api/v1/banking"
XERO_BASE = "/api/v1/xero"


class FinanceClient:
    """Client for the finance backend endpoints the payment workflow consumes"""

    def __init__(
        self,
        http: AuthenticatedHttpClient | None = None,
        bank_cache_seconds: float | None = None,
        bill_cache_seconds: float | None = None,
    ):
        self.http = http or AuthenticatedHttpClient()
        self._banks = ExpiringCache(
            bank_cache_seconds if bank_cache_seconds is not None else settings.bank_list_cache_seconds
        )
        self._bills = ExpiringCache(
            bill_cache_seconds if bill_cache_seconds is not None else settings.bill_cache_seconds
        )

    async def list_payment_sources(self, organization_id: str) -> Dict[str, Any]:
        """
        Fetch raw payment sources for an organization.

        Returns the backend payload ({mobile_money_accounts, bank_accounts,
        centry_wallets?}); normalization is the registry's job.
        """
        data = await self.http.get(
            f"{BANKING_BASE}/payment-sources/",
            params={"organization": organization_id},
        )
        if not isinstance(data, dict):
            raise FinanceAPIError("Invalid payment sources payload")
        return data

    async def get_banks(self, country_code: str, search: str | None = None) -> List[Bank]:
        """Fetch banks for a country, cached per (country, search)"""
        key = (country_code.upper(), (search or "").strip().lower())
        cached = self._banks.get(key)
        if cached is not None:
            return cached

        params = {"country": country_code}
        if search:
            params["search"] = search
        data = await self.http.get(f"{BANKING_BASE}/banks/", params=params)

        try:
            banks = [
                Bank(
                    id=int(raw["id"]),
                    name=raw["name"],
                    short_name=raw.get("short_name") or "",
                    swift_code=raw.get("swift_code") or "",
                    code=raw.get("code") or "",
                )
                for raw in data.get("banks", [])
            ]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise FinanceAPIError(f"Invalid bank data from backend: {e}") from e

        self._banks.set(key, banks)
        return banks

    async def get_contact_payment_details(self, contact_id: int | str) -> ContactPaymentDetails:
        data = await self.http.get(f"{XERO_BASE}/contacts/{contact_id}/payment-details/")
        try:
            phones = [
                ContactPhone(type=str(p.get("type") or ""), number=str(p.get("number") or ""))
                for p in data.get("phone_numbers") or []
            ]
            return ContactPaymentDetails(
                contact_id=str(data.get("contact_id", contact_id)),
                name=data.get("name") or "",
                bank_account_details=data.get("bank_account_details") or None,
                bank_account_number=data.get("bank_account_number") or None,
                bank_account_name=data.get("bank_account_name") or None,
                phone_numbers=phones,
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise FinanceAPIError(f"Invalid contact payment details: {e}") from e

    async def list_bills(self, organization_id: str) -> List[BillToPay]:
        """Fetch the organization's bill listing, cached until invalidated or stale"""
        cached = self._bills.get(organization_id)
        if cached is not None:
            return cached

        data = await self.http.get(f"{XERO_BASE}/bills/", params={"organization": organization_id})
        try:
            bills = [parse_bill(raw) for raw in data]
        except (KeyError, ValueError, TypeError, ArithmeticError) as e:
            raise FinanceAPIError(f"Invalid bill data from backend: {e}") from e

        self._bills.set(organization_id, bills)
        return bills

    def invalidate_bills(self, organization_id: str) -> None:
        """Forget cached bill listings so payable/paid status is re-read"""
        self._bills.invalidate(organization_id)

    async def pay_bills(self, payload: Dict[str, Any], idempotency_key: str | None = None) -> PaymentResponse:
        """
        Submit one batch payment.

        Raises:
            FinanceAPIError: On transport errors, HTTP errors, or invalid response
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        data = await self.http.post(f"{XERO_BASE}/bills/pay/", json=payload, headers=headers)

        try:
            results = [
                PaymentResult(
                    bill_id=str(raw["bill_id"]),
                    success=bool(raw["success"]),
                    reference=raw.get("reference"),
                    payment_event_id=(
                        int(raw["payment_event_id"]) if raw.get("payment_event_id") is not None else None
                    ),
                    error_message=raw.get("error_message"),
                )
                for raw in data.get("results") or []
            ]
            raw_summary = data.get("summary")
            if raw_summary:
                summary = SubmissionSummary(
                    total=int(raw_summary["total"]),
                    successful=int(raw_summary["successful"]),
                    failed=int(raw_summary["failed"]),
                )
            else:
                successful = sum(1 for r in results if r.success)
                summary = SubmissionSummary(
                    total=len(results), successful=successful, failed=len(results) - successful
                )
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise FinanceAPIError(f"Invalid payment response from backend: {e}") from e

        return PaymentResponse(
            success=bool(data.get("success", summary.failed == 0)),
            results=results,
            summary=summary,
        )

    async def export_bill_payment(
        self,
        payment_event_ids: List[int],
        file_format: ExportFormat = ExportFormat.CSV,
        allow_currency_conversion: bool = False,
        source_account_id: Optional[str] = None,
    ) -> ExportResponse:
        """
        Ask the backend to generate a bank payment file.

        Returns either the generated file descriptor or a ConversionPrompt when
        the backend needs consent to convert mismatched bill currencies.
        """
        payload = {
            "payment_event_ids": list(payment_event_ids),
            "file_format": ExportFormat(file_format).value,
            "allow_currency_conversion": allow_currency_conversion,
            "source_account_id": source_account_id,
        }
        data = await self.http.post(f"{BANKING_BASE}/exports/", json=payload)

        try:
            if data.get("requires_conversion"):
                return ConversionPrompt(
                    message=data.get("message") or "Currency conversion required",
                    prompt=data.get("prompt") or "Convert the listed payments and continue?",
                    bank_account_currency=data.get("bank_account_currency"),
                    mismatched_payments=[
                        MismatchedPayment(
                            payment_event_id=int(p["payment_event_id"]),
                            bill_id=int(p["bill_id"]) if p.get("bill_id") is not None else None,
                            bill_number=p.get("bill_number"),
                            amount=Decimal(str(p["amount"])),
                            from_currency=p["from_currency"],
                            to_currency=p["to_currency"],
                        )
                        for p in data.get("mismatched_payments") or []
                    ],
                )
            return ExportFile(
                filename=data["filename"],
                payment_count=int(data["payment_count"]),
                format=data.get("format") or ExportFormat(file_format).value,
                file_url=data.get("file_url"),
                file_path=data.get("file_path"),
                message=data.get("message") or "",
            )
        except (KeyError, ValueError, TypeError, ArithmeticError, AttributeError) as e:
            raise FinanceAPIError(f"Invalid export response from backend: {e}") from e


def parse_bill(raw: Dict[str, Any]) -> BillToPay:
    """Map a bill listing row to the workflow's read-only bill reference"""
    return BillToPay(
        id=int(raw["id"]),
        vendor_name=raw.get("vendor_name") or "",
        invoice_number=raw.get("invoice_number") or None,
        currency_code=normalize_currency_code(raw.get("currency_code") or raw.get("currency")),
        amount_due=Decimal(str(raw["amount_due"])),
        contact_id=int(raw["contact_id"]) if raw.get("contact_id") is not None else None,
        vendor_phone=raw.get("vendor_phone") or None,
    )
