"""Result presentation - per-bill outcome rows joined with the original batch"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from billpay_gateway.domain.models import BillToPay, ExportFile, PaymentResult
from billpay_gateway.domain.submission import ALL_BILLS
from billpay_gateway.utils.formatting import format_currency


@dataclass
class ResultRow:
    bill_id: str
    success: bool
    vendor_name: str
    invoice_number: Optional[str] = None
    amount: Optional[Decimal] = None
    amount_display: Optional[str] = None
    reference: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class ResultView:
    rows: List[ResultRow] = field(default_factory=list)
    successful: int = 0
    failed: int = 0
    export_file: Optional[ExportFile] = None

    @property
    def all_failed(self) -> bool:
        """Escalate to a workflow-level alert only when nothing went through"""
        return bool(self.rows) and self.successful == 0


def present_results(
    results: List[PaymentResult],
    bills: List[BillToPay],
    amounts: Dict[int, Decimal],
    currency: str,
    export_file: Optional[ExportFile] = None,
) -> ResultView:
    """Build the result rows; bills are looked up by id, never by position"""
    bills_by_id = {str(bill.id): bill for bill in bills}
    rows = []
    for result in results:
        bill = bills_by_id.get(result.bill_id)
        if bill is None:
            vendor = "All bills" if result.bill_id == ALL_BILLS else f"Bill {result.bill_id}"
            rows.append(ResultRow(
                bill_id=result.bill_id,
                success=result.success,
                vendor_name=vendor,
                reference=result.reference,
                error_message=result.error_message,
            ))
            continue

        amount = amounts.get(bill.id, bill.amount_due)
        rows.append(ResultRow(
            bill_id=result.bill_id,
            success=result.success,
            vendor_name=bill.vendor_name,
            invoice_number=bill.invoice_number,
            amount=amount,
            amount_display=format_currency(amount, currency),
            reference=result.reference,
            error_message=result.error_message,
        ))

    successful = sum(1 for r in rows if r.success)
    return ResultView(rows=rows, successful=successful, failed=len(rows) - successful, export_file=export_file)
