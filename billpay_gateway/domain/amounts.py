"""Per-bill amount overrides, batch totals, and partial-payment validation"""

from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from billpay_gateway.domain.exceptions import UnknownBillError
from billpay_gateway.domain.models import AmountIssue, BillToPay

ZERO = Decimal("0")


def parse_amount(value: str) -> Optional[Decimal]:
    """Parse an operator-entered amount; None if it is not a finite number"""
    try:
        amount = Decimal(value.strip().replace(",", ""))
    except (InvalidOperation, AttributeError):
        return None
    return amount if amount.is_finite() else None


class PaymentAmounts:
    """
    Operator overrides of the amount paid per bill.

    Values are kept as entered and only checked by ``validate()``; a missing
    key means "pay amount_due unchanged".
    """

    def __init__(self, bills: List[BillToPay]):
        self._bills: Dict[int, BillToPay] = {bill.id: bill for bill in bills}
        self._entries: Dict[int, str] = {}

    def set(self, bill_id: int, value: str) -> None:
        if bill_id not in self._bills:
            raise UnknownBillError(f"Bill {bill_id} is not part of this payment")
        if value is None or not value.strip():
            self._entries.pop(bill_id, None)
        else:
            self._entries[bill_id] = value.strip()

    def clear(self) -> None:
        self._entries.clear()

    @property
    def entries(self) -> Dict[int, str]:
        return dict(self._entries)

    def resolved(self, bill: BillToPay) -> Decimal:
        """Amount that would be paid for a bill, floored at zero for display"""
        raw = self._entries.get(bill.id)
        if raw is None:
            return bill.amount_due
        parsed = parse_amount(raw)
        if parsed is None or parsed < ZERO:
            return ZERO
        return parsed

    def total(self) -> Decimal:
        return sum((self.resolved(bill) for bill in self._bills.values()), ZERO)

    def is_partial(self, bill: BillToPay) -> bool:
        return self.resolved(bill) < bill.amount_due

    def partial_bill_ids(self) -> List[int]:
        return [bill.id for bill in self._bills.values() if self.is_partial(bill)]

    def validate(self) -> List[AmountIssue]:
        """Every override must satisfy 0 < amount <= amount_due"""
        issues = []
        for bill_id, raw in self._entries.items():
            bill = self._bills[bill_id]
            parsed = parse_amount(raw)
            if parsed is None:
                issues.append(AmountIssue(bill_id, raw, "Amount is not a number"))
            elif parsed <= ZERO:
                issues.append(AmountIssue(bill_id, raw, "Amount must be greater than zero"))
            elif parsed > bill.amount_due:
                issues.append(AmountIssue(bill_id, raw, f"Amount exceeds amount due of {bill.amount_due}"))
        return issues

    def resolved_map(self) -> Dict[str, str]:
        """Submission form: one amount per bill keyed by stringified bill id"""
        return {str(bill.id): format(self.resolved(bill), "f") for bill in self._bills.values()}
