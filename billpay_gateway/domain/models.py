"""Domain models - pure Python dataclasses representing the bill payment workflow"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import ClassVar, List, Optional, Union


class SourceKind(str, Enum):
    """Where funds are drawn from"""

    MOBILE_MONEY = "mobile_money"
    BANK_ACCOUNT = "bank_account"
    WALLET = "wallet"


class DeliveryMode(str, Enum):
    """How funds reach the counterparty of a bill"""

    MOBILE = "mobile"
    BANK = "bank"


class WorkflowStep(str, Enum):
    SOURCE = "source"
    RECIPIENTS = "recipients"
    CONFIRM = "confirm"
    PROCESSING = "processing"
    EXPORT = "export"
    RESULT = "result"


class ExportFormat(str, Enum):
    CSV = "csv"
    XML = "xml"


class ExportStatus(str, Enum):
    COMPLETED = "completed"
    CONVERSION_REQUIRED = "conversion_required"  # operator has not consented
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentSource:
    """Account an operator can pay from; balance is a snapshot taken on open"""

    id: str
    kind: SourceKind
    name: str
    currency: str
    balance: Decimal
    is_default: bool = False
    # Mobile money metadata
    provider: Optional[str] = None
    provider_name: Optional[str] = None
    phone_number: Optional[str] = None
    environment: Optional[str] = None
    # Bank account metadata
    bank_name: Optional[str] = None
    account_number: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        # Different kinds may share ids
        return (self.kind.value, str(self.id))


@dataclass(frozen=True)
class BillToPay:
    """Read-only reference into the external bill list"""

    id: int
    vendor_name: str
    invoice_number: Optional[str]
    currency_code: str
    amount_due: Decimal
    contact_id: Optional[int] = None
    vendor_phone: Optional[str] = None


@dataclass(frozen=True)
class Bank:
    """Recipient bank from the country bank list"""

    id: int
    name: str
    short_name: str = ""
    swift_code: str = ""
    code: str = ""

    @property
    def display_name(self) -> str:
        return self.short_name or self.name


@dataclass(frozen=True)
class MobileRecipient:
    """Mobile money routing; contact fields are display provenance only"""

    mode: ClassVar[DeliveryMode] = DeliveryMode.MOBILE

    phone_number: str = ""
    contact_id: Optional[int] = None
    contact_name: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.phone_number.strip())


@dataclass(frozen=True)
class BankRecipient:
    """Bank transfer routing; swift code is derived from the chosen bank"""

    mode: ClassVar[DeliveryMode] = DeliveryMode.BANK

    bank_id: Optional[int] = None
    bank_name: str = ""
    swift_code: str = ""
    account_number: str = ""
    account_name: str = ""

    @property
    def is_complete(self) -> bool:
        return (
            self.bank_id is not None
            and bool(self.account_number.strip())
            and bool(self.account_name.strip())
        )


RecipientDetails = Union[MobileRecipient, BankRecipient]


@dataclass(frozen=True)
class ContactPhone:
    type: str  # MOBILE | DEFAULT | DDI | FAX
    number: str


@dataclass(frozen=True)
class ContactPaymentDetails:
    """Routing details held by the ERP for a vendor contact"""

    contact_id: str
    name: str
    bank_account_details: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_account_name: Optional[str] = None
    phone_numbers: List[ContactPhone] = field(default_factory=list)


@dataclass(frozen=True)
class AmountIssue:
    """Operator-entered amount that cannot be submitted"""

    bill_id: int
    amount: str
    reason: str


@dataclass
class PaymentResult:
    """Outcome of paying one bill"""

    bill_id: str
    success: bool
    reference: Optional[str] = None
    payment_event_id: Optional[int] = None
    error_message: Optional[str] = None


@dataclass
class SubmissionSummary:
    total: int
    successful: int
    failed: int


@dataclass
class PaymentResponse:
    """Parsed response of a batch payment call"""

    success: bool
    results: List[PaymentResult]
    summary: SubmissionSummary


@dataclass
class SubmissionOutcome:
    """What the coordinator hands back to the workflow after one submission"""

    results: List[PaymentResult]
    payment_event_ids: List[int]
    summary: SubmissionSummary
    transport_failed: bool = False

    @property
    def any_succeeded(self) -> bool:
        return any(r.success for r in self.results)

    @property
    def all_failed(self) -> bool:
        return not self.any_succeeded


@dataclass(frozen=True)
class MismatchedPayment:
    """Payment whose bill currency differs from the exporting bank account"""

    payment_event_id: int
    bill_id: Optional[int]
    bill_number: Optional[str]
    amount: Decimal
    from_currency: str
    to_currency: str

    @property
    def reference(self) -> str:
        if self.bill_number:
            return self.bill_number
        if self.bill_id is not None:
            return str(self.bill_id)
        return f"payment {self.payment_event_id}"


@dataclass
class ConversionPrompt:
    """Backend request for explicit consent to convert currencies before export"""

    message: str
    prompt: str
    mismatched_payments: List[MismatchedPayment]
    bank_account_currency: Optional[str] = None


@dataclass
class ExportFile:
    """Server-generated bank upload file"""

    filename: str
    payment_count: int
    format: str
    file_url: Optional[str] = None
    file_path: Optional[str] = None
    message: str = ""


ExportResponse = Union[ExportFile, ConversionPrompt]


@dataclass
class ExportOutcome:
    status: ExportStatus
    file: Optional[ExportFile] = None
    prompt: Optional[ConversionPrompt] = None
    error: Optional[str] = None
    attempts: int = 0
