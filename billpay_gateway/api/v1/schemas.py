"""Pydantic schemas for API request/response validation"""

from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from billpay_gateway.domain.models import (
    DeliveryMode,
    ExportFormat,
    ExportStatus,
    SourceKind,
    WorkflowStep,
)


class BillSchema(BaseModel):
    """Bill selected for payment, as listed by the ERP"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    vendor_name: str = Field(..., min_length=1)
    invoice_number: Optional[str] = None
    currency_code: str = "UGX"
    amount_due: Decimal = Field(..., gt=0, description="Outstanding amount in the bill currency")
    contact_id: Optional[int] = None
    vendor_phone: Optional[str] = None


class OpenWorkflowRequest(BaseModel):
    """Request body for POST /v1/workflows"""

    organization_id: str = Field(..., min_length=1, description="Organization identifier")
    bill_ids: Optional[List[int]] = Field(None, min_length=1, description="Bills to look up in the ERP listing")
    bills: Optional[List[BillSchema]] = Field(None, min_length=1, description="Bills supplied inline")
    country_code: Optional[str] = Field(None, min_length=2, max_length=2)

    @model_validator(mode="after")
    def check_one_bill_source(self) -> "OpenWorkflowRequest":
        if (self.bill_ids is None) == (self.bills is None):
            raise ValueError("Provide either bill_ids or bills")
        return self


class SelectSourceRequest(BaseModel):
    kind: SourceKind
    source_id: str = Field(..., min_length=1)


class DeliveryModeRequest(BaseModel):
    mode: DeliveryMode


class PhoneRequest(BaseModel):
    phone_number: str = Field(..., min_length=1)


class BankSelectionRequest(BaseModel):
    bank_id: int


class BankAccountRequest(BaseModel):
    """Partial update: omitted fields keep their current value"""

    account_number: Optional[str] = None
    account_name: Optional[str] = None


class AmountRequest(BaseModel):
    """Amount override for one bill; empty or null restores the amount due"""

    amount: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def stringify_number(cls, value: Any) -> Any:
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
        return value


class NoteRequest(BaseModel):
    note: str = Field("", max_length=500)


class ExportRequest(BaseModel):
    """Request body for POST /v1/workflows/{id}/export"""

    format: Optional[ExportFormat] = None
    allow_conversion: bool = Field(False, description="Consent to convert mismatched bill currencies")


class SourceSchema(BaseModel):
    id: str
    kind: SourceKind
    name: str
    currency: str
    balance: Decimal
    balance_display: str
    is_default: bool
    provider: Optional[str] = None
    provider_name: Optional[str] = None
    phone_number: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None


class RecipientSchema(BaseModel):
    """One bill's routing record; only the fields of its mode are set"""

    bill_id: int
    mode: DeliveryMode
    complete: bool
    phone_number: Optional[str] = None
    phone_display: Optional[str] = None
    contact_id: Optional[int] = None
    contact_name: Optional[str] = None
    bank_id: Optional[int] = None
    bank_name: Optional[str] = None
    swift_code: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None


class BillView(BaseModel):
    id: int
    vendor_name: str
    invoice_number: Optional[str] = None
    currency_code: str
    amount_due: Decimal
    amount: Decimal
    amount_display: str
    amount_entry: Optional[str] = None
    is_partial: bool


class AmountIssueSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bill_id: int
    amount: str
    reason: str


class PaymentResultSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bill_id: str
    success: bool
    reference: Optional[str] = None
    payment_event_id: Optional[int] = None
    error_message: Optional[str] = None


class SummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    successful: int
    failed: int


class ExportFileSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    filename: str
    payment_count: int
    format: str
    file_url: Optional[str] = None
    file_path: Optional[str] = None
    message: str = ""


class MismatchedPaymentSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_event_id: int
    bill_id: Optional[int] = None
    bill_number: Optional[str] = None
    amount: Decimal
    from_currency: str
    to_currency: str


class ConversionPromptSchema(BaseModel):
    message: str
    prompt: str
    description: str
    bank_account_currency: Optional[str] = None
    mismatched_payments: List[MismatchedPaymentSchema]


class ExportOutcomeSchema(BaseModel):
    status: ExportStatus
    attempts: int
    error: Optional[str] = None
    file: Optional[ExportFileSchema] = None
    prompt: Optional[ConversionPromptSchema] = None


class ResultRowSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bill_id: str
    success: bool
    vendor_name: str
    invoice_number: Optional[str] = None
    amount: Optional[Decimal] = None
    amount_display: Optional[str] = None
    reference: Optional[str] = None
    error_message: Optional[str] = None


class ResultViewSchema(BaseModel):
    rows: List[ResultRowSchema]
    successful: int
    failed: int
    all_failed: bool
    export_file: Optional[ExportFileSchema] = None


class WorkflowResponse(BaseModel):
    """Full view of one pay-bills workflow session"""

    workflow_id: str
    organization_id: str
    step: WorkflowStep
    progress_index: int
    currency: str
    bills: List[BillView]

    sources: List[SourceSchema]
    sources_error: Optional[str] = None
    selected_source: Optional[SourceSchema] = None
    has_sufficient_balance: bool

    requires_recipients: bool
    delivery_mode: DeliveryMode
    delivery_mode_locked: bool
    recipients: List[RecipientSchema]
    missing_recipient_bill_ids: List[int]

    total_amount: Decimal
    total_display: str
    partial_bill_ids: List[int]
    amount_issues: List[AmountIssueSchema]
    note: str

    can_continue_from_source: bool
    can_continue_from_recipients: bool
    can_submit: bool
    can_export: bool
    is_submitting: bool
    is_exporting: bool

    summary: Optional[SummarySchema] = None
    results: List[PaymentResultSchema]
    payment_event_ids: List[int]
    export_format: ExportFormat
    export: Optional[ExportOutcomeSchema] = None
    result: Optional[ResultViewSchema] = None


class BankSchema(BaseModel):
    id: int
    name: str
    short_name: str = ""
    swift_code: str = ""
    code: str = ""
    display_name: str


class BankListResponse(BaseModel):
    """Response for GET /v1/banks"""

    country_code: str
    banks: List[BankSchema]
    count: int
