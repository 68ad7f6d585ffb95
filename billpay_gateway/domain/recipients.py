"""Recipient detail collection - one routing record per bill before a batch can be paid"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from billpay_gateway.domain.exceptions import (
    FinanceAPIError,
    RecipientLookupError,
    SessionExpiredError,
    UnknownBillError,
    WorkflowStateError,
)
from billpay_gateway.domain.models import (
    Bank,
    BankRecipient,
    BillToPay,
    ContactPhone,
    DeliveryMode,
    MobileRecipient,
    RecipientDetails,
)

logger = logging.getLogger(__name__)

PHONE_TYPE_PRIORITY = ("MOBILE", "DEFAULT")


def rekey(recipient: RecipientDetails, mode: DeliveryMode) -> RecipientDetails:
    """
    Convert a recipient to another delivery mode.

    Only fields valid for the target variant survive; mobile and bank
    variants share none, so a switch yields an empty record of the new kind.
    """
    if recipient.mode == mode:
        return recipient
    if mode == DeliveryMode.MOBILE:
        return MobileRecipient()
    return BankRecipient()


def pick_phone(phone_numbers: List[ContactPhone]) -> Optional[str]:
    """MOBILE number first, then DEFAULT, then whatever is listed first"""
    usable = [p for p in phone_numbers if p.number and p.number.strip()]
    for phone_type in PHONE_TYPE_PRIORITY:
        for phone in usable:
            if phone.type.upper() == phone_type:
                return phone.number.strip()
    return usable[0].number.strip() if usable else None


def match_bank(banks: List[Bank], raw_name: str | None) -> Optional[Bank]:
    """
    Find the known bank an ERP bank name refers to.

    Exact (case-insensitive) match on name or short name wins; otherwise the
    first bank whose name or short name contains, or is contained in, the
    raw text.
    """
    if not raw_name or not raw_name.strip():
        return None
    needle = raw_name.strip().lower()

    for bank in banks:
        if needle in (bank.name.lower(), bank.short_name.lower()):
            return bank

    for bank in banks:
        candidates = [bank.name.lower()]
        if bank.short_name:
            candidates.append(bank.short_name.lower())
        if any(c and (needle in c or c in needle) for c in candidates):
            return bank
    return None


class RecipientCollector:
    """Holds the per-bill recipients and the batch-wide delivery mode"""

    def __init__(self, bills: List[BillToPay], client, country_code: str):
        self._bills: Dict[int, BillToPay] = {bill.id: bill for bill in bills}
        self.client = client
        self.country_code = country_code
        self.mode = DeliveryMode.BANK
        self.mode_locked = False
        self._entries: Dict[int, RecipientDetails] = {}
        self._generation = 0

    # State

    def reset(self) -> None:
        self._generation += 1
        self.mode = DeliveryMode.BANK
        self.mode_locked = False
        self._entries.clear()

    def configure(self, mode: DeliveryMode, locked: bool) -> None:
        """Apply the delivery mode implied by the chosen payment source"""
        self.mode_locked = False
        self.set_mode(mode)
        self.mode_locked = locked

    def set_mode(self, mode: DeliveryMode) -> None:
        """Switch the batch-wide delivery mode, re-keying every entry"""
        mode = DeliveryMode(mode)
        if self.mode_locked and mode != self.mode:
            raise WorkflowStateError(f"Delivery mode is fixed to {self.mode.value} for this source")
        if mode != self.mode:
            self._generation += 1
        self.mode = mode
        self._entries = {bill_id: rekey(r, mode) for bill_id, r in self._entries.items()}

    @property
    def entries(self) -> Dict[int, RecipientDetails]:
        return dict(self._entries)

    def get(self, bill_id: int) -> Optional[RecipientDetails]:
        return self._entries.get(bill_id)

    def missing_bill_ids(self) -> List[int]:
        """Bills without a complete recipient record"""
        return [
            bill_id
            for bill_id in self._bills
            if bill_id not in self._entries or not self._entries[bill_id].is_complete
        ]

    def is_complete(self) -> bool:
        return len(self._entries) == len(self._bills) and not self.missing_bill_ids()

    # Mobile money entries

    def set_phone(self, bill_id: int, phone_number: str) -> MobileRecipient:
        """Manual entry; clears any contact provenance"""
        self._require_mode(bill_id, DeliveryMode.MOBILE)
        recipient = MobileRecipient(phone_number=phone_number.strip())
        self._entries[bill_id] = recipient
        return recipient

    def use_saved_phone(self, bill_id: int) -> MobileRecipient:
        """Fill from the vendor phone saved on the bill"""
        bill = self._require_mode(bill_id, DeliveryMode.MOBILE)
        if not bill.vendor_phone:
            raise RecipientLookupError(f"No saved phone number for {bill.vendor_name}")
        return self.set_phone(bill_id, bill.vendor_phone)

    async def autofill_mobile(self, bill_id: int) -> MobileRecipient:
        bill = self._require_mode(bill_id, DeliveryMode.MOBILE)
        generation = self._generation
        details = await self._lookup_contact(bill, "phone number")
        self._ensure_current(generation, DeliveryMode.MOBILE)

        phone = pick_phone(details.phone_numbers)
        if phone is None:
            raise RecipientLookupError(f"No phone number found for {bill.vendor_name} in ERP")

        recipient = MobileRecipient(
            phone_number=phone,
            contact_id=bill.contact_id,
            contact_name=details.name or None,
        )
        self._entries[bill_id] = recipient
        return recipient

    # Bank entries

    async def search_banks(self, search: str | None = None) -> List[Bank]:
        return await self.client.get_banks(self.country_code, search)

    async def choose_bank(self, bill_id: int, bank_id: int) -> BankRecipient:
        """Select a bank from the country list by id"""
        self._require_mode(bill_id, DeliveryMode.BANK)
        generation = self._generation
        banks = await self.search_banks()
        self._ensure_current(generation, DeliveryMode.BANK)
        bank = next((b for b in banks if b.id == bank_id), None)
        if bank is None:
            raise WorkflowStateError(f"Bank {bank_id} is not available in {self.country_code}")
        return self.select_bank(bill_id, bank)

    def select_bank(self, bill_id: int, bank: Bank) -> BankRecipient:
        """Pick the recipient bank; the swift code comes from the bank and is not editable"""
        self._require_mode(bill_id, DeliveryMode.BANK)
        recipient = replace(
            self._current_bank(bill_id),
            bank_id=bank.id,
            bank_name=bank.display_name,
            swift_code=bank.swift_code,
        )
        self._entries[bill_id] = recipient
        return recipient

    def set_bank_account(
        self,
        bill_id: int,
        account_number: str | None = None,
        account_name: str | None = None,
    ) -> BankRecipient:
        self._require_mode(bill_id, DeliveryMode.BANK)
        recipient = self._current_bank(bill_id)
        if account_number is not None:
            recipient = replace(recipient, account_number=account_number.strip())
        if account_name is not None:
            recipient = replace(recipient, account_name=account_name.strip())
        self._entries[bill_id] = recipient
        return recipient

    async def autofill_bank(self, bill_id: int) -> BankRecipient:
        bill = self._require_mode(bill_id, DeliveryMode.BANK)
        generation = self._generation
        details = await self._lookup_contact(bill, "bank details")

        if not (details.bank_account_details or details.bank_account_number):
            raise RecipientLookupError(f"No bank account details found for {bill.vendor_name} in ERP")

        try:
            banks = await self.search_banks()
        except FinanceAPIError as e:
            logger.warning(f"Bank list unavailable during auto-fill: {e}", extra={"bill_id": bill_id})
            banks = []
        self._ensure_current(generation, DeliveryMode.BANK)

        matched = match_bank(banks, details.bank_account_name)
        if matched is not None:
            bank_fields = dict(bank_id=matched.id, bank_name=matched.display_name, swift_code=matched.swift_code)
        else:
            # Keep the ERP text visible so the operator can pick the bank manually
            bank_fields = dict(bank_id=None, bank_name=details.bank_account_name or "", swift_code="")

        recipient = replace(
            self._current_bank(bill_id),
            account_number=details.bank_account_number or "",
            account_name=details.bank_account_name or bill.vendor_name,
            **bank_fields,
        )
        self._entries[bill_id] = recipient
        return recipient

    async def autofill(self, bill_id: int) -> RecipientDetails:
        """Auto-fill the bill's recipient for the current delivery mode"""
        if self.mode == DeliveryMode.MOBILE:
            return await self.autofill_mobile(bill_id)
        return await self.autofill_bank(bill_id)

    # Helpers

    def _bill(self, bill_id: int) -> BillToPay:
        bill = self._bills.get(bill_id)
        if bill is None:
            raise UnknownBillError(f"Bill {bill_id} is not part of this payment")
        return bill

    def _require_mode(self, bill_id: int, mode: DeliveryMode) -> BillToPay:
        bill = self._bill(bill_id)
        if self.mode != mode:
            raise WorkflowStateError(
                f"Cannot enter {mode.value} details while delivering via {self.mode.value}"
            )
        return bill

    def _ensure_current(self, generation: int, mode: DeliveryMode) -> None:
        """Refuse to apply a lookup that finished after a reset or a mode switch"""
        if generation != self._generation or self.mode != mode:
            raise WorkflowStateError("Recipient details changed while the lookup was running")

    def _current_bank(self, bill_id: int) -> BankRecipient:
        existing = self._entries.get(bill_id)
        return existing if isinstance(existing, BankRecipient) else BankRecipient()

    async def _lookup_contact(self, bill: BillToPay, wanted: str):
        if bill.contact_id is None:
            raise RecipientLookupError(f"No ERP contact linked to {bill.vendor_name}")
        try:
            return await self.client.get_contact_payment_details(bill.contact_id)
        except SessionExpiredError:
            raise
        except FinanceAPIError as e:
            logger.warning(f"Contact lookup failed: {e}", extra={"bill_id": bill.id, "contact_id": bill.contact_id})
            raise RecipientLookupError(f"Failed to load {wanted} from ERP. Please enter manually.") from e
