"""Mock finance backend: payment sources, banks, ERP contacts, bills, payments and exports"""

import copy
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

app = FastAPI(title="Mock Finance Server", version="1.0.0")

EXPIRED_TOKEN = "expired"
# Bills the mock rejects individually inside an otherwise successful batch
FAILING_BILL_IDS = {304}
FIRST_EVENT_ID = 501

PAYMENT_SOURCES = {
    "org_demo": {
        "mobile_money_accounts": [
            {
                "id": "mm_1",
                "name": "MTN Collections",
                "currency": "UGX",
                "balance": "5000000",
                "is_default": False,
                "provider": "mtn",
                "provider_name": "MTN Mobile Money",
                "phone_number": "+256700000001",
                "environment": "sandbox",
            }
        ],
        "bank_accounts": [
            {
                "id": "ba_1",
                "name": "Operating Account",
                "currency": "UGX",
                "balance": "20000000",
                "is_default": True,
                "bank_name": "Stanbic Bank Uganda",
                "account_number": "9030001234567",
            },
            {
                "id": "ba_2",
                "name": "USD Account",
                "currency": "USD",
                "balance": "1500",
                "is_default": False,
                "bank_name": "Stanbic Bank Uganda",
                "account_number": "9030007654321",
            },
        ],
        "centry_wallets": [
            {"id": "w_1", "name": "Centry Wallet", "currency": "UGX", "balance": "800000", "is_default": False},
        ],
    }
}

BANKS = {
    "UG": [
        {"id": 1, "name": "Stanbic Bank Uganda", "short_name": "Stanbic", "code": "031", "swift_code": "SBICUGKX"},
        {"id": 2, "name": "Centenary Rural Development Bank", "short_name": "Centenary", "code": "016", "swift_code": "CERBUGKA"},
        {"id": 3, "name": "DFCU Bank", "short_name": "dfcu", "code": "022", "swift_code": "DFCUUGKA"},
    ],
    "KE": [
        {"id": 10, "name": "Kenya Commercial Bank", "short_name": "KCB", "code": "01", "swift_code": "KCBLKENX"},
    ],
}

CONTACTS = {
    11: {
        "contact_id": "11",
        "name": "Acme Supplies",
        "bank_account_details": "Stanbic Bank Uganda - Kampala Road",
        "bank_account_number": "0101234567",
        "bank_account_name": "Stanbic Bank Uganda",
        "phone_numbers": [
            {"type": "DEFAULT", "number": "0772000111"},
            {"type": "MOBILE", "number": "0700123456"},
        ],
    },
    12: {
        "contact_id": "12",
        "name": "Kampala Movers",
        "phone_numbers": [{"type": "MOBILE", "number": "0701555444"}],
    },
    13: {
        "contact_id": "13",
        "name": "Nile Energy",
        "bank_account_number": "3200456789",
        "bank_account_name": "Centenary Bank",
        "phone_numbers": [],
    },
}

BILLS = {
    "org_demo": [
        {"id": 301, "vendor_name": "Acme Supplies", "invoice_number": "INV-301", "currency_code": "UGX",
         "amount_due": "1200000", "contact_id": 11, "vendor_phone": "0700123456"},
        {"id": 302, "vendor_name": "Kampala Movers", "invoice_number": "INV-302", "currency_code": "UGX",
         "amount_due": "450000", "contact_id": 12},
        {"id": 303, "vendor_name": "Nile Energy", "invoice_number": "INV-303", "currency_code": "CurrencyCode.USD",
         "amount_due": "250", "contact_id": 13},
        {"id": 304, "vendor_name": "Lake Traders", "invoice_number": "INV-304", "currency_code": "UGX",
         "amount_due": "300000"},
    ]
}

state: Dict[str, Any] = {}


def reset_state() -> None:
    """Restore seed data; tests call this between scenarios"""
    state["bills"] = copy.deepcopy(BILLS)
    state["payments"] = {}
    state["next_event_id"] = FIRST_EVENT_ID
    state["idempotency_keys"] = {}
    state["pay_calls"] = 0
    state["export_calls"] = []


reset_state()


def require_session(authorization: Optional[str] = Header(None)) -> None:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Authentication credentials were not provided.")
    if authorization.removeprefix("Bearer ").strip() == EXPIRED_TOKEN:
        raise HTTPException(status_code=401, detail="Token is invalid or expired")


class PayRequest(BaseModel):
    organization_id: str
    bill_ids: List[int]
    amounts: Dict[str, str]
    currency_code: str
    payment_method: str
    note: Optional[str] = None
    recipients: Optional[List[Dict[str, Any]]] = None


class ExportRequest(BaseModel):
    payment_event_ids: List[int]
    file_format: str = "csv"
    allow_currency_conversion: bool = False
    source_account_id: Optional[str] = None


@app.get("/health")
def health(): return {"status": "ok"}


@app.get("/api/v1/banking/payment-sources/", dependencies=[Depends(require_session)])
def payment_sources(organization: str):
    sources = PAYMENT_SOURCES.get(organization)
    if sources is None:
        raise HTTPException(status_code=404, detail="organization not found")
    total = sum(len(group) for group in sources.values())
    return {**sources, "total_sources": total}


@app.get("/api/v1/banking/banks/", dependencies=[Depends(require_session)])
def banks(country: str = "UG", search: Optional[str] = None):
    listing = BANKS.get(country.upper(), [])
    if search:
        needle = search.lower()
        listing = [b for b in listing if needle in b["name"].lower() or needle in b["short_name"].lower()]
    return {"banks": listing, "count": len(listing)}


@app.get("/api/v1/xero/contacts/{contact_id}/payment-details/", dependencies=[Depends(require_session)])
def contact_payment_details(contact_id: int):
    contact = CONTACTS.get(contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="contact not found")
    return contact


@app.get("/api/v1/xero/bills/", dependencies=[Depends(require_session)])
def bills(organization: str):
    return state["bills"].get(organization, [])


@app.post("/api/v1/xero/bills/pay/", dependencies=[Depends(require_session)])
def pay_bills(body: PayRequest, idempotency_key: Optional[str] = Header(None)):
    if idempotency_key and idempotency_key in state["idempotency_keys"]:
        return state["idempotency_keys"][idempotency_key]
    state["pay_calls"] += 1

    listing = {b["id"]: b for b in state["bills"].get(body.organization_id, [])}
    if body.payment_method not in ("bank", "mobile_money", "wallet"):
        raise HTTPException(status_code=400, detail=f"unsupported payment method {body.payment_method}")

    results = []
    for bill_id in body.bill_ids:
        bill = listing.get(bill_id)
        if bill is None:
            results.append({"bill_id": str(bill_id), "success": False, "error_message": "Bill not found"})
            continue
        if bill_id in FAILING_BILL_IDS:
            results.append({"bill_id": str(bill_id), "success": False,
                            "error_message": "Payee account could not be verified"})
            continue

        amount = Decimal(body.amounts[str(bill_id)])
        event_id = state["next_event_id"]
        state["next_event_id"] += 1
        state["payments"][event_id] = {
            "bill_id": bill_id,
            "bill_number": bill["invoice_number"],
            "amount": str(amount),
            "currency": bill["currency_code"].split(".")[-1],
        }
        remaining = Decimal(bill["amount_due"]) - amount
        if remaining <= 0:
            state["bills"][body.organization_id].remove(bill)
        else:
            bill["amount_due"] = str(remaining)
        results.append({"bill_id": str(bill_id), "success": True, "reference": f"PAY-{event_id}",
                        "payment_event_id": event_id})

    successful = sum(1 for r in results if r["success"])
    response = {
        "success": successful == len(results),
        "results": results,
        "summary": {"total": len(results), "successful": successful, "failed": len(results) - successful},
    }
    if idempotency_key:
        state["idempotency_keys"][idempotency_key] = response
    return response


@app.post("/api/v1/banking/exports/", dependencies=[Depends(require_session)])
def export_payments(body: ExportRequest):
    state["export_calls"].append(body.model_dump())
    if not body.payment_event_ids:
        raise HTTPException(status_code=400, detail="no payment events to export")
    payments = []
    for event_id in body.payment_event_ids:
        payment = state["payments"].get(event_id)
        if payment is None:
            raise HTTPException(status_code=404, detail=f"payment event {event_id} not found")
        payments.append((event_id, payment))

    accounts = [a for group in PAYMENT_SOURCES.values() for a in group["bank_accounts"]]
    account = next((a for a in accounts if a["id"] == body.source_account_id), None)
    if account is None:
        raise HTTPException(status_code=400, detail="source bank account is required for export")

    mismatched = [
        {"payment_event_id": event_id, "bill_id": p["bill_id"], "bill_number": p["bill_number"],
         "amount": p["amount"], "from_currency": p["currency"], "to_currency": account["currency"]}
        for event_id, p in payments
        if p["currency"] != account["currency"]
    ]
    if mismatched and not body.allow_currency_conversion:
        return JSONResponse(status_code=400, content={
            "requires_conversion": True,
            "message": f"{len(mismatched)} payment(s) are not in {account['currency']}",
            "prompt": f"Convert them to {account['currency']} at today's rate and continue?",
            "bank_account_currency": account["currency"],
            "mismatched_payments": mismatched,
        })

    filename = f"bill_payments_{body.payment_event_ids[0]}.{body.file_format}"
    return {
        "filename": filename,
        "payment_count": len(payments),
        "format": body.file_format,
        "file_url": f"/media/exports/{filename}",
        "message": "Payment file generated",
    }
