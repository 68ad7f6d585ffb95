"""GET /v1/banks - recipient bank search"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from billpay_gateway.api.dependencies import get_finance_client
from billpay_gateway.api.v1.schemas import BankListResponse, BankSchema
from billpay_gateway.config import settings
from billpay_gateway.infrastructure.clients.finance import FinanceClient

router = APIRouter()


@router.get("/banks", response_model=BankListResponse)
async def search_banks(
    country: Optional[str] = Query(None, min_length=2, max_length=2),
    search: Optional[str] = Query(None, max_length=100),
    client: FinanceClient = Depends(get_finance_client),
):
    """List banks for a country, optionally filtered by name"""
    country_code = (country or settings.default_country_code).upper()
    banks = await client.get_banks(country_code, search)
    return BankListResponse(
        country_code=country_code,
        banks=[
            BankSchema(
                id=bank.id,
                name=bank.name,
                short_name=bank.short_name,
                swift_code=bank.swift_code,
                code=bank.code,
                display_name=bank.display_name,
            )
            for bank in banks
        ],
        count=len(banks),
    )
