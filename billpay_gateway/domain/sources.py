"""Payment source registry - normalizes and ranks the accounts an operator can pay from"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from billpay_gateway.domain.exceptions import DomainException, InvalidSourceDataError
from billpay_gateway.domain.models import PaymentSource, SourceKind
from billpay_gateway.infrastructure.observability.metrics import payment_source_failures_counter

logger = logging.getLogger(__name__)

# Response key -> kind, in display grouping order
RESPONSE_GROUPS = (
    ("mobile_money_accounts", SourceKind.MOBILE_MONEY),
    ("bank_accounts", SourceKind.BANK_ACCOUNT),
    ("centry_wallets", SourceKind.WALLET),
)

KIND_ORDER = {kind: index for index, (_, kind) in enumerate(RESPONSE_GROUPS)}


def parse_source(raw: Dict[str, Any], kind: SourceKind) -> PaymentSource:
    """
    Build a PaymentSource from one backend row.

    Raises:
        InvalidSourceDataError: Missing fields, unparseable or negative balance
    """
    try:
        balance = Decimal(str(raw.get("balance") or "0"))
        source = PaymentSource(
            id=str(raw["id"]),
            kind=kind,
            name=raw.get("name") or "",
            currency=str(raw.get("currency") or "").upper(),
            balance=balance,
            is_default=bool(raw.get("is_default", False)),
            provider=raw.get("provider"),
            provider_name=raw.get("provider_name"),
            phone_number=raw.get("phone_number"),
            environment=raw.get("environment"),
            bank_name=raw.get("bank_name"),
            account_number=raw.get("account_number"),
        )
    except (KeyError, TypeError, AttributeError, InvalidOperation) as e:
        raise InvalidSourceDataError(f"Invalid {kind.value} source: {e}") from e

    if not balance.is_finite() or balance < 0:
        raise InvalidSourceDataError(f"Source {source.id} reports invalid balance {raw.get('balance')}")
    return source


def rank_sources(sources: List[PaymentSource]) -> List[PaymentSource]:
    """Default source first, then grouped by kind; stable within a group"""
    return sorted(sources, key=lambda s: (not s.is_default, KIND_ORDER[s.kind]))


def merge_sources(payload: Dict[str, Any]) -> List[PaymentSource]:
    """
    Flatten the per-kind listing into one ranked list tagged by kind.

    Malformed rows are skipped with a warning; the remaining sources are
    still offered.
    """
    sources = []
    for key, kind in RESPONSE_GROUPS:
        for raw in payload.get(key) or []:
            try:
                sources.append(parse_source(raw, kind))
            except InvalidSourceDataError as e:
                payment_source_failures_counter.inc()
                logger.warning(f"Skipping payment source row: {e}", extra={"source_kind": kind.value})
    return rank_sources(sources)


def has_sufficient_balance(source: PaymentSource, total_amount: Decimal, bill_currency: str) -> bool:
    """
    Client-side sufficiency check.

    Same currency: exact comparison. Different currency: any positive balance
    is provisionally sufficient; the backend validates after conversion.
    """
    if source.currency == bill_currency:
        return source.balance >= total_amount
    return source.balance > 0


class PaymentSourceRegistry:
    """Loads the organization's sources once per workflow open"""

    def __init__(self, client):
        self.client = client
        self.sources: List[PaymentSource] = []
        self.error: Optional[str] = None
        self._generation = 0

    async def load(self, organization_id: str) -> List[PaymentSource]:
        """Fetch and normalize sources; failures yield an empty list and a surfaced error"""
        generation = self._generation
        try:
            payload = await self.client.list_payment_sources(organization_id)
            sources = merge_sources(payload)
        except DomainException as e:
            if generation != self._generation:
                return []
            payment_source_failures_counter.inc()
            logger.warning(f"Failed to load payment sources: {e}", extra={"organization_id": organization_id})
            self.sources = []
            self.error = str(e) or "Failed to load payment sources"
            return []

        if generation != self._generation:
            return []
        self.sources = sources
        self.error = None
        return list(sources)

    def find(self, kind: SourceKind | str, source_id: str) -> Optional[PaymentSource]:
        try:
            key = (SourceKind(kind).value, str(source_id))
        except ValueError:
            return None
        return next((s for s in self.sources if s.key == key), None)

    def clear(self) -> None:
        self._generation += 1
        self.sources = []
        self.error = None
