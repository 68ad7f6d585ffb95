"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache

from fastapi import Request

from billpay_gateway.infrastructure.clients.finance import FinanceClient
from billpay_gateway.infrastructure.sessions import WorkflowSessions


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


@lru_cache
def get_finance_client() -> FinanceClient:
    """Provide the shared finance backend client (one bank/bill cache per process)"""
    return FinanceClient()


@lru_cache
def get_sessions() -> WorkflowSessions:
    """Provide the process-wide workflow session registry"""
    return WorkflowSessions()
