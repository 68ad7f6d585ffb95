"""Unit tests for the expiring cache and the workflow session registry"""

import pytest

from billpay_gateway.domain.exceptions import WorkflowNotFoundError
from billpay_gateway.infrastructure.cache import ExpiringCache
from billpay_gateway.infrastructure.sessions import WorkflowSessions


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_cache_expires_entries():
    """Test entries go stale after the TTL"""
    clock = FakeClock()
    cache = ExpiringCache(300, clock=clock)
    cache.set(("UG", ""), ["bank"])

    clock.now += 299
    assert cache.get(("UG", "")) == ["bank"]

    clock.now += 1
    assert cache.get(("UG", "")) is None


def test_cache_invalidate():
    """Test explicit invalidation"""
    cache = ExpiringCache(30)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    cache.invalidate("missing")
    assert cache.get("a") is None
    assert cache.get("b") == 2


def test_sessions_lifecycle(bills, finance_client):
    """Test create, get and close of workflow sessions"""
    sessions = WorkflowSessions()
    workflow = sessions.create("org_1", bills, finance_client, country_code="KE")

    assert sessions.get(workflow.id) is workflow
    assert workflow.recipients.country_code == "KE"
    assert len(sessions) == 1

    sessions.close(workflow.id)

    assert workflow.id not in sessions
    assert workflow.is_open is False
    with pytest.raises(WorkflowNotFoundError):
        sessions.get(workflow.id)
    with pytest.raises(WorkflowNotFoundError):
        sessions.close(workflow.id)


def test_sessions_expire_when_idle(bills, finance_client):
    """Test untouched workflows are swept when a new one opens"""
    clock = FakeClock()
    sessions = WorkflowSessions(idle_seconds=600, clock=clock)
    stale = sessions.create("org_1", bills, finance_client)
    active = sessions.create("org_1", bills, finance_client)

    clock.now += 500
    sessions.get(active.id)
    clock.now += 100
    fresh = sessions.create("org_1", bills, finance_client)

    assert stale.id not in sessions
    assert stale.is_open is False
    assert active.id in sessions
    assert fresh.id in sessions
    assert len(sessions) == 2


def test_sessions_get_refuses_idle_workflow(bills, finance_client):
    """Test an idle workflow reads as not found"""
    clock = FakeClock()
    sessions = WorkflowSessions(idle_seconds=600, clock=clock)
    workflow = sessions.create("org_1", bills, finance_client)

    clock.now += 600

    with pytest.raises(WorkflowNotFoundError):
        sessions.get(workflow.id)
    assert workflow.id not in sessions


def test_sessions_keep_workflow_with_payment_in_flight(bills, finance_client):
    """Test a submitting workflow is not expired"""
    clock = FakeClock()
    sessions = WorkflowSessions(idle_seconds=600, clock=clock)
    workflow = sessions.create("org_1", bills, finance_client)
    workflow.is_submitting = True

    clock.now += 3600

    assert sessions.sweep() == 0
    assert sessions.get(workflow.id) is workflow
