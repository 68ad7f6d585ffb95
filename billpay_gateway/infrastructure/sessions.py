"""In-memory registry of open pay-bills workflow sessions"""

import logging
import time
from typing import Callable, Dict, List

from billpay_gateway.config import settings
from billpay_gateway.domain.exceptions import WorkflowNotFoundError
from billpay_gateway.domain.models import BillToPay
from billpay_gateway.domain.workflow import PayBillsWorkflow

logger = logging.getLogger(__name__)


class WorkflowSessions:
    """
    Holds the workflows an operator currently has open.

    Workflow state is ephemeral: nothing here survives a restart, and a
    closed workflow is dropped along with everything it collected. A
    workflow not touched for ``idle_seconds`` is closed as if the operator
    had dismissed it; expired sessions are swept whenever a new one opens.
    """

    def __init__(
        self,
        idle_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_seconds = settings.session_idle_seconds if idle_seconds is None else idle_seconds
        self._clock = clock
        self._workflows: Dict[str, PayBillsWorkflow] = {}
        self._last_touched: Dict[str, float] = {}

    def create(
        self,
        organization_id: str,
        bills: List[BillToPay],
        client,
        country_code: str | None = None,
    ) -> PayBillsWorkflow:
        self.sweep()
        workflow = PayBillsWorkflow(organization_id, bills, client, country_code=country_code)
        self._workflows[workflow.id] = workflow
        self._last_touched[workflow.id] = self._clock()
        logger.info(
            "Workflow session created",
            extra={"workflow_id": workflow.id, "organization_id": organization_id, "bill_count": len(bills)},
        )
        return workflow

    def get(self, workflow_id: str) -> PayBillsWorkflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        if self._is_idle(workflow):
            self._discard(workflow_id)
            logger.info("Workflow session expired", extra={"workflow_id": workflow_id})
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        self._last_touched[workflow_id] = self._clock()
        return workflow

    def close(self, workflow_id: str) -> None:
        if workflow_id not in self._workflows:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        self._discard(workflow_id)
        logger.info("Workflow session closed", extra={"workflow_id": workflow_id})

    def sweep(self) -> int:
        """Close every idle workflow; returns how many were dropped"""
        expired = [wid for wid, workflow in self._workflows.items() if self._is_idle(workflow)]
        for workflow_id in expired:
            self._discard(workflow_id)
        if expired:
            logger.info("Expired idle workflow sessions", extra={"expired_count": len(expired)})
        return len(expired)

    def _is_idle(self, workflow: PayBillsWorkflow) -> bool:
        # A payment or export still in flight keeps its session alive
        if workflow.is_submitting or workflow.is_exporting:
            return False
        return self._clock() - self._last_touched[workflow.id] >= self.idle_seconds

    def _discard(self, workflow_id: str) -> None:
        workflow = self._workflows.pop(workflow_id)
        self._last_touched.pop(workflow_id, None)
        workflow.close()

    def __len__(self) -> int:
        return len(self._workflows)

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._workflows
