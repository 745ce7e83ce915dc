"""Per-run execution state shared by the scheduler and node executions."""

import copy
import logging
import threading
from typing import Any, Dict, Iterable, Optional

from shared.exceptions import NodeError
from shared.types import NodeResult, NodeStatus, SkipReason, TERMINAL_STATUSES
from shared.utils import utc_now


class ExecutionContext:
    """Variables, secrets and node results for one run.

    Every node result is written by exactly one owner. ``claim`` is the single
    PENDING -> RUNNING transition; ``finish`` moves a node to a terminal state
    once and ignores any later write, so a result arriving after cancellation
    is discarded.
    """

    def __init__(
        self,
        execution_id: str,
        node_ids: Iterable[str],
        variables: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, Any]] = None,
        project_id: Optional[str] = None,
    ):
        self.execution_id = execution_id
        self.project_id = project_id
        self.variables = copy.deepcopy(variables or {})
        self.secrets = dict(secrets or {})
        self.node_results: Dict[str, NodeResult] = {nid: NodeResult(node_id=nid) for nid in node_ids}
        self._lock = threading.Lock()

    def status_of(self, node_id: str) -> NodeStatus:
        return self.node_results[node_id].status

    def is_terminal(self, node_id: str) -> bool:
        return self.node_results[node_id].status in TERMINAL_STATUSES

    def outputs_of(self, node_id: str) -> Optional[Dict[str, Any]]:
        """Outputs of a node that succeeded; None for any other state"""
        result = self.node_results.get(node_id)
        if result is None or result.status != NodeStatus.SUCCESS:
            return None
        return result.outputs

    def claim(self, node_id: str) -> bool:
        with self._lock:
            result = self.node_results[node_id]
            if result.status != NodeStatus.PENDING:
                return False
            self.node_results[node_id] = result.model_copy(
                update={"status": NodeStatus.RUNNING, "started_at": utc_now()}
            )
            return True

    def finish(
        self,
        node_id: str,
        status: NodeStatus,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[NodeError] = None,
        skip_reason: Optional[SkipReason] = None,
    ) -> bool:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status} is not a terminal status")

        with self._lock:
            result = self.node_results[node_id]
            if result.status in TERMINAL_STATUSES:
                return False
            if result.status == NodeStatus.PENDING and status in (NodeStatus.SUCCESS, NodeStatus.ERROR):
                raise ValueError(f"Node '{node_id}' cannot reach {status.value} without running")

            self.node_results[node_id] = result.model_copy(update={
                "status": status,
                "outputs": outputs if status == NodeStatus.SUCCESS else None,
                "error": error if status == NodeStatus.ERROR else None,
                "skip_reason": skip_reason if status == NodeStatus.SKIPPED else None,
                "finished_at": utc_now(),
            })
            return True

    def snapshot(self) -> Dict[str, NodeResult]:
        with self._lock:
            return {nid: result.model_copy(deep=True) for nid, result in self.node_results.items()}


class NodeExecutionContext:
    """What a plugin's execute call sees besides its resolved inputs.

    ``cancelled`` is the cooperative cancellation signal: long-running
    plugins should check it between blocking steps and return promptly.
    """

    def __init__(self, execution: ExecutionContext, node_id: str, timeout_seconds: float):
        self.node_id = node_id
        self.execution_id = execution.execution_id
        self.project_id = execution.project_id
        self.variables = execution.variables
        self.timeout_seconds = timeout_seconds
        self._cancel_event = threading.Event()
        self.logger = logging.LoggerAdapter(
            logging.getLogger(f"plugins.{node_id}"),
            {"execution_id": execution.execution_id, "node_id": node_id},
        )

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()

    def wait(self, seconds: float) -> bool:
        """Sleeps up to ``seconds``; returns True if cancelled meanwhile"""
        return self._cancel_event.wait(seconds)
