"""Secret scrubbing and folding of node results into a FlowResult."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from shared.constants import MIN_SECRET_SCRUB_LENGTH, REDACTION_MARKER
from shared.exceptions import FlowValidationError, NodeError
from shared.types import FlowResult, FlowStatus, FlowValidationFailure, NodeResult, NodeStatus, SkipReason
from shared.utils import utc_now

# Skips that reflect a failure somewhere upstream; condition and disabled skips do not
FAILURE_SKIP_REASONS = {SkipReason.UPSTREAM_ERROR, SkipReason.UPSTREAM_CANCELLED}


class SecretScrubber:
    """Replaces secret values with a redaction marker.

    Values equal to a secret (same type, same value) are replaced wherever
    they appear in a nested structure. String secrets long enough to be
    distinctive are also cut out of longer strings they are embedded in.
    String keys of mappings are scrubbed the same way as string values.
    """

    def __init__(self, secret_values: Iterable[Any] = (), marker: str = REDACTION_MARKER):
        self.marker = marker
        self._secrets: List[Any] = []
        for value in secret_values:
            self.add(value)

    def add(self, value: Any) -> None:
        if value is None or value == "" or isinstance(value, bool):
            return
        if isinstance(value, (dict, list)):
            for item in (value.values() if isinstance(value, dict) else value):
                self.add(item)
            return
        if not self._is_secret(value):
            self._secrets.append(value)

    def __len__(self) -> int:
        return len(self._secrets)

    def scrub(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {(self.scrub(k) if isinstance(k, str) else k): self.scrub(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.scrub(item) for item in value]
        if self._is_secret(value):
            return self.marker
        if isinstance(value, str):
            return self._scrub_text(value)
        return value

    def scrub_error(self, error: Optional[NodeError]) -> Optional[NodeError]:
        if error is None:
            return None
        return error.model_copy(update={
            "error_message": self.scrub(error.error_message),
            "context": self.scrub(error.context),
        })

    def _is_secret(self, value: Any) -> bool:
        return any(type(value) is type(s) and value == s for s in self._secrets)

    def _scrub_text(self, text: str) -> str:
        embedded = sorted(
            (s for s in self._secrets if isinstance(s, str) and len(s) >= MIN_SECRET_SCRUB_LENGTH),
            key=len,
            reverse=True,
        )
        for secret in embedded:
            if secret in text:
                text = text.replace(secret, self.marker)
        return text


class ResultAggregator:
    """Builds the FlowResult returned to callers"""

    @staticmethod
    def overall_status(node_results: Dict[str, NodeResult]) -> FlowStatus:
        for result in node_results.values():
            if result.status in (NodeStatus.ERROR, NodeStatus.CANCELLED):
                return FlowStatus.PARTIAL_FAILURE
            if result.status == NodeStatus.SKIPPED and result.skip_reason in FAILURE_SKIP_REASONS:
                return FlowStatus.PARTIAL_FAILURE
        return FlowStatus.SUCCESS

    def aggregate(
        self,
        execution_id: str,
        node_results: Dict[str, NodeResult],
        started_at: datetime,
        project_id: Optional[str] = None,
        output_node_ids: Iterable[str] = (),
    ) -> FlowResult:
        output = None
        for node_id in output_node_ids:
            result = node_results.get(node_id)
            if result is not None and result.status == NodeStatus.SUCCESS:
                output = result.outputs

        finished_at = utc_now()
        return FlowResult(
            execution_id=execution_id,
            project_id=project_id,
            overall_status=self.overall_status(node_results),
            node_results=node_results,
            output=output,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=int((finished_at - started_at).total_seconds() * 1000),
        )

    def failure(
        self,
        execution_id: str,
        error: FlowValidationError,
        started_at: datetime,
        project_id: Optional[str] = None,
        node_results: Optional[Dict[str, NodeResult]] = None,
    ) -> FlowResult:
        finished_at = utc_now()
        return FlowResult(
            execution_id=execution_id,
            project_id=project_id,
            overall_status=FlowStatus.FAILURE,
            node_results=node_results or {},
            error=FlowValidationFailure(code=error.code, message=error.message, node_ids=error.node_ids),
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=int((finished_at - started_at).total_seconds() * 1000),
        )
