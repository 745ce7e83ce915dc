"""Structured exception hierarchy for the flow engine."""

from typing import Optional, Dict, Any, List
from pydantic import BaseModel


class NodeError(BaseModel):
    """Structured error recorded on a failed node"""
    error_type: str
    error_message: str
    http_status_code: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    is_retryable: bool = False
    context: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class FlowError(Exception):
    """Base exception for flow errors"""

    def __init__(self, message: str, execution_id: str = "", **context):
        self.message = message
        self.execution_id = execution_id
        self.context = context
        super().__init__(message)


class FlowValidationError(FlowError):
    """Raised before any node runs; the whole execution is a Failure"""
    code = "ValidationError"

    def __init__(self, message: str, node_ids: Optional[List[str]] = None, **context):
        self.node_ids = sorted(node_ids or [])
        super().__init__(message, **context)


class CyclicGraphError(FlowValidationError):
    code = "CyclicGraph"


class DanglingEdgeError(FlowValidationError):
    code = "DanglingEdge"


class UnknownNodeTypeError(FlowValidationError):
    code = "UnknownNodeType"


class DuplicateNodeIdError(FlowValidationError):
    code = "DuplicateNodeId"


class InvalidReferenceError(FlowValidationError):
    code = "InvalidReference"


class InvalidConditionError(FlowValidationError):
    code = "InvalidCondition"


class FlowTooLargeError(FlowValidationError):
    code = "FlowTooLarge"


class EmptyFlowError(FlowValidationError):
    code = "EmptyFlow"


class NodeExecutionError(FlowError):
    """Node-local failure; recorded on the node, never aborts siblings"""
    error_type = "PluginExecutionError"

    def to_node_error(self) -> NodeError:
        return NodeError(
            error_type=self.error_type,
            error_message=self.message,
            context=self.context,
        )


class MissingRequiredInputError(NodeExecutionError):
    error_type = "MissingRequiredInput"


class TemplateResolutionError(NodeExecutionError):
    error_type = "TemplateResolutionError"


class DynamicInputsError(NodeExecutionError):
    error_type = "DynamicInputsError"


class PluginError(NodeExecutionError):
    """Raised by plugins that want to attach a structured error payload"""

    def __init__(self, error: NodeError):
        self.error = error
        super().__init__(error.error_message, **error.context)

    def to_node_error(self) -> NodeError:
        return self.error


class PluginRegistrationError(Exception):
    pass


class PluginNotFoundError(LookupError):
    pass
