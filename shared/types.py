"""Shared types for the flow engine and the API service."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from shared.constants import MIN_NODE_TIMEOUT_SECONDS, MAX_NODE_TIMEOUT_SECONDS
from shared.exceptions import NodeError


class NodeStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = {NodeStatus.SUCCESS, NodeStatus.ERROR, NodeStatus.SKIPPED, NodeStatus.CANCELLED}


class SkipReason(str, Enum):
    CONDITION_NOT_MET = "CONDITION_NOT_MET"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_CANCELLED = "UPSTREAM_CANCELLED"
    DISABLED = "DISABLED"


class FlowStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    FAILURE = "FAILURE"


class PluginCategory(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"


class InputSpec(BaseModel):
    """One input slot declared by a plugin"""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    label: Optional[str] = None
    type: str = "text"
    required: bool = False
    default: Any = None
    is_api_key: bool = Field(default=False, alias="isApiKey")
    description: Optional[str] = None


class OutputSpec(BaseModel):
    name: str
    type: str = "any"
    description: Optional[str] = None


class NodeInstance(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    label: Optional[str] = None
    static_inputs: Dict[str, Any] = Field(default_factory=dict, alias="staticInputs")
    disabled: bool = False
    timeout_seconds: Optional[float] = Field(default=None, alias="timeoutSeconds")

    @field_validator('timeout_seconds')
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is None:
            return v
        if v < MIN_NODE_TIMEOUT_SECONDS or v > MAX_NODE_TIMEOUT_SECONDS:
            raise ValueError(
                f"timeout_seconds must be between {MIN_NODE_TIMEOUT_SECONDS} and {MAX_NODE_TIMEOUT_SECONDS}"
            )
        return v


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    from_node_id: str = Field(alias="fromNodeId")
    from_output: Optional[str] = Field(default=None, alias="fromOutput")
    to_node_id: str = Field(alias="toNodeId")
    to_input: Optional[str] = Field(default=None, alias="toInput")
    condition: Optional[str] = None
    continue_on_error: bool = Field(default=False, alias="continueOnError")

    @property
    def label(self) -> str:
        return self.id or f"{self.from_node_id}->{self.to_node_id}"


class FlowDefinition(BaseModel):
    """Immutable input to one execution"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    nodes: List[NodeInstance]
    edges: List[Edge] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    secrets: Dict[str, Any] = Field(default_factory=dict)
    project_id: Optional[str] = Field(default=None, alias="projectId")


class NodeResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field(alias="nodeId")
    status: NodeStatus = NodeStatus.PENDING
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[NodeError] = None
    skip_reason: Optional[SkipReason] = Field(default=None, alias="skipReason")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    finished_at: Optional[datetime] = Field(default=None, alias="finishedAt")


class FlowValidationFailure(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    message: str
    node_ids: List[str] = Field(default_factory=list, alias="nodeIds")


class FlowResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    execution_id: str = Field(alias="executionId")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    overall_status: FlowStatus = Field(alias="overallStatus")
    node_results: Dict[str, NodeResult] = Field(default_factory=dict, alias="nodeResults")
    output: Optional[Dict[str, Any]] = None
    error: Optional[FlowValidationFailure] = None
    started_at: datetime = Field(alias="startedAt")
    finished_at: datetime = Field(alias="finishedAt")
    duration_ms: int = Field(default=0, alias="durationMs")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
