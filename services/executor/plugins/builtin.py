"""Built-in trigger, logic and response plugins."""

import asyncio
import json
from typing import Dict, Any
from services.executor.engine.registry import NodePlugin, register_plugin
from shared.exceptions import NodeExecutionError
from shared.types import InputSpec, OutputSpec, PluginCategory


@register_plugin
class WebhookTriggerPlugin(NodePlugin):
    """Exposes the HTTP request that started the flow (``variables.request``)"""
    type = "webhook-trigger"
    category = PluginCategory.TRIGGER
    name = "Webhook Trigger"
    outputs = [
        OutputSpec(name="body", type="any"),
        OutputSpec(name="headers", type="object"),
        OutputSpec(name="query", type="object"),
        OutputSpec(name="method", type="text"),
    ]

    def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        request = context.variables.get("request") or {}
        return {
            "body": request.get("body"),
            "headers": request.get("headers") or {},
            "query": request.get("query") or {},
            "method": request.get("method", "POST"),
        }


@register_plugin
class ManualTriggerPlugin(NodePlugin):
    type = "manual-trigger"
    category = PluginCategory.TRIGGER
    name = "Manual Trigger"
    inputs = [InputSpec(name="data", type="json", default="{{variables.input}}")]
    outputs = [OutputSpec(name="data", type="any")]

    def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        return {"data": inputs.get("data")}


def _as_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise NodeExecutionError(f"Cannot compare non-numeric value: {value!r}")


def _as_text(value: Any) -> str:
    return "" if value is None else str(value).lower()


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _loose_equals(left: Any, right: Any) -> bool:
    if left == right:
        return True
    if isinstance(left, bool) or isinstance(right, bool):
        return _as_text(left) == _as_text(right)
    return left is not None and right is not None and str(left) == str(right)


CONDITION_OPERATORS = {
    "equals": _loose_equals,
    "notEquals": lambda l, r: not _loose_equals(l, r),
    "greaterThan": lambda l, r: _as_number(l) > _as_number(r),
    "greaterThanOrEqual": lambda l, r: _as_number(l) >= _as_number(r),
    "lessThan": lambda l, r: _as_number(l) < _as_number(r),
    "lessThanOrEqual": lambda l, r: _as_number(l) <= _as_number(r),
    "contains": lambda l, r: _as_text(r) in _as_text(l),
    "notContains": lambda l, r: _as_text(r) not in _as_text(l),
    "startsWith": lambda l, r: _as_text(l).startswith(_as_text(r)),
    "endsWith": lambda l, r: _as_text(l).endswith(_as_text(r)),
    "isEmpty": lambda l, r: _is_empty(l),
    "isNotEmpty": lambda l, r: not _is_empty(l),
    "isTrue": lambda l, r: l in (True, "true", 1, "1"),
    "isFalse": lambda l, r: l in (False, "false", 0, "0"),
}


@register_plugin
class ConditionPlugin(NodePlugin):
    """Compares two operands; gate downstream edges with ``output.result``"""
    type = "condition"
    category = PluginCategory.ACTION
    name = "Condition"
    inputs = [
        InputSpec(name="leftOperand", type="text"),
        InputSpec(name="operator", type="select", required=True, default="equals"),
        InputSpec(name="rightOperand", type="text"),
    ]
    outputs = [
        OutputSpec(name="result", type="boolean"),
        OutputSpec(name="success", type="boolean"),
    ]

    def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        operator = inputs["operator"]
        compare = CONDITION_OPERATORS.get(operator)
        if compare is None:
            raise NodeExecutionError(
                f"Unknown condition operator '{operator}'. "
                f"Allowed operators: {', '.join(sorted(CONDITION_OPERATORS))}"
            )
        result = compare(inputs.get("leftOperand"), inputs.get("rightOperand"))
        return {"result": bool(result), "success": True}


TRANSFORMS = {
    "uppercase": lambda d: str(d).upper(),
    "lowercase": lambda d: str(d).lower(),
    "trim": lambda d: str(d).strip(),
    "json_parse": lambda d: json.loads(d),
    "json_stringify": lambda d: json.dumps(d)
}


@register_plugin
class TransformPlugin(NodePlugin):
    type = "transform"
    category = PluginCategory.ACTION
    name = "Transform"
    inputs = [
        InputSpec(name="input", type="any"),
        InputSpec(name="transformType", type="select", required=True),
    ]
    outputs = [OutputSpec(name="result", type="any")]

    def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        transform_type = inputs["transformType"]
        if transform_type not in TRANSFORMS:
            raise NodeExecutionError(f"Unknown transform type: {transform_type}")
        try:
            return {"result": TRANSFORMS[transform_type](inputs.get("input"))}
        except (TypeError, ValueError) as e:
            raise NodeExecutionError(f"Transform '{transform_type}' failed: {e}")


@register_plugin
class DelayPlugin(NodePlugin):
    type = "delay"
    category = PluginCategory.ACTION
    name = "Delay"
    inputs = [InputSpec(name="seconds", type="number", required=True, default=1)]
    outputs = [OutputSpec(name="waitedSeconds", type="number")]

    async def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        seconds = float(inputs["seconds"])
        if seconds < 0:
            raise NodeExecutionError("Delay must not be negative")
        await asyncio.sleep(seconds)
        return {"waitedSeconds": seconds}


@register_plugin
class ResponsePlugin(NodePlugin):
    """Its outputs become the flow's output"""
    type = "response"
    category = PluginCategory.ACTION
    name = "Response"
    produces_flow_output = True
    inputs = [
        InputSpec(name="statusCode", type="number", default=200),
        InputSpec(name="body", type="json"),
        InputSpec(name="headers", type="json", default={}),
    ]
    outputs = [
        OutputSpec(name="statusCode", type="number"),
        OutputSpec(name="body", type="any"),
        OutputSpec(name="headers", type="object"),
    ]

    def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        status_code = int(inputs.get("statusCode") or 200)
        if not 100 <= status_code <= 599:
            raise NodeExecutionError(f"Invalid response status code: {status_code}")
        return {
            "statusCode": status_code,
            "body": inputs.get("body"),
            "headers": inputs.get("headers") or {},
        }
