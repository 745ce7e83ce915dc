"""Test plugins and helpers shared by the engine tests."""

import asyncio
import threading
import time
from typing import Any, Dict, List

import pytest

from services.executor.engine.executor import FlowExecutor
from services.executor.engine.registry import NodePlugin, PluginRegistry
from shared.types import FlowDefinition, InputSpec, OutputSpec, PluginCategory


class EventLog:
    """Thread-safe record of (event, node_id, timestamp) plus peak concurrency"""

    def __init__(self):
        self.events: List[tuple] = []
        self._lock = threading.Lock()
        self._active = 0
        self.peak = 0

    def start(self, node_id: str) -> None:
        with self._lock:
            self._active += 1
            self.peak = max(self.peak, self._active)
            self.events.append(("start", node_id, time.monotonic()))

    def finish(self, node_id: str) -> None:
        with self._lock:
            self._active -= 1
            self.events.append(("finish", node_id, time.monotonic()))

    def time_of(self, event: str, node_id: str) -> float:
        return next(ts for ev, nid, ts in self.events if ev == event and nid == node_id)

    def started(self, node_id: str) -> bool:
        return any(ev == "start" and nid == node_id for ev, nid, _ in self.events)


class TriggerPlugin(NodePlugin):
    type = "test-trigger"
    category = PluginCategory.TRIGGER
    dynamic_outputs = True

    def execute(self, inputs, context):
        return dict(inputs)


class EchoPlugin(NodePlugin):
    """Returns its inputs as outputs, optionally after sleeping"""
    type = "echo"
    dynamic_outputs = True
    inputs = [
        InputSpec(name="value"),
        InputSpec(name="data"),
        InputSpec(name="sleep", type="number"),
    ]

    def __init__(self, log: EventLog):
        self.log = log

    def execute(self, inputs, context):
        self.log.start(context.node_id)
        try:
            if inputs.get("sleep"):
                time.sleep(float(inputs["sleep"]))
            return {k: v for k, v in inputs.items() if k != "sleep"}
        finally:
            self.log.finish(context.node_id)


class FailPlugin(NodePlugin):
    type = "fail"
    inputs = [InputSpec(name="message", default="boom")]
    outputs = [OutputSpec(name="never")]

    def execute(self, inputs, context):
        raise RuntimeError(inputs["message"])


class SlowAsyncPlugin(NodePlugin):
    type = "slow"
    inputs = [InputSpec(name="seconds", type="number", default=5)]
    outputs = [OutputSpec(name="done")]

    async def execute(self, inputs, context):
        await asyncio.sleep(float(inputs["seconds"]))
        return {"done": True}


class RequiresNamePlugin(NodePlugin):
    type = "requires-name"
    inputs = [InputSpec(name="name", required=True)]
    outputs = [OutputSpec(name="greeting")]

    def execute(self, inputs, context):
        return {"greeting": f"hello {inputs['name']}"}


class SchedulePlugin(NodePlugin):
    type = "scheduler"
    inputs = [
        InputSpec(name="action", type="select", required=True),
        InputSpec(name="apiKey", is_api_key=True),
    ]
    outputs = [OutputSpec(name="scheduled")]

    def get_dynamic_inputs(self, current_inputs):
        if current_inputs.get("action") == "createSchedule":
            return [
                {"name": "scheduleData", "required": True},
                {"name": "timezone", "default": "{{variables.tz}}"},
            ]
        return []

    def execute(self, inputs, context):
        return {"scheduled": inputs.get("scheduleData"), "timezone": inputs.get("timezone")}


class ScalarPlugin(NodePlugin):
    type = "scalar"
    outputs = [OutputSpec(name="result")]

    def execute(self, inputs, context):
        return 42


class OutputPlugin(NodePlugin):
    type = "output"
    produces_flow_output = True
    inputs = [InputSpec(name="body")]
    outputs = [OutputSpec(name="body")]

    def execute(self, inputs, context):
        return {"body": inputs.get("body")}


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def registry(event_log):
    reg = PluginRegistry()
    for plugin in (
        TriggerPlugin(),
        EchoPlugin(event_log),
        FailPlugin(),
        SlowAsyncPlugin(),
        RequiresNamePlugin(),
        SchedulePlugin(),
        ScalarPlugin(),
        OutputPlugin(),
    ):
        reg.register(plugin)
    reg.freeze()
    return reg


def make_flow(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]] = None, **extra) -> FlowDefinition:
    return FlowDefinition.model_validate({"nodes": nodes, "edges": edges or [], **extra})


def node(node_id: str, node_type: str = "echo", **static_inputs) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "staticInputs": static_inputs}


def edge(source: str, target: str, **extra) -> Dict[str, Any]:
    return {"fromNodeId": source, "toNodeId": target, **extra}


def run_flow(registry, flow, **executor_kwargs):
    executor_kwargs.setdefault("max_concurrency", 4)
    executor_kwargs.setdefault("node_timeout_seconds", 5)
    executor_kwargs.setdefault("flow_timeout_seconds", 10)
    return FlowExecutor(registry=registry, **executor_kwargs).execute_flow_sync(flow)
