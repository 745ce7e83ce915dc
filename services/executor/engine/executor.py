"""Flow executor: validate, schedule, scrub, aggregate."""

import asyncio
import logging
import os
from typing import Optional

from shared.constants import (
    DEFAULT_FLOW_TIMEOUT_SECONDS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_NODE_TIMEOUT_SECONDS,
)
from shared.exceptions import FlowValidationError
from shared.logging_config import set_execution_id
from shared.types import FlowDefinition, FlowResult, NodeResult, NodeStatus
from shared.utils import generate_execution_id, utc_now
from services.executor.engine.conditions import ConditionEvaluator
from services.executor.engine.context import ExecutionContext
from services.executor.engine.graph import build_graph
from services.executor.engine.registry import PluginRegistry, load_builtin_plugins
from services.executor.engine.results import ResultAggregator, SecretScrubber
from services.executor.engine.scheduler import FlowScheduler


class FlowExecutor:

    def __init__(
        self,
        registry: Optional[PluginRegistry] = None,
        max_concurrency: Optional[int] = None,
        node_timeout_seconds: Optional[float] = None,
        flow_timeout_seconds: Optional[float] = None,
    ):
        self.registry = registry if registry is not None else load_builtin_plugins()
        self.max_concurrency = max_concurrency or int(
            os.getenv("FLOW_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)
        )
        self.node_timeout_seconds = node_timeout_seconds or float(
            os.getenv("FLOW_NODE_TIMEOUT_SECONDS", DEFAULT_NODE_TIMEOUT_SECONDS)
        )
        self.flow_timeout_seconds = flow_timeout_seconds or float(
            os.getenv("FLOW_TIMEOUT_SECONDS", DEFAULT_FLOW_TIMEOUT_SECONDS)
        )
        self.aggregator = ResultAggregator()

    async def execute_flow(self, flow: FlowDefinition, execution_id: Optional[str] = None) -> FlowResult:
        """Runs a flow and returns its result; never raises for validation or node failures"""
        execution_id = execution_id or generate_execution_id()
        set_execution_id(execution_id)
        started_at = utc_now()
        scrubber = SecretScrubber(flow.secrets.values())
        conditions = ConditionEvaluator()

        logging.info("Starting flow execution", extra={
            "execution_id": execution_id,
            "project_id": flow.project_id,
            "total_nodes": len(flow.nodes),
            "total_edges": len(flow.edges),
        })

        try:
            graph = build_graph(flow, self.registry, conditions)
        except FlowValidationError as e:
            e.message = scrubber.scrub(e.message)
            logging.warning("Flow validation failed", extra={
                "execution_id": execution_id,
                "code": e.code,
                "error": e.message,
                "node_ids": e.node_ids,
            })
            pending = {node.id: NodeResult(node_id=node.id) for node in flow.nodes}
            return self.aggregator.failure(execution_id, e, started_at, flow.project_id, pending)

        context = ExecutionContext(
            execution_id,
            graph.nodes,
            variables=flow.variables,
            secrets=flow.secrets,
            project_id=flow.project_id,
        )
        scheduler = FlowScheduler(
            graph,
            context,
            conditions,
            scrubber,
            max_concurrency=self.max_concurrency,
            node_timeout_seconds=self.node_timeout_seconds,
            flow_timeout_seconds=self.flow_timeout_seconds,
        )

        try:
            await scheduler.run()
        except Exception:
            logging.exception("Scheduler stopped unexpectedly", extra={"execution_id": execution_id})
            for node_id in graph.nodes:
                context.finish(node_id, NodeStatus.CANCELLED)

        output_nodes = [
            nid for generation in graph.generations for nid in generation
            if graph.plugins[nid].plugin.produces_flow_output
        ]
        result = self.aggregator.aggregate(
            execution_id,
            context.snapshot(),
            started_at,
            project_id=flow.project_id,
            output_node_ids=output_nodes,
        )

        logging.info("Flow execution finished", extra={
            "execution_id": execution_id,
            "overall_status": result.overall_status.value,
            "duration_ms": result.duration_ms,
        })
        return result

    def execute_flow_sync(self, flow: FlowDefinition, execution_id: Optional[str] = None) -> FlowResult:
        return asyncio.run(self.execute_flow(flow, execution_id))
