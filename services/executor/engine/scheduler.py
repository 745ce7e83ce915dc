"""Dependency-ordered node scheduling with bounded concurrency and timeouts."""

import asyncio
import contextvars
import functools
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Deque, Dict, List, Mapping, Optional

from shared.constants import CANCEL_GRACE_SECONDS
from shared.exceptions import NodeError, NodeExecutionError
from shared.logging_config import set_node_id
from shared.types import Edge, NodeResult, NodeStatus, SkipReason
from services.executor.engine.conditions import ConditionEvaluator
from services.executor.engine.context import ExecutionContext, NodeExecutionContext
from services.executor.engine.graph import FlowGraph
from services.executor.engine.resolver import InputResolver
from services.executor.engine.results import SecretScrubber


class EdgeState(str, Enum):
    SATISFIED = "SATISFIED"
    INACTIVE = "INACTIVE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


def normalize_outputs(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    return {"result": raw}


class FlowScheduler:
    """Runs one validated graph to completion.

    Each node's incoming edges are counted down as their sources finish; a
    node is decided (ready or skipped) exactly once, when its last incoming
    edge resolves, so readiness is only ever recomputed for the immediate
    successors of a finished node.
    """

    def __init__(
        self,
        graph: FlowGraph,
        context: ExecutionContext,
        conditions: ConditionEvaluator,
        scrubber: SecretScrubber,
        max_concurrency: int,
        node_timeout_seconds: float,
        flow_timeout_seconds: float,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.graph = graph
        self.context = context
        self.conditions = conditions
        self.scrubber = scrubber
        self.max_concurrency = max_concurrency
        self.node_timeout_seconds = node_timeout_seconds
        self.flow_timeout_seconds = flow_timeout_seconds
        self.resolver = InputResolver(graph, context)

        self._remaining_edges = {nid: len(edges) for nid, edges in graph.incoming.items()}
        self._edge_states: Dict[str, List[EdgeState]] = {nid: [] for nid in graph.nodes}
        self._traversed: Dict[str, List[Edge]] = {nid: [] for nid in graph.nodes}
        self._ready: Deque[str] = deque()
        self._running: Dict[asyncio.Task, str] = {}
        self._node_contexts: Dict[str, NodeExecutionContext] = {}
        self._pool: Optional[ThreadPoolExecutor] = None
        self._retired_pools: List[ThreadPoolExecutor] = []

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.flow_timeout_seconds
        self._pool = self._new_pool()
        self._ready.extend(self.graph.root_nodes)

        try:
            while self._ready or self._running:
                while self._ready and len(self._running) < self.max_concurrency:
                    self._start(self._ready.popleft())

                if not self._running:
                    continue

                remaining = deadline - loop.time()
                done = set()
                if remaining > 0:
                    done, _ = await asyncio.wait(
                        list(self._running),
                        timeout=remaining,
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                if not done:
                    await self._cancel_outstanding()
                    break

                for task in done:
                    node_id = self._running.pop(task)
                    self._collect(task, node_id)
                    self._propagate(node_id)
        finally:
            for pool in [self._pool, *self._retired_pools]:
                pool.shutdown(wait=False, cancel_futures=True)

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_concurrency, thread_name_prefix="flow-node")

    def _retire_pool(self) -> None:
        """Swaps in a fresh pool so an abandoned sync call cannot hold a worker later nodes need"""
        self._retired_pools.append(self._pool)
        self._pool.shutdown(wait=False)
        self._pool = self._new_pool()

    def _start(self, node_id: str) -> None:
        node = self.graph.nodes[node_id]
        if node.disabled:
            if self.context.finish(node_id, NodeStatus.SKIPPED, skip_reason=SkipReason.DISABLED):
                logging.info("Skipping disabled node", extra={
                    "execution_id": self.context.execution_id,
                    "node_id": node_id,
                })
                self._propagate(node_id)
            return

        if not self.context.claim(node_id):
            return

        task = asyncio.create_task(self._run_node(node_id), name=f"node_{node_id}")
        self._running[task] = node_id

    def _timeout_for(self, node_id: str) -> float:
        node = self.graph.nodes[node_id]
        if node.timeout_seconds is not None:
            return node.timeout_seconds
        plugin_timeout = self.graph.plugins[node_id].plugin.timeout_seconds
        if plugin_timeout is not None:
            return plugin_timeout
        return self.node_timeout_seconds

    async def _run_node(self, node_id: str) -> None:
        set_node_id(node_id)
        entry = self.graph.plugins[node_id]
        timeout = self._timeout_for(node_id)
        node_context = NodeExecutionContext(self.context, node_id, timeout)
        self._node_contexts[node_id] = node_context
        log_extra = {
            "execution_id": self.context.execution_id,
            "node_id": node_id,
            "plugin_type": entry.type,
        }

        try:
            resolved = self.resolver.resolve(node_id, self._traversed[node_id])
        except NodeExecutionError as e:
            self._fail(node_id, e.to_node_error())
            return

        for value in resolved.api_key_values:
            self.scrubber.add(value)

        logging.info("Executing node", extra={**log_extra, "timeout": timeout})
        logging.debug("Resolved node inputs", extra={**log_extra, "inputs": self.scrubber.scrub(resolved.values)})

        invocation = asyncio.ensure_future(self._invoke(node_id, resolved.values, node_context))
        try:
            done, _ = await asyncio.wait({invocation}, timeout=timeout)
        except asyncio.CancelledError:
            invocation.cancel()
            node_context.cancel()
            self.context.finish(node_id, NodeStatus.CANCELLED)
            logging.warning("Node cancelled", extra=log_extra)
            raise

        if not done:
            # The call is abandoned, not killed; whatever it returns later is discarded
            invocation.cancel()
            node_context.cancel()
            if not entry.is_async:
                self._retire_pool()
            self.context.finish(node_id, NodeStatus.CANCELLED)
            logging.warning("Node timed out", extra={**log_extra, "timeout": timeout})
            return

        try:
            raw = invocation.result()
        except NodeExecutionError as e:
            self._fail(node_id, e.to_node_error())
            return
        except Exception as e:
            self._fail(node_id, NodeError(
                error_type="PluginExecutionError",
                error_message=str(e) or type(e).__name__,
                context={"exception": type(e).__name__},
            ))
            return

        outputs = self.scrubber.scrub(normalize_outputs(raw))
        if self.context.finish(node_id, NodeStatus.SUCCESS, outputs=outputs):
            logging.info("Node completed successfully", extra=log_extra)

    async def _invoke(self, node_id: str, values: Dict[str, Any], node_context: NodeExecutionContext) -> Any:
        entry = self.graph.plugins[node_id]
        if entry.is_async:
            return await entry.plugin.execute(values, node_context)

        loop = asyncio.get_running_loop()
        call = functools.partial(entry.plugin.execute, values, node_context)
        # Carry the correlation and node ids into the worker thread
        return await loop.run_in_executor(self._pool, contextvars.copy_context().run, call)

    def _fail(self, node_id: str, error: NodeError) -> None:
        error = self.scrubber.scrub_error(error)
        if self.context.finish(node_id, NodeStatus.ERROR, error=error):
            logging.error("Node failed", extra={
                "execution_id": self.context.execution_id,
                "node_id": node_id,
                "error_type": error.error_type,
                "error": error.error_message,
            })

    def _collect(self, task: asyncio.Task, node_id: str) -> None:
        """Makes sure a finished task left its node terminal"""
        if task.cancelled():
            self.context.finish(node_id, NodeStatus.CANCELLED)
            return
        exc = task.exception()
        if exc is not None and not self.context.is_terminal(node_id):
            self._fail(node_id, NodeError(error_type="PluginExecutionError", error_message=str(exc)))

    def edge_state(self, edge: Edge, source: NodeResult) -> EdgeState:
        if source.status == NodeStatus.SUCCESS:
            passed = self.conditions.evaluate(edge.condition, source.outputs, self.context.variables, edge.label)
            return EdgeState.SATISFIED if passed else EdgeState.INACTIVE
        if source.status == NodeStatus.ERROR:
            return EdgeState.SATISFIED if edge.continue_on_error else EdgeState.FAILED
        if source.status == NodeStatus.SKIPPED:
            return {
                SkipReason.DISABLED: EdgeState.SATISFIED,
                SkipReason.CONDITION_NOT_MET: EdgeState.INACTIVE,
                SkipReason.UPSTREAM_ERROR: EdgeState.FAILED,
                SkipReason.UPSTREAM_CANCELLED: EdgeState.CANCELLED,
            }[source.skip_reason]
        return EdgeState.CANCELLED

    def _propagate(self, node_id: str) -> None:
        """Resolves the outgoing edges of a terminal node, deciding successors whose last edge this was"""
        worklist = deque([node_id])
        while worklist:
            current = worklist.popleft()
            source = self.context.node_results[current]
            for edge in self.graph.outgoing[current]:
                target = edge.to_node_id
                state = self.edge_state(edge, source)
                self._edge_states[target].append(state)
                if state == EdgeState.SATISFIED:
                    self._traversed[target].append(edge)
                self._remaining_edges[target] -= 1
                if self._remaining_edges[target] > 0:
                    continue

                skip_reason = self._decide(self._edge_states[target])
                if skip_reason is None:
                    self._ready.append(target)
                elif self.context.finish(target, NodeStatus.SKIPPED, skip_reason=skip_reason):
                    logging.info("Skipping node", extra={
                        "execution_id": self.context.execution_id,
                        "node_id": target,
                        "reason": skip_reason.value,
                    })
                    worklist.append(target)

    @staticmethod
    def _decide(states: List[EdgeState]) -> Optional[SkipReason]:
        """None means ready; otherwise the reason the node is skipped"""
        if EdgeState.FAILED in states:
            return SkipReason.UPSTREAM_ERROR
        if EdgeState.CANCELLED in states:
            return SkipReason.UPSTREAM_CANCELLED
        if EdgeState.SATISFIED in states:
            return None
        return SkipReason.CONDITION_NOT_MET

    async def _cancel_outstanding(self) -> None:
        logging.warning("Flow deadline exceeded; cancelling outstanding nodes", extra={
            "execution_id": self.context.execution_id,
            "running": sorted(self._running.values()),
        })
        for task, node_id in self._running.items():
            node_context = self._node_contexts.get(node_id)
            if node_context is not None:
                node_context.cancel()
            task.cancel()

        if self._running:
            await asyncio.wait(list(self._running), timeout=CANCEL_GRACE_SECONDS)

        for node_id in self.graph.nodes:
            self.context.finish(node_id, NodeStatus.CANCELLED)
        self._running.clear()
        self._ready.clear()
