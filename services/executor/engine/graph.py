"""Flow graph construction, validation and cycle detection."""

import json
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Set

from shared.constants import MAX_CONFIG_SIZE_BYTES, MAX_NODES_PER_FLOW, MAX_TEMPLATE_LENGTH
from shared.exceptions import (
    CyclicGraphError,
    DanglingEdgeError,
    DuplicateNodeIdError,
    EmptyFlowError,
    FlowTooLargeError,
    InvalidReferenceError,
    PluginNotFoundError,
    TemplateResolutionError,
    UnknownNodeTypeError,
)
from shared.types import Edge, FlowDefinition, NodeInstance, PluginCategory
from services.executor.engine.conditions import ConditionEvaluator
from services.executor.engine.registry import PluginRegistry, RegisteredPlugin
from services.executor.engine.template import NODE_OUTPUT, iter_template_strings, parse_reference


@dataclass
class FlowGraph:
    nodes: Dict[str, NodeInstance]
    plugins: Dict[str, RegisteredPlugin]
    incoming: Dict[str, List[Edge]]
    outgoing: Dict[str, List[Edge]]
    predecessors: Dict[str, Set[str]]
    successors: Dict[str, Set[str]]
    generations: List[List[str]] = field(default_factory=list)

    @property
    def generation_count(self) -> int:
        return len(self.generations)

    @property
    def root_nodes(self) -> List[str]:
        """Nodes with no incoming edges; runnable as soon as the flow starts"""
        return [nid for nid in self.nodes if not self.incoming[nid]]

    @property
    def entry_nodes(self) -> List[str]:
        return [
            nid for nid in self.root_nodes
            if self.plugins[nid].category == PluginCategory.TRIGGER
        ]

    def ancestors(self, node_id: str) -> Set[str]:
        seen: Set[str] = set()
        queue = deque(self.predecessors[node_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.predecessors[current])
        return seen


def build_graph(
    flow: FlowDefinition,
    registry: PluginRegistry,
    conditions: ConditionEvaluator,
) -> FlowGraph:
    """Validates a flow definition and returns its adjacency structure.

    Raises a FlowValidationError subclass on the first class of problem found;
    nothing is executed before this returns.
    """
    nodes = _index_nodes(flow.nodes)
    plugins = _resolve_plugins(nodes, registry)

    incoming: Dict[str, List[Edge]] = {nid: [] for nid in nodes}
    outgoing: Dict[str, List[Edge]] = {nid: [] for nid in nodes}
    predecessors: Dict[str, Set[str]] = {nid: set() for nid in nodes}
    successors: Dict[str, Set[str]] = {nid: set() for nid in nodes}

    for edge in flow.edges:
        validate_edge(edge, nodes, plugins)
        incoming[edge.to_node_id].append(edge)
        outgoing[edge.from_node_id].append(edge)
        predecessors[edge.to_node_id].add(edge.from_node_id)
        successors[edge.from_node_id].add(edge.to_node_id)

    generations = topological_generations(successors, predecessors)

    for edge in flow.edges:
        if edge.condition:
            conditions.compile(edge.condition, edge.label)

    graph = FlowGraph(nodes, plugins, incoming, outgoing, predecessors, successors, generations)
    validate_references(graph)
    return graph


def _index_nodes(node_list: List[NodeInstance]) -> Dict[str, NodeInstance]:
    if not node_list:
        raise EmptyFlowError("Flow must contain at least one node")

    if len(node_list) > MAX_NODES_PER_FLOW:
        raise FlowTooLargeError(f"Flow exceeds maximum node limit: {len(node_list)} > {MAX_NODES_PER_FLOW}")

    nodes: Dict[str, NodeInstance] = {}
    duplicates = set()
    for node in node_list:
        if node.id in nodes:
            duplicates.add(node.id)
        nodes[node.id] = node
    if duplicates:
        raise DuplicateNodeIdError(f"Duplicate node IDs: {', '.join(sorted(duplicates))}", node_ids=list(duplicates))

    for node in node_list:
        config_size = len(json.dumps(node.static_inputs, default=str).encode('utf-8'))
        if config_size > MAX_CONFIG_SIZE_BYTES:
            raise FlowTooLargeError(
                f"Node '{node.id}' config exceeds size limit: {config_size} > {MAX_CONFIG_SIZE_BYTES} bytes",
                node_ids=[node.id],
            )
    return nodes


def _resolve_plugins(nodes: Dict[str, NodeInstance], registry: PluginRegistry) -> Dict[str, RegisteredPlugin]:
    plugins, unknown = {}, {}
    for node_id, node in nodes.items():
        try:
            plugins[node_id] = registry.resolve(node.type)
        except PluginNotFoundError:
            unknown[node_id] = node.type
    if unknown:
        described = ", ".join(f"'{nid}' ({t})" for nid, t in sorted(unknown.items()))
        raise UnknownNodeTypeError(f"Unknown node type for nodes: {described}", node_ids=list(unknown))
    return plugins


def validate_edge(edge: Edge, nodes: Dict[str, NodeInstance], plugins: Dict[str, RegisteredPlugin]) -> None:
    for end in (edge.from_node_id, edge.to_node_id):
        if end not in nodes:
            raise DanglingEdgeError(f"Edge {edge.label} references non-existent node '{end}'", node_ids=[end])

    source = plugins[edge.from_node_id]
    if edge.from_output is not None and not source.declares_output(edge.from_output):
        raise DanglingEdgeError(
            f"Edge {edge.label} references unknown output '{edge.from_output}' of node '{edge.from_node_id}'",
            node_ids=[edge.from_node_id],
        )

    target = plugins[edge.to_node_id]
    if edge.to_input is not None and not target.accepts_input(edge.to_input, nodes[edge.to_node_id].static_inputs):
        raise DanglingEdgeError(
            f"Edge {edge.label} references unknown input '{edge.to_input}' of node '{edge.to_node_id}'",
            node_ids=[edge.to_node_id],
        )


def topological_generations(
    successors: Dict[str, Set[str]],
    predecessors: Dict[str, Set[str]],
) -> List[List[str]]:
    """Kahn layering; raises CyclicGraphError naming the nodes on cycles"""
    in_degree = {nid: len(preds) for nid, preds in predecessors.items()}
    current = [nid for nid, deg in in_degree.items() if deg == 0]
    generations, processed = [], 0

    while current:
        generations.append(sorted(current))
        processed += len(current)
        following = []
        for node_id in current:
            for child in successors[node_id]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    following.append(child)
        current = following

    if processed != len(in_degree):
        remaining = {nid for nid, deg in in_degree.items() if deg > 0}
        on_cycle = _prune_acyclic_tail(remaining, successors)
        raise CyclicGraphError(f"Flow contains a cycle through nodes: {', '.join(sorted(on_cycle))}", node_ids=list(on_cycle))

    return generations


def _prune_acyclic_tail(remaining: Set[str], successors: Dict[str, Set[str]]) -> Set[str]:
    """Drops nodes that only hang off a cycle, leaving the cycle participants"""
    out_degree = {nid: len(successors[nid] & remaining) for nid in remaining}
    queue = deque(nid for nid, deg in out_degree.items() if deg == 0)
    predecessors_in = {nid: set() for nid in remaining}
    for nid in remaining:
        for child in successors[nid] & remaining:
            predecessors_in[child].add(nid)

    while queue:
        node_id = queue.popleft()
        remaining.discard(node_id)
        for parent in predecessors_in[node_id]:
            if parent in remaining:
                out_degree[parent] -= 1
                if out_degree[parent] == 0:
                    queue.append(parent)
    return remaining


def validate_references(graph: FlowGraph) -> None:
    """Node-output templates must point at a transitive predecessor"""
    for node_id, node in graph.nodes.items():
        ancestors = None
        for path, text in iter_template_strings(node.static_inputs):
            if len(text) > MAX_TEMPLATE_LENGTH:
                raise InvalidReferenceError(
                    f"Node '{node_id}' has template exceeding length limit at {path}: {len(text)} > {MAX_TEMPLATE_LENGTH}",
                    node_ids=[node_id],
                )
            try:
                ref = parse_reference(text[2:-2])
            except TemplateResolutionError as e:
                raise InvalidReferenceError(f"Node '{node_id}' at {path}: {e.message}", node_ids=[node_id])

            if ref.kind != NODE_OUTPUT:
                continue
            if ref.head not in graph.nodes:
                raise InvalidReferenceError(
                    f"Node '{node_id}' references non-existent node '{ref.head}' at {path}",
                    node_ids=[node_id],
                )
            if ancestors is None:
                ancestors = graph.ancestors(node_id)
            if ref.head not in ancestors:
                raise InvalidReferenceError(
                    f"Node '{node_id}' references '{ref.head}' at {path}, which is not upstream of it",
                    node_ids=[node_id, ref.head],
                )
