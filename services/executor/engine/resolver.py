"""Builds the concrete input record for a node right before it executes."""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from shared.exceptions import DynamicInputsError, MissingRequiredInputError
from shared.types import Edge, InputSpec
from shared.utils import get_path, split_path
from services.executor.engine.context import ExecutionContext
from services.executor.engine.graph import FlowGraph
from services.executor.engine.template import TemplateResolver


@dataclass
class ResolvedInputs:
    values: Dict[str, Any]
    specs: List[InputSpec] = field(default_factory=list)
    api_key_values: List[Any] = field(default_factory=list)


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class InputResolver:
    """Merges static config, plugin defaults, edge bindings, templates and dynamic inputs.

    The returned values carry raw secret material and must only be handed to
    the plugin's execute call; anything logged goes through the scrubber.
    """

    def __init__(self, graph: FlowGraph, context: ExecutionContext):
        self.graph = graph
        self.context = context
        self.templates = TemplateResolver(context.variables, context.secrets, context.outputs_of)

    def resolve(self, node_id: str, edges: Optional[Sequence[Edge]] = None) -> ResolvedInputs:
        node = self.graph.nodes[node_id]
        plugin = self.graph.plugins[node_id]

        raw = copy.deepcopy(dict(node.static_inputs))
        specs = list(plugin.plugin.inputs)
        for spec in specs:
            if spec.name not in raw and spec.default is not None:
                raw[spec.name] = copy.deepcopy(spec.default)

        values = self.templates.resolve(raw)
        # Upstream data is bound after resolution so it is never read as a template
        values.update(self._edge_bindings(node_id, edges))

        if plugin.supports_dynamic_inputs:
            try:
                dynamic_specs = plugin.dynamic_inputs(values)
            except Exception as e:
                raise DynamicInputsError(
                    f"Dynamic inputs for node '{node_id}' could not be computed: {e}",
                    node_id=node_id,
                )
            known = {spec.name for spec in specs}
            for spec in dynamic_specs:
                if spec.name in known:
                    continue
                known.add(spec.name)
                specs.append(spec)
                if _is_missing(values.get(spec.name)) and spec.default is not None:
                    values[spec.name] = self.templates.resolve(copy.deepcopy(spec.default))

        missing = [spec.name for spec in specs if spec.required and _is_missing(values.get(spec.name))]
        if missing:
            raise MissingRequiredInputError(
                f"Node '{node_id}' is missing required input(s): {', '.join(missing)}",
                node_id=node_id,
                missing=missing,
            )

        api_keys = [
            values[spec.name] for spec in specs
            if spec.is_api_key and not _is_missing(values.get(spec.name))
        ]
        return ResolvedInputs(values=values, specs=specs, api_key_values=api_keys)

    def _edge_bindings(self, node_id: str, edges: Optional[Sequence[Edge]]) -> Dict[str, Any]:
        """Values carried along the given data edges, all incoming edges when None.

        The scheduler passes only the edges that were traversed, so a data edge
        whose condition was false binds nothing.
        """
        bound = {}
        for edge in (self.graph.incoming[node_id] if edges is None else edges):
            if edge.from_output is None or edge.to_input is None:
                continue
            outputs = self.context.outputs_of(edge.from_node_id)
            if outputs is None:
                continue
            bound[edge.to_input] = copy.deepcopy(get_path(outputs, split_path(edge.from_output)))
        return bound
