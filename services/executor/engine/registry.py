"""Node plugin contract and the type -> plugin lookup table."""

import importlib
import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from shared.exceptions import PluginNotFoundError, PluginRegistrationError
from shared.types import InputSpec, OutputSpec, PluginCategory

BUILTIN_PLUGIN_MODULES = (
    "services.executor.plugins.builtin",
    "services.executor.plugins.http",
)


class NodePlugin:
    """Base class for node plugins.

    Subclasses set the descriptor attributes and implement ``execute``, either
    as a plain function (run on a worker thread) or as a coroutine. A plugin
    may also implement ``get_dynamic_inputs(current_inputs)`` returning extra
    input specs that depend on the inputs resolved so far.
    """

    type: str = ""
    category: PluginCategory = PluginCategory.ACTION
    name: Optional[str] = None
    description: Optional[str] = None
    inputs: List[InputSpec] = []
    outputs: List[OutputSpec] = []
    timeout_seconds: Optional[float] = None
    dynamic_outputs: bool = False
    produces_flow_output: bool = False

    def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass
class RegisteredPlugin:
    plugin: NodePlugin
    supports_dynamic_inputs: bool
    is_async: bool
    input_names: Set[str] = field(default_factory=set)
    output_names: Set[str] = field(default_factory=set)

    @property
    def type(self) -> str:
        return self.plugin.type

    @property
    def category(self) -> PluginCategory:
        return PluginCategory(self.plugin.category)

    def dynamic_inputs(self, current_inputs: Dict[str, Any]) -> List[InputSpec]:
        if not self.supports_dynamic_inputs:
            return []
        specs = self.plugin.get_dynamic_inputs(dict(current_inputs)) or []
        return [s if isinstance(s, InputSpec) else InputSpec.model_validate(s) for s in specs]

    def declares_output(self, name: str) -> bool:
        return self.plugin.dynamic_outputs or name in self.output_names

    def accepts_input(self, name: str, static_inputs: Dict[str, Any]) -> bool:
        if name in self.input_names:
            return True
        try:
            return any(spec.name == name for spec in self.dynamic_inputs(static_inputs))
        except Exception:
            logging.warning(
                "Dynamic inputs callback failed during validation",
                extra={"plugin_type": self.type, "input": name},
                exc_info=True,
            )
            return False

    def describe(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "category": self.category.value,
            "name": self.plugin.name or self.type,
            "description": self.plugin.description,
            "inputs": [spec.model_dump(by_alias=True) for spec in self.plugin.inputs],
            "outputs": [spec.model_dump() for spec in self.plugin.outputs],
            "dynamicInputs": self.supports_dynamic_inputs,
        }


class PluginRegistry:
    """Read-mostly map from node type to plugin; frozen once populated"""

    def __init__(self):
        self._plugins: Dict[str, RegisteredPlugin] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, plugin: NodePlugin) -> RegisteredPlugin:
        entry = self._check_plugin(plugin)
        with self._lock:
            if self._frozen:
                raise PluginRegistrationError(
                    f"Registry is frozen; cannot register plugin '{plugin.type}'"
                )
            if plugin.type in self._plugins:
                raise PluginRegistrationError(f"Duplicate plugin type: {plugin.type}")
            self._plugins[plugin.type] = entry
        logging.debug("Registered plugin", extra={"plugin_type": plugin.type})
        return entry

    def resolve(self, node_type: str) -> RegisteredPlugin:
        entry = self._plugins.get(node_type)
        if entry is None:
            raise PluginNotFoundError(f"Unknown node type: {node_type}")
        return entry

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def list_types(self) -> List[str]:
        return sorted(self._plugins)

    def describe(self) -> List[Dict[str, Any]]:
        return [self._plugins[t].describe() for t in self.list_types()]

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)

    @staticmethod
    def _check_plugin(plugin: NodePlugin) -> RegisteredPlugin:
        if not isinstance(plugin.type, str) or not plugin.type:
            raise PluginRegistrationError("Plugin type must be a non-empty string")

        try:
            PluginCategory(plugin.category)
        except ValueError:
            raise PluginRegistrationError(
                f"Plugin '{plugin.type}' has invalid category: {plugin.category!r}"
            )

        execute = getattr(plugin, "execute", None)
        if not callable(execute):
            raise PluginRegistrationError(f"Plugin '{plugin.type}' has no callable execute")

        input_names = [spec.name for spec in plugin.inputs]
        if len(input_names) != len(set(input_names)):
            raise PluginRegistrationError(f"Plugin '{plugin.type}' declares duplicate input names")

        dynamic = getattr(plugin, "get_dynamic_inputs", None)
        if dynamic is not None and not callable(dynamic):
            raise PluginRegistrationError(
                f"Plugin '{plugin.type}' get_dynamic_inputs must be callable"
            )

        return RegisteredPlugin(
            plugin=plugin,
            supports_dynamic_inputs=dynamic is not None,
            is_async=inspect.iscoroutinefunction(execute),
            input_names=set(input_names),
            output_names={spec.name for spec in plugin.outputs},
        )


default_registry = PluginRegistry()


def register_plugin(cls: Callable[[], NodePlugin]):
    """Class decorator adding a plugin to the default registry at import time"""
    default_registry.register(cls())
    return cls


def load_builtin_plugins() -> PluginRegistry:
    """Imports the built-in catalog once and freezes the default registry"""
    for module_name in BUILTIN_PLUGIN_MODULES:
        importlib.import_module(module_name)
    default_registry.freeze()
    return default_registry
