"""Edge condition compilation and evaluation using a sandboxed Jinja2 environment."""

import logging
from typing import Any, Callable, Dict, Optional

from jinja2 import BaseLoader, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from shared.exceptions import InvalidConditionError


class ConditionEvaluator:
    """Compiles edge conditions such as ``output.ok == true`` once, evaluates per run.

    Expressions see two names: ``output`` (the source node's outputs) and
    ``variables`` (the execution's variables). Secrets are never exposed.
    """

    def __init__(self):
        self.jinja_env = SandboxedEnvironment(loader=BaseLoader(), autoescape=False)
        self._compiled: Dict[str, Callable[..., Any]] = {}

    def compile(self, expression: str, edge_label: str = "") -> Callable[..., Any]:
        if expression in self._compiled:
            return self._compiled[expression]
        try:
            compiled = self.jinja_env.compile_expression(expression, undefined_to_none=True)
        except TemplateSyntaxError as e:
            raise InvalidConditionError(
                f"Edge {edge_label} has an invalid condition '{expression}': {e.message}",
                edge=edge_label,
            )
        self._compiled[expression] = compiled
        return compiled

    def evaluate(
        self,
        expression: Optional[str],
        output: Optional[Dict[str, Any]],
        variables: Optional[Dict[str, Any]] = None,
        edge_label: str = "",
    ) -> bool:
        if expression is None or not expression.strip():
            return True

        compiled = self.compile(expression, edge_label)
        try:
            return bool(compiled(output=output or {}, variables=variables or {}))
        except Exception as e:
            logging.warning(
                "Edge condition raised during evaluation; treating as false",
                extra={"edge": edge_label, "condition": expression, "error": str(e)},
            )
            return False
