"""Template resolution for {{ variables.X }}, {{ secrets.X }} and {{ node_id.output }} references.

The grammar is deliberately tiny: a reference is a namespace (``variables``,
``secrets``, or a node id) followed by a dotted path with optional ``[n]``
subscripts. Nothing inside the braces is ever evaluated.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from shared.constants import SECRETS_NAMESPACE, VARIABLES_NAMESPACE
from shared.exceptions import TemplateResolutionError
from shared.utils import get_path, split_path

TEMPLATE_PATTERN = re.compile(r'\{\{(.*?)\}\}')
REFERENCE_PATTERN = re.compile(r'^[^\s.\[\]{}]+(\.[^\s.\[\]{}]+|\[\d+\])+$')

VARIABLE = "variable"
SECRET = "secret"
NODE_OUTPUT = "node"


@dataclass(frozen=True)
class TemplateRef:
    kind: str
    head: str
    path: Tuple[Any, ...]
    raw: str

    @property
    def output_name(self) -> Optional[str]:
        if self.kind == NODE_OUTPUT and self.path:
            return str(self.path[0])
        return None


def parse_reference(expression: str) -> TemplateRef:
    expr = expression.strip()
    if not REFERENCE_PATTERN.match(expr):
        raise TemplateResolutionError(f"Invalid template reference: '{{{{{expression}}}}}'")

    parts = split_path(expr)
    head, path = parts[0], tuple(parts[1:])
    if head == VARIABLES_NAMESPACE:
        kind = VARIABLE
    elif head == SECRETS_NAMESPACE:
        kind = SECRET
    else:
        kind = NODE_OUTPUT
    return TemplateRef(kind=kind, head=head, path=path, raw=expr)


def iter_template_strings(value: Any, path: str = "") -> Iterator[Tuple[str, str]]:
    """Yields (config_path, template_text) for every {{...}} in a nested value"""
    if isinstance(value, str):
        for match in TEMPLATE_PATTERN.finditer(value):
            yield path, match.group(0)
    elif isinstance(value, dict):
        for k, v in value.items():
            yield from iter_template_strings(v, f"{path}.{k}" if path else str(k))
    elif isinstance(value, list):
        for i, item in enumerate(value):
            yield from iter_template_strings(item, f"{path}[{i}]")


def find_references(value: Any) -> List[TemplateRef]:
    return [parse_reference(text[2:-2]) for _, text in iter_template_strings(value)]


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, bool)):
        return json.dumps(value)
    return str(value)


class TemplateResolver:
    """Resolves references against one execution's variables, secrets and node outputs"""

    def __init__(
        self,
        variables: Dict[str, Any],
        secrets: Dict[str, Any],
        node_outputs: Callable[[str], Optional[Dict[str, Any]]],
    ):
        self.variables = variables
        self.secrets = secrets
        self.node_outputs = node_outputs

    def resolve(self, value: Any) -> Any:
        """Recursively walks a config value, resolving every template"""
        if isinstance(value, str):
            return self._resolve_string(value)
        elif isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve(item) for item in value]
        return value

    def lookup(self, ref: TemplateRef) -> Any:
        if ref.kind == VARIABLE:
            return get_path(self.variables, list(ref.path))
        if ref.kind == SECRET:
            return get_path(self.secrets, list(ref.path))
        outputs = self.node_outputs(ref.head)
        if outputs is None:
            return None
        return get_path(outputs, list(ref.path))

    def _resolve_string(self, value: str) -> Any:
        if '{{' not in value:
            return value

        whole = TEMPLATE_PATTERN.fullmatch(value.strip())
        if whole and value.strip().count('{{') == 1:
            # A lone reference keeps the referenced value's type
            return self.lookup(parse_reference(whole.group(1)))

        return TEMPLATE_PATTERN.sub(
            lambda m: _to_text(self.lookup(parse_reference(m.group(1)))),
            value,
        )
