"""Request payload checks performed before the engine is invoked."""

from typing import Any, Dict
from pydantic import ValidationError
from shared.types import FlowDefinition

REQUIRED_FIELDS = ("nodes", "edges")


class FlowPayloadError(Exception):
    pass


def parse_flow_payload(payload: Any) -> FlowDefinition:
    """Turns a raw JSON body into a FlowDefinition or raises FlowPayloadError"""
    if not isinstance(payload, dict):
        raise FlowPayloadError("Request body must be a JSON object")

    missing = [field for field in REQUIRED_FIELDS if field not in payload or payload[field] is None]
    if missing:
        raise FlowPayloadError(f"Missing required field(s): {', '.join(missing)}")

    for field in REQUIRED_FIELDS:
        if not isinstance(payload[field], list):
            raise FlowPayloadError(f"'{field}' must be a list")

    try:
        return FlowDefinition.model_validate(payload)
    except ValidationError as e:
        raise FlowPayloadError(f"Invalid flow definition: {describe_errors(e)}")


def describe_errors(error: ValidationError) -> str:
    # Only locations and messages; input values may carry secrets
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)
