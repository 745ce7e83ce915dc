"""HTTP request plugin."""

from typing import Dict, Any, List
import requests
from requests.exceptions import RequestException, Timeout, ConnectionError
from services.executor.engine.registry import NodePlugin, register_plugin
from services.executor.plugins.retry import RetryPolicy
from shared.constants import MAX_RETRY_ATTEMPTS, RETRYABLE_HTTP_STATUS_CODES
from shared.exceptions import NodeError, NodeExecutionError, PluginError
from shared.types import InputSpec, OutputSpec, PluginCategory

BODY_METHODS = {"POST", "PUT", "PATCH"}


@register_plugin
class HttpRequestPlugin(NodePlugin):
    type = "http-request"
    category = PluginCategory.ACTION
    name = "HTTP Request"
    description = "Call any HTTP endpoint"
    timeout_seconds = 120
    inputs = [
        InputSpec(name="url", type="text", required=True),
        InputSpec(name="method", type="select", default="GET"),
        InputSpec(name="headers", type="json", default={}),
        InputSpec(name="query", type="json", default={}),
        InputSpec(name="authType", type="select", default="none"),
        InputSpec(name="timeout", type="number", default=30),
        InputSpec(name="maxRetries", type="number", default=MAX_RETRY_ATTEMPTS),
    ]
    outputs = [
        OutputSpec(name="data", type="any"),
        OutputSpec(name="status", type="number"),
        OutputSpec(name="headers", type="object"),
        OutputSpec(name="ok", type="boolean"),
    ]

    def get_dynamic_inputs(self, current_inputs: Dict[str, Any]) -> List[InputSpec]:
        dynamic = []
        if str(current_inputs.get("method") or "GET").upper() in BODY_METHODS:
            dynamic.append(InputSpec(name="body", type="json", description="Request body"))

        auth_type = current_inputs.get("authType")
        if auth_type == "bearer":
            dynamic.append(InputSpec(name="token", type="text", required=True, is_api_key=True))
        elif auth_type == "apiKey":
            dynamic.append(InputSpec(name="apiKeyHeader", type="text", default="X-API-Key"))
            dynamic.append(InputSpec(name="apiKey", type="text", required=True, is_api_key=True))
        return dynamic

    def execute(self, inputs: Dict[str, Any], context) -> Dict[str, Any]:
        policy = RetryPolicy(max_attempts=int(inputs.get("maxRetries") or 0))
        retry_count = 0

        while True:
            if context.cancelled:
                raise NodeExecutionError("HTTP request cancelled", node_id=context.node_id)
            try:
                return self.send(inputs)
            except PluginError as e:
                retry, delay = policy.should_retry(e.error, retry_count, context.node_id)
                if not retry:
                    raise
                retry_count += 1
                if context.wait(delay):
                    raise NodeExecutionError("HTTP request cancelled during backoff", node_id=context.node_id)

    def send(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        url = inputs["url"]
        method = str(inputs.get("method") or "GET").upper()
        headers = dict(inputs.get("headers") or {})

        auth_type = inputs.get("authType")
        if auth_type == "bearer":
            headers["Authorization"] = f"Bearer {inputs['token']}"
        elif auth_type == "apiKey":
            headers[inputs.get("apiKeyHeader") or "X-API-Key"] = inputs["apiKey"]

        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                params=inputs.get("query") or None,
                json=inputs.get("body") if method in BODY_METHODS else None,
                timeout=inputs.get("timeout") or 30
            )

            # Check for retryable HTTP errors
            if response.status_code in RETRYABLE_HTTP_STATUS_CODES:
                retry_after = None
                if response.status_code == 429:
                    # Retry-After can be seconds or an HTTP date; only seconds are honoured
                    retry_after_header = response.headers.get("Retry-After")
                    if retry_after_header and retry_after_header.isdigit():
                        retry_after = int(retry_after_header)

                raise PluginError(NodeError(
                    error_type="HTTP_ERROR",
                    error_message=f"HTTP {response.status_code}: {response.reason}",
                    http_status_code=response.status_code,
                    is_retryable=True,
                    retry_after_seconds=retry_after,
                    context={"url": url, "method": method}
                ))

            response.raise_for_status()

            content_type = response.headers.get("content-type", "")
            return {
                "data": response.json() if "application/json" in content_type else response.text,
                "status": response.status_code,
                "headers": dict(response.headers),
                "ok": response.ok,
            }

        except (Timeout, ConnectionError) as e:
            # Network errors are retryable
            raise PluginError(NodeError(
                error_type="NETWORK_ERROR",
                error_message=f"Network error: {str(e)}",
                is_retryable=True,
                context={"url": url, "error_class": type(e).__name__}
            ))

        except RequestException as e:
            # Other request errors (4xx client errors) are not retryable
            raise PluginError(NodeError(
                error_type="REQUEST_ERROR",
                error_message=f"Request failed: {str(e)}",
                is_retryable=False,
                context={"url": url}
            ))
