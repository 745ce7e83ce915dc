"""
Redis-backed store for flow execution results.
"""

import redis
import json
from typing import Optional
import os
from shared.constants import MAX_PROJECT_EXECUTIONS, REDIS_KEY_TTL_SECONDS
from shared.types import FlowResult


class ExecutionStore:
    """Keeps each run's scrubbed FlowResult for later lookup"""

    def __init__(self, redis_url: Optional[str] = None, client=None):
        url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.client = client if client is not None else redis.Redis.from_url(url, decode_responses=False)

    def save_result(self, result: FlowResult) -> None:
        key = f"flow_exec:{result.execution_id}:result"
        self.client.set(key, json.dumps(result.to_dict()), ex=REDIS_KEY_TTL_SECONDS)
        if result.project_id:
            project_key = f"flow_project:{result.project_id}:executions"
            self.client.lpush(project_key, result.execution_id)
            self.client.ltrim(project_key, 0, MAX_PROJECT_EXECUTIONS - 1)
            self.client.expire(project_key, REDIS_KEY_TTL_SECONDS)

    def get_result(self, execution_id: str) -> Optional[FlowResult]:
        data = self.client.get(f"flow_exec:{execution_id}:result")
        if data:
            return FlowResult.model_validate(json.loads(data))
        return None

    def list_executions(self, project_id: str, limit: int = 50) -> list:
        ids = self.client.lrange(f"flow_project:{project_id}:executions", 0, limit - 1)
        return [i.decode('utf-8') if isinstance(i, bytes) else i for i in ids]
