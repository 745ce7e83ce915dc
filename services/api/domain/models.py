"""API request/response models."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class PluginListResponse(BaseModel):
    plugins: List[Dict[str, Any]]


class ProjectExecutionsResponse(BaseModel):
    project_id: str
    execution_ids: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    detail: str
    execution_id: Optional[str] = None
