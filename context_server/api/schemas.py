"""
HTTP-level request/response models.
"""

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, field_validator


class JsonRpcRequest(BaseModel):
    """A JSON-RPC shaped request body: {jsonrpc, method, params, id}."""
    jsonrpc: str
    method: str
    params: Any = None
    id: Optional[Union[str, int]] = None

    @field_validator('jsonrpc')
    @classmethod
    def jsonrpc_must_be_2(cls, v):
        if v != "2.0":
            raise ValueError('jsonrpc must be "2.0"')
        return v


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    context_count: int
    subscribers: int
    timestamp: datetime


class CapabilityFeatures(BaseModel):
    batch: bool = True
    delete: bool = True
    metadata: bool = True
    sse: bool = True


class CapabilityLimits(BaseModel):
    maxBatchSize: int
    maxValueSize: int


class CapabilitiesResponse(BaseModel):
    version: str
    features: CapabilityFeatures
    limits: CapabilityLimits
    methods: List[str]
