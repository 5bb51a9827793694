"""
Envelope codec.

Every outward message is one of three JSON-RPC 2.0 shaped envelopes:

    Response      {"jsonrpc": "2.0", "id": ..., "result": {..., "_meta": {...}}}
    ErrorResponse {"jsonrpc": "2.0", "id": ..., "error": {"code", "message", "data"?}}
    Notification  {"jsonrpc": "2.0", "method": ..., "params": {..., "_meta": {...}}}

The _meta timestamp is always stamped at wrap time. Values that already carry
the protocol version tag are passed through untouched.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel

PROTOCOL_VERSION = "2.0"

OPERATIONS = ("create", "update", "delete", "batch")

METHOD_CONTEXT_UPDATE = "context/update"
METHOD_CONNECTION_ESTABLISHED = "connection/established"
METHOD_CONNECTION_PING = "connection/ping"

CorrelationId = Optional[Union[str, int]]


class ResponseEnvelope(BaseModel):
    jsonrpc: Literal["2.0"] = PROTOCOL_VERSION
    id: CorrelationId = None
    result: Dict[str, Any]


class ErrorBody(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


class ErrorEnvelope(BaseModel):
    jsonrpc: Literal["2.0"] = PROTOCOL_VERSION
    id: CorrelationId = None
    error: ErrorBody

    def to_dict(self) -> Dict[str, Any]:
        body = self.model_dump()
        if self.error.data is None:
            body["error"].pop("data")
        return body


class NotificationEnvelope(BaseModel):
    jsonrpc: Literal["2.0"] = PROTOCOL_VERSION
    method: str
    params: Dict[str, Any]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_envelope(value: Any) -> bool:
    return isinstance(value, dict) and value.get("jsonrpc") == PROTOCOL_VERSION


def _with_meta(payload: Optional[Dict[str, Any]], operation: Optional[str], extra: Dict[str, Any]) -> Dict[str, Any]:
    if operation is not None and operation not in OPERATIONS:
        raise ValueError(f"Unknown operation tag: {operation}")

    body = dict(payload or {})
    meta = dict(body.get("_meta") or {})
    meta.update(extra)
    if operation is not None:
        meta["operation"] = operation
    meta["timestamp"] = utc_timestamp()
    body["_meta"] = meta
    return body


def make_response(result: Any, correlation_id: CorrelationId = None,
                  operation: Optional[str] = None, **meta) -> Dict[str, Any]:
    """Wrap a result payload in a Response envelope."""
    if is_envelope(result):
        return result
    envelope = ResponseEnvelope(id=correlation_id, result=_with_meta(result, operation, meta))
    return envelope.model_dump()


def make_error(code: int, message: str, correlation_id: CorrelationId = None,
               detail: Any = None) -> Dict[str, Any]:
    """Build an ErrorResponse envelope."""
    envelope = ErrorEnvelope(id=correlation_id, error=ErrorBody(code=code, message=message, data=detail))
    return envelope.to_dict()


def make_notification(method: str, params: Any = None,
                      operation: Optional[str] = None, **meta) -> Dict[str, Any]:
    """Build a Notification envelope. Notifications never carry an id."""
    if is_envelope(params):
        return params
    envelope = NotificationEnvelope(method=method, params=_with_meta(params, operation, meta))
    return envelope.model_dump()


def format_sse(envelope: Dict[str, Any]) -> str:
    """Render one envelope as a Server-Sent-Events frame."""
    return f"data: {json.dumps(envelope, separators=(',', ':'))}\n\n"
