"""
Payload validation for context records.

validate_context() and validate_batch() never raise for malformed input; they
return a result describing either the normalized record(s) or every violated
field.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, JsonValue, field_validator
from pydantic import ValidationError as PydanticValidationError

from .config import MAX_BATCH_SIZE, MAX_VALUE_SIZE
from .schema import ContextInput, FieldError


class ContextPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str
    value: JsonValue
    metadata: Optional[Dict[str, JsonValue]] = None

    @field_validator('key')
    @classmethod
    def key_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('key cannot be empty')
        return v.strip()

    @field_validator('value')
    @classmethod
    def value_must_be_serializable(cls, v):
        if v is None:
            raise ValueError('value cannot be null')
        if isinstance(v, str) and not v.strip():
            raise ValueError('value cannot be empty')
        try:
            encoded = json.dumps(v, allow_nan=False)
        except (TypeError, ValueError):
            raise ValueError('value must be JSON-serializable')
        if len(encoded.encode('utf-8')) > MAX_VALUE_SIZE:
            raise ValueError(f'value exceeds maximum size of {MAX_VALUE_SIZE} bytes')
        return v

    @field_validator('metadata')
    @classmethod
    def metadata_must_be_serializable(cls, v):
        if v is None:
            return v
        try:
            json.dumps(v, allow_nan=False)
        except (TypeError, ValueError):
            raise ValueError('metadata must be JSON-serializable')
        return v


@dataclass
class ValidationResult:
    record: Optional[ContextInput] = None
    errors: List[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.record is not None and not self.errors

    def error_details(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.errors]


@dataclass
class BatchValidationResult:
    records: List[ContextInput] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _field_name(loc) -> str:
    if not loc:
        return "payload"
    return ".".join(str(part) for part in loc)


def _clean_message(msg: str) -> str:
    prefix = "Value error, "
    return msg[len(prefix):] if msg.startswith(prefix) else msg


def validate_context(payload: Any) -> ValidationResult:
    """Validate one candidate record."""
    if not isinstance(payload, dict):
        return ValidationResult(errors=[FieldError("payload", "payload must be a JSON object")])

    try:
        model = ContextPayload.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            FieldError(_field_name(err.get("loc")), _clean_message(err.get("msg", "invalid")))
            for err in e.errors()
        ]
        return ValidationResult(errors=errors)
    except (TypeError, ValueError, RecursionError) as e:
        return ValidationResult(errors=[FieldError("payload", str(e))])

    return ValidationResult(record=ContextInput(key=model.key, value=model.value, metadata=model.metadata))


def validate_batch(items: Any, max_batch_size: int = MAX_BATCH_SIZE) -> BatchValidationResult:
    """Validate every item of a batch, aggregating failures by index."""
    if not isinstance(items, Sequence) or isinstance(items, (str, bytes)):
        return BatchValidationResult(errors=[{"index": None, "errors": [
            FieldError("operations", "batch must be a list of context records").to_dict()
        ]}])

    if not items:
        return BatchValidationResult(errors=[{"index": None, "errors": [
            FieldError("operations", "batch must contain at least one operation").to_dict()
        ]}])

    if len(items) > max_batch_size:
        return BatchValidationResult(errors=[{"index": None, "errors": [
            FieldError("operations", f"batch exceeds maximum size of {max_batch_size}").to_dict()
        ]}])

    result = BatchValidationResult()
    for index, item in enumerate(items):
        item_result = validate_context(item)
        if item_result.ok:
            result.records.append(item_result.record)
            continue

        entry = {"index": index, "errors": item_result.error_details()}
        if isinstance(item, dict) and isinstance(item.get("key"), str):
            entry["key"] = item["key"]
        result.errors.append(entry)

    return result
