"""
Boundary operations exposed to the request handlers.

Each operation returns a ServiceReply holding the status code and the
envelope to send back. Errors in the ContextServiceError family are turned
into error envelopes here; nothing about storage or validation leaks past
this module as an exception.
"""

from dataclasses import dataclass
from typing import Any, Dict, Sequence

from .batch import BatchCoordinator
from .broadcaster import Subscriber, SubscriptionBroadcaster
from .config import MAX_BATCH_SIZE
from .dao import ContextStore
from .envelope import CorrelationId, METHOD_CONTEXT_UPDATE, make_error, make_notification, make_response
from .errors import ConflictError, ContextServiceError, ContextValidationError, NotFoundError
from .validation import validate_context
from ..util.logging import logger


@dataclass
class ServiceReply:
    status_code: int
    body: Dict[str, Any]


def error_reply(error: ContextServiceError, correlation_id: CorrelationId = None) -> ServiceReply:
    return ServiceReply(
        status_code=error.status_code,
        body=make_error(error.status_code, error.message, correlation_id, error.detail),
    )


class ContextService:
    """createOrUpdate / fetch / remove / batchApply / subscribe."""

    def __init__(self, store: ContextStore, broadcaster: SubscriptionBroadcaster,
                 max_batch_size: int = MAX_BATCH_SIZE):
        self.store = store
        self.broadcaster = broadcaster
        self.batches = BatchCoordinator(store, broadcaster, max_batch_size)

    def create_or_update(self, payload: Any, correlation_id: CorrelationId = None,
                         strict_create: bool = False) -> ServiceReply:
        """Validate and upsert one record, then notify subscribers.

        With strict_create an existing key is a conflict instead of an update.
        """
        try:
            result = validate_context(payload)
            if not result.ok:
                logger.log_validation_error("create_or_update", result.error_details(), payload)
                raise ContextValidationError("Validation error", result.error_details())

            record = result.record
            with self.store.transaction():
                if strict_create and self.store.exists(record.key):
                    raise ConflictError(f"Context '{record.key}' already exists", {"key": record.key})
                created = self.store.upsert(record.key, record.value, record.metadata)
        except ContextServiceError as e:
            if not isinstance(e, ContextValidationError):
                logger.log_context_operation("write", _key_of(payload), "failed", {"code": e.status_code})
            return error_reply(e, correlation_id)

        operation = "create" if created else "update"
        logger.log_context_operation(operation, record.key)

        self.broadcaster.broadcast(make_notification(METHOD_CONTEXT_UPDATE, record.to_dict(), operation=operation))

        return ServiceReply(
            status_code=201 if created else 200,
            body=make_response(record.to_dict(), correlation_id, operation=operation),
        )

    def fetch(self, key: str, correlation_id: CorrelationId = None) -> ServiceReply:
        try:
            record = self.store.get(key)
            if record is None:
                raise NotFoundError("Context not found", {"key": key})
        except ContextServiceError as e:
            logger.log_context_operation("fetch", key, "failed", {"code": e.status_code})
            return error_reply(e, correlation_id)

        return ServiceReply(status_code=200, body=make_response(record.to_dict(), correlation_id))

    def remove(self, key: str, correlation_id: CorrelationId = None) -> ServiceReply:
        try:
            if not self.store.delete(key):
                raise NotFoundError("Context not found", {"key": key})
        except ContextServiceError as e:
            logger.log_context_operation("delete", key, "failed", {"code": e.status_code})
            return error_reply(e, correlation_id)

        logger.log_context_operation("delete", key)
        self.broadcaster.broadcast(make_notification(METHOD_CONTEXT_UPDATE, {"key": key}, operation="delete"))

        return ServiceReply(status_code=200, body=make_response({"key": key}, correlation_id, operation="delete"))

    def batch_apply(self, items: Sequence[Any], correlation_id: CorrelationId = None) -> ServiceReply:
        try:
            batch = self.batches.apply(items)
        except ContextServiceError as e:
            return error_reply(e, correlation_id)

        body = make_response(
            {"results": [item.to_dict() for item in batch.items]},
            correlation_id,
            operation="batch",
            status="success",
            count=batch.succeeded,
            total=batch.total,
        )
        return ServiceReply(status_code=201, body=body)

    def subscribe(self) -> Subscriber:
        """Open a live channel. Must be called from the event loop."""
        return self.broadcaster.connect()


def _key_of(payload: Any) -> str:
    if isinstance(payload, dict) and isinstance(payload.get("key"), str):
        return payload["key"]
    return "<unknown>"
