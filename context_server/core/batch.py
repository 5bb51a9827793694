"""
Transactional batch writes.

A batch is validated in full before storage is touched, applied inside one
transaction, and only announced to subscribers after the commit succeeded.
Any storage failure rolls the whole batch back; there is no partial success.
"""

from typing import Any, Sequence

from .broadcaster import SubscriptionBroadcaster
from .config import MAX_BATCH_SIZE
from .dao import ContextStore
from .envelope import METHOD_CONTEXT_UPDATE, make_notification
from .errors import ContextValidationError, StorageError
from .schema import BatchItemResult, BatchResult
from .validation import validate_batch
from ..util.logging import logger


class BatchCoordinator:
    """Applies an ordered sequence of upserts as one durable unit."""

    def __init__(self, store: ContextStore, broadcaster: SubscriptionBroadcaster,
                 max_batch_size: int = MAX_BATCH_SIZE):
        self.store = store
        self.broadcaster = broadcaster
        self.max_batch_size = max_batch_size

    def apply(self, items: Sequence[Any]) -> BatchResult:
        validation = validate_batch(items, self.max_batch_size)
        if not validation.ok:
            logger.log_validation_error("batch", validation.errors)
            raise ContextValidationError("Validation error", validation.errors)

        records = validation.records
        logger.log_batch(len(records), "started")

        results = []
        self.store.begin_transaction()
        try:
            for record in records:
                created = self.store.upsert(record.key, record.value, record.metadata)
                results.append(BatchItemResult(
                    key=record.key,
                    value=record.value,
                    metadata=record.metadata,
                    operation="create" if created else "update",
                ))
            self.store.commit()
        except StorageError as e:
            self.store.rollback()
            logger.log_batch(len(records), "rolled_back", {"reason": e.message})
            raise StorageError("Failed to process batch operation", e.detail) from e
        except Exception as e:
            self.store.rollback()
            logger.log_batch(len(records), "rolled_back", {"reason": str(e)})
            raise StorageError("Failed to process batch operation") from e

        logger.log_batch(len(records), "committed", {"succeeded": len(results)})

        # Committed: announce each item in input order.
        size = len(results)
        for index, item in enumerate(results):
            self.broadcaster.broadcast(make_notification(
                METHOD_CONTEXT_UPDATE,
                {"key": item.key, "value": item.value, "metadata": item.metadata},
                operation="batch",
                outcome=item.operation,
                index=index,
                size=size,
            ))

        return BatchResult(items=results, total=len(records))
