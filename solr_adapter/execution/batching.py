"""
Batch planning for bulk operations.
"""

import logging
import math
from typing import Callable, Generic, Iterator, List, Sequence, Tuple, TypeVar

from solr_adapter.core.errors import BatchError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_BATCH_SIZE = 500


class BatchPlan(Generic[T]):
    """
    Ordered partition of a record set into fixed-size chunks.

    Concatenating the batches in order reproduces the input order.
    """

    def __init__(self, items: Sequence[T], batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.items = list(items)
        self.batch_size = batch_size
        self.batches: List[List[T]] = [
            self.items[i:i + batch_size] for i in range(0, len(self.items), batch_size)
        ]

    def __len__(self) -> int:
        return len(self.batches)

    def __iter__(self) -> Iterator[Tuple[int, List[T]]]:
        return iter(enumerate(self.batches))

    @staticmethod
    def count_batches(total: int, batch_size: int) -> int:
        return math.ceil(total / batch_size) if total else 0

    def execute(self, operation: str, handler: Callable[[List[T]], List[R]]) -> List[R]:
        """
        Run ``handler`` over each batch sequentially.

        The first failing batch stops the run; remaining batches are not
        attempted and committed batches are not rolled back.

        Args:
            operation: Operation name used in errors and logs
            handler: Called with each batch, returns that batch's results

        Returns:
            Concatenated handler results, in input order

        Raises:
            BatchError: Wrapping the failure, with the failed batch index
                and the results of the committed batches
        """
        results: List[R] = []
        total = len(self.batches)

        for index, batch in self:
            try:
                results.extend(handler(batch))
            except Exception as e:
                logger.warning(
                    "%s: batch %d/%d failed, %d batch(es) already committed",
                    operation, index + 1, total, index,
                )
                raise BatchError(operation, index, total, results, e) from e

        return results
