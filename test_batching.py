"""
Tests for BatchPlan partitioning and sequential execution.
"""

import math

import pytest

from solr_adapter.core.errors import BatchError
from solr_adapter.execution.batching import BatchPlan


@pytest.mark.parametrize("total,batch_size", [(0, 500), (1, 500), (500, 500), (1200, 500), (7, 3)])
def test_partition_preserves_order(total, batch_size):
    items = list(range(total))
    plan = BatchPlan(items, batch_size)

    assert len(plan) == math.ceil(total / batch_size) == BatchPlan.count_batches(total, batch_size)
    assert [item for _, batch in plan for item in batch] == items
    assert all(len(batch) <= batch_size for _, batch in plan)


def test_execute_runs_batches_in_order():
    seen = []

    def handler(batch):
        seen.append(list(batch))
        return [item * 10 for item in batch]

    results = BatchPlan([1, 2, 3, 4, 5], 2).execute("insert", handler)
    assert seen == [[1, 2], [3, 4], [5]]
    assert results == [10, 20, 30, 40, 50]


def test_failed_batch_stops_remaining_batches():
    attempted = []

    def handler(batch):
        attempted.append(batch[0])
        if batch[0] == 3:
            raise RuntimeError("boom")
        return batch

    with pytest.raises(BatchError) as exc_info:
        BatchPlan([1, 2, 3, 4, 5, 6], 2).execute("insert", handler)

    error = exc_info.value
    assert attempted == [1, 3]
    assert error.batch_index == 1
    assert error.completed_batches == 1
    assert error.total_batches == 3
    assert error.results == [1, 2]
    assert isinstance(error.__cause__, RuntimeError)
    assert error.to_dict()["committed_records"] == 2


def test_invalid_batch_size():
    with pytest.raises(ValueError):
        BatchPlan([1], 0)
