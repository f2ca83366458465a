"""Tests for batched work item fetching."""

from __future__ import annotations

import math
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeStore
from services.batch_fetcher import BATCH_SIZE, BatchFetcher, chunk
from services.errors import AzureDevOpsAuthenticationError, RemoteStoreError


def _store_with(n: int) -> FakeStore:
    store = FakeStore()
    for i in range(1, n + 1):
        store.add(i)
    return store


def test_batch_size_is_200() -> None:
    assert BATCH_SIZE == 200


def test_chunk_is_contiguous() -> None:
    assert list(chunk([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunk([], 2)) == []


def test_chunk_rejects_zero_size() -> None:
    with pytest.raises(ValueError):
        list(chunk([1], 0))


@pytest.mark.parametrize("n", [1, 199, 200, 201, 400, 401, 1000])
def test_one_store_call_per_chunk(n: int) -> None:
    store = _store_with(n)

    items = BatchFetcher(store).fetch(list(range(1, n + 1)))

    assert len(store.calls) == math.ceil(n / 200)
    assert all(len(call) <= 200 for call in store.calls)
    ids = [item.id for item in items]
    assert len(ids) == len(set(ids)) == n


def test_empty_input_makes_no_calls() -> None:
    store = FakeStore()

    assert BatchFetcher(store).fetch([]) == []
    assert store.calls == []


def test_missing_ids_are_omitted() -> None:
    store = _store_with(3)

    items = BatchFetcher(store).fetch([1, 2, 3, 4, 5])

    assert [item.id for item in items] == [1, 2, 3]


def test_include_relations_is_passed_through() -> None:
    client = MagicMock()
    client.fetch_by_ids.return_value = []

    BatchFetcher(client).fetch([1, 2], include_relations=False)

    client.fetch_by_ids.assert_called_once_with([1, 2], False)


def test_failure_carries_the_failing_chunk_ids() -> None:
    store = _store_with(450)
    store.fail_on = 300

    with pytest.raises(RemoteStoreError) as excinfo:
        BatchFetcher(store).fetch(list(range(1, 451)))

    assert excinfo.value.ids == list(range(201, 401))
    # The third chunk is never requested once the second failed
    assert len(store.calls) == 2


def test_authentication_error_keeps_its_type() -> None:
    client = MagicMock()
    client.fetch_by_ids.side_effect = AzureDevOpsAuthenticationError("Invalid Azure DevOps PAT token.")

    with pytest.raises(AzureDevOpsAuthenticationError) as excinfo:
        BatchFetcher(client).fetch([7, 8])

    assert excinfo.value.ids == [7, 8]


def test_transport_error_is_wrapped() -> None:
    client = MagicMock()
    client.fetch_by_ids.side_effect = requests.exceptions.ConnectionError("connection reset")

    with pytest.raises(RemoteStoreError) as excinfo:
        BatchFetcher(client).fetch([1])

    assert excinfo.value.ids == [1]
    assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)


def test_concurrent_fetch_returns_every_item_in_chunk_order() -> None:
    store = _store_with(650)

    items = BatchFetcher(store, max_workers=4).fetch(list(range(1, 651)))

    assert [item.id for item in items] == list(range(1, 651))
    assert sorted(len(call) for call in store.calls) == [50, 200, 200, 200]


def test_concurrent_fetch_failure_discards_everything() -> None:
    store = _store_with(650)
    store.fail_on = 450

    with pytest.raises(RemoteStoreError) as excinfo:
        BatchFetcher(store, max_workers=4).fetch(list(range(1, 651)))

    assert excinfo.value.ids == list(range(401, 601))


def test_batch_size_above_store_limit_is_rejected() -> None:
    with pytest.raises(ValueError):
        BatchFetcher(FakeStore(), batch_size=201)
