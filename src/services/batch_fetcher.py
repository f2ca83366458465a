import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, List, Sequence

import requests

from services.errors import RemoteStoreError
from services.models import WorkItem

logger = logging.getLogger(__name__)

BATCH_SIZE = 200


def chunk(ids: Sequence[int], size: int = BATCH_SIZE) -> Iterator[List[int]]:
    """Split ids into contiguous chunks of at most ``size``"""
    if size < 1:
        raise ValueError("size must be at least 1")
    ids = list(ids)
    for i in range(0, len(ids), size):
        yield ids[i:i + size]


class BatchFetcher:
    """
    Fetches any number of work items without exceeding the per-request limit.

    ``client`` is anything with ``fetch_by_ids(ids, include_relations)``. With
    ``max_workers`` above one the chunks of a single call are fetched
    concurrently; results are always merged before ``fetch`` returns.
    """

    def __init__(self, client, batch_size: int = BATCH_SIZE, max_workers: int = 1):
        if batch_size < 1 or batch_size > BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {BATCH_SIZE}")
        self.client = client
        self.batch_size = batch_size
        self.max_workers = max(1, max_workers)

    def _fetch_chunk(self, ids: List[int], include_relations: bool) -> List[WorkItem]:
        try:
            return self.client.fetch_by_ids(ids, include_relations)
        except RemoteStoreError as e:
            e.ids = ids
            logger.error(f"Error fetching work item batch {ids}: {e.args[0] if e.args else e}")
            raise
        except requests.exceptions.RequestException as e:
            logger.error(f"Error fetching work item batch {ids}: {str(e)}")
            raise RemoteStoreError(f"Error fetching work items: {str(e)}", ids=ids) from e

    def fetch(self, ids: Sequence[int], include_relations: bool = True) -> List[WorkItem]:
        """
        Fetch full records for ids, one store call per chunk

        Args:
            ids: Work item ids; duplicates are allowed but fetched again
            include_relations: Whether relation links are needed

        Returns:
            The items the store found, in chunk order

        Raises:
            RemoteStoreError: if any chunk fails; nothing is returned in that case
        """
        chunks = list(chunk(ids, self.batch_size))
        if not chunks:
            return []

        logger.debug(f"Fetching {len(ids)} work items in {len(chunks)} batch(es)")

        if self.max_workers == 1 or len(chunks) == 1:
            results = [self._fetch_chunk(c, include_relations) for c in chunks]
        else:
            executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(chunks)))
            try:
                futures = [executor.submit(self._fetch_chunk, c, include_relations) for c in chunks]
                results = [future.result() for future in futures]
            except BaseException:
                # Drop the chunks that have not started
                executor.shutdown(wait=False, cancel_futures=True)
                raise
            executor.shutdown(wait=True)

        items: List[WorkItem] = []
        for batch in results:
            items.extend(batch)
        return items
