"""
Ancestor closure over a set of work items.

Given the items of a sprint, walk parent links up to the roots so the
dashboard can render each sprint item under its story, feature and epic.
Azure DevOps only hands out direct parent links and at most 200 items per
request, so the walk proceeds in rounds: every round fetches the parents that
are not known yet, in batches, and the next round looks at their parents.

Two caps bound the work against runaway or cyclic parent graphs. Hitting one
is not an error; the result says the closure is incomplete.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from services.batch_fetcher import BatchFetcher
from services.models import ItemFilter, WorkItem
from services import wiql_builder

logger = logging.getLogger(__name__)

MAX_TOTAL = 4000
MAX_LOOPS = 50


@dataclass
class ClosureResult:
    items: List[WorkItem] = field(default_factory=list)
    seed_ids: List[int] = field(default_factory=list)
    # False when a cap stopped the walk before every parent was fetched
    complete: bool = True
    rounds: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "value": [item.to_dict() for item in self.items],
            "sprintIds": list(self.seed_ids),
            "complete": self.complete,
        }


def _unresolved_parents(items: Iterable[WorkItem], closed: Dict[int, WorkItem]) -> Set[int]:
    frontier = set()
    for item in items:
        parent_id = item.parent_id
        if parent_id is None or parent_id == item.id:
            continue
        if parent_id not in closed:
            frontier.add(parent_id)
    return frontier


class HierarchyResolver:
    def __init__(self, fetcher: BatchFetcher, max_total: int = MAX_TOTAL, max_loops: int = MAX_LOOPS):
        self.fetcher = fetcher
        self.max_total = max_total
        self.max_loops = max_loops

    def resolve(self, seed_ids: Iterable[int]) -> ClosureResult:
        """
        Fetch the seed items and every ancestor reachable from them

        Args:
            seed_ids: Ids whose ancestor chains are wanted

        Returns:
            ClosureResult with all items found and the seed ids as given

        Raises:
            RemoteStoreError: if any fetch fails; no partial result is returned
        """
        seed_ids = list(seed_ids)
        if not seed_ids:
            return ClosureResult()

        closed: Dict[int, WorkItem] = {}

        # dict.fromkeys keeps the first occurrence of each id, in order
        for item in self.fetcher.fetch(list(dict.fromkeys(seed_ids)), include_relations=True):
            closed.setdefault(item.id, item)
        missing = len(set(seed_ids)) - len(closed)
        if missing:
            logger.info(f"{missing} sprint work item(s) were not found")

        frontier = _unresolved_parents(closed.values(), closed)
        rounds = 0

        while frontier and len(closed) < self.max_total and rounds < self.max_loops:
            rounds += 1
            logger.debug(f"Round {rounds}: fetching {len(frontier)} parent(s), {len(closed)} known")

            inserted = []
            for item in self.fetcher.fetch(sorted(frontier), include_relations=True):
                if item.id not in closed:
                    closed[item.id] = item
                    inserted.append(item)

            frontier = _unresolved_parents(inserted, closed)

        complete = not frontier
        if not complete:
            logger.warning(
                f"Hierarchy walk stopped after {rounds} round(s) with {len(closed)} items; "
                f"{len(frontier)} parent(s) left unresolved"
            )
        else:
            logger.info(f"Resolved {len(closed)} work items for {len(seed_ids)} seeds in {rounds} round(s)")

        return ClosureResult(items=list(closed.values()), seed_ids=seed_ids, complete=complete, rounds=rounds)


def resolve_ancestor_closure(client, item_filter: ItemFilter,
                             fetcher: Optional[BatchFetcher] = None) -> ClosureResult:
    """
    Resolve a sprint filter to the sprint items plus all of their ancestors

    Args:
        client: Store client with find_ids and fetch_by_ids
        item_filter: Validated filter from wiql_builder.build_iteration_filter
        fetcher: Batch fetcher to use; defaults to a sequential one over client
    """
    seed_ids = client.find_ids(wiql_builder.iteration_query(item_filter))
    if not seed_ids:
        logger.info(f"No work items in iteration {item_filter.iteration_path}")
        return ClosureResult()

    resolver = HierarchyResolver(fetcher or BatchFetcher(client))
    return resolver.resolve(seed_ids)
