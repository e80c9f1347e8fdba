"""Reconciliation of fragmented trend aggregates."""

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .aggregator import merge_terms
from .backoff import BackoffExecutor
from .database import DocumentStore, Query, utcnow
from .errors import DocumentNotFound, MovieTrendsError, ReconciliationPartialFailure
from .models import ReconcileResult, TrendAggregate

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def group_by_movie(aggregates: List[TrendAggregate]) -> Dict[int, List[TrendAggregate]]:
    """Group aggregates by movie_id, keeping store order inside each group."""
    groups: Dict[int, List[TrendAggregate]] = OrderedDict()
    for aggregate in aggregates:
        groups.setdefault(aggregate.movie_id, []).append(aggregate)
    return groups


def choose_canonical(members: List[TrendAggregate]) -> TrendAggregate:
    """
    Pick the record that survives a merge.

    Latest updated_at wins (created_at when never updated); on equal
    timestamps the lowest store id wins.
    """
    by_id = sorted(members, key=lambda a: a.id or "")
    return max(by_id, key=lambda a: a.recency or _EPOCH)


def merged_count(members: List[TrendAggregate]) -> int:
    """
    Sum of member counts, skipping members already folded into another one.

    A pass interrupted after updating the canonical record but before deleting
    the duplicates leaves their ids in the canonical's merged_ids; their counts
    are already part of its total.
    """
    absorbed = set()
    for member in members:
        absorbed.update(member.merged_ids)
    return sum(m.count for m in members if m.id not in absorbed)


class DuplicateReconciler:
    """Restores the one-aggregate-per-movie invariant."""

    def __init__(
        self,
        store: DocumentStore,
        executor: BackoffExecutor,
        collection: str = "trending_searches",
        scan_limit: int = 1000,
        max_retries: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.executor = executor
        self.collection = collection
        self.scan_limit = scan_limit
        self.max_retries = max_retries
        self._clock = clock or utcnow
        self.last_result: Optional[ReconcileResult] = None
        self.last_run_at: Optional[datetime] = None

    async def _load(self) -> List[TrendAggregate]:
        documents = await self.executor.execute(
            lambda: self.store.list_documents(self.collection, [Query.limit(self.scan_limit)]),
            self.max_retries,
            "LoadAggregates",
        )
        if len(documents) >= self.scan_limit:
            logger.warning(f"Aggregate scan hit the limit of {self.scan_limit} documents")
        return [TrendAggregate.model_validate(doc) for doc in documents]

    async def _merge_group(self, members: List[TrendAggregate], result: ReconcileResult) -> None:
        canonical = choose_canonical(members)
        duplicates = [m for m in members if m.id != canonical.id]

        terms = merge_terms(*(m.search_terms for m in members))
        merged_ids = [
            i for i in merge_terms(*(m.merged_ids for m in members), [d.id for d in duplicates])
            if i != canonical.id
        ]
        patch = {
            "count": merged_count(members),
            "search_terms": terms,
            "last_search_term": terms[-1] if terms else "",
            "last_searched_at": self._clock().isoformat(),
            "merged_ids": merged_ids,
        }

        logger.info(
            f"Merging {len(members)} aggregates for movie {canonical.movie_id} "
            f"({canonical.title}) into {canonical.id}: count={patch['count']}"
        )
        await self.executor.execute(
            lambda: self.store.update_document(self.collection, canonical.id, patch),
            self.max_retries,
            f"MergeAggregate {canonical.id}",
        )

        for duplicate in duplicates:
            try:
                await self.executor.execute(
                    lambda: self.store.delete_document(self.collection, duplicate.id),
                    self.max_retries,
                    f"DeleteAggregate {duplicate.id}",
                )
            except DocumentNotFound:
                logger.info(f"Duplicate aggregate {duplicate.id} already removed")
                continue
            result.records_removed += 1
            logger.debug(f"Deleted duplicate aggregate {duplicate.id}")

    async def reconcile(self) -> ReconcileResult:
        """
        Merge every group of aggregates sharing a movie_id into one record.

        Returns:
            Number of duplicate groups merged and records removed

        Raises:
            ReconciliationPartialFailure: a store call failed; counts cover the
                work completed before the failure and a rerun is safe
        """
        result = ReconcileResult()
        logger.info("Starting reconciliation of duplicate aggregates")

        try:
            aggregates = await self._load()
            groups = group_by_movie(aggregates)
            logger.info(f"Checking {len(aggregates)} aggregates across {len(groups)} movies")

            for movie_id, members in groups.items():
                if len(members) < 2:
                    continue
                await self._merge_group(members, result)
                result.duplicate_groups_found += 1

        except MovieTrendsError as e:
            logger.error(
                f"Reconciliation failed after {result.duplicate_groups_found} groups "
                f"and {result.records_removed} removals: {e}"
            )
            raise ReconciliationPartialFailure(
                result.duplicate_groups_found, result.records_removed, e
            ) from e

        self.last_result = result
        self.last_run_at = self._clock()
        logger.info(
            f"Reconciliation completed: {result.duplicate_groups_found} movies had duplicates, "
            f"{result.records_removed} duplicate documents removed"
        )
        return result
