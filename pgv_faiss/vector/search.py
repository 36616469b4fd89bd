"""
k-nearest-neighbor queries with normalized results.
"""

from typing import List

import numpy as np

from ..core.errors import VectorIndexError
from .index import IVectorIndex
from .training import TrainingStateMachine
from .types import SearchResult


class SearchEngine:
    """Runs queries against a trained structure.

    Results are ascending by distance with ties broken by the smaller id.
    Sentinel labels (-1) are dropped and distances are clamped at zero. When the
    k-th and (k+1)-th candidates tie, the candidate window is widened until the
    tie is fully visible, so the smaller id always wins the last slot.

    An inverted-file structure that returns fewer than min(k, ntotal) vectors is
    queried again with twice as many lists, up to the cluster count. The
    configured search breadth on the structure is left unchanged.
    """

    def __init__(self, index: IVectorIndex, training: TrainingStateMachine):
        self.index = index
        self.training = training

    def search(self, query, k: int) -> SearchResult:
        queries = self._prepare_queries(query)
        if queries.shape[0] != 1:
            raise VectorIndexError(f"search expects a single query vector, got {queries.shape[0]}")
        return self._search_prepared(queries, k)[0]

    def search_batch(self, queries, k: int) -> List[SearchResult]:
        return self._search_prepared(self._prepare_queries(queries), k)

    def _search_prepared(self, queries: np.ndarray, k: int) -> List[SearchResult]:
        k = _validate_k(k)
        self.training.require_trained()

        ntotal = self.index.ntotal
        if ntotal == 0:
            return [SearchResult() for _ in range(queries.shape[0])]

        return [self._search_one(query.reshape(1, -1), k, ntotal) for query in queries]

    def _search_one(self, query: np.ndarray, k: int, ntotal: int) -> SearchResult:
        fetch = min(k + 1, ntotal)
        wanted = min(k, ntotal)
        lists = self.index.visited_lists
        max_lists = self.index.cluster_count
        override = None
        while True:
            distances, labels = self.index.search(query, fetch, override)
            distances, labels = distances[0], labels[0]
            valid = labels >= 0
            distances, labels = distances[valid], labels[valid]

            # Visited lists held fewer than k vectors: scan twice as many
            if labels.shape[0] < wanted and lists is not None and max_lists and lists < max_lists:
                lists = min(lists * 2, max_lists)
                override = lists
                continue

            exhausted = fetch >= ntotal or labels.shape[0] < fetch
            # Widen while the last visible candidate still ties with the k-th
            if exhausted or labels.shape[0] <= k or distances[-1] != distances[k - 1]:
                break
            fetch = min(fetch * 2, ntotal)

        order = np.lexsort((labels, distances))[:k]
        return SearchResult.from_arrays(labels[order], np.maximum(distances[order], 0.0))

    def _prepare_queries(self, query) -> np.ndarray:
        if query is None:
            raise VectorIndexError("query vector is required")
        try:
            queries = np.asarray(query, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise VectorIndexError("query must be numeric", cause=e) from e

        if queries.ndim == 1:
            queries = queries.reshape(1, -1)
        if queries.ndim != 2 or queries.shape[1] != self.index.dimension:
            width = queries.shape[-1] if queries.ndim else 0
            raise VectorIndexError(
                f"Query dimension {width} does not match expected dimension {self.index.dimension}"
            )
        return np.ascontiguousarray(queries)


def _validate_k(k) -> int:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise VectorIndexError(f"k must be a positive integer, got {k!r}")
    return int(k)
