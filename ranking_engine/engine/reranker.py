from typing import Any, Sequence

import numpy as np

from ranking_engine.engine.errors import InvalidInputError
from ranking_engine.engine.models import ScoredItem


def compute_diversity(vectors: Sequence[Any]) -> float:
    """
    compute intra-list diversity as average pairwise cosine distance.

    returns a value between 0 (all identical) and 2 (all opposite).
    higher values indicate more diverse results.
    """
    if len(vectors) < 2:
        return 0.0

    vectors_np = np.array(vectors, dtype=np.float32)
    # normalize vectors for cosine similarity
    norms = np.linalg.norm(vectors_np, axis=1, keepdims=True)
    norms[norms == 0] = 1  # avoid division by zero
    normalized = vectors_np / norms

    similarity_matrix = np.dot(normalized, normalized.T)

    # upper triangle (excluding diagonal) as distances
    n = len(vectors)
    upper = np.triu_indices(n, k=1)
    distances = 1 - similarity_matrix[upper]
    return float(distances.mean())


def mmr_select(
    scores: Sequence[float],
    vectors: Sequence[Sequence[float]],
    diversity_factor: float,
    k: int,
) -> list[int]:
    """
    Greedy Maximal Marginal Relevance selection.

    Each step picks the remaining index maximizing

        (1 - diversity_factor) * normalized_score - diversity_factor * max_sim

    where max_sim is the highest cosine similarity to anything already picked
    (0 before the first pick). Ties go to the lowest index, so callers control
    tie-breaking through input order.

    Args:
        scores: Relevance scores, one per item
        vectors: Feature vectors used for similarity
        diversity_factor: 0.0 = pure relevance order, 1.0 = pure novelty
        k: Number of items to select

    Returns:
        Indices into the input lists, in selection order
    """
    if len(scores) == 0:
        return []

    n = len(scores)
    k = min(k, n)

    # normalize scores to [0, 1] for fair comparison with similarities
    scores_np = np.array(scores, dtype=np.float64)
    score_min, score_max = scores_np.min(), scores_np.max()
    score_range = score_max - score_min
    if score_range > 0:
        normalized_scores = (scores_np - score_min) / score_range
    else:
        normalized_scores = np.ones(n, dtype=np.float64)

    # precompute normalized vectors and full similarity matrix
    width = len(vectors[0]) if len(vectors) else 0
    vectors_np = np.array(vectors, dtype=np.float64).reshape(n, width)
    norms = np.linalg.norm(vectors_np, axis=1, keepdims=True)
    norms[norms == 0] = 1
    normalized_vectors = vectors_np / norms
    sim_matrix = normalized_vectors @ normalized_vectors.T

    # max similarity to the selected set, updated incrementally
    max_sims = np.zeros(n, dtype=np.float64)

    selected: list[int] = []
    remaining_mask = np.ones(n, dtype=bool)

    for _ in range(k):
        mmr_scores = (
            1 - diversity_factor
        ) * normalized_scores - diversity_factor * max_sims
        mmr_scores[~remaining_mask] = -np.inf

        best_idx = int(np.argmax(mmr_scores))
        selected.append(best_idx)
        remaining_mask[best_idx] = False

        max_sims = np.maximum(max_sims, sim_matrix[:, best_idx])

    return selected


def rank_order(scored_items: Sequence[ScoredItem]) -> list[ScoredItem]:
    """Score descending, ties by item id ascending."""
    return sorted(scored_items, key=lambda s: (-s.score, s.item_id))


def rerank(
    scored_items: Sequence[ScoredItem],
    diversity_factor: float,
    limit: int,
) -> list[ScoredItem]:
    """
    Re-order scored items trading relevance for diversity.

    With diversity_factor 0 the result is exactly `rank_order` truncated to
    `limit`. The first pick is always the top-ranked item, and each later pick
    maximizes marginal relevance against the picks before it.

    Category coverage of the result grows with diversity_factor only when
    items carry one category each. Overlapping categories give partial
    similarities, and a higher factor can then trade a multi-category item
    for a less similar single-category one.
    """
    if limit <= 0:
        raise InvalidInputError("limit must be positive", {"limit": limit})
    if not 0.0 <= diversity_factor <= 1.0:
        raise InvalidInputError(
            "diversity_factor must be within [0, 1]",
            {"diversity_factor": diversity_factor},
        )

    ordered = rank_order(scored_items)
    if diversity_factor == 0:
        return ordered[:limit]

    indices = mmr_select(
        scores=[s.score for s in ordered],
        vectors=[s.features for s in ordered],
        diversity_factor=diversity_factor,
        k=limit,
    )
    return [ordered[i] for i in indices]
