"""Near-duplicate detection.

Pure functions over entry lists; the store supplies the matrix view so a
single check is one vectorized scan.
"""

import numpy as np

from engram.core.store.similarity import cosine_similarity, score_all
from engram.domain.entities import DuplicateCheck, DuplicateGroup, Entry


def check_duplicate(
    embedding: list[float],
    entries: list[Entry],
    matrix: np.ndarray,
    norms: np.ndarray,
    threshold: float,
) -> DuplicateCheck:
    """Find the closest entry at or above ``threshold``.

    Linear scan, O(N). On equal maxima the earliest entry wins.
    """
    if not entries:
        return DuplicateCheck(is_duplicate=False)
    scores = score_all(matrix, norms, embedding)
    best = int(np.argmax(scores))
    similarity = float(scores[best])
    if similarity >= threshold:
        return DuplicateCheck(
            is_duplicate=True, similarity=similarity, existing=entries[best]
        )
    return DuplicateCheck(is_duplicate=False, similarity=similarity)


def find_duplicate_groups(entries: list[Entry], threshold: float) -> list[DuplicateGroup]:
    """Greedily cluster near-duplicates.

    Entries are visited in insertion order. Each joins the first group whose
    representative it matches at or above ``threshold``, otherwise it starts a
    new group. O(N^2); intended for explicit, user-triggered cleanup.

    Returns:
        Only groups that have at least one duplicate.
    """
    groups: list[tuple[Entry, list[Entry], list[float]]] = []
    for entry in entries:
        for representative, members, sims in groups:
            sim = cosine_similarity(representative.embedding, entry.embedding)
            if sim >= threshold:
                members.append(entry)
                sims.append(sim)
                break
        else:
            groups.append((entry, [], []))

    return [
        DuplicateGroup(
            representative=representative,
            duplicates=members,
            average_similarity=sum(sims) / len(sims),
        )
        for representative, members, sims in groups
        if members
    ]
