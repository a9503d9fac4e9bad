"""Multiple-comparison corrections for A/B/N experiments."""

from typing import List, Optional, Sequence

import numpy as np

from ..errors import InvalidConfiguration

CORRECTIONS = ("bonferroni", "fdr_bh")


def bonferroni(p_values: Sequence[float]) -> List[float]:
    p = np.asarray(p_values, dtype=float)
    return list(np.minimum(p * len(p), 1.0))


def benjamini_hochberg(p_values: Sequence[float]) -> List[float]:
    """Benjamini-Hochberg FDR adjusted p-values, in input order."""
    p_arr = np.asarray(p_values, dtype=float)
    n = len(p_arr)
    if n == 0:
        return []
    order = np.argsort(p_arr)
    p_sorted = p_arr[order]

    ranks = np.arange(1, n + 1)
    p_adj = np.minimum.accumulate((n / ranks * p_sorted)[::-1])[::-1]
    p_adj = np.minimum(p_adj, 1.0)

    inv_order = np.argsort(order)
    return list(p_adj[inv_order])


def adjust_p_values(p_values: Sequence[float], method: Optional[str]) -> List[float]:
    if method is None:
        return list(p_values)
    if method == "bonferroni":
        return bonferroni(p_values)
    if method == "fdr_bh":
        return benjamini_hochberg(p_values)
    raise InvalidConfiguration(
        f"Unknown correction '{method}' (expected one of: {', '.join(CORRECTIONS)})"
    )
