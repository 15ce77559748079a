"""
Population identifiers.

Every report-facing number is tagged with the hash of the sample population
behind it, so "fresh samples, in regime" and "stored contexts, global" can
never be confused. The hash covers each context's raw axis vector in order,
plus an optional label for the predicate that selected the population.
"""

import hashlib
from typing import Iterable, Optional

import numpy as np

from .types import EvaluationContext


POPULATION_HASH_LENGTH = 16

POPULATION_FULL = 'full'
POPULATION_IN_REGIME = 'in_regime'


def compute_population_hash(
    contexts: Iterable[EvaluationContext],
    predicate: Optional[str] = None,
) -> str:
    """
    Hash a context population.

    Args:
        contexts: Contexts in population order
        predicate: Optional label of the filter that produced the population

    Returns:
        16-character hex digest (identical inputs give identical hashes)
    """
    hasher = hashlib.sha3_256()
    count = 0
    for context in contexts:
        hasher.update(np.asarray(context.raw_vector(), dtype=np.float64).tobytes())
        count += 1
    hasher.update(f"|n={count}".encode())
    if predicate:
        hasher.update(f"|predicate={predicate}".encode())
    return hasher.hexdigest()[:POPULATION_HASH_LENGTH]


class PopulationHasher:
    """Incremental hash over a population that is never held in memory at once."""

    def __init__(self, predicate: Optional[str] = None):
        self._hasher = hashlib.sha3_256()
        self._count = 0
        self.predicate = predicate

    def add(self, context: EvaluationContext) -> None:
        self._hasher.update(np.asarray(context.raw_vector(), dtype=np.float64).tobytes())
        self._count += 1

    @property
    def count(self) -> int:
        return self._count

    def hexdigest(self) -> str:
        hasher = self._hasher.copy()
        hasher.update(f"|n={self._count}".encode())
        if self.predicate:
            hasher.update(f"|predicate={self.predicate}".encode())
        return hasher.hexdigest()[:POPULATION_HASH_LENGTH]

