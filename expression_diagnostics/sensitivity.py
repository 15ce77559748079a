"""
Threshold sensitivity sweeps over a frozen stored-context population.

Two sweep kinds, both pure functions of (contexts, clause, grid):

    marginal: pass rate of one clause as its threshold steps across a grid
    global:   trigger rate of the whole expression as one clause's
              threshold steps, all other clauses held fixed

Grids have 9 points centred on the original threshold, stepping by 1 for
raw integer axes and 0.05 otherwise. Leaf outcomes are computed as numpy
boolean masks once per population and folded through the tree per grid
point, so a sweep never re-samples and never rebuilds contexts.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import validate_logger
from .population import compute_population_hash
from .results import ClauseFailure, SensitivityPoint, SensitivityResult
from .types import (
    EQUALITY_TOLERANCE, EvaluationContext, Expression, Leaf, LogicNode, VarOperand,
)

logger = logging.getLogger(__name__)


GRID_STEPS = 9
INTEGER_STEP = 1.0
FLOAT_STEP = 0.05
DEFAULT_TOP_N = 3

# Global-sweep candidate ranking weights
NEAR_MISS_WEIGHT = 0.4
FAILURE_WEIGHT = 0.3
LAST_MILE_WEIGHT = 0.3


def compare_array(values: np.ndarray, operator: str, threshold: float) -> np.ndarray:
    """Vectorized compare(); NaN (unresolvable) never passes."""
    if operator == '>=':
        return values >= threshold
    if operator == '<=':
        return values <= threshold
    if operator == '>':
        return values > threshold
    if operator == '<':
        return values < threshold
    if operator == '==':
        return np.abs(values - threshold) < EQUALITY_TOLERANCE
    raise ValueError(f"Unsupported comparison operator '{operator}'")


def effective_threshold(operator: str, threshold: float) -> Optional[float]:
    """
    The integer threshold that selects the same integer values.

    For '>=' / '>' this is the smallest passing integer; for '<=' / '<' the
    largest. '==' only has one when the threshold is itself an integer.
    """
    if operator == '>=':
        return float(math.ceil(threshold))
    if operator == '>':
        return float(math.floor(threshold) + 1)
    if operator == '<=':
        return float(math.floor(threshold))
    if operator == '<':
        return float(math.ceil(threshold) - 1)
    if operator == '==':
        return float(threshold) if float(threshold).is_integer() else None
    return None


def threshold_grid(threshold: float, integer_domain: bool, steps: int = GRID_STEPS) -> List[float]:
    step = INTEGER_STEP if integer_domain else FLOAT_STEP
    half = steps // 2
    return [round(threshold + k * step, 10) for k in range(-half, steps - half)]


def _fold_masks(node: LogicNode, masks: Dict[str, np.ndarray], n: int) -> np.ndarray:
    if isinstance(node, Leaf):
        return masks[node.clause_id]
    child_masks = [_fold_masks(c, masks, n) for c in node.children]
    if not child_masks:
        return np.full(n, node.operator == 'and')
    if node.operator == 'and':
        return np.logical_and.reduce(child_masks)
    return np.logical_or.reduce(child_masks)


class SensitivityAnalyzer:
    """
    Marginal and global threshold sweeps.

    Per-candidate failures are logged and the candidate omitted; the
    remaining candidates are still swept.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = validate_logger(logger) if logger is not None else logging.getLogger(__name__)

    @staticmethod
    def _operand_values(leaf: Leaf, contexts: Sequence[EvaluationContext]) -> np.ndarray:
        values = np.empty(len(contexts), dtype=np.float64)
        for i, context in enumerate(contexts):
            value = leaf.resolve(context)
            values[i] = np.nan if value is None else value
        return values

    def _empty_warning(self, what: str) -> None:
        self.logger.warning("No stored contexts available for %s sensitivity; every grid rate is 0", what)

    # =========================================================================
    # Marginal
    # =========================================================================

    def compute_threshold_sensitivity(
        self,
        stored_contexts: Sequence[EvaluationContext],
        var_path: str,
        operator: str,
        threshold: float,
        steps: int = GRID_STEPS,
        predicate: Optional[str] = None,
    ) -> SensitivityResult:
        """
        Pass rate of `var_path operator t` for t across a grid around threshold.

        Args:
            stored_contexts: Frozen population
            var_path: Variable path being compared
            operator: Comparison operator
            threshold: Original threshold (the grid's centre)
            steps: Number of grid points
            predicate: Label of the filter that produced stored_contexts

        Returns:
            SensitivityResult of kind 'marginal'
        """
        leaf = Leaf(clause_id='', operand=VarOperand(var_path), operator=operator, threshold=threshold)
        return self._sweep_leaf(stored_contexts, leaf, steps, predicate, clause_id=None)

    def compute_clause_sensitivity(
        self,
        stored_contexts: Sequence[EvaluationContext],
        leaf: Leaf,
        steps: int = GRID_STEPS,
        predicate: Optional[str] = None,
    ) -> SensitivityResult:
        """Marginal sweep for one leaf (supports delta operands)."""
        return self._sweep_leaf(stored_contexts, leaf, steps, predicate, clause_id=leaf.clause_id)

    def _sweep_leaf(self, contexts, leaf: Leaf, steps: int, predicate: Optional[str],
                    clause_id: Optional[str]) -> SensitivityResult:
        integer_domain = leaf.is_integer_domain
        if not contexts:
            self._empty_warning(leaf.describe())
        values = self._operand_values(leaf, contexts)
        n = len(contexts)

        grid = []
        for t in threshold_grid(leaf.threshold, integer_domain, steps):
            passed = int(compare_array(values, leaf.operator, t).sum()) if n else 0
            grid.append(SensitivityPoint(
                threshold=t,
                pass_rate=passed / n if n else 0.0,
                pass_count=passed,
                sample_count=n,
                effective_threshold=effective_threshold(leaf.operator, t) if integer_domain else None,
                is_original=math.isclose(t, leaf.threshold, abs_tol=1e-9),
            ))

        return SensitivityResult(
            kind='marginal',
            variable_path=leaf.variable_path,
            operator=leaf.operator,
            original_threshold=leaf.threshold,
            is_integer_domain=integer_domain,
            grid=tuple(grid),
            population_hash=compute_population_hash(contexts, predicate),
            clause_id=clause_id,
        )

    def compute_marginal_sweeps(
        self,
        stored_contexts: Sequence[EvaluationContext],
        expression: Expression,
        clause_failures: Iterable[ClauseFailure],
        steps: int = GRID_STEPS,
        predicate: Optional[str] = None,
    ) -> List[SensitivityResult]:
        """
        Marginal sweeps for every distinct (path, operator, threshold) in the blocker list.
        """
        results = []
        seen = set()
        for failure in clause_failures:
            leaf = expression.find_leaf(failure.clause_id)
            if leaf is None:
                continue
            key = (leaf.operand, leaf.operator, leaf.threshold)
            if key in seen:
                continue
            seen.add(key)
            try:
                results.append(self.compute_clause_sensitivity(stored_contexts, leaf, steps, predicate))
            except Exception as e:
                self.logger.warning("Marginal sweep failed for clause %s: %s", leaf.clause_id, e)
        return results

    # =========================================================================
    # Global
    # =========================================================================

    def _leaf_masks(self, contexts, expression: Expression) -> Dict[str, np.ndarray]:
        return {
            leaf.clause_id: compare_array(self._operand_values(leaf, contexts), leaf.operator, leaf.threshold)
            for leaf in expression.leaves()
        }

    def compute_expression_sensitivity(
        self,
        stored_contexts: Sequence[EvaluationContext],
        expression: Expression,
        clause_id: str,
        steps: int = GRID_STEPS,
        predicate: Optional[str] = None,
    ) -> SensitivityResult:
        """
        Whole-expression trigger rate as one clause's threshold steps across a grid.

        Raises:
            ValueError: If clause_id is not a leaf of the expression
        """
        leaf = expression.find_leaf(clause_id)
        if leaf is None:
            raise ValueError(f"Expression '{expression.id}' has no leaf clause '{clause_id}'")
        integer_domain = leaf.is_integer_domain
        if not stored_contexts:
            self._empty_warning(f"global {leaf.describe()}")

        n = len(stored_contexts)
        masks = self._leaf_masks(stored_contexts, expression)
        values = self._operand_values(leaf, stored_contexts)

        grid = []
        for t in threshold_grid(leaf.threshold, integer_domain, steps):
            masks[clause_id] = compare_array(values, leaf.operator, t)
            if n:
                triggered = np.logical_and.reduce(
                    [_fold_masks(p.logic, masks, n) for p in expression.prerequisites]
                    or [np.ones(n, dtype=bool)]
                )
                passed = int(np.count_nonzero(triggered))
            else:
                passed = 0
            grid.append(SensitivityPoint(
                threshold=t,
                pass_rate=passed / n if n else 0.0,
                pass_count=passed,
                sample_count=n,
                effective_threshold=effective_threshold(leaf.operator, t) if integer_domain else None,
                is_original=math.isclose(t, leaf.threshold, abs_tol=1e-9),
            ))

        return SensitivityResult(
            kind='global',
            variable_path=leaf.variable_path,
            operator=leaf.operator,
            original_threshold=leaf.threshold,
            is_integer_domain=integer_domain,
            grid=tuple(grid),
            population_hash=compute_population_hash(stored_contexts, predicate),
            clause_id=clause_id,
        )

    @staticmethod
    def rank_global_candidates(clause_failures: Iterable[ClauseFailure]) -> List[Tuple[float, ClauseFailure]]:
        """Score = 0.4 near-miss rate + 0.3 failure rate + 0.3 last-mile fail rate, best first."""
        scored = [
            (
                NEAR_MISS_WEIGHT * f.near_miss_rate
                + FAILURE_WEIGHT * f.failure_rate
                + LAST_MILE_WEIGHT * (f.last_mile_fail_rate or 0.0),
                f,
            )
            for f in clause_failures
        ]
        scored.sort(key=lambda item: (-item[0], item[1].clause_id))
        return scored

    def compute_global_sweeps(
        self,
        stored_contexts: Sequence[EvaluationContext],
        expression: Expression,
        clause_failures: Iterable[ClauseFailure],
        top_n: int = DEFAULT_TOP_N,
        steps: int = GRID_STEPS,
        predicate: Optional[str] = None,
    ) -> List[SensitivityResult]:
        """Global sweeps for the top_n ranked candidate clauses."""
        results = []
        for _, failure in self.rank_global_candidates(clause_failures)[:max(top_n, 0)]:
            try:
                results.append(self.compute_expression_sensitivity(
                    stored_contexts, expression, failure.clause_id, steps, predicate
                ))
            except Exception as e:
                self.logger.warning("Global sweep failed for clause %s: %s", failure.clause_id, e)
        return results
