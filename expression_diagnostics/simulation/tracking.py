"""
Hierarchical clause instrumentation.

The parsed expression tree is immutable; per-node counters live in a
ClauseStatistics arena keyed by clause id. Each sample evaluates every leaf
(no short-circuiting, so every counter sees every sample), folds the results
up the tree, then records:

    - pass/fail per node, overall and in-regime
    - per-leaf observed values, violation magnitudes and near misses
    - last-mile counts: would the expression trigger if this leaf passed?
    - sibling-conditioned counts: was this node decisive given its siblings?
    - gate outcomes for leaves on gated emotion / sexual-state prototypes
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..results import ClauseFailure
from ..types import Compound, EvaluationContext, Expression, Leaf, LogicNode


@dataclass
class ClauseStatistics:
    """Running counters for one node of the expression tree."""
    clause_id: str
    node_type: str
    prerequisite_index: int
    evaluation_count: int = 0
    pass_count: int = 0
    fail_count: int = 0
    in_regime_evaluation_count: int = 0
    in_regime_fail_count: int = 0
    decisive_count: int = 0
    decisive_fail_count: int = 0

    # Leaf-only
    violations: List[float] = field(default_factory=list)
    near_miss_count: int = 0
    observed_count: int = 0
    observed_sum: float = 0.0
    observed_min: Optional[float] = None
    observed_max: Optional[float] = None
    others_passed_count: int = 0
    last_mile_fail_count: int = 0

    # Gated-prototype leaves only
    gate_pass_count: int = 0
    gate_fail_count: int = 0
    gate_pass_in_regime_count: int = 0
    gate_fail_in_regime_count: int = 0
    gate_pass_and_clause_pass_in_regime_count: int = 0
    raw_pass_in_regime_count: int = 0
    lost_pass_in_regime_count: int = 0

    def record_evaluation(self, passed: bool, in_regime: bool) -> None:
        self.evaluation_count += 1
        if passed:
            self.pass_count += 1
        else:
            self.fail_count += 1
        if in_regime:
            self.in_regime_evaluation_count += 1
            if not passed:
                self.in_regime_fail_count += 1

    def record_observation(self, leaf: Leaf, value: Optional[float], passed: bool) -> None:
        if value is None:
            return
        self.observed_count += 1
        self.observed_sum += value
        if self.observed_min is None or value < self.observed_min:
            self.observed_min = value
        if self.observed_max is None or value > self.observed_max:
            self.observed_max = value
        if not passed:
            distance = abs(value - leaf.threshold)
            self.violations.append(distance)
            if distance < leaf.near_miss_epsilon:
                self.near_miss_count += 1

    def record_decisive(self, passed: bool) -> None:
        self.decisive_count += 1
        if not passed:
            self.decisive_fail_count += 1

    def record_last_mile(self, passed: bool) -> None:
        self.others_passed_count += 1
        if not passed:
            self.last_mile_fail_count += 1

    def record_gate_evaluation(self, gate_pass: bool, clause_passed: bool, in_regime: bool) -> None:
        if gate_pass:
            self.gate_pass_count += 1
        else:
            self.gate_fail_count += 1
        if in_regime:
            if gate_pass:
                self.gate_pass_in_regime_count += 1
                if clause_passed:
                    self.gate_pass_and_clause_pass_in_regime_count += 1
            else:
                self.gate_fail_in_regime_count += 1

    def record_raw_pass_in_regime(self) -> None:
        self.raw_pass_in_regime_count += 1

    def record_lost_pass_in_regime(self) -> None:
        self.lost_pass_in_regime_count += 1

    # =========================================================================
    # Derived Rates
    # =========================================================================

    @property
    def failure_rate(self) -> float:
        return self.fail_count / self.evaluation_count if self.evaluation_count else 0.0

    @property
    def in_regime_failure_rate(self) -> Optional[float]:
        if not self.in_regime_evaluation_count:
            return None
        return self.in_regime_fail_count / self.in_regime_evaluation_count

    @property
    def near_miss_rate(self) -> float:
        return self.near_miss_count / self.evaluation_count if self.evaluation_count else 0.0

    @property
    def last_mile_fail_rate(self) -> Optional[float]:
        if not self.others_passed_count:
            return None
        return self.last_mile_fail_count / self.others_passed_count

    @property
    def sibling_conditioned_fail_rate(self) -> Optional[float]:
        if not self.decisive_count:
            return None
        return self.decisive_fail_count / self.decisive_count

    @property
    def lost_pass_rate_in_regime(self) -> Optional[float]:
        if not self.raw_pass_in_regime_count:
            return None
        return self.lost_pass_in_regime_count / self.raw_pass_in_regime_count

    @property
    def average_violation(self) -> float:
        return float(np.mean(self.violations)) if self.violations else 0.0

    def violation_percentiles(self) -> Tuple[float, float]:
        if not self.violations:
            return 0.0, 0.0
        p50, p90 = np.percentile(np.asarray(self.violations), [50, 90])
        return float(p50), float(p90)

    @property
    def observed_mean(self) -> Optional[float]:
        return self.observed_sum / self.observed_count if self.observed_count else None

    def ceiling_gap(self, operator: str, threshold: float) -> Optional[float]:
        """How far the best observed value stays from the threshold (<= 0 means reached)."""
        if self.observed_count == 0:
            return None
        if operator in ('>=', '>'):
            return threshold - self.observed_max
        if operator in ('<=', '<'):
            return self.observed_min - threshold
        return None


@dataclass(frozen=True)
class SampleEvaluation:
    """Outcome of one sample against the whole tree."""
    triggered: bool
    leaf_values: Dict[str, Optional[float]]
    leaf_passed: Dict[str, bool]

    @property
    def failed_leaf_ids(self) -> List[str]:
        return [cid for cid, passed in self.leaf_passed.items() if not passed]


def _fold(node: LogicNode, leaf_passed: Dict[str, bool], results: Dict[str, bool],
          forced: Optional[str] = None) -> bool:
    if isinstance(node, Leaf):
        passed = True if node.clause_id == forced else leaf_passed[node.clause_id]
    else:
        child_results = [_fold(c, leaf_passed, results, forced) for c in node.children]
        if node.operator == 'and':
            passed = all(child_results)
        else:
            passed = any(child_results)
    results[node.clause_id] = passed
    return passed


class ClauseTracker:
    """
    Owns the ClauseStatistics arena for one simulate() call.

    Args:
        expression: Parsed expression (read-only)
        gate_evaluator: Optional GateEvaluator for gate-outcome bookkeeping
        plan: GateClampRegimePlan naming the clauses on gated prototypes
    """

    def __init__(self, expression: Expression, gate_evaluator=None, plan=None):
        self.expression = expression
        self.gate_evaluator = gate_evaluator
        self.plan = plan
        self.leaves: List[Leaf] = expression.leaves()
        self.stats: Dict[str, ClauseStatistics] = {}
        self._parents: Dict[str, Optional[Compound]] = {}
        for prereq in expression.prerequisites:
            self._register(prereq.logic, prereq.index, None)

    def _register(self, node: LogicNode, prerequisite_index: int, parent: Optional[Compound]) -> None:
        node_type = 'leaf' if isinstance(node, Leaf) else node.operator
        self.stats[node.clause_id] = ClauseStatistics(
            clause_id=node.clause_id,
            node_type=node_type,
            prerequisite_index=prerequisite_index,
        )
        self._parents[node.clause_id] = parent
        if isinstance(node, Compound):
            for child in node.children:
                self._register(child, prerequisite_index, node)

    def _evaluate_tree(self, context: EvaluationContext):
        leaf_values = {}
        leaf_passed = {}
        for leaf in self.leaves:
            value = leaf.resolve(context)
            leaf_values[leaf.clause_id] = value
            leaf_passed[leaf.clause_id] = value is not None and leaf.evaluate(context)
        node_passed: Dict[str, bool] = {}
        triggered = all(
            [_fold(p.logic, leaf_passed, node_passed) for p in self.expression.prerequisites]
        )
        return triggered, leaf_values, leaf_passed, node_passed

    def evaluate(self, context: EvaluationContext) -> SampleEvaluation:
        """Evaluate every leaf and fold the tree, without recording anything."""
        triggered, leaf_values, leaf_passed, _ = self._evaluate_tree(context)
        return SampleEvaluation(triggered, leaf_values, leaf_passed)

    def _would_trigger_with(self, leaf_passed: Dict[str, bool], forced: str) -> bool:
        scratch: Dict[str, bool] = {}
        return all(
            [_fold(p.logic, leaf_passed, scratch, forced) for p in self.expression.prerequisites]
        )

    def evaluate_sample(
        self,
        context: EvaluationContext,
        in_regime: bool = True,
        gate_cache: Optional[Dict] = None,
    ) -> SampleEvaluation:
        """Evaluate one sample and record it into every node's statistics."""
        triggered, leaf_values, leaf_passed, node_passed = self._evaluate_tree(context)

        for clause_id, passed in node_passed.items():
            self.stats[clause_id].record_evaluation(passed, in_regime)

        self._record_decisive(node_passed)

        gate_cache = gate_cache if gate_cache is not None else {}
        for leaf in self.leaves:
            clause_id = leaf.clause_id
            passed = leaf_passed[clause_id]
            stats = self.stats[clause_id]
            stats.record_observation(leaf, leaf_values[clause_id], passed)

            if triggered or passed:
                others_passed = triggered
            else:
                others_passed = self._would_trigger_with(leaf_passed, clause_id)
            if others_passed:
                stats.record_last_mile(passed)

            if self.gate_evaluator is not None and self.plan is not None:
                self.gate_evaluator.record_gate_outcome_if_applicable(
                    leaf, stats, context, gate_cache, self.plan, passed, in_regime,
                )

        return SampleEvaluation(triggered, leaf_values, leaf_passed)

    def _record_decisive(self, node_passed: Dict[str, bool]) -> None:
        # Prerequisite roots are siblings under an implicit AND
        roots = [p.logic.clause_id for p in self.expression.prerequisites]
        for root in roots:
            if all(node_passed[r] for r in roots if r != root):
                self.stats[root].record_decisive(node_passed[root])

        for clause_id, parent in self._parents.items():
            if parent is None:
                continue
            siblings = [c.clause_id for c in parent.children if c.clause_id != clause_id]
            if parent.operator == 'and':
                decisive = all(node_passed[s] for s in siblings)
            else:
                decisive = not any(node_passed[s] for s in siblings)
            if decisive:
                self.stats[clause_id].record_decisive(node_passed[clause_id])

    # =========================================================================
    # Summaries
    # =========================================================================

    def to_clause_failure(self, leaf: Leaf) -> ClauseFailure:
        stats = self.stats[leaf.clause_id]
        p50, p90 = stats.violation_percentiles()
        target = self.plan.clause_gate_map.get(leaf.clause_id) if self.plan is not None else None
        severity = stats.failure_rate + (stats.last_mile_fail_rate or 0.0)
        return ClauseFailure(
            clause_id=leaf.clause_id,
            prerequisite_index=stats.prerequisite_index,
            description=leaf.describe(),
            variable_path=leaf.variable_path,
            operator=leaf.operator,
            threshold=leaf.threshold,
            evaluation_count=stats.evaluation_count,
            pass_count=stats.pass_count,
            failure_count=stats.fail_count,
            failure_rate=stats.failure_rate,
            average_violation=stats.average_violation,
            violation_p50=p50,
            violation_p90=p90,
            near_miss_count=stats.near_miss_count,
            near_miss_rate=stats.near_miss_rate,
            near_miss_epsilon=leaf.near_miss_epsilon,
            observed_min=stats.observed_min,
            observed_max=stats.observed_max,
            observed_mean=stats.observed_mean,
            ceiling_gap=stats.ceiling_gap(leaf.operator, leaf.threshold),
            others_passed_count=stats.others_passed_count,
            last_mile_fail_count=stats.last_mile_fail_count,
            last_mile_fail_rate=stats.last_mile_fail_rate,
            sibling_passed_count=stats.decisive_count,
            sibling_conditioned_fail_count=stats.decisive_fail_count,
            sibling_conditioned_fail_rate=stats.sibling_conditioned_fail_rate,
            in_regime_evaluation_count=stats.in_regime_evaluation_count,
            in_regime_failure_count=stats.in_regime_fail_count,
            in_regime_failure_rate=stats.in_regime_failure_rate,
            gate_prototype_id=target.prototype_id if target else None,
            gate_prototype_type=target.type if target else None,
            gate_pass_count=stats.gate_pass_count,
            gate_fail_count=stats.gate_fail_count,
            gate_pass_in_regime_count=stats.gate_pass_in_regime_count,
            gate_fail_in_regime_count=stats.gate_fail_in_regime_count,
            gate_pass_and_clause_pass_in_regime_count=stats.gate_pass_and_clause_pass_in_regime_count,
            raw_pass_in_regime_count=stats.raw_pass_in_regime_count,
            lost_pass_in_regime_count=stats.lost_pass_in_regime_count,
            lost_pass_rate_in_regime=stats.lost_pass_rate_in_regime,
            severity=severity,
        )

    def clause_failures(self) -> List[ClauseFailure]:
        """Per-leaf summaries, most severe first (ties: larger violation, then clause id)."""
        failures = [self.to_clause_failure(leaf) for leaf in self.leaves]
        failures.sort(key=lambda f: (-f.severity, -f.average_violation, f.clause_id))
        return failures

    def to_breakdown(self, node: LogicNode) -> Dict[str, Any]:
        """Nested statistics for a node and its descendants."""
        stats = self.stats[node.clause_id]
        data = {
            'clauseId': node.clause_id,
            'nodeType': stats.node_type,
            'description': node.describe(),
            'evaluationCount': stats.evaluation_count,
            'passCount': stats.pass_count,
            'failCount': stats.fail_count,
            'failureRate': stats.failure_rate,
            'inRegimeFailureRate': stats.in_regime_failure_rate,
            'siblingConditionedFailRate': stats.sibling_conditioned_fail_rate,
        }
        if isinstance(node, Leaf):
            data.update({
                'variablePath': node.variable_path,
                'operator': node.operator,
                'threshold': node.threshold,
                'averageViolation': stats.average_violation,
                'nearMissRate': stats.near_miss_rate,
                'lastMileFailRate': stats.last_mile_fail_rate,
                'lostPassInRegimeCount': stats.lost_pass_in_regime_count,
            })
        else:
            data['children'] = [self.to_breakdown(c) for c in node.children]
        return data

    def prerequisite_breakdowns(self) -> List[Dict[str, Any]]:
        return [self.to_breakdown(p.logic) for p in self.expression.prerequisites]
