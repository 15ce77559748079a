"""
Core data structures for expression diagnostics.

Expressions arrive as JSON-logic dicts and are parsed once into an
immutable tree of Compound and Leaf nodes. Per-clause counters live in
separate ClauseStatistics records keyed by clause id (see
simulation.tracking), never on the tree itself.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .config import (
    MOOD_AXES, SEXUAL_AXES, TRAIT_AXES, SCALAR_ROOTS,
    RAW_AXIS_NEAR_MISS_EPSILON, DEFAULT_NEAR_MISS_EPSILON, is_integer_domain,
)


COMPARISON_OPERATORS = ('>=', '<=', '>', '<', '==')
COMPOUND_OPERATORS = ('and', 'or')
REVERSED_OPERATORS = {'>=': '<=', '<=': '>=', '>': '<', '<': '>', '==': '=='}

# Float comparison tolerance for '=='
EQUALITY_TOLERANCE = 1e-4


def compare(value: float, operator: str, threshold: float) -> bool:
    """Apply a comparison operator."""
    if operator == '>=':
        return value >= threshold
    if operator == '<=':
        return value <= threshold
    if operator == '>':
        return value > threshold
    if operator == '<':
        return value < threshold
    if operator == '==':
        return abs(value - threshold) < EQUALITY_TOLERANCE
    raise ValueError(f"Unsupported comparison operator '{operator}'")


def format_threshold(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


# =============================================================================
# Logic Tree
# =============================================================================

@dataclass(frozen=True)
class VarOperand:
    """A plain variable reference: {"var": "emotions.fear"}."""
    path: str

    @property
    def paths(self) -> Tuple[str, ...]:
        return (self.path,)

    def resolve(self, context: 'EvaluationContext') -> Optional[float]:
        return context.resolve(self.path)

    def describe(self) -> str:
        return self.path


@dataclass(frozen=True)
class DeltaOperand:
    """Difference of two variables: {"-": [{"var": a}, {"var": b}]}."""
    minuend: str
    subtrahend: str

    @property
    def path(self) -> str:
        return self.minuend

    @property
    def paths(self) -> Tuple[str, ...]:
        return (self.minuend, self.subtrahend)

    def resolve(self, context: 'EvaluationContext') -> Optional[float]:
        a = context.resolve(self.minuend)
        b = context.resolve(self.subtrahend)
        if a is None or b is None:
            return None
        return a - b

    def describe(self) -> str:
        return f"({self.minuend} - {self.subtrahend})"


Operand = Union[VarOperand, DeltaOperand]


@dataclass(frozen=True)
class Leaf:
    """
    A comparison leaf.

    Attributes:
        clause_id: Stable dotted id ('<prerequisite>.<child>...')
        operand: Value being compared (variable or delta of two variables)
        operator: One of >=, <=, >, <, ==
        threshold: Numeric threshold
    """
    clause_id: str
    operand: Operand
    operator: str
    threshold: float

    @property
    def variable_path(self) -> str:
        return self.operand.path

    @property
    def variable_paths(self) -> Tuple[str, ...]:
        return self.operand.paths

    @property
    def is_delta(self) -> bool:
        return isinstance(self.operand, DeltaOperand)

    @property
    def is_integer_domain(self) -> bool:
        """True when every operand path reads a raw integer axis."""
        return all(is_integer_domain(path) for path in self.variable_paths)

    @property
    def near_miss_epsilon(self) -> float:
        if self.is_integer_domain:
            return RAW_AXIS_NEAR_MISS_EPSILON
        return DEFAULT_NEAR_MISS_EPSILON

    def resolve(self, context: 'EvaluationContext') -> Optional[float]:
        return self.operand.resolve(context)

    def evaluate(self, context: 'EvaluationContext') -> bool:
        value = self.resolve(context)
        if value is None:
            return False
        return compare(value, self.operator, self.threshold)

    def describe(self) -> str:
        return f"{self.operand.describe()} {self.operator} {format_threshold(self.threshold)}"

    def iter_leaves(self):
        yield self


@dataclass(frozen=True)
class Compound:
    """An 'and' / 'or' node over child nodes."""
    clause_id: str
    operator: str
    children: Tuple['LogicNode', ...]

    def evaluate(self, context: 'EvaluationContext') -> bool:
        if self.operator == 'and':
            return all(child.evaluate(context) for child in self.children)
        return any(child.evaluate(context) for child in self.children)

    def describe(self) -> str:
        return f"{self.operator.upper()} of {len(self.children)} conditions"

    def iter_leaves(self):
        for child in self.children:
            yield from child.iter_leaves()


LogicNode = Union[Leaf, Compound]


def _parse_operand(operand: Any) -> Optional[Operand]:
    if not isinstance(operand, dict) or len(operand) != 1:
        return None
    if 'var' in operand:
        path = operand['var']
        if isinstance(path, list) and path:
            path = path[0]
        if isinstance(path, str) and path:
            return VarOperand(path)
        return None
    if '-' in operand:
        args = operand['-']
        if isinstance(args, list) and len(args) == 2:
            left, right = (_parse_operand(a) for a in args)
            if isinstance(left, VarOperand) and isinstance(right, VarOperand):
                return DeltaOperand(left.path, right.path)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_logic(logic: Any, clause_id: str = '0') -> LogicNode:
    """
    Parse a JSON-logic dict into a Compound / Leaf tree.

    Supports {"and": [...]}, {"or": [...]}, and comparisons whose operands are
    a variable (or delta of two variables) and a numeric threshold, in either
    order. Reversed comparisons are normalized by reversing the operator.

    Raises:
        ValueError: On any structure the diagnostics engine cannot instrument
    """
    if not isinstance(logic, dict) or len(logic) != 1:
        raise ValueError(f"Clause {clause_id}: expected a single-key logic object, got {logic!r}")

    operator, body = next(iter(logic.items()))

    if operator in COMPOUND_OPERATORS:
        if not isinstance(body, list):
            raise ValueError(f"Clause {clause_id}: '{operator}' expects a list of conditions")
        children = tuple(
            parse_logic(child, f"{clause_id}.{i}") for i, child in enumerate(body)
        )
        return Compound(clause_id=clause_id, operator=operator, children=children)

    if operator in COMPARISON_OPERATORS:
        if not isinstance(body, list) or len(body) != 2:
            raise ValueError(f"Clause {clause_id}: '{operator}' expects exactly two operands")
        left, right = body
        operand = _parse_operand(left)
        if operand is not None and _is_number(right):
            return Leaf(clause_id, operand, operator, float(right))
        operand = _parse_operand(right)
        if operand is not None and _is_number(left):
            return Leaf(clause_id, operand, REVERSED_OPERATORS[operator], float(left))
        raise ValueError(
            f"Clause {clause_id}: comparison must pair a variable with a numeric threshold, "
            f"got {body!r}"
        )

    raise ValueError(f"Clause {clause_id}: unsupported logic operator '{operator}'")


def _logic_to_dict(node: LogicNode) -> Dict[str, Any]:
    if isinstance(node, Compound):
        return {node.operator: [_logic_to_dict(c) for c in node.children]}
    if isinstance(node.operand, DeltaOperand):
        left = {'-': [{'var': node.operand.minuend}, {'var': node.operand.subtrahend}]}
    else:
        left = {'var': node.operand.path}
    return {node.operator: [left, node.threshold]}


def _replace_threshold(node: LogicNode, clause_id: str, threshold: float) -> LogicNode:
    if isinstance(node, Leaf):
        if node.clause_id == clause_id:
            return replace(node, threshold=float(threshold))
        return node
    return replace(
        node,
        children=tuple(_replace_threshold(c, clause_id, threshold) for c in node.children),
    )


@dataclass(frozen=True)
class Prerequisite:
    index: int
    logic: LogicNode

    @property
    def description(self) -> str:
        return self.logic.describe()


@dataclass(frozen=True)
class Expression:
    """
    An expression: an id plus an ordered list of prerequisites, all of which
    must hold for the expression to fire. Immutable once parsed.
    """
    id: str
    prerequisites: Tuple[Prerequisite, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Expression':
        """Parse {"id": ..., "prerequisites": [{"logic": {...}}, ...]}."""
        if not isinstance(data, Mapping):
            raise ValueError("Expression definition must be an object")
        raw_prereqs = data.get('prerequisites') or []
        if not isinstance(raw_prereqs, list):
            raise ValueError("Expression 'prerequisites' must be a list")

        prerequisites = []
        for i, prereq in enumerate(raw_prereqs):
            logic = prereq.get('logic') if isinstance(prereq, Mapping) else None
            if logic is None:
                raise ValueError(f"Prerequisite {i} has no 'logic'")
            prerequisites.append(Prerequisite(index=i, logic=parse_logic(logic, str(i))))

        return cls(id=str(data.get('id', 'unknown')), prerequisites=tuple(prerequisites))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'prerequisites': [{'logic': _logic_to_dict(p.logic)} for p in self.prerequisites],
        }

    def leaves(self) -> List[Leaf]:
        return [leaf for p in self.prerequisites for leaf in p.logic.iter_leaves()]

    def variable_paths(self) -> List[str]:
        """All variable paths in order of appearance (duplicates kept)."""
        return [path for leaf in self.leaves() for path in leaf.variable_paths]

    def find_leaf(self, clause_id: str) -> Optional[Leaf]:
        for leaf in self.leaves():
            if leaf.clause_id == clause_id:
                return leaf
        return None

    def with_threshold(self, clause_id: str, threshold: float) -> 'Expression':
        """Return a copy with one leaf's threshold replaced."""
        if self.find_leaf(clause_id) is None:
            raise ValueError(f"Expression '{self.id}' has no leaf clause '{clause_id}'")
        return replace(
            self,
            prerequisites=tuple(
                replace(p, logic=_replace_threshold(p.logic, clause_id, threshold))
                for p in self.prerequisites
            ),
        )

    def evaluate(self, context: 'EvaluationContext') -> bool:
        return all(p.logic.evaluate(context) for p in self.prerequisites)


# =============================================================================
# Prototypes
# =============================================================================

@dataclass(frozen=True)
class Prototype:
    """
    An emotion or sexual-state prototype.

    Attributes:
        id: Prototype id as keyed in the registry table
        type: 'emotion' or 'sexual'
        weights: Axis name -> signed coefficient
        gates: Gate strings ("threat >= 0.30")
    """
    id: str
    type: str
    weights: Dict[str, float]
    gates: Tuple[str, ...] = ()

    @classmethod
    def from_entry(cls, prototype_id: str, prototype_type: str,
                   entry: Mapping[str, Any]) -> 'Prototype':
        weights = entry.get('weights') or {}
        gates = entry.get('gates') or []
        return cls(
            id=prototype_id,
            type=prototype_type,
            weights={str(k): float(v) for k, v in weights.items()},
            gates=tuple(str(g) for g in gates),
        )


# =============================================================================
# Samples and Contexts
# =============================================================================

@dataclass(frozen=True)
class AxisSnapshot:
    """Raw axis values at one timepoint (integers on the component scales)."""
    mood: Dict[str, float]
    sexual: Dict[str, float]
    traits: Dict[str, float]

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {'mood': dict(self.mood), 'sexual': dict(self.sexual), 'traits': dict(self.traits)}


@dataclass(frozen=True)
class RawSample:
    current: AxisSnapshot
    previous: AxisSnapshot


@dataclass(frozen=True)
class GateAxes:
    """Normalized {mood, sexual, traits} triple consumed by gate checks."""
    mood: Dict[str, float]
    sexual: Dict[str, float]
    traits: Dict[str, float]

    def lookup(self, axis: str) -> Optional[float]:
        """Resolve an axis across trait, sexual, then mood maps."""
        if axis in self.traits:
            return self.traits[axis]
        if axis in self.sexual:
            return self.sexual[axis]
        return self.mood.get(axis)


@dataclass(frozen=True)
class PrototypeSample:
    """One prototype evaluated against one normalized context."""
    prototype_id: str
    type: str
    raw_score: float
    raw_value: float
    gate_pass: bool
    value: float
    failed_gates: Tuple[str, ...] = ()


# Variable-path root -> EvaluationContext attribute
CONTEXT_ROOT_ATTRIBUTES: Dict[str, str] = {
    'mood': 'mood_axes',
    'moodAxes': 'mood_axes',
    'previousMoodAxes': 'previous_mood_axes',
    'sexualAxes': 'sexual_axes',
    'previousSexualAxes': 'previous_sexual_axes',
    'affectTraits': 'affect_traits',
    'emotions': 'emotions',
    'previousEmotions': 'previous_emotions',
    'sexualStates': 'sexual_states',
    'previousSexualStates': 'previous_sexual_states',
    'sexualArousal': 'sexual_arousal',
    'previousSexualArousal': 'previous_sexual_arousal',
}


@dataclass
class EvaluationContext:
    """
    Everything an expression can reference for one sampled state.

    Raw mood/sexual/trait axes stay on their integer component scales (that
    is what `moodAxes.threat >= 50` compares against); emotions and sexual
    states are gated intensities in [0, 1].
    """
    mood_axes: Dict[str, float]
    sexual_axes: Dict[str, float]
    affect_traits: Dict[str, float]
    emotions: Dict[str, float]
    sexual_states: Dict[str, float]
    sexual_arousal: float
    previous_mood_axes: Dict[str, float]
    previous_sexual_axes: Dict[str, float]
    previous_emotions: Dict[str, float]
    previous_sexual_states: Dict[str, float]
    previous_sexual_arousal: float
    gate_trace: Dict[str, Dict[str, PrototypeSample]] = field(default_factory=dict)
    previous_gate_trace: Dict[str, Dict[str, PrototypeSample]] = field(default_factory=dict)

    def resolve(self, path: str) -> Optional[float]:
        """Resolve a dotted variable path to a number, or None if absent."""
        parts = path.split('.')
        attr = CONTEXT_ROOT_ATTRIBUTES.get(parts[0])
        if attr is None:
            return None
        value = getattr(self, attr)
        if parts[0] in SCALAR_ROOTS:
            return float(value) if len(parts) == 1 and value is not None else None
        if len(parts) != 2:
            return None
        value = value.get(parts[1])
        if value is None or isinstance(value, bool):
            return None
        return float(value)

    def raw_vector(self) -> List[float]:
        """Raw axis values in a fixed order, used for population hashing."""
        values = [self.mood_axes.get(a, 0) for a in MOOD_AXES]
        values += [self.sexual_axes.get(a, 0) for a in SEXUAL_AXES]
        values += [self.affect_traits.get(a, 0) for a in TRAIT_AXES]
        values += [self.previous_mood_axes.get(a, 0) for a in MOOD_AXES]
        values += [self.previous_sexual_axes.get(a, 0) for a in SEXUAL_AXES]
        return [float(v) for v in values]

    def raw_axis_values(self) -> Dict[str, float]:
        """Flat axis -> raw value map for the current timepoint."""
        values = dict(self.mood_axes)
        values.update(self.sexual_axes)
        values.update(self.affect_traits)
        values['sexual_arousal'] = self.sexual_arousal
        return values

    def to_dict(self) -> Dict[str, Any]:
        return {
            'moodAxes': dict(self.mood_axes),
            'sexualAxes': dict(self.sexual_axes),
            'affectTraits': dict(self.affect_traits),
            'emotions': dict(self.emotions),
            'sexualStates': dict(self.sexual_states),
            'sexualArousal': self.sexual_arousal,
            'previousMoodAxes': dict(self.previous_mood_axes),
            'previousSexualAxes': dict(self.previous_sexual_axes),
            'previousEmotions': dict(self.previous_emotions),
            'previousSexualStates': dict(self.previous_sexual_states),
            'previousSexualArousal': self.previous_sexual_arousal,
        }
