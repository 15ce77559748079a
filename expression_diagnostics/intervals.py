"""
Closed-interval algebra for one normalized axis.

AxisInterval is a value type: apply_constraint() returns a new, narrower
interval and never raises. An incompatible constraint yields an empty
interval (min > max, or a single point with an open end).
"""

from dataclasses import dataclass, replace

from .config import (
    AXIS_FAMILY_MOOD, AXIS_FAMILY_SEXUAL, AXIS_FAMILY_TRAIT, AXIS_FAMILY_SEXUAL_AROUSAL,
    canonical_axis, axis_family,
)


@dataclass(frozen=True)
class AxisInterval:
    """
    Feasible [min, max] range of one axis in normalized gate space.

    Strict constraints ('>' / '<') tighten the bound and mark that end open,
    so a later gate on exactly the same value is detected as unsatisfiable.
    """
    min: float
    max: float
    min_inclusive: bool = True
    max_inclusive: bool = True

    @classmethod
    def for_mood_axis(cls) -> 'AxisInterval':
        return cls(-1.0, 1.0)

    @classmethod
    def for_sexual_axis(cls, axis: str = 'sex_excitation') -> 'AxisInterval':
        if canonical_axis(axis) == 'baseline_libido':
            return cls(-0.5, 0.5)
        return cls(0.0, 1.0)

    @classmethod
    def for_trait_axis(cls) -> 'AxisInterval':
        return cls(0.0, 1.0)

    @classmethod
    def for_sexual_arousal(cls) -> 'AxisInterval':
        return cls(0.0, 1.0)

    @classmethod
    def for_axis(cls, axis: str) -> 'AxisInterval':
        """Canonical default range for an axis; unknown axes are unbounded."""
        family = axis_family(axis)
        if family == AXIS_FAMILY_MOOD:
            return cls.for_mood_axis()
        if family == AXIS_FAMILY_SEXUAL:
            return cls.for_sexual_axis(axis)
        if family == AXIS_FAMILY_TRAIT:
            return cls.for_trait_axis()
        if family == AXIS_FAMILY_SEXUAL_AROUSAL:
            return cls.for_sexual_arousal()
        return cls(float('-inf'), float('inf'))

    @property
    def size(self) -> float:
        return self.max - self.min

    def is_empty(self) -> bool:
        if self.min > self.max:
            return True
        if self.min == self.max:
            return not (self.min_inclusive and self.max_inclusive)
        return False

    def contains(self, value: float) -> bool:
        if value < self.min or value > self.max:
            return False
        if value == self.min and not self.min_inclusive:
            return False
        if value == self.max and not self.max_inclusive:
            return False
        return True

    def apply_constraint(self, operator: str, threshold: float) -> 'AxisInterval':
        """
        Intersect with the half-line (or point) described by `operator threshold`.

        Args:
            operator: One of >=, >, <=, <, ==
            threshold: Normalized threshold

        Returns:
            New interval; empty when the constraint is incompatible
        """
        threshold = float(threshold)

        if operator in ('>=', '>'):
            strict = operator == '>'
            if threshold > self.min:
                return replace(self, min=threshold, min_inclusive=not strict)
            if threshold == self.min and strict:
                return replace(self, min_inclusive=False)
            return self

        if operator in ('<=', '<'):
            strict = operator == '<'
            if threshold < self.max:
                return replace(self, max=threshold, max_inclusive=not strict)
            if threshold == self.max and strict:
                return replace(self, max_inclusive=False)
            return self

        if operator == '==':
            if not self.contains(threshold):
                return AxisInterval(threshold, threshold, False, False)
            return AxisInterval(threshold, threshold)

        raise ValueError(f"Unsupported interval operator '{operator}'")

    def intersects_gate(self, operator: str, threshold: float) -> bool:
        """True when some value in this interval satisfies `operator threshold`."""
        return not self.apply_constraint(operator, threshold).is_empty() and not self.is_empty()

    def __str__(self) -> str:
        left = '[' if self.min_inclusive else '('
        right = ']' if self.max_inclusive else ')'
        return f"{left}{self.min:g}, {self.max:g}{right}"
