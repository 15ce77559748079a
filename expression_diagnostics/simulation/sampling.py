"""
Random-state generation.

Draws whole chunks of raw states at once with numpy and hands them to the
sampling loop one RawSample at a time. All values are rounded to integers on
their component scales.

Distributions:
    uniform:    every axis uniform over its raw domain, current and previous
                drawn independently
    gaussian:   mid + z * (high - low) / 6, clipped to the domain
    correlated: previous uniform, current = previous + N(0, sigma) per axis
                (sigma 15 mood, 12 excitation/inhibition, 8 libido), clipped
Traits are drawn once per sample and shared by both timepoints.
"""

from dataclasses import dataclass
from typing import Iterator, Tuple

import numpy as np

from ..config import (
    MOOD_AXES, MOOD_RAW_RANGE, SEXUAL_AXES, SEXUAL_RAW_RANGES, TRAIT_AXES, TRAIT_RAW_RANGE,
)
from ..results import SamplingMetadata
from ..types import AxisSnapshot, RawSample


def _bounds(axes: Tuple[str, ...], family_range=None) -> Tuple[np.ndarray, np.ndarray]:
    if family_range is not None:
        low = np.full(len(axes), family_range[0], dtype=np.float64)
        high = np.full(len(axes), family_range[1], dtype=np.float64)
        return low, high
    low = np.array([SEXUAL_RAW_RANGES[a][0] for a in axes], dtype=np.float64)
    high = np.array([SEXUAL_RAW_RANGES[a][1] for a in axes], dtype=np.float64)
    return low, high


MOOD_BOUNDS = _bounds(MOOD_AXES, MOOD_RAW_RANGE)
SEXUAL_BOUNDS = _bounds(SEXUAL_AXES)
TRAIT_BOUNDS = _bounds(TRAIT_AXES, TRAIT_RAW_RANGE)


@dataclass(frozen=True)
class SampleBlock:
    """
    A chunk of raw states as integer arrays.

    Attributes:
        current_mood: [n, 9] mood axes, MOOD_AXES order
        current_sexual: [n, 3] sexual axes, SEXUAL_AXES order
        previous_mood: [n, 9]
        previous_sexual: [n, 3]
        traits: [n, 3] affect traits, TRAIT_AXES order
    """
    current_mood: np.ndarray
    current_sexual: np.ndarray
    previous_mood: np.ndarray
    previous_sexual: np.ndarray
    traits: np.ndarray

    def __len__(self) -> int:
        return self.current_mood.shape[0]

    def snapshot(self, i: int) -> RawSample:
        traits = dict(zip(TRAIT_AXES, self.traits[i].tolist()))
        current = AxisSnapshot(
            mood=dict(zip(MOOD_AXES, self.current_mood[i].tolist())),
            sexual=dict(zip(SEXUAL_AXES, self.current_sexual[i].tolist())),
            traits=traits,
        )
        previous = AxisSnapshot(
            mood=dict(zip(MOOD_AXES, self.previous_mood[i].tolist())),
            sexual=dict(zip(SEXUAL_AXES, self.previous_sexual[i].tolist())),
            traits=dict(traits),
        )
        return RawSample(current=current, previous=previous)

    def __iter__(self) -> Iterator[RawSample]:
        for i in range(len(self)):
            yield self.snapshot(i)


def _draw(
    n: int,
    bounds: Tuple[np.ndarray, np.ndarray],
    distribution: str,
    rng: np.random.Generator,
) -> np.ndarray:
    low, high = bounds
    if distribution == 'gaussian':
        mid = (low + high) / 2
        spread = (high - low) / 6
        values = mid + rng.standard_normal((n, len(low))) * spread
    else:
        values = low + rng.random((n, len(low))) * (high - low)
    return np.clip(np.round(values), low, high).astype(np.int64)


def _perturb(
    previous: np.ndarray,
    sigma: np.ndarray,
    bounds: Tuple[np.ndarray, np.ndarray],
    rng: np.random.Generator,
) -> np.ndarray:
    low, high = bounds
    values = previous + rng.standard_normal(previous.shape) * sigma
    return np.clip(np.round(values), low, high).astype(np.int64)


def generate_random_states(
    n: int,
    distribution: str,
    rng: np.random.Generator,
    mood_delta_sigma: float = 15.0,
    sexual_delta_sigma: float = 12.0,
    libido_delta_sigma: float = 8.0,
) -> SampleBlock:
    """
    Draw n raw states.

    Args:
        n: Number of states
        distribution: 'uniform', 'gaussian' or 'correlated'
        rng: Generator owned by the calling simulation
        mood_delta_sigma: Delta sigma for mood axes (correlated only)
        sexual_delta_sigma: Delta sigma for excitation / inhibition (correlated only)
        libido_delta_sigma: Delta sigma for baseline libido (correlated only)

    Returns:
        SampleBlock with n rows
    """
    if distribution == 'correlated':
        previous_mood = _draw(n, MOOD_BOUNDS, 'uniform', rng)
        previous_sexual = _draw(n, SEXUAL_BOUNDS, 'uniform', rng)
        traits = _draw(n, TRAIT_BOUNDS, 'uniform', rng)
        sexual_sigma = np.array([
            libido_delta_sigma if axis == 'baseline_libido' else sexual_delta_sigma
            for axis in SEXUAL_AXES
        ])
        current_mood = _perturb(previous_mood, mood_delta_sigma, MOOD_BOUNDS, rng)
        current_sexual = _perturb(previous_sexual, sexual_sigma, SEXUAL_BOUNDS, rng)
    else:
        previous_mood = _draw(n, MOOD_BOUNDS, distribution, rng)
        previous_sexual = _draw(n, SEXUAL_BOUNDS, distribution, rng)
        traits = _draw(n, TRAIT_BOUNDS, distribution, rng)
        current_mood = _draw(n, MOOD_BOUNDS, distribution, rng)
        current_sexual = _draw(n, SEXUAL_BOUNDS, distribution, rng)

    return SampleBlock(
        current_mood=current_mood,
        current_sexual=current_sexual,
        previous_mood=previous_mood,
        previous_sexual=previous_sexual,
        traits=traits,
    )


def describe_sampling(
    distribution: str,
    mood_delta_sigma: float = 15.0,
    sexual_delta_sigma: float = 12.0,
) -> SamplingMetadata:
    """Label the sampling scheme so reports can state what a trigger rate means."""
    if distribution == 'correlated':
        return SamplingMetadata(
            mode='coupled',
            description='Coupled sampling with Gaussian deltas (tests a fixed transition model)',
            note=(
                f"Uses fixed delta sigmas (mood: {mood_delta_sigma:g}, sexual: {sexual_delta_sigma:g}) "
                f"that may not match how states actually change between turns."
            ),
        )
    return SamplingMetadata(
        mode='independent',
        description=f'Independent {distribution} sampling (tests logical feasibility)',
        note='Trigger rates reflect logical feasibility, not how often states co-occur in play.',
    )
