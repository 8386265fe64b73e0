from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import TYPE_CHECKING, Union

import numpy as np
import matplotlib.pyplot as plt

from gltfinstancer.errors import StructuralInconsistencyError
from gltfinstancer.model.scene_description import AnimatedProperty, Interpolation
from gltfinstancer.model.transforms import lerp, nlerp

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class Finished(Enum):
    """Marker for a sampler that ran past its last keyframe."""
    FINISHED = "finished"


FINISHED = Finished.FINISHED


@dataclass(frozen=True)
class AnimationSample:
    """
    Current position of a playback inside one keyframe track.

    `index` is the keyframe the current segment starts at and `end_time` is
    the time of the keyframe it ends at.
    """
    end_time: float
    index: int


INITIAL_SAMPLE = AnimationSample(end_time=0.0, index=0)

SampleState = Union[AnimationSample, Finished]


@dataclass(frozen=True, eq=False)
class AnimationSampler:
    """
    Immutable keyframe track driving one property of one node.
    """
    sampler_id: int
    target_path: AnimatedProperty
    times: npt.NDArray[np.float64]
    values: npt.NDArray[np.float64]
    interpolation: Interpolation = Interpolation.LINEAR
    node_id: int = field(default=-1)

    def __post_init__(self) -> None:
        times = np.array(self.times, dtype=np.float64).ravel()
        values = np.array(self.values, dtype=np.float64)
        if values.ndim == 1:
            values = values.reshape(-1, 1)

        if len(times) == 0:
            msg = f"Sampler {self.sampler_id} has no keyframes"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        if len(times) != len(values):
            msg = f"Sampler {self.sampler_id} has {len(times)} keyframe times but {len(values)} values"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        if np.any(np.diff(times) <= 0.0):
            msg = f"Sampler {self.sampler_id} keyframe times are not strictly ascending"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)

        times.setflags(write=False)
        values.setflags(write=False)
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "values", values)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(id={self.sampler_id}, node={self.node_id}, "
                f"path={self.target_path}, keyframes={len(self.times)}, "
                f"span=[{self.times[0]:.3f}, {self.times[-1]:.3f}])")

    @property
    def duration(self) -> float:
        return float(self.times[-1])

    def sample(self, state: SampleState, elapsed: float) -> SampleState:
        """
        Advance the playback position to `elapsed`.

        Args:
            state: Position returned by the previous call (or INITIAL_SAMPLE).
            elapsed: Seconds since the playback started.

        Returns:
            The state unchanged while `elapsed` is still inside the current
            segment, the segment containing `elapsed` otherwise, or FINISHED
            once `elapsed` reaches the last keyframe.
        """
        if state is FINISHED:
            return FINISHED
        if elapsed < state.end_time:
            return state

        # first keyframe strictly after `elapsed`, never behind the current one
        i = max(state.index + 1, int(np.searchsorted(self.times, elapsed, side="right")))
        if i >= len(self.times):
            return FINISHED
        return AnimationSample(end_time=float(self.times[i]), index=i - 1)

    def value_at(self, state: SampleState, elapsed: float) -> npt.NDArray[np.float64]:
        """
        Interpolated property value for a state returned by `sample`.

        Rotation uses nlerp along the shortest arc, translation a plain lerp.
        FINISHED holds the last keyframe.
        """
        if state is FINISHED or len(self.times) == 1:
            return self.values[-1].copy()

        i = state.index
        t0 = self.times[i]
        t1 = self.times[i + 1]
        amount = float(np.clip((elapsed - t0) / (t1 - t0), 0.0, 1.0))

        if self.target_path == AnimatedProperty.ROTATION:
            return nlerp(self.values[i], self.values[i + 1], amount)
        return lerp(self.values[i], self.values[i + 1], amount)

    def evaluate(self, elapsed: float) -> npt.NDArray[np.float64]:
        """Stateless lookup, mainly for previews."""
        return self.value_at(self.sample(INITIAL_SAMPLE, elapsed), elapsed)

    def plot(self) -> None:
        """
        Plot the keyframe track.
        """
        span = self.times[-1] - self.times[0]
        times = np.linspace(self.times[0], self.times[-1] + 0.05 * span, 500)
        values = np.array([self.evaluate(t) for t in times])

        plt.rcParams["figure.constrained_layout.use"] = True
        fig = plt.figure(figsize=(7, 5))

        labels = "xyzw"
        for component in range(values.shape[1]):
            plt.plot(times, values[:, component], lw=2, label=labels[component])
        plt.plot(self.times, self.values, 'k.', ms=6)

        plt.grid(visible=True, which='major', axis='both', linestyle='-', color='gray', lw=0.5)
        plt.minorticks_on()
        plt.grid(visible=True, which='minor', axis='both', linestyle=':', color='gray', lw=0.5)

        plt.title(f"Sampler {self.sampler_id}: node {self.node_id} {self.target_path}")
        plt.xlabel("Time (s)")
        plt.ylabel("Value")
        plt.legend()

        plt.show()
