import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pytest

from gltfinstancer.controller.animation.sampler import (
    FINISHED,
    INITIAL_SAMPLE,
    AnimationSample,
    AnimationSampler,
)
from gltfinstancer.errors import StructuralInconsistencyError
from gltfinstancer.model.scene_description import AnimatedProperty

QUARTER_TURN_Z = [0.0, 0.0, np.sqrt(0.5), np.sqrt(0.5)]


@pytest.fixture
def translation_sampler():
    return AnimationSampler(
        sampler_id=0,
        target_path=AnimatedProperty.TRANSLATION,
        times=np.array([0.0, 1.0, 2.0, 3.0]),
        values=np.array([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0], [2.0, 4.0, 0.0], [2.0, 4.0, 6.0]]),
    )


@pytest.fixture
def rotation_sampler():
    return AnimationSampler(
        sampler_id=1,
        target_path=AnimatedProperty.ROTATION,
        times=np.array([0.0, 1.0]),
        values=np.array([[0.0, 0.0, 0.0, 1.0], QUARTER_TURN_Z]),
    )


class TestSample:
    def test_advances_to_bracketing_keyframes(self, translation_sampler):
        assert translation_sampler.sample(AnimationSample(end_time=1.0, index=0), 1.5) == AnimationSample(2.0, 1)

    def test_keeps_state_inside_current_segment(self, translation_sampler):
        state = AnimationSample(end_time=2.0, index=1)
        assert translation_sampler.sample(state, 1.2) is state

    def test_first_tick_recomputes(self, translation_sampler):
        assert translation_sampler.sample(INITIAL_SAMPLE, 0.0) == AnimationSample(1.0, 0)

    def test_skips_several_keyframes(self, translation_sampler):
        assert translation_sampler.sample(AnimationSample(1.0, 0), 2.5) == AnimationSample(3.0, 2)

    def test_keyframe_time_starts_next_segment(self, translation_sampler):
        assert translation_sampler.sample(AnimationSample(1.0, 0), 2.0) == AnimationSample(3.0, 2)

    def test_finishes_at_last_keyframe(self, translation_sampler):
        assert translation_sampler.sample(AnimationSample(3.0, 2), 3.0) is FINISHED
        assert translation_sampler.sample(INITIAL_SAMPLE, 10.0) is FINISHED

    def test_finished_is_terminal(self, translation_sampler):
        assert translation_sampler.sample(FINISHED, 0.5) is FINISHED


class TestValueAt:
    def test_translation_lerp(self, translation_sampler):
        value = translation_sampler.value_at(AnimationSample(2.0, 1), 1.25)
        np.testing.assert_allclose(value, [2.0, 1.0, 0.0])

    def test_rotation_nlerp(self, rotation_sampler):
        value = rotation_sampler.value_at(AnimationSample(1.0, 0), 0.5)
        np.testing.assert_allclose(value, [0.0, 0.0, np.sin(np.pi / 8), np.cos(np.pi / 8)], atol=1e-12)
        assert np.linalg.norm(value) == pytest.approx(1.0)

    def test_blend_is_clamped(self, translation_sampler):
        np.testing.assert_allclose(translation_sampler.value_at(AnimationSample(1.0, 0), -1.0), [0.0, 0.0, 0.0])

    def test_finished_holds_last_keyframe(self, translation_sampler):
        np.testing.assert_allclose(translation_sampler.value_at(FINISHED, 99.0), [2.0, 4.0, 6.0])

    def test_single_keyframe(self):
        sampler = AnimationSampler(2, AnimatedProperty.TRANSLATION, np.array([0.5]), np.array([[1.0, 2.0, 3.0]]))
        assert sampler.sample(INITIAL_SAMPLE, 0.0) is FINISHED
        np.testing.assert_allclose(sampler.evaluate(0.0), [1.0, 2.0, 3.0])


class TestValidation:
    def test_length_mismatch(self):
        with pytest.raises(StructuralInconsistencyError):
            AnimationSampler(0, AnimatedProperty.TRANSLATION, np.array([0.0, 1.0]), np.zeros((3, 3)))

    def test_times_must_ascend(self):
        with pytest.raises(StructuralInconsistencyError):
            AnimationSampler(0, AnimatedProperty.TRANSLATION, np.array([0.0, 1.0, 1.0]), np.zeros((3, 3)))

    def test_empty_track(self):
        with pytest.raises(StructuralInconsistencyError):
            AnimationSampler(0, AnimatedProperty.TRANSLATION, np.array([]), np.zeros((0, 3)))

    def test_arrays_are_read_only(self, translation_sampler):
        with pytest.raises(ValueError):
            translation_sampler.times[0] = 5.0


def test_plot(translation_sampler, monkeypatch):
    shown = []
    monkeypatch.setattr(plt, "show", lambda: shown.append(True))
    translation_sampler.plot()
    assert shown == [True]
    plt.close("all")
