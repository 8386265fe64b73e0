import numpy as np
import pytest

from gltfinstancer.model.transforms import (
    GLOBAL_TRANSFORM_DTYPE,
    LOCAL_TRANSFORM_DTYPE,
    compose_trs,
    decompose_trs,
    matrix_from_gltf,
    nlerp,
    to_column_major,
)
from gltfinstancer.model.vertex import VERTEX_DTYPE, normalize_to_unorm8


def test_record_sizes():
    assert VERTEX_DTYPE.itemsize == 48
    assert LOCAL_TRANSFORM_DTYPE.itemsize == 68
    assert GLOBAL_TRANSFORM_DTYPE.itemsize == 64


def test_vertex_field_offsets():
    offsets = {name: VERTEX_DTYPE.fields[name][1] for name in VERTEX_DTYPE.names}
    assert offsets == {
        "position": 0,
        "normal": 12,
        "texcoord": 24,
        "joints": 32,
        "weights": 36,
        "material": 40,
        "padding": 44,
    }


def test_compose_applies_scale_then_rotation_then_translation():
    m = compose_trs([1.0, 2.0, 3.0], [0.0, 0.0, np.sqrt(0.5), np.sqrt(0.5)], [2.0, 2.0, 2.0])
    point = m @ np.array([1.0, 0.0, 0.0, 1.0])
    np.testing.assert_allclose(point[:3], [1.0, 4.0, 3.0], atol=1e-12)


def test_decompose_recovers_trs():
    q = np.array([0.0, np.sin(0.3), 0.0, np.cos(0.3)])
    t, r, s = decompose_trs(compose_trs([4.0, 5.0, 6.0], q, [1.0, 2.0, 3.0]))
    np.testing.assert_allclose(t, [4.0, 5.0, 6.0])
    np.testing.assert_allclose(s, [1.0, 2.0, 3.0])
    assert abs(abs(np.dot(r, q)) - 1.0) < 1e-9


def test_gltf_matrix_is_column_major():
    values = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 7, 8, 9, 1]
    np.testing.assert_allclose(matrix_from_gltf(values)[:3, 3], [7, 8, 9])
    with pytest.raises(ValueError):
        matrix_from_gltf([1, 2, 3])


def test_to_column_major_round_trips_gltf_layout():
    values = np.arange(16, dtype=np.float64)
    gpu = to_column_major(matrix_from_gltf(values)[np.newaxis])
    assert gpu.dtype == np.float32
    np.testing.assert_allclose(gpu.reshape(-1), values)


def test_nlerp_takes_shortest_arc():
    identity = np.array([0.0, 0.0, 0.0, 1.0])
    quarter = np.array([0.0, 0.0, np.sqrt(0.5), np.sqrt(0.5)])
    expected = np.array([0.0, 0.0, np.sin(np.pi / 8), np.cos(np.pi / 8)])
    np.testing.assert_allclose(nlerp(identity, quarter, 0.5), expected, atol=1e-12)
    np.testing.assert_allclose(nlerp(identity, -quarter, 0.5), expected, atol=1e-12)


def test_unorm8():
    np.testing.assert_array_equal(normalize_to_unorm8([0.0, 0.5, 1.0, 1.5]), [0, 128, 255, 255])
