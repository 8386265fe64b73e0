"""
Transform math and GPU record layouts.

Matrices are kept in the usual math convention (M @ v, translation in the
last column) while the engine works on them. They are transposed into the
column-major order the shaders expect only when a GPU record is built.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

if TYPE_CHECKING:
    import numpy.typing as npt

IDENTITY: npt.NDArray[np.float64] = np.eye(4, dtype=np.float64)
NO_TRANSLATION: npt.NDArray[np.float64] = np.zeros(3, dtype=np.float64)
NO_ROTATION: npt.NDArray[np.float64] = np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)  # x, y, z, w
NO_SCALE: npt.NDArray[np.float64] = np.ones(3, dtype=np.float64)

# 4x4 f32 column-major matrix followed by a u32 model index (68 bytes).
LOCAL_TRANSFORM_DTYPE = np.dtype([
    ("matrix", "<f4", (4, 4)),
    ("model_index", "<u4"),
])

# 4x4 f32 column-major matrix (64 bytes).
GLOBAL_TRANSFORM_DTYPE = np.dtype([
    ("matrix", "<f4", (4, 4)),
])


def matrix_from_gltf(values: Sequence[float]) -> npt.NDArray[np.float64]:
    """Convert a 16-element column-major glTF matrix to a 4x4 math matrix."""
    array = np.asarray(values, dtype=np.float64)
    if array.size != 16:
        raise ValueError(f"Expected 16 matrix elements, got {array.size}")
    return array.reshape(4, 4).T.copy()


def matrices_from_gltf(values: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """(n, 16) column-major glTF matrices to an (n, 4, 4) stack of math matrices."""
    array = np.asarray(values, dtype=np.float64).reshape(-1, 4, 4)
    return np.ascontiguousarray(np.swapaxes(array, -1, -2))


def translation_matrix(translation: Sequence[float]) -> npt.NDArray[np.float64]:
    m = np.eye(4, dtype=np.float64)
    m[:3, 3] = translation
    return m


def rotation_matrix(quaternion: Sequence[float]) -> npt.NDArray[np.float64]:
    """4x4 rotation from an (x, y, z, w) quaternion; the quaternion is normalized first."""
    q = np.asarray(quaternion, dtype=np.float64)
    m = np.eye(4, dtype=np.float64)
    if np.linalg.norm(q) == 0.0:
        return m
    m[:3, :3] = Rotation.from_quat(q).as_matrix()
    return m


def scale_matrix(scale: Sequence[float]) -> npt.NDArray[np.float64]:
    return np.diag([scale[0], scale[1], scale[2], 1.0]).astype(np.float64)


def compose_trs(
    translation: Sequence[float] | None = None,
    rotation: Sequence[float] | None = None,
    scale: Sequence[float] | None = None,
) -> npt.NDArray[np.float64]:
    """
    Compose T @ R @ S. Missing components fall back to identity.

    Args:
        translation: 3-vector.
        rotation: Quaternion (x, y, z, w).
        scale: 3-vector.

    Returns:
        4x4 transform matrix.
    """
    t = NO_TRANSLATION if translation is None else translation
    r = NO_ROTATION if rotation is None else rotation
    s = NO_SCALE if scale is None else scale
    return translation_matrix(t) @ rotation_matrix(r) @ scale_matrix(s)


def decompose_trs(
    matrix: npt.NDArray[np.float64],
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Split an affine matrix into translation, rotation (x, y, z, w) and scale.

    Shear is not representable and is lost.
    """
    translation = matrix[:3, 3].copy()
    basis = matrix[:3, :3]
    scale = np.linalg.norm(basis, axis=0)
    if np.linalg.det(basis) < 0.0:
        scale[0] = -scale[0]
    safe_scale = np.where(scale == 0.0, 1.0, scale)
    rotation_part = basis / safe_scale
    if np.any(scale == 0.0):
        rotation = NO_ROTATION.copy()
    else:
        rotation = Rotation.from_matrix(rotation_part).as_quat()
    return translation, rotation, scale


def nlerp(
    q0: npt.NDArray[np.float64],
    q1: npt.NDArray[np.float64],
    amount: float,
) -> npt.NDArray[np.float64]:
    """
    Normalized linear interpolation between two quaternions.

    Takes the shortest arc: q1 is negated when the two lie in opposite
    hemispheres.
    """
    if np.dot(q0, q1) < 0.0:
        q1 = -q1
    q = q0 * (1.0 - amount) + q1 * amount
    norm = np.linalg.norm(q)
    if norm == 0.0:
        return NO_ROTATION.copy()
    return q / norm


def lerp(
    v0: npt.NDArray[np.float64],
    v1: npt.NDArray[np.float64],
    amount: float,
) -> npt.NDArray[np.float64]:
    return v0 + (v1 - v0) * amount


def to_column_major(matrices: npt.NDArray[np.floating]) -> npt.NDArray[np.float32]:
    """Transpose a (..., 4, 4) stack of math matrices into GPU column-major order."""
    return np.ascontiguousarray(np.swapaxes(matrices, -1, -2), dtype=np.float32)
