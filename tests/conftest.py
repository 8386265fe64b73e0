from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pytest

from gltfinstancer.config import ASSETS_PATH
from gltfinstancer.model.scene_description import (
    AccessorDescriptor,
    AnimationDescriptor,
    ChannelDescriptor,
    ComponentType,
    MeshDescriptor,
    NodeDescriptor,
    PrimitiveDescriptor,
    SceneDescription,
    SkinDescriptor,
)
from gltfinstancer.model.transforms import translation_matrix

TRIANGLE_POSITIONS = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
TRIANGLE_INDICES = [0, 1, 2]
QUARTER_TURN_Z = [0.0, 0.0, np.sqrt(0.5), np.sqrt(0.5)]
HALF_TURN_Z = [0.0, 0.0, 1.0, 0.0]


class BlobBuilder:
    """Appends typed arrays to a blob (4-byte aligned) and describes them as accessors."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.accessors: list[AccessorDescriptor] = []

    def add(
        self,
        values,
        component_type: ComponentType = ComponentType.FLOAT,
        element_type: str = "VEC3",
        normalized: bool = False,
    ) -> int:
        array = np.asarray(values, dtype=ComponentType(component_type).dtype)
        while len(self.data) % 4:
            self.data.append(0)
        offset = len(self.data)
        self.data += array.tobytes()
        index = len(self.accessors)
        self.accessors.append(AccessorDescriptor(
            index=index,
            byte_offset=offset,
            count=len(array),
            component_type=int(component_type),
            element_type=element_type,
            buffer_index=0,
            normalized=normalized,
        ))
        return index

    def triangle_mesh(self, index: int = 0) -> MeshDescriptor:
        position = self.add(TRIANGLE_POSITIONS)
        indices = self.add(TRIANGLE_INDICES, ComponentType.UNSIGNED_SHORT, "SCALAR")
        return MeshDescriptor(index=index, primitives=[PrimitiveDescriptor(attributes={"POSITION": position}, indices=indices)])

    def description(
        self,
        nodes: Sequence[NodeDescriptor],
        meshes: Sequence[MeshDescriptor] = (),
        animations: Sequence[AnimationDescriptor] = (),
        scene_roots: Optional[Sequence[int]] = None,
        skins: Sequence[SkinDescriptor] = (),
    ) -> SceneDescription:
        return SceneDescription(
            nodes=list(nodes),
            meshes=list(meshes),
            accessors=list(self.accessors),
            animations=list(animations),
            scene_roots=[0] if scene_roots is None else list(scene_roots),
            blob=bytes(self.data),
            buffer_offsets=[0],
            name="in-memory",
            skins=list(skins),
        )


@pytest.fixture
def blob_builder() -> BlobBuilder:
    return BlobBuilder()


def animated_triangle(
    builder: BlobBuilder,
    rotation_times: Sequence[float] = (0.0, 1.0, 2.0),
    translation_times: Sequence[float] = (0.0, 1.0, 2.0),
) -> SceneDescription:
    """
    root(0) -> spinner(1, mesh 0, animated) and static(2, mesh 0, z = -2).
    Animation 0 rotates the spinner about z and slides it along x.
    """
    mesh = builder.triangle_mesh()
    rotation_values = [[0.0, 0.0, 0.0, 1.0], QUARTER_TURN_Z, HALF_TURN_Z, HALF_TURN_Z][:len(rotation_times)]
    translation_values = [[float(i), 0.0, 0.0] for i in range(len(translation_times))]

    rotation_input = builder.add(rotation_times, element_type="SCALAR")
    rotation_output = builder.add(rotation_values, element_type="VEC4")
    translation_input = builder.add(translation_times, element_type="SCALAR")
    translation_output = builder.add(translation_values, element_type="VEC3")

    nodes = [
        NodeDescriptor(index=0, children=[1, 2], name="root"),
        NodeDescriptor(index=1, mesh=0, name="spinner"),
        NodeDescriptor(index=2, mesh=0, name="static", translation=np.array([0.0, 0.0, -2.0])),
    ]
    animation = AnimationDescriptor(index=0, channels=[
        ChannelDescriptor(0, 1, "rotation", rotation_input, rotation_output, "LINEAR"),
        ChannelDescriptor(0, 1, "translation", translation_input, translation_output, "LINEAR"),
    ])
    return builder.description(nodes, [mesh], [animation])


@pytest.fixture
def animated_description(blob_builder: BlobBuilder) -> SceneDescription:
    return animated_triangle(blob_builder)


@pytest.fixture
def uneven_description(blob_builder: BlobBuilder) -> SceneDescription:
    """Rotation track ends at t=1, translation track at t=3."""
    return animated_triangle(blob_builder, rotation_times=(0.0, 1.0), translation_times=(0.0, 1.0, 2.0, 3.0))


@pytest.fixture
def asset_directory() -> Path:
    return Path(ASSETS_PATH) / "triangle-animated"


@pytest.fixture
def scaffolds_path() -> str:
    return os.path.join(ASSETS_PATH, "scaffolds.json")


def gltf_matrices(matrices) -> np.ndarray:
    """(n, 4, 4) math matrices as (n, 16) column-major glTF values."""
    return np.swapaxes(np.asarray(matrices, dtype=np.float64), -1, -2).reshape(-1, 16)


def skinned_arm(builder: BlobBuilder, rotation_times: Sequence[float] = (0.0, 1.0)) -> SceneDescription:
    """
    root(0) -> skin(1, mesh 0, skin 0) and shoulder(2) -> elbow(3, x = 1).
    Skin 0 uses joints [2, 3]; animation 0 turns the shoulder a quarter
    turn about z.
    """
    mesh = builder.triangle_mesh()
    inverse_bind = builder.add(
        gltf_matrices([np.eye(4), translation_matrix([-1.0, 0.0, 0.0])]), element_type="MAT4"
    )
    rotation_input = builder.add(rotation_times, element_type="SCALAR")
    rotation_output = builder.add([[0.0, 0.0, 0.0, 1.0], QUARTER_TURN_Z][:len(rotation_times)], element_type="VEC4")

    nodes = [
        NodeDescriptor(index=0, children=[1, 2], name="root"),
        NodeDescriptor(index=1, mesh=0, skin=0, name="skin"),
        NodeDescriptor(index=2, children=[3], name="shoulder"),
        NodeDescriptor(index=3, name="elbow", translation=np.array([1.0, 0.0, 0.0])),
    ]
    skin = SkinDescriptor(index=0, joints=[2, 3], inverse_bind_matrices=inverse_bind)
    animation = AnimationDescriptor(index=0, channels=[
        ChannelDescriptor(0, 2, "rotation", rotation_input, rotation_output, "LINEAR"),
    ])
    return builder.description(nodes, [mesh], [animation], skins=[skin])


@pytest.fixture
def skinned_description(blob_builder: BlobBuilder) -> SceneDescription:
    return skinned_arm(blob_builder)


def node_chain(builder: BlobBuilder, depth: int) -> SceneDescription:
    """`depth` nodes each parenting the next; the last one holds mesh 0 and the root slides along x."""
    mesh = builder.triangle_mesh()
    times = builder.add([0.0, 1.0], element_type="SCALAR")
    values = builder.add([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]], element_type="VEC3")
    nodes = [NodeDescriptor(index=i, children=[i + 1]) for i in range(depth - 1)]
    nodes.append(NodeDescriptor(index=depth - 1, mesh=0))
    animation = AnimationDescriptor(index=0, channels=[ChannelDescriptor(0, 0, "translation", times, values, "LINEAR")])
    return builder.description(nodes, [mesh], [animation])


@pytest.fixture
def deep_chain(blob_builder: BlobBuilder) -> SceneDescription:
    return node_chain(blob_builder, 3000)
