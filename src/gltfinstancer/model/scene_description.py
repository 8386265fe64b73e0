"""
Scene Description (Collaborator Interface)
==========================================
Plain data handed to the core by the description-parsing collaborator.

Why is this file needed?
------------------------
1. Decoupling: The walker, the animation builder and the buffer packer only
   see these dataclasses, never pygltflib objects.
2. Testing: Scenes can be described in memory without writing glTF files.

Classes:
    NodeDescriptor: One node of the hierarchy.
    AccessorDescriptor: How to read one typed array out of the blob.
    PrimitiveDescriptor / MeshDescriptor: Mesh payload.
    SkinDescriptor: Joint list and inverse bind matrices of one skin.
    ChannelDescriptor / AnimationDescriptor: Animation tracks.
    SceneDescription: The whole random-access description plus the blob.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
import logging
from typing import TYPE_CHECKING, Any, Optional

import numpy as np

from gltfinstancer.model.transforms import IDENTITY, compose_trs, decompose_trs, matrix_from_gltf

if TYPE_CHECKING:
    import numpy.typing as npt
    from pygltflib import GLTF2

logger = logging.getLogger(__name__)


class ComponentType(IntEnum):
    BYTE = 5120
    UNSIGNED_BYTE = 5121
    SHORT = 5122
    UNSIGNED_SHORT = 5123
    UNSIGNED_INT = 5125
    FLOAT = 5126

    @property
    def dtype(self) -> np.dtype:
        return COMPONENT_DTYPES[self]


COMPONENT_DTYPES: dict[ComponentType, np.dtype] = {
    ComponentType.BYTE: np.dtype("i1"),
    ComponentType.UNSIGNED_BYTE: np.dtype("u1"),
    ComponentType.SHORT: np.dtype("<i2"),
    ComponentType.UNSIGNED_SHORT: np.dtype("<u2"),
    ComponentType.UNSIGNED_INT: np.dtype("<u4"),
    ComponentType.FLOAT: np.dtype("<f4"),
}

ELEMENT_SIZES: dict[str, int] = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}


class AnimatedProperty(StrEnum):
    TRANSLATION = "translation"
    ROTATION = "rotation"
    SCALE = "scale"
    WEIGHTS = "weights"


class Interpolation(StrEnum):
    LINEAR = "LINEAR"
    STEP = "STEP"
    CUBICSPLINE = "CUBICSPLINE"


# Attribute semantics the vertex packer understands.
VERTEX_SEMANTICS: tuple[str, ...] = ("POSITION", "NORMAL", "TEXCOORD_0", "JOINTS_0", "WEIGHTS_0")
MORPH_SEMANTICS: tuple[str, ...] = ("POSITION", "NORMAL", "TANGENT")


@dataclass(frozen=True)
class AccessorDescriptor:
    """
    Location and type of one typed array inside the concatenated blob.

    `byte_offset` is absolute: buffer base + buffer view offset + accessor offset.
    """
    index: int
    byte_offset: int
    count: int
    component_type: int
    element_type: str
    buffer_index: Optional[int]
    byte_stride: Optional[int] = None
    normalized: bool = False

    @property
    def components(self) -> int:
        return ELEMENT_SIZES[self.element_type]

    @property
    def element_size(self) -> int:
        """Size of one tightly packed element in bytes."""
        return self.components * COMPONENT_DTYPES[ComponentType(self.component_type)].itemsize

    @property
    def has_data(self) -> bool:
        return self.buffer_index is not None


@dataclass(eq=False)
class NodeDescriptor:
    """One node of the scene hierarchy with its rest TRS."""
    index: int
    children: list[int] = field(default_factory=list)
    mesh: Optional[int] = None
    name: Optional[str] = None
    camera: Optional[int] = None
    skin: Optional[int] = None
    translation: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    rotation: npt.NDArray[np.float64] = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))
    scale: npt.NDArray[np.float64] = field(default_factory=lambda: np.ones(3))
    matrix: Optional[npt.NDArray[np.float64]] = None

    @property
    def local_transform(self) -> npt.NDArray[np.float64]:
        """The node's own transform; an explicit matrix wins over TRS."""
        if self.matrix is not None:
            return self.matrix
        return compose_trs(self.translation, self.rotation, self.scale)

    @property
    def rest_trs(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        if self.matrix is not None:
            return decompose_trs(self.matrix)
        return self.translation, self.rotation, self.scale


@dataclass(frozen=True)
class PrimitiveDescriptor:
    attributes: dict[str, int]
    indices: Optional[int] = None
    material: Optional[int] = None
    targets: list[dict[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class MeshDescriptor:
    index: int
    primitives: list[PrimitiveDescriptor]
    name: Optional[str] = None
    weights: list[float] = field(default_factory=list)

    @property
    def has_morph_targets(self) -> bool:
        return bool(self.weights) or any(p.targets for p in self.primitives)


@dataclass(frozen=True)
class SkinDescriptor:
    """
    Joints of one skin. Joint `j` of a skinned vertex refers to `joints[j]`;
    `inverse_bind_matrices` is an accessor of MAT4 (identity when None).
    """
    index: int
    joints: list[int]
    inverse_bind_matrices: Optional[int] = None
    skeleton: Optional[int] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ChannelDescriptor:
    """One animation channel with its sampler already resolved."""
    animation_index: int
    target_node: Optional[int]
    target_path: str
    input_accessor: int
    output_accessor: int
    interpolation: str = Interpolation.LINEAR


@dataclass(frozen=True)
class AnimationDescriptor:
    index: int
    channels: list[ChannelDescriptor]
    name: Optional[str] = None


@dataclass(eq=False)
class SceneDescription:
    """
    Random-access view of a parsed scene plus its binary blob.
    """
    nodes: list[NodeDescriptor]
    meshes: list[MeshDescriptor]
    accessors: list[AccessorDescriptor]
    animations: list[AnimationDescriptor]
    scene_roots: list[int]
    blob: bytes = b""
    buffer_offsets: list[int] = field(default_factory=list)
    name: str = ""
    skins: list[SkinDescriptor] = field(default_factory=list)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(name='{self.name}', nodes={len(self.nodes)}, "
                f"meshes={len(self.meshes)}, skins={len(self.skins)}, animations={len(self.animations)}, "
                f"blob={len(self.blob)} bytes)")

    @property
    def channels(self) -> list[ChannelDescriptor]:
        """Every channel of every animation, in animation order."""
        return [channel for animation in self.animations for channel in animation.channels]

    @classmethod
    def from_gltf(cls, gltf: GLTF2, blob: bytes, name: str = "") -> SceneDescription:
        """
        Build a description from a parsed pygltflib document.

        Args:
            gltf: Parsed document.
            blob: Concatenation of every buffer of the document, in buffer order.
            name: Label used in log messages.

        Returns:
            The scene description.
        """
        buffer_offsets: list[int] = []
        running = 0
        for buffer in gltf.buffers:
            buffer_offsets.append(running)
            running += buffer.byteLength

        accessors = [
            _accessor_from_gltf(i, accessor, gltf, buffer_offsets)
            for i, accessor in enumerate(gltf.accessors)
        ]
        nodes = [_node_from_gltf(i, node) for i, node in enumerate(gltf.nodes)]
        meshes = [_mesh_from_gltf(i, mesh) for i, mesh in enumerate(gltf.meshes)]
        skins = [
            SkinDescriptor(
                index=i,
                joints=list(skin.joints or []),
                inverse_bind_matrices=skin.inverseBindMatrices,
                skeleton=skin.skeleton,
                name=skin.name,
            )
            for i, skin in enumerate(gltf.skins or [])
        ]

        animations: list[AnimationDescriptor] = []
        for a_idx, animation in enumerate(gltf.animations):
            channels = []
            for channel in animation.channels:
                sampler = animation.samplers[channel.sampler]
                channels.append(ChannelDescriptor(
                    animation_index=a_idx,
                    target_node=channel.target.node,
                    target_path=channel.target.path,
                    input_accessor=sampler.input,
                    output_accessor=sampler.output,
                    interpolation=sampler.interpolation or Interpolation.LINEAR,
                ))
            animations.append(AnimationDescriptor(index=a_idx, channels=channels, name=animation.name))

        scene_roots: list[int] = []
        if gltf.scenes:
            scene_index = gltf.scene if gltf.scene is not None else 0
            scene_roots = list(gltf.scenes[scene_index].nodes or [])

        description = cls(
            nodes=nodes,
            meshes=meshes,
            accessors=accessors,
            animations=animations,
            scene_roots=scene_roots,
            blob=blob,
            buffer_offsets=buffer_offsets,
            name=name,
            skins=skins,
        )
        logger.debug(f"Parsed {description}")
        return description


def _attr_get(attrs: Any, name: str) -> Optional[int]:
    """Works for pygltflib.Attributes and dict-like cases."""
    if isinstance(attrs, dict):
        return attrs.get(name)
    return getattr(attrs, name, None)


def _accessor_from_gltf(index: int, accessor: Any, gltf: GLTF2, buffer_offsets: list[int]) -> AccessorDescriptor:
    if accessor.bufferView is None:
        # all-zero or sparse-only accessor, nothing to read from the blob
        return AccessorDescriptor(
            index=index,
            byte_offset=0,
            count=accessor.count,
            component_type=accessor.componentType,
            element_type=accessor.type,
            buffer_index=None,
            normalized=bool(accessor.normalized),
        )
    view = gltf.bufferViews[accessor.bufferView]
    byte_offset = buffer_offsets[view.buffer] + (view.byteOffset or 0) + (accessor.byteOffset or 0)
    return AccessorDescriptor(
        index=index,
        byte_offset=byte_offset,
        count=accessor.count,
        component_type=accessor.componentType,
        element_type=accessor.type,
        buffer_index=view.buffer,
        byte_stride=view.byteStride,
        normalized=bool(accessor.normalized),
    )


def _node_from_gltf(index: int, node: Any) -> NodeDescriptor:
    descriptor = NodeDescriptor(
        index=index,
        children=list(node.children or []),
        mesh=node.mesh,
        name=node.name,
        camera=node.camera,
        skin=node.skin,
    )
    if node.matrix is not None:
        matrix = matrix_from_gltf(node.matrix)
        if not np.allclose(matrix, IDENTITY) or node.translation is None and node.rotation is None and node.scale is None:
            descriptor.matrix = matrix
            return descriptor
    if node.translation is not None:
        descriptor.translation = np.asarray(node.translation, dtype=np.float64)
    if node.rotation is not None:
        descriptor.rotation = np.asarray(node.rotation, dtype=np.float64)
    if node.scale is not None:
        descriptor.scale = np.asarray(node.scale, dtype=np.float64)
    return descriptor


def _mesh_from_gltf(index: int, mesh: Any) -> MeshDescriptor:
    primitives = []
    for primitive in mesh.primitives or []:
        attributes = {
            semantic: accessor_index
            for semantic in VERTEX_SEMANTICS
            if (accessor_index := _attr_get(primitive.attributes, semantic)) is not None
        }
        targets = [
            {
                semantic: accessor_index
                for semantic in MORPH_SEMANTICS
                if (accessor_index := _attr_get(target, semantic)) is not None
            }
            for target in primitive.targets or []
        ]
        primitives.append(PrimitiveDescriptor(
            attributes=attributes,
            indices=primitive.indices,
            material=primitive.material,
            targets=targets,
        ))
    return MeshDescriptor(index=index, primitives=primitives, name=mesh.name, weights=list(mesh.weights or []))
