"""
Animation Definition Tree
=========================
Immutable tree mirroring one model's node hierarchy, with the samplers of
every animation attached to the nodes they drive.

One definition is shared read-only by every playback instance of the model;
the per-playback state lives in the scheduler.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterator, Mapping, Optional

import numpy as np

from gltfinstancer.controller.accessors import read_accessor, require_element_type, require_float
from gltfinstancer.controller.animation.sampler import AnimationSampler
from gltfinstancer.controller.scene_walker import KindNode, NodeKind
from gltfinstancer.errors import StructuralInconsistencyError, UnsupportedDataError
from gltfinstancer.model.scene_description import (
    AnimatedProperty,
    ChannelDescriptor,
    Interpolation,
    SceneDescription,
)
from gltfinstancer.model.transforms import IDENTITY

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

# Animated property -> element type of its output accessor.
SUPPORTED_PROPERTIES: dict[AnimatedProperty, str] = {
    AnimatedProperty.TRANSLATION: "VEC3",
    AnimatedProperty.ROTATION: "VEC4",
}
SUPPORTED_INTERPOLATIONS: tuple[Interpolation, ...] = (Interpolation.LINEAR,)


@dataclass(frozen=True, eq=False)
class AnimationNode:
    """
    One node of the definition tree.

    Attributes:
        node_id: Index of the node in the scene description.
        kind: MESH when the node owns a mesh-transform slot, JOINT when it
            drives a joint matrix.
        translation, rotation, scale: Rest TRS used for properties no sampler drives.
        rest_matrix: The node's rest transform as authored.
        samplers: Animation index -> samplers driving this node under that animation.
        children: Child nodes.
        joint_index: Joint matrix written by a JOINT node.
        skinned: A MESH node placed by joint matrices; its slot stays identity.
    """
    node_id: int
    kind: NodeKind
    translation: npt.NDArray[np.float64]
    rotation: npt.NDArray[np.float64]
    scale: npt.NDArray[np.float64]
    rest_matrix: npt.NDArray[np.float64]
    samplers: Mapping[int, tuple[AnimationSampler, ...]] = field(default_factory=dict)
    children: tuple[AnimationNode, ...] = ()
    joint_index: Optional[int] = None
    skinned: bool = False

    def __iter__(self) -> Iterator[AnimationNode]:
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    @property
    def rest_transform(self) -> npt.NDArray[np.float64]:
        return self.rest_matrix

    @property
    def animation_indices(self) -> frozenset[int]:
        """Every animation driving this node or one of its descendants."""
        return frozenset(index for node in self for index in node.samplers)

    def samplers_for(self, animation_index: int) -> tuple[AnimationSampler, ...]:
        return self.samplers.get(animation_index, ())

    def rest_pose(
        self,
        slot_map: Mapping[int, int],
        slot_count: int,
        inverse_bind_matrices: npt.NDArray[np.float64],
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Compose rest transforms down the tree.

        Args:
            slot_map: Mesh node id -> slot index.
            slot_count: Number of slots of the model.
            inverse_bind_matrices: (joints, 4, 4) inverse bind matrices.

        Returns:
            (slot_count, 4, 4) mesh slots and (joints, 4, 4) joint matrices;
            entries of nodes not in the tree stay identity.
        """
        slots = np.tile(IDENTITY, (slot_count, 1, 1))
        joints = np.tile(IDENTITY, (len(inverse_bind_matrices), 1, 1))
        stack: list[tuple[AnimationNode, npt.NDArray[np.float64]]] = [(self, IDENTITY)]
        while stack:
            node, parent = stack.pop()
            composed = parent @ node.rest_matrix
            if node.kind is NodeKind.MESH and not node.skinned:
                slots[slot_map[node.node_id]] = composed
            elif node.kind is NodeKind.JOINT:
                joints[node.joint_index] = composed @ inverse_bind_matrices[node.joint_index]
            stack.extend((child, composed) for child in reversed(node.children))
        return slots, joints

    def rest_mesh_transforms(self, slot_map: Mapping[int, int], slot_count: int) -> npt.NDArray[np.float64]:
        slots, _ = self.rest_pose(slot_map, slot_count, np.zeros((0, 4, 4)))
        return slots


@dataclass(frozen=True, eq=False)
class AnimationDefinition:
    """Shared animation tree of one model."""
    root: AnimationNode
    model_index: int
    animation_indices: frozenset[int]
    slot_map: Mapping[int, int]
    slot_count: int
    inverse_bind_matrices: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros((0, 4, 4)))

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(model={self.model_index}, "
                f"animations={sorted(self.animation_indices)}, slots={self.slot_count}, joints={self.joint_count})")

    @property
    def joint_count(self) -> int:
        return len(self.inverse_bind_matrices)

    def samplers(self, animation_index: int) -> list[AnimationSampler]:
        """Every sampler of one animation, depth-first."""
        return [s for node in self.root for s in node.samplers_for(animation_index)]

    def rest_mesh_transforms(self) -> npt.NDArray[np.float64]:
        slots, _ = self.root.rest_pose(self.slot_map, self.slot_count, self.inverse_bind_matrices)
        return slots

    def rest_joint_transforms(self) -> npt.NDArray[np.float64]:
        _, joints = self.root.rest_pose(self.slot_map, self.slot_count, self.inverse_bind_matrices)
        return joints

    def with_model_index(self, model_index: int) -> AnimationDefinition:
        """Same tree attributed to another model, used when scenes are merged."""
        return replace(self, model_index=model_index)


class AnimationTreeBuilder:
    """
    Builds AnimationDefinitions from a scene description.

    Samplers get the position of their channel in `description.channels` as
    id, so ids are stable across models of one description. Every channel is
    checked for a supported interpolation and property on construction,
    including channels whose target lies outside every model.
    """

    def __init__(self, description: SceneDescription) -> None:
        self.description = description
        self._channels_by_node: dict[int, list[tuple[int, ChannelDescriptor]]] = {}
        for channel_id, channel in enumerate(description.channels):
            self._check_channel(channel_id, channel)
            if channel.target_node is None:
                logger.debug(f"Ignoring channel {channel_id} without a target node")
                continue
            self._channels_by_node.setdefault(channel.target_node, []).append((channel_id, channel))

    def build(
        self,
        kind_tree: KindNode,
        model_index: int,
        slot_map: Mapping[int, int],
        slot_count: Optional[int] = None,
        inverse_bind_matrices: Optional[npt.NDArray[np.float64]] = None,
    ) -> Optional[AnimationDefinition]:
        """
        Build the definition tree of one model.

        Args:
            kind_tree: Node-kind tree from the walker.
            model_index: Ordinal of the model in the scene.
            slot_map: Mesh node id -> slot, from the walker.
            slot_count: Number of mesh slots; defaults to len(slot_map).
            inverse_bind_matrices: (joints, 4, 4) matrices of the model's skin, if any.

        Returns:
            The definition, or None when no node of the model is animated.
        """
        root = self._build_tree(kind_tree)
        animation_indices = root.animation_indices
        if not animation_indices:
            logger.debug(f"Model {model_index} (root node {kind_tree.node_id}) has no animation channels")
            return None

        if inverse_bind_matrices is None:
            inverse_bind_matrices = np.zeros((0, 4, 4))
        joint_count = len(inverse_bind_matrices)
        for node in root:
            if node.kind is NodeKind.JOINT and not 0 <= node.joint_index < joint_count:
                msg = f"Joint node {node.node_id} has joint index {node.joint_index} but the skin has {joint_count} joints"
                logger.error(msg)
                raise StructuralInconsistencyError(msg)

        definition = AnimationDefinition(
            root=root,
            model_index=model_index,
            animation_indices=animation_indices,
            slot_map=MappingProxyType(dict(slot_map)),
            slot_count=len(slot_map) if slot_count is None else slot_count,
            inverse_bind_matrices=np.array(inverse_bind_matrices, dtype=np.float64).reshape(-1, 4, 4),
        )
        logger.info(f"Built {definition}")
        return definition

    def _build_tree(self, kind_tree: KindNode) -> AnimationNode:
        # descendants precede their ancestors in reversed pre-order
        order = list(kind_tree)
        built: dict[int, AnimationNode] = {}
        for kind_node in reversed(order):
            built[id(kind_node)] = self._build_node(
                kind_node, tuple(built.pop(id(child)) for child in kind_node.children)
            )
        return built[id(kind_tree)]

    def _build_node(self, kind_node: KindNode, children: tuple[AnimationNode, ...]) -> AnimationNode:
        node = self.description.nodes[kind_node.node_id]
        translation, rotation, scale = node.rest_trs

        grouped: dict[int, list[AnimationSampler]] = {}
        seen: set[tuple[int, str]] = set()
        for channel_id, channel in self._channels_by_node.get(kind_node.node_id, []):
            key = (channel.animation_index, channel.target_path)
            if key in seen:
                msg = (f"Animation {channel.animation_index} has two channels for "
                       f"'{channel.target_path}' of node {kind_node.node_id}")
                logger.error(msg)
                raise StructuralInconsistencyError(msg)
            seen.add(key)
            grouped.setdefault(channel.animation_index, []).append(self._build_sampler(channel_id, channel))

        return AnimationNode(
            node_id=kind_node.node_id,
            kind=kind_node.kind,
            translation=np.asarray(translation, dtype=np.float64),
            rotation=np.asarray(rotation, dtype=np.float64),
            scale=np.asarray(scale, dtype=np.float64),
            rest_matrix=node.local_transform,
            samplers=MappingProxyType({index: tuple(s) for index, s in grouped.items()}),
            children=children,
            joint_index=kind_node.joint_index,
            skinned=kind_node.skinned,
        )

    @staticmethod
    def _check_channel(channel_id: int, channel: ChannelDescriptor) -> None:
        if channel.interpolation not in SUPPORTED_INTERPOLATIONS:
            msg = f"Channel {channel_id}: interpolation '{channel.interpolation}' is not supported"
            logger.error(msg)
            raise UnsupportedDataError(msg)

        if channel.target_path not in SUPPORTED_PROPERTIES:
            msg = f"Channel {channel_id}: animating '{channel.target_path}' is not supported"
            logger.error(msg)
            raise UnsupportedDataError(msg)

    def _build_sampler(self, channel_id: int, channel: ChannelDescriptor) -> AnimationSampler:
        target_path = AnimatedProperty(channel.target_path)

        accessors = self.description.accessors
        input_accessor = accessors[channel.input_accessor]
        output_accessor = accessors[channel.output_accessor]
        require_float(input_accessor, f"keyframe times of channel {channel_id}")
        require_element_type(input_accessor, "SCALAR", f"keyframe times of channel {channel_id}")
        require_float(output_accessor, f"{target_path} values of channel {channel_id}")
        require_element_type(output_accessor, SUPPORTED_PROPERTIES[target_path],
                             f"{target_path} values of channel {channel_id}")

        blob = self.description.blob
        return AnimationSampler(
            sampler_id=channel_id,
            target_path=target_path,
            times=read_accessor(blob, input_accessor).ravel(),
            values=read_accessor(blob, output_accessor),
            interpolation=Interpolation(channel.interpolation),
            node_id=channel.target_node,
        )
