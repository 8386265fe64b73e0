"""
Scene Graph Walker
==================
Depth-first traversal of one model (the subtree below a scene root).

The walk composes hierarchical transforms, counts how often each mesh is
instanced, and records a light node-kind tree the animation builder uses
instead of walking the full node payload again.

Skinned models
--------------
A model may use one skin. Its joints become JOINT nodes of the kind tree and
get a rest joint matrix `global @ inverse_bind`. The mesh slot of a skinned
mesh node is identity: the joint matrices already place the vertices.

The traversal uses an explicit stack, so hierarchy depth is bounded by
memory only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import TYPE_CHECKING, Iterator, Optional

import numpy as np

from gltfinstancer.controller.accessors import read_accessor, require_element_type, require_float
from gltfinstancer.errors import StructuralInconsistencyError, UnsupportedDataError
from gltfinstancer.model.scene_description import NodeDescriptor, SceneDescription, SkinDescriptor
from gltfinstancer.model.transforms import IDENTITY, matrices_from_gltf

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class NodeKind(Enum):
    MESH = "mesh"
    JOINT = "joint"
    NODE = "node"


@dataclass(eq=False)
class KindNode:
    """
    One entry of the node-kind tree.

    `joint_index` is set for JOINT nodes; `skinned` marks a mesh node whose
    vertices are placed by the joint matrices.
    """
    node_id: int
    kind: NodeKind
    children: list[KindNode] = field(default_factory=list)
    joint_index: Optional[int] = None
    skinned: bool = False

    def __iter__(self) -> Iterator[KindNode]:
        """Depth-first, parents before children."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


@dataclass
class MeshReference:
    mesh_id: int
    count: int = 1


def _no_matrices() -> npt.NDArray[np.float64]:
    return np.zeros((0, 4, 4), dtype=np.float64)


@dataclass(eq=False)
class ModelMeshData:
    """
    Everything the walk learns about one model.

    Attributes:
        root_id: Node the walk started from.
        mesh_references: Unique meshes in first-encounter order with their instance counts.
        traversal_transforms: (n, 4, 4) composed transforms, one per mesh node, in traversal order.
        traversal_meshes: Mesh id of every entry of `traversal_transforms`.
        packed_transforms: The same transforms grouped per mesh (mesh order, traversal order inside a mesh).
        slot_map: Mesh node id -> index into `packed_transforms`.
        kind_tree: Node-kind tree rooted at `root_id`.
        skin: Skin used by the model's mesh nodes, if any.
        joint_map: Joint node id -> joint index.
        inverse_bind_matrices: (joints, 4, 4) inverse bind matrices.
        rest_joint_transforms: (joints, 4, 4) rest joint matrices.
    """
    root_id: int
    mesh_references: list[MeshReference]
    traversal_transforms: npt.NDArray[np.float64]
    traversal_meshes: list[int]
    packed_transforms: npt.NDArray[np.float64]
    slot_map: dict[int, int]
    kind_tree: KindNode
    skin: Optional[int] = None
    joint_map: dict[int, int] = field(default_factory=dict)
    inverse_bind_matrices: npt.NDArray[np.float64] = field(default_factory=_no_matrices)
    rest_joint_transforms: npt.NDArray[np.float64] = field(default_factory=_no_matrices)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(root={self.root_id}, meshes={self.mesh_ids}, "
                f"slots={self.slot_count}, joints={self.joint_count})")

    @property
    def mesh_ids(self) -> list[int]:
        return [ref.mesh_id for ref in self.mesh_references]

    @property
    def instance_counts(self) -> list[int]:
        return [ref.count for ref in self.mesh_references]

    @property
    def slot_count(self) -> int:
        return len(self.packed_transforms)

    @property
    def joint_count(self) -> int:
        return len(self.rest_joint_transforms)

    @property
    def mesh_slot_ranges(self) -> list[tuple[int, int]]:
        """(first_slot, count) of every unique mesh inside `packed_transforms`."""
        ranges = []
        first = 0
        for ref in self.mesh_references:
            ranges.append((first, ref.count))
            first += ref.count
        return ranges


class SceneGraphWalker:
    """
    Walks the node hierarchy of a scene description.

    Example:
        >>> walker = SceneGraphWalker(description)
        >>> models = [walker.walk(root) for root in root_nodes(description)]
    """

    def __init__(self, description: SceneDescription) -> None:
        self.description = description

    def walk(self, root_id: int, parent_transform: Optional[npt.NDArray[np.float64]] = None) -> ModelMeshData:
        """
        Traverse the subtree below `root_id`.

        Args:
            root_id: Index of the model's root node.
            parent_transform: Transform the root is placed under (identity by default).

        Returns:
            The model's mesh data.
        """
        start = IDENTITY if parent_transform is None else np.asarray(parent_transform, dtype=np.float64)

        skin = self._model_skin(root_id)
        joint_map = {node_id: j for j, node_id in enumerate(skin.joints)} if skin else {}
        inverse_bind = self._inverse_bind_matrices(skin) if skin else _no_matrices()
        rest_joints = np.tile(IDENTITY, (len(joint_map), 1, 1))

        references: dict[int, MeshReference] = {}
        transforms: list[npt.NDArray[np.float64]] = []
        mesh_nodes: list[tuple[int, int]] = []  # (node id, mesh id)
        visited: set[int] = set()
        kind_tree: Optional[KindNode] = None

        stack: list[tuple[int, npt.NDArray[np.float64], Optional[KindNode]]] = [(root_id, start, None)]
        while stack:
            node_id, parent, parent_kind = stack.pop()
            node = self._enter(node_id, visited)
            composed = parent @ node.local_transform

            joint_index = joint_map.get(node_id)
            skinned = False
            if joint_index is not None:
                if node.mesh is not None:
                    msg = f"Node {node_id} is both joint {joint_index} and a mesh node"
                    logger.error(msg)
                    raise UnsupportedDataError(msg)
                rest_joints[joint_index] = composed @ inverse_bind[joint_index]
                kind = NodeKind.JOINT
            elif node.mesh is not None:
                if not 0 <= node.mesh < len(self.description.meshes):
                    msg = f"Node {node_id} references missing mesh {node.mesh}"
                    logger.error(msg)
                    raise StructuralInconsistencyError(msg)
                skinned = node.skin is not None
                transforms.append(IDENTITY if skinned else composed)
                mesh_nodes.append((node_id, node.mesh))
                if node.mesh in references:
                    references[node.mesh].count += 1
                else:
                    references[node.mesh] = MeshReference(mesh_id=node.mesh)
                kind = NodeKind.MESH
            else:
                kind = NodeKind.NODE

            kind_node = KindNode(node_id=node_id, kind=kind, joint_index=joint_index, skinned=skinned)
            if parent_kind is None:
                kind_tree = kind_node
            else:
                parent_kind.children.append(kind_node)
            for child_id in reversed(node.children):
                stack.append((child_id, composed, kind_node))

        # group per mesh, keeping traversal order inside each mesh
        mesh_order = {mesh_id: i for i, mesh_id in enumerate(references)}
        order = sorted(range(len(mesh_nodes)), key=lambda j: mesh_order[mesh_nodes[j][1]])
        slot_map = {mesh_nodes[j][0]: slot for slot, j in enumerate(order)}

        traversal = np.array(transforms, dtype=np.float64).reshape(-1, 4, 4)
        packed = traversal[order] if order else traversal.copy()

        data = ModelMeshData(
            root_id=root_id,
            mesh_references=list(references.values()),
            traversal_transforms=traversal,
            traversal_meshes=[mesh for _, mesh in mesh_nodes],
            packed_transforms=packed,
            slot_map=slot_map,
            kind_tree=kind_tree,
            skin=None if skin is None else skin.index,
            joint_map=joint_map,
            inverse_bind_matrices=inverse_bind,
            rest_joint_transforms=rest_joints,
        )
        logger.debug(f"Walked {data}")
        return data

    def _enter(self, node_id: int, visited: set[int]) -> NodeDescriptor:
        nodes = self.description.nodes
        if not 0 <= node_id < len(nodes):
            msg = f"Node {node_id} does not exist ({len(nodes)} nodes)"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        if node_id in visited:
            msg = f"Node {node_id} is reachable more than once; the hierarchy must be a tree"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        visited.add(node_id)
        return nodes[node_id]

    def _model_skin(self, root_id: int) -> Optional[SkinDescriptor]:
        """The one skin used by mesh nodes below `root_id`, or None."""
        subtree: set[int] = set()
        skins: set[int] = set()
        stack = [root_id]
        while stack:
            node = self._enter(stack.pop(), subtree)
            if node.skin is not None:
                if node.mesh is None:
                    logger.debug(f"Ignoring skin {node.skin} on node {node.index} without a mesh")
                else:
                    skins.add(node.skin)
            stack.extend(node.children)

        if not skins:
            return None
        if len(skins) > 1:
            msg = f"Model rooted at node {root_id} uses skins {sorted(skins)}; one skin per model is supported"
            logger.error(msg)
            raise UnsupportedDataError(msg)

        skin_index = skins.pop()
        if not 0 <= skin_index < len(self.description.skins):
            msg = f"Model rooted at node {root_id} references missing skin {skin_index}"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        skin = self.description.skins[skin_index]

        if len(set(skin.joints)) != len(skin.joints):
            msg = f"Skin {skin_index} lists a joint more than once: {skin.joints}"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        outside = [joint for joint in skin.joints if joint not in subtree]
        if outside:
            msg = f"Joints {outside} of skin {skin_index} lie outside the model rooted at node {root_id}"
            logger.error(msg)
            raise UnsupportedDataError(msg)
        return skin

    def _inverse_bind_matrices(self, skin: SkinDescriptor) -> npt.NDArray[np.float64]:
        count = len(skin.joints)
        if skin.inverse_bind_matrices is None:
            return np.tile(IDENTITY, (count, 1, 1))

        accessors = self.description.accessors
        if not 0 <= skin.inverse_bind_matrices < len(accessors):
            msg = f"Skin {skin.index} references missing accessor {skin.inverse_bind_matrices}"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        accessor = accessors[skin.inverse_bind_matrices]
        require_float(accessor, f"inverse bind matrices of skin {skin.index}")
        require_element_type(accessor, "MAT4", f"inverse bind matrices of skin {skin.index}")
        if accessor.count < count:
            msg = f"Skin {skin.index} has {count} joints but only {accessor.count} inverse bind matrices"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        return matrices_from_gltf(read_accessor(self.description.blob, accessor))[:count]


def root_nodes(description: SceneDescription) -> list[int]:
    """
    Model roots of the scene: the default scene's root nodes that carry a
    mesh or children. Camera-only and empty roots are skipped.
    """
    roots = []
    for node_id in description.scene_roots:
        node = description.nodes[node_id]
        if node.mesh is None and not node.children:
            logger.debug(f"Skipping root node {node_id} ('{node.name}') without mesh or children")
            continue
        roots.append(node_id)
    return roots
