"""
Buffer Packing
==============
Packs the unique meshes of a scene into one vertex array and one 16-bit
index array.

Index data is not copied accessor by accessor: the byte ranges of every
index accessor are registered in a ByteRangeLedger first, the merged cover
is gathered from the blob in one pass, and each primitive's first index is
its accessor offset translated into the packed output.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Iterable, Optional

import numpy as np

from gltfinstancer.controller.accessors import (
    accessor_byte_range,
    dequantize,
    read_accessor,
    require_element_type,
    require_float,
)
from gltfinstancer.errors import StructuralInconsistencyError, UnsupportedDataError
from gltfinstancer.model.byte_ranges import ByteRangeLedger
from gltfinstancer.model.scene_description import (
    AccessorDescriptor,
    ComponentType,
    PrimitiveDescriptor,
    SceneDescription,
)
from gltfinstancer.model.vertex import INDEX_DTYPE, VERTEX_DTYPE, empty_vertices, normalize_to_unorm8

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrimitiveDraw:
    """Where one primitive lives inside the packed vertex and index arrays."""
    mesh_id: int
    first_index: int
    index_count: int
    base_vertex: int
    vertex_count: int
    material: int

    def shifted(self, vertex_shift: int, index_shift: int) -> PrimitiveDraw:
        return PrimitiveDraw(
            mesh_id=self.mesh_id,
            first_index=self.first_index + index_shift,
            index_count=self.index_count,
            base_vertex=self.base_vertex + vertex_shift,
            vertex_count=self.vertex_count,
            material=self.material,
        )


@dataclass(eq=False)
class PackedMeshes:
    vertices: npt.NDArray[np.void]
    indices: npt.NDArray[np.uint16]
    primitives: dict[int, list[PrimitiveDraw]] = field(default_factory=dict)
    ledger: ByteRangeLedger = field(default_factory=ByteRangeLedger)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(meshes={len(self.primitives)}, vertices={len(self.vertices)}, "
                f"indices={len(self.indices)}, index_ranges={len(self.ledger)})")


@dataclass
class _PendingPrimitive:
    mesh_id: int
    base_vertex: int
    vertex_count: int
    material: int
    index_accessor: Optional[AccessorDescriptor]


class BufferPacker:
    """
    Example:
        >>> packed = BufferPacker(description).pack([0, 2])
        >>> packed.vertices.tobytes()  # 48 bytes per vertex
    """

    def __init__(self, description: SceneDescription) -> None:
        self.description = description

    def pack(self, mesh_ids: Iterable[int]) -> PackedMeshes:
        """
        Pack the given meshes (duplicates are packed once).

        Args:
            mesh_ids: Mesh indices of the description, in the order they should be laid out.

        Returns:
            Packed arrays and per-mesh primitive draws.
        """
        ordered = list(dict.fromkeys(mesh_ids))
        ledger = ByteRangeLedger()
        vertex_chunks: list[npt.NDArray[np.void]] = []
        pending: list[_PendingPrimitive] = []
        vertex_count = 0

        for mesh_id in ordered:
            mesh = self.description.meshes[mesh_id]
            if mesh.has_morph_targets:
                msg = f"Mesh {mesh_id} ('{mesh.name}') has morph targets, which are not supported"
                logger.error(msg)
                raise UnsupportedDataError(msg)
            for p_idx, primitive in enumerate(mesh.primitives):
                vertices = self._read_vertices(mesh_id, p_idx, primitive)
                index_accessor = self._index_accessor(mesh_id, p_idx, primitive)
                if index_accessor is not None:
                    ledger.register(accessor_byte_range(index_accessor))
                pending.append(_PendingPrimitive(
                    mesh_id=mesh_id,
                    base_vertex=vertex_count,
                    vertex_count=len(vertices),
                    material=primitive.material or 0,
                    index_accessor=index_accessor,
                ))
                vertex_chunks.append(vertices)
                vertex_count += len(vertices)

        gathered = ledger.gather(self.description.blob)
        if len(gathered) % INDEX_DTYPE.itemsize:
            msg = f"Packed index data has odd length {len(gathered)}"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)

        primitives: dict[int, list[PrimitiveDraw]] = {mesh_id: [] for mesh_id in ordered}
        for item in pending:
            first_index = 0
            index_count = 0
            if item.index_accessor is not None:
                packed_offset = ledger.packed_offset(item.index_accessor.byte_offset) if item.index_accessor.count else 0
                if packed_offset % INDEX_DTYPE.itemsize:
                    msg = f"Index accessor {item.index_accessor.index} is not 2-byte aligned"
                    logger.error(msg)
                    raise StructuralInconsistencyError(msg)
                first_index = packed_offset // INDEX_DTYPE.itemsize
                index_count = item.index_accessor.count
            primitives[item.mesh_id].append(PrimitiveDraw(
                mesh_id=item.mesh_id,
                first_index=first_index,
                index_count=index_count,
                base_vertex=item.base_vertex,
                vertex_count=item.vertex_count,
                material=item.material,
            ))

        packed = PackedMeshes(
            vertices=np.concatenate(vertex_chunks) if vertex_chunks else empty_vertices(),
            indices=np.frombuffer(gathered, dtype=INDEX_DTYPE).copy(),
            primitives=primitives,
            ledger=ledger,
        )
        logger.info(f"Packed {packed}")
        return packed

    def _index_accessor(self, mesh_id: int, p_idx: int, primitive: PrimitiveDescriptor) -> Optional[AccessorDescriptor]:
        if primitive.indices is None:
            return None
        accessor = self.description.accessors[primitive.indices]
        if accessor.component_type != ComponentType.UNSIGNED_SHORT:
            msg = (f"Mesh {mesh_id} primitive {p_idx}: indices have component type "
                   f"{accessor.component_type}, only UNSIGNED_SHORT is supported")
            logger.error(msg)
            raise UnsupportedDataError(msg)
        if accessor.byte_stride not in (None, INDEX_DTYPE.itemsize):
            msg = f"Mesh {mesh_id} primitive {p_idx}: strided index data is not supported"
            logger.error(msg)
            raise UnsupportedDataError(msg)
        if not accessor.has_data:
            msg = f"Mesh {mesh_id} primitive {p_idx}: index accessor {accessor.index} has no buffer view"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        return accessor

    def _read_vertices(self, mesh_id: int, p_idx: int, primitive: PrimitiveDescriptor) -> npt.NDArray[np.void]:
        attributes = primitive.attributes
        accessors = self.description.accessors
        blob = self.description.blob
        where = f"mesh {mesh_id} primitive {p_idx}"

        if "POSITION" not in attributes:
            msg = f"{where} has no POSITION attribute"
            logger.error(msg)
            raise UnsupportedDataError(msg)

        position = accessors[attributes["POSITION"]]
        require_float(position, f"POSITION of {where}")
        require_element_type(position, "VEC3", f"POSITION of {where}")
        vertices = empty_vertices(position.count)
        vertices["position"] = read_accessor(blob, position)

        if "NORMAL" in attributes:
            normal = accessors[attributes["NORMAL"]]
            require_float(normal, f"NORMAL of {where}")
            require_element_type(normal, "VEC3", f"NORMAL of {where}")
            vertices["normal"] = self._matching(read_accessor(blob, normal), position.count, "NORMAL", where)

        if "TEXCOORD_0" in attributes:
            texcoord = accessors[attributes["TEXCOORD_0"]]
            require_element_type(texcoord, "VEC2", f"TEXCOORD_0 of {where}")
            values = read_accessor(blob, texcoord)
            if texcoord.component_type != ComponentType.FLOAT:
                if not texcoord.normalized:
                    msg = f"TEXCOORD_0 of {where} is an unnormalized integer accessor"
                    logger.error(msg)
                    raise UnsupportedDataError(msg)
                values = dequantize(values, texcoord.component_type)
            vertices["texcoord"] = self._matching(values, position.count, "TEXCOORD_0", where)

        if "JOINTS_0" in attributes:
            joints = accessors[attributes["JOINTS_0"]]
            require_element_type(joints, "VEC4", f"JOINTS_0 of {where}")
            values = read_accessor(blob, joints)
            if joints.component_type not in (ComponentType.UNSIGNED_BYTE, ComponentType.UNSIGNED_SHORT) \
                    or (values.size and values.max() > 255):
                msg = f"JOINTS_0 of {where} does not fit in 8-bit joint indices"
                logger.error(msg)
                raise UnsupportedDataError(msg)
            vertices["joints"] = self._matching(values.astype(np.uint8), position.count, "JOINTS_0", where)

        if "WEIGHTS_0" in attributes:
            weights = accessors[attributes["WEIGHTS_0"]]
            require_element_type(weights, "VEC4", f"WEIGHTS_0 of {where}")
            values = read_accessor(blob, weights)
            if weights.component_type == ComponentType.UNSIGNED_BYTE:
                packed = values.astype(np.uint8)
            elif weights.component_type in (ComponentType.FLOAT, ComponentType.UNSIGNED_SHORT):
                packed = normalize_to_unorm8(dequantize(values, weights.component_type))
            else:
                msg = f"WEIGHTS_0 of {where} has unsupported component type {weights.component_type}"
                logger.error(msg)
                raise UnsupportedDataError(msg)
            vertices["weights"] = self._matching(packed, position.count, "WEIGHTS_0", where)

        vertices["material"] = primitive.material or 0
        return vertices

    @staticmethod
    def _matching(values: npt.NDArray, count: int, semantic: str, where: str) -> npt.NDArray:
        if len(values) != count:
            msg = f"{semantic} of {where} has {len(values)} elements, POSITION has {count}"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        return values


def vertex_bytes(vertices: npt.NDArray[np.void]) -> bytes:
    """Raw vertex buffer contents, 48 bytes per vertex."""
    return np.ascontiguousarray(vertices, dtype=VERTEX_DTYPE).tobytes()
