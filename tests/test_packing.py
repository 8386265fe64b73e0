import numpy as np
import pytest

from gltfinstancer.controller.packing import BufferPacker, vertex_bytes
from gltfinstancer.errors import StructuralInconsistencyError, UnsupportedDataError
from gltfinstancer.model.scene_description import (
    ComponentType,
    MeshDescriptor,
    NodeDescriptor,
    PrimitiveDescriptor,
)


def single_mesh(builder, attributes, indices=None, material=None):
    mesh = MeshDescriptor(index=0, primitives=[PrimitiveDescriptor(attributes=attributes, indices=indices, material=material)])
    return builder.description([NodeDescriptor(index=0, mesh=0)], [mesh])


def test_packs_triangle(blob_builder):
    description = blob_builder.description([NodeDescriptor(index=0, mesh=0)], [blob_builder.triangle_mesh()])
    packed = BufferPacker(description).pack([0])

    assert len(packed.vertices) == 3
    np.testing.assert_allclose(packed.vertices["position"][1], [1.0, 0.0, 0.0])
    assert list(packed.indices) == [0, 1, 2]
    (draw,) = packed.primitives[0]
    assert (draw.first_index, draw.index_count, draw.base_vertex, draw.vertex_count) == (0, 3, 0, 3)
    assert len(vertex_bytes(packed.vertices)) == 3 * 48


def test_duplicate_mesh_ids_pack_once(blob_builder):
    description = blob_builder.description([NodeDescriptor(index=0, mesh=0)], [blob_builder.triangle_mesh()])
    packed = BufferPacker(description).pack([0, 0, 0])
    assert len(packed.vertices) == 3


def test_shared_index_accessor_is_gathered_once(blob_builder):
    first = blob_builder.triangle_mesh(0)
    primitive = first.primitives[0]
    second = MeshDescriptor(index=1, primitives=[primitive])
    description = blob_builder.description([NodeDescriptor(index=0, mesh=0)], [first, second])

    packed = BufferPacker(description).pack([0, 1])
    assert list(packed.indices) == [0, 1, 2]
    assert len(packed.ledger) == 1
    assert packed.primitives[1][0].first_index == 0
    assert packed.primitives[1][0].base_vertex == 3


def test_separate_index_ranges_are_translated(blob_builder):
    position = blob_builder.add([[0.0, 0.0, 0.0]] * 4)
    low = blob_builder.add([0, 1, 2], ComponentType.UNSIGNED_SHORT, "SCALAR")
    blob_builder.add([[9.0, 9.0, 9.0]] * 8)  # unreferenced filler between the index ranges
    high = blob_builder.add([1, 2, 3], ComponentType.UNSIGNED_SHORT, "SCALAR")
    meshes = [
        MeshDescriptor(index=0, primitives=[PrimitiveDescriptor({"POSITION": position}, indices=high)]),
        MeshDescriptor(index=1, primitives=[PrimitiveDescriptor({"POSITION": position}, indices=low)]),
    ]
    description = blob_builder.description([NodeDescriptor(index=0, mesh=0)], meshes)

    packed = BufferPacker(description).pack([0, 1])
    assert len(packed.ledger) == 2
    assert list(packed.indices) == [0, 1, 2, 1, 2, 3]
    assert packed.primitives[0][0].first_index == 3
    assert packed.primitives[1][0].first_index == 0


def test_non_indexed_primitive(blob_builder):
    position = blob_builder.add([[0.0, 0.0, 0.0]] * 3)
    packed = BufferPacker(single_mesh(blob_builder, {"POSITION": position})).pack([0])
    (draw,) = packed.primitives[0]
    assert draw.index_count == 0
    assert len(packed.indices) == 0


def test_optional_attributes(blob_builder):
    position = blob_builder.add([[0.0, 0.0, 0.0]] * 2)
    normal = blob_builder.add([[0.0, 0.0, 1.0]] * 2)
    texcoord = blob_builder.add([[0, 65535], [65535, 0]], ComponentType.UNSIGNED_SHORT, "VEC2", normalized=True)
    joints = blob_builder.add([[0, 1, 2, 3], [4, 5, 6, 255]], ComponentType.UNSIGNED_SHORT, "VEC4")
    weights = blob_builder.add([[1.0, 0.0, 0.0, 0.0], [0.5, 0.5, 0.0, 0.0]], element_type="VEC4")
    attributes = {"POSITION": position, "NORMAL": normal, "TEXCOORD_0": texcoord, "JOINTS_0": joints, "WEIGHTS_0": weights}

    vertices = BufferPacker(single_mesh(blob_builder, attributes, material=4)).pack([0]).vertices
    np.testing.assert_allclose(vertices["normal"][0], [0.0, 0.0, 1.0])
    np.testing.assert_allclose(vertices["texcoord"][0], [0.0, 1.0])
    assert list(vertices["joints"][1]) == [4, 5, 6, 255]
    assert list(vertices["weights"][0]) == [255, 0, 0, 0]
    assert list(vertices["weights"][1]) == [128, 128, 0, 0]
    assert list(vertices["material"]) == [4, 4]


def test_missing_position(blob_builder):
    normal = blob_builder.add([[0.0, 0.0, 1.0]] * 3)
    with pytest.raises(UnsupportedDataError):
        BufferPacker(single_mesh(blob_builder, {"NORMAL": normal})).pack([0])


def test_only_u16_indices(blob_builder):
    position = blob_builder.add([[0.0, 0.0, 0.0]] * 3)
    indices = blob_builder.add([0, 1, 2], ComponentType.UNSIGNED_INT, "SCALAR")
    with pytest.raises(UnsupportedDataError):
        BufferPacker(single_mesh(blob_builder, {"POSITION": position}, indices=indices)).pack([0])


def test_wide_joint_indices(blob_builder):
    position = blob_builder.add([[0.0, 0.0, 0.0]])
    joints = blob_builder.add([[0, 1, 2, 300]], ComponentType.UNSIGNED_SHORT, "VEC4")
    with pytest.raises(UnsupportedDataError):
        BufferPacker(single_mesh(blob_builder, {"POSITION": position, "JOINTS_0": joints})).pack([0])


def test_attribute_count_mismatch(blob_builder):
    position = blob_builder.add([[0.0, 0.0, 0.0]] * 3)
    normal = blob_builder.add([[0.0, 0.0, 1.0]] * 2)
    with pytest.raises(StructuralInconsistencyError):
        BufferPacker(single_mesh(blob_builder, {"POSITION": position, "NORMAL": normal})).pack([0])


def test_morph_targets_are_rejected(blob_builder):
    position = blob_builder.add([[0.0, 0.0, 0.0]] * 3)
    primitive = PrimitiveDescriptor(attributes={"POSITION": position}, targets=[{"POSITION": position}])
    description = blob_builder.description([NodeDescriptor(index=0, mesh=0)], [MeshDescriptor(index=0, primitives=[primitive])])
    with pytest.raises(UnsupportedDataError):
        BufferPacker(description).pack([0])


def test_morph_weights_are_rejected(blob_builder):
    mesh = blob_builder.triangle_mesh()
    description = blob_builder.description(
        [NodeDescriptor(index=0, mesh=0)],
        [MeshDescriptor(index=0, primitives=mesh.primitives, weights=[0.5])],
    )
    with pytest.raises(UnsupportedDataError):
        BufferPacker(description).pack([0])


def test_vertex_padding_is_zero(blob_builder):
    description = blob_builder.description([NodeDescriptor(index=0, mesh=0)], [blob_builder.triangle_mesh()])
    raw = np.frombuffer(vertex_bytes(BufferPacker(description).pack([0]).vertices), dtype=np.uint8).reshape(3, 48)
    assert not raw[:, 44:].any()
