"""
Accessor Reading
================
Typed views into the concatenated binary blob.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from gltfinstancer.errors import StructuralInconsistencyError, UnsupportedDataError
from gltfinstancer.model.byte_ranges import ByteRange
from gltfinstancer.model.scene_description import AccessorDescriptor, ComponentType

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def accessor_stride(accessor: AccessorDescriptor) -> int:
    """Distance in bytes between two consecutive elements."""
    return accessor.byte_stride or accessor.element_size


def accessor_byte_range(accessor: AccessorDescriptor) -> ByteRange:
    """
    Bytes of the blob an accessor touches.

    For a strided accessor the range runs from the first byte of the first
    element to the last byte of the last element.
    """
    if accessor.count == 0 or not accessor.has_data:
        return ByteRange(accessor.byte_offset, accessor.byte_offset)
    span = accessor_stride(accessor) * (accessor.count - 1) + accessor.element_size
    return ByteRange(accessor.byte_offset, accessor.byte_offset + span)


def require_float(accessor: AccessorDescriptor, purpose: str) -> None:
    """Raise UnsupportedDataError unless the accessor holds 32-bit floats."""
    if accessor.component_type != ComponentType.FLOAT:
        msg = (f"Accessor {accessor.index} used as {purpose} has component type "
               f"{accessor.component_type}, expected FLOAT ({int(ComponentType.FLOAT)})")
        logger.error(msg)
        raise UnsupportedDataError(msg)


def require_element_type(accessor: AccessorDescriptor, element_type: str, purpose: str) -> None:
    if accessor.element_type != element_type:
        msg = f"Accessor {accessor.index} used as {purpose} is {accessor.element_type}, expected {element_type}"
        logger.error(msg)
        raise UnsupportedDataError(msg)


def read_accessor(blob: bytes, accessor: AccessorDescriptor) -> npt.NDArray:
    """
    Read an accessor into a (count, components) array.

    Args:
        blob: Concatenated buffers of the scene.
        accessor: Accessor with an absolute byte offset.

    Returns:
        A fresh array with the accessor's component dtype. Accessors without
        a buffer view read as zeros.
    """
    try:
        dtype = ComponentType(accessor.component_type).dtype
    except ValueError:
        msg = f"Accessor {accessor.index} has unknown component type {accessor.component_type}"
        logger.error(msg)
        raise UnsupportedDataError(msg) from None

    components = accessor.components
    if not accessor.has_data:
        return np.zeros((accessor.count, components), dtype=dtype)

    byte_range = accessor_byte_range(accessor)
    if byte_range.end > len(blob):
        msg = f"Accessor {accessor.index} reads {byte_range} past the end of a {len(blob)} byte blob"
        logger.error(msg)
        raise StructuralInconsistencyError(msg)

    stride = accessor_stride(accessor)
    if stride < accessor.element_size:
        msg = f"Accessor {accessor.index} has stride {stride} smaller than its element size {accessor.element_size}"
        logger.error(msg)
        raise StructuralInconsistencyError(msg)

    view = np.ndarray(
        shape=(accessor.count, components),
        dtype=dtype,
        buffer=blob,
        offset=accessor.byte_offset,
        strides=(stride, dtype.itemsize),
    )
    return np.array(view, copy=True)


def dequantize(values: npt.NDArray, component_type: int) -> npt.NDArray[np.float64]:
    """Map normalized integer data to floats in [0, 1] (or [-1, 1] for signed types)."""
    ct = ComponentType(component_type)
    if ct is ComponentType.FLOAT:
        return values.astype(np.float64)
    info = np.iinfo(ct.dtype)
    result = values.astype(np.float64) / float(info.max)
    if info.min < 0:
        result = np.maximum(result, -1.0)
    return result
