"""
Error Taxonomy
==============
Typed exceptions raised by the ingestion pipeline and the animation tick.

Ingestion errors are fatal: the tick loop never starts when one is raised.
An InvariantViolationError during ticking means the animation tree and a
playback instance were built inconsistently; it is not recoverable.
"""


class SceneError(Exception):
    """Base class for every error raised by gltfinstancer."""


class IngestionError(SceneError):
    """Base class for failures while turning a scene description into buffers."""


class MissingAssetError(IngestionError):
    """No description file, or a missing/ambiguous binary companion."""


class UnsupportedDataError(IngestionError):
    """
    Data the engine does not implement: non-float accessors where float is
    required, interpolation modes other than LINEAR, animated properties
    other than translation and rotation.
    """


class StructuralInconsistencyError(IngestionError):
    """Self-contradicting input, e.g. sampler times/values length mismatch."""


class AssetIOError(IngestionError):
    """Filesystem read failure."""


class InvariantViolationError(SceneError):
    """Internal state lookup miss during a tick."""
