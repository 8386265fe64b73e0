"""
Scene
=====
Ties ingestion, instancing and animation together.

A Scene is built once from a scene description (ingestion is fatal on
error) and then driven by the host's tick loop:

    >>> scene = Scene.from_directory("assets/triangle-animated")
    >>> scene.play(animation_index=0)
    >>> snapshot = scene.tick(timestamp)
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence, Union

import numpy as np

from gltfinstancer.controller.animation import AnimationInstance, AnimationInstanceScheduler, AnimationTreeBuilder
from gltfinstancer.controller.instances import InstanceTransformStore, TransformSnapshot
from gltfinstancer.controller.loader import load_directory
from gltfinstancer.controller.packing import BufferPacker, PrimitiveDraw, vertex_bytes
from gltfinstancer.controller.scene_walker import ModelMeshData, SceneGraphWalker, root_nodes
from gltfinstancer.model.scene_description import SceneDescription

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrawCommand:
    """One indexed (or non-indexed) instanced draw."""
    model_index: int
    mesh_id: int
    first_index: int
    index_count: int
    base_vertex: int
    vertex_count: int
    first_instance: int
    instance_count: int
    material: int

    @property
    def indexed(self) -> bool:
        return self.index_count > 0


class Scene:
    """
    Packed geometry, instance transforms and animation playback of one or
    more loaded models.

    Attributes:
        vertices: Packed vertex records.
        indices: Packed 16-bit indices.
        model_primitives: Per model, per unique mesh, the primitive draws.
        store: Local and global instance transforms.
        scheduler: Running animations.
    """

    def __init__(
        self,
        vertices: npt.NDArray[np.void],
        indices: npt.NDArray[np.uint16],
        model_primitives: list[list[list[PrimitiveDraw]]],
        store: InstanceTransformStore,
        scheduler: AnimationInstanceScheduler,
        name: str = "",
    ) -> None:
        self.vertices = vertices
        self.indices = indices
        self.model_primitives = model_primitives
        self.store = store
        self.scheduler = scheduler
        self.name = name

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(name='{self.name}', models={self.model_count}, "
                f"vertices={len(self.vertices)}, indices={len(self.indices)}, "
                f"animations={self.scheduler.animation_indices})")

    @classmethod
    def ingest(cls, description: SceneDescription) -> Scene:
        """
        Build a scene from a parsed description. Every scene root with a mesh
        or children becomes one model.
        """
        walker = SceneGraphWalker(description)
        models: list[ModelMeshData] = [walker.walk(root) for root in root_nodes(description)]

        packer = BufferPacker(description)
        packed = packer.pack(mesh_id for model in models for mesh_id in model.mesh_ids)
        model_primitives = [[packed.primitives[mesh_id] for mesh_id in model.mesh_ids] for model in models]

        builder = AnimationTreeBuilder(description)
        definitions = []
        for model_index, model in enumerate(models):
            definition = builder.build(
                model.kind_tree, model_index, model.slot_map, model.slot_count, model.inverse_bind_matrices
            )
            if definition is not None:
                definitions.append(definition)

        scene = cls(
            vertices=packed.vertices,
            indices=packed.indices,
            model_primitives=model_primitives,
            store=InstanceTransformStore.from_models(models),
            scheduler=AnimationInstanceScheduler(definitions),
            name=description.name,
        )
        logger.info(f"Ingested {scene}")
        return scene

    @classmethod
    def from_directory(cls, path: Union[str, Path]) -> Scene:
        return cls.ingest(load_directory(path))

    @property
    def model_count(self) -> int:
        return len(self.model_primitives)

    def add_model_instances(self, model_index: int, transforms: Sequence[npt.NDArray[np.float64]]) -> list[int]:
        """Place new copies of a model; returns their instance indices."""
        return self.store.add_model_instance(model_index, transforms)

    def update_global_transform(self, model_index: int, instance_index: int, transform: npt.NDArray[np.float64]) -> None:
        self.store.update_global_transform(model_index, instance_index, transform)

    def play(
        self,
        animation_index: int,
        model_index: Optional[int] = None,
        instance_index: int = 0,
        start_time: Optional[float] = None,
    ) -> list[AnimationInstance]:
        """
        Start an animation on one instance of every model it drives (or of
        `model_index` only).
        """
        for definition in self.scheduler.definitions_for(animation_index, model_index):
            count = self.store.instance_count(definition.model_index)
            if not 0 <= instance_index < count:
                msg = f"Model {definition.model_index} has no instance {instance_index} ({count} instances)"
                logger.error(msg)
                raise IndexError(msg)
        return self.scheduler.initialize(animation_index, instance_index, start_time, model_index)

    def tick(self, timestamp: float) -> Optional[TransformSnapshot]:
        """
        Advance every running animation.

        Returns:
            A snapshot of the transform arrays, or None when nothing moved.
        """
        frame = self.scheduler.advance(timestamp)
        if frame is None:
            return None
        for model_index, instances in frame.items():
            for model_instance_offset, pose in instances.items():
                self.store.write_mesh_transforms(model_index, model_instance_offset, pose.slots)
                if len(pose.joints):
                    self.store.write_joint_transforms(model_index, model_instance_offset, pose.joints)
        return self.store.snapshot()

    def snapshot(self) -> TransformSnapshot:
        return self.store.snapshot()

    def vertex_bytes(self) -> bytes:
        return vertex_bytes(self.vertices)

    def index_bytes(self) -> bytes:
        return self.indices.tobytes()

    def draw_commands(self) -> list[DrawCommand]:
        commands = []
        for model_index, meshes in enumerate(self.model_primitives):
            ranges = self.store.instance_ranges(model_index)
            for primitives, (first_instance, instance_count) in zip(meshes, ranges):
                for draw in primitives:
                    commands.append(DrawCommand(
                        model_index=model_index,
                        mesh_id=draw.mesh_id,
                        first_index=draw.first_index,
                        index_count=draw.index_count,
                        base_vertex=draw.base_vertex,
                        vertex_count=draw.vertex_count,
                        first_instance=first_instance,
                        instance_count=instance_count,
                        material=draw.material,
                    ))
        return commands

    def merge(self, other: Scene) -> Scene:
        """
        New scene with this scene's models followed by `other`'s.

        Geometry is concatenated with `other`'s base vertices and first
        indices shifted, and its animations are renumbered to the new model
        indices. Running playbacks are not carried over.
        """
        vertex_shift = len(self.vertices)
        index_shift = len(self.indices)
        model_shift = self.model_count

        shifted_primitives = [
            [[draw.shifted(vertex_shift, index_shift) for draw in mesh] for mesh in model]
            for model in other.model_primitives
        ]
        definitions = list(self.scheduler.definitions) + [
            d.with_model_index(d.model_index + model_shift) for d in other.scheduler.definitions
        ]

        merged = Scene(
            vertices=np.concatenate([self.vertices, other.vertices]),
            indices=np.concatenate([self.indices, other.indices]),
            model_primitives=[list(m) for m in self.model_primitives] + shifted_primitives,
            store=self.store.merge(other.store),
            scheduler=AnimationInstanceScheduler(definitions),
            name="+".join(n for n in (self.name, other.name) if n),
        )
        logger.info(f"Merged into {merged}")
        return merged
