"""
Instance Transform Store
========================
Packed per-instance transform arrays consumed by the render pipeline.

Layout
------
Local transforms are stored model by model. Inside the block of a model with
`S` mesh slots and `k` instances, slot `s` of instance `i` lives at

    model_offsets[model] + s * k + i

so every slot keeps its instances contiguous, and because the walker packs
the slots of one mesh next to each other, every mesh of every model is one
contiguous instanced draw.

Every local entry carries the ordinal of the global transform (model
instance placement) it belongs to.

Joint matrices
--------------
Skinned models additionally keep `J` joint matrices per instance. In the
snapshot they are laid out model by model, instance by instance, and
`joint_bases[ordinal]` gives the first joint record of the model instance
with that global ordinal (NO_JOINTS for unskinned models).
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from gltfinstancer.controller.scene_walker import ModelMeshData
from gltfinstancer.model.transforms import GLOBAL_TRANSFORM_DTYPE, LOCAL_TRANSFORM_DTYPE, to_column_major

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

NO_JOINTS = 0xFFFFFFFF
JOINT_BASE_DTYPE = np.dtype("<u4")


@dataclass(frozen=True, eq=False)
class TransformSnapshot:
    """Full copies of the transform arrays in GPU record layout."""
    local_records: npt.NDArray[np.void]
    global_records: npt.NDArray[np.void]
    joint_records: npt.NDArray[np.void] = field(default_factory=lambda: np.zeros(0, dtype=GLOBAL_TRANSFORM_DTYPE))
    joint_bases: npt.NDArray[np.uint32] = field(default_factory=lambda: np.zeros(0, dtype=JOINT_BASE_DTYPE))

    def local_bytes(self) -> bytes:
        return self.local_records.tobytes()

    def global_bytes(self) -> bytes:
        return self.global_records.tobytes()

    def joint_bytes(self) -> bytes:
        return self.joint_records.tobytes()

    def joint_base_bytes(self) -> bytes:
        return self.joint_bases.tobytes()


class InstanceTransformStore:
    """
    Local, global and joint transform arrays of every model instance in a scene.
    """

    def __init__(
        self,
        local_transforms: npt.NDArray[np.float64],
        model_indices: npt.NDArray[np.uint32],
        global_transforms: npt.NDArray[np.float64],
        rest_transforms: list[npt.NDArray[np.float64]],
        mesh_instance_counts: list[list[int]],
        instance_ordinals: list[list[int]],
        joint_transforms: Optional[list[npt.NDArray[np.float64]]] = None,
        rest_joint_transforms: Optional[list[npt.NDArray[np.float64]]] = None,
    ) -> None:
        self.local_transforms = local_transforms
        self.model_indices = model_indices
        self.global_transforms = global_transforms
        self._rest = rest_transforms
        self._mesh_instance_counts = mesh_instance_counts
        self._ordinals = instance_ordinals
        if rest_joint_transforms is None:
            rest_joint_transforms = [np.zeros((0, 4, 4)) for _ in rest_transforms]
        if joint_transforms is None:
            joint_transforms = [
                np.repeat(joints[np.newaxis], len(ordinals), axis=0)
                for joints, ordinals in zip(rest_joint_transforms, instance_ordinals)
            ]
        # per model: (instances, joints, 4, 4)
        self.joint_transforms = joint_transforms
        self._rest_joints = rest_joint_transforms
        self.model_offsets = self._offsets()

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(models={self.model_count}, "
                f"locals={len(self.local_transforms)}, globals={len(self.global_transforms)}, "
                f"joints={sum(j.shape[0] * j.shape[1] for j in self.joint_transforms)})")

    @classmethod
    def from_models(cls, models: Sequence[ModelMeshData]) -> InstanceTransformStore:
        """One instance per model, placed at the origin."""
        rest = [np.array(m.packed_transforms, dtype=np.float64).reshape(-1, 4, 4) for m in models]
        local = np.concatenate(rest) if rest else np.zeros((0, 4, 4))
        model_indices = np.concatenate([
            np.full(len(r), ordinal, dtype=np.uint32) for ordinal, r in enumerate(rest)
        ]) if rest else np.zeros(0, dtype=np.uint32)

        store = cls(
            local_transforms=local,
            model_indices=model_indices,
            global_transforms=np.tile(np.eye(4), (len(models), 1, 1)),
            rest_transforms=rest,
            mesh_instance_counts=[m.instance_counts for m in models],
            instance_ordinals=[[ordinal] for ordinal in range(len(models))],
            rest_joint_transforms=[
                np.array(m.rest_joint_transforms, dtype=np.float64).reshape(-1, 4, 4) for m in models
            ],
        )
        logger.debug(f"Created {store}")
        return store

    @property
    def model_count(self) -> int:
        return len(self._rest)

    def slot_count(self, model_index: int) -> int:
        return len(self._rest[model_index])

    def joint_count(self, model_index: int) -> int:
        return len(self._rest_joints[model_index])

    def instance_count(self, model_index: int) -> int:
        return len(self._ordinals[model_index])

    def global_ordinal(self, model_index: int, instance_index: int) -> int:
        """Index into the global array of one model instance."""
        self._check_instance(model_index, instance_index)
        return self._ordinals[model_index][instance_index]

    def _offsets(self) -> list[int]:
        offsets = []
        running = 0
        for model_index in range(self.model_count):
            offsets.append(running)
            running += self.slot_count(model_index) * self.instance_count(model_index)
        return offsets

    def _check_model(self, model_index: int) -> None:
        if not 0 <= model_index < self.model_count:
            msg = f"Model {model_index} does not exist ({self.model_count} models)"
            logger.error(msg)
            raise IndexError(msg)

    def _check_instance(self, model_index: int, instance_index: int) -> None:
        self._check_model(model_index)
        if not 0 <= instance_index < self.instance_count(model_index):
            msg = f"Model {model_index} has no instance {instance_index} ({self.instance_count(model_index)} instances)"
            logger.error(msg)
            raise IndexError(msg)

    def slot_positions(self, model_index: int, instance_index: int) -> npt.NDArray[np.intp]:
        """Indices into the local array of every slot of one model instance."""
        self._check_instance(model_index, instance_index)
        k = self.instance_count(model_index)
        return self.model_offsets[model_index] + np.arange(self.slot_count(model_index)) * k + instance_index

    def add_model_instance(
        self,
        model_index: int,
        new_global_transforms: Sequence[npt.NDArray[np.float64]],
    ) -> list[int]:
        """
        Add instances of a model.

        Every slot of the model gets one new entry per new instance, right
        after the slot's existing entries, initialised with the slot's rest
        transform. Offsets of later models shift by the number of inserted
        entries. Skinned models also get rest joint matrices for each new
        instance.

        Args:
            model_index: Model to instance.
            new_global_transforms: One 4x4 placement per new instance.

        Returns:
            Instance indices (within the model) of the new instances.
        """
        self._check_model(model_index)
        new_globals = np.asarray(new_global_transforms, dtype=np.float64).reshape(-1, 4, 4)
        n = len(new_globals)
        k = self.instance_count(model_index)
        if n == 0:
            return []

        slots = self.slot_count(model_index)
        base = self.model_offsets[model_index]
        end = base + slots * k
        first_ordinal = len(self.global_transforms)
        new_ordinals = np.arange(first_ordinal, first_ordinal + n, dtype=np.uint32)

        block = self.local_transforms[base:end].reshape(slots, k, 4, 4)
        added = np.repeat(self._rest[model_index][:, np.newaxis], n, axis=1)
        grown = np.concatenate([block, added], axis=1).reshape(-1, 4, 4)

        index_block = self.model_indices[base:end].reshape(slots, k)
        added_indices = np.tile(new_ordinals, (slots, 1))
        grown_indices = np.concatenate([index_block, added_indices], axis=1).reshape(-1)

        self.local_transforms = np.concatenate([self.local_transforms[:base], grown, self.local_transforms[end:]])
        self.model_indices = np.concatenate([self.model_indices[:base], grown_indices, self.model_indices[end:]])

        inserted = slots * n
        for later in range(model_index + 1, self.model_count):
            self.model_offsets[later] += inserted

        rest_joints = np.repeat(self._rest_joints[model_index][np.newaxis], n, axis=0)
        self.joint_transforms[model_index] = np.concatenate([self.joint_transforms[model_index], rest_joints])

        self.global_transforms = np.concatenate([self.global_transforms, new_globals])
        self._ordinals[model_index].extend(int(o) for o in new_ordinals)

        logger.info(f"Added {n} instance(s) of model {model_index} ({inserted} local entries)")
        return list(range(k, k + n))

    def update_global_transform(
        self,
        model_index: int,
        instance_index: int,
        transform: npt.NDArray[np.float64],
    ) -> None:
        """Concatenate `transform` onto an instance placement (new @ old)."""
        ordinal = self.global_ordinal(model_index, instance_index)
        transform = np.asarray(transform, dtype=np.float64).reshape(4, 4)
        self.global_transforms[ordinal] = transform @ self.global_transforms[ordinal]

    def write_mesh_transforms(
        self,
        model_index: int,
        model_instance_offset: int,
        slots: npt.NDArray[np.float64],
    ) -> None:
        """Overwrite every slot transform of one model instance."""
        positions = self.slot_positions(model_index, model_instance_offset)
        slots = np.asarray(slots, dtype=np.float64)
        if slots.shape != (len(positions), 4, 4):
            msg = f"Model {model_index} has {len(positions)} slots, got transforms of shape {slots.shape}"
            logger.error(msg)
            raise ValueError(msg)
        self.local_transforms[positions] = slots

    def write_joint_transforms(
        self,
        model_index: int,
        model_instance_offset: int,
        joints: npt.NDArray[np.float64],
    ) -> None:
        """Overwrite every joint matrix of one model instance."""
        self._check_instance(model_index, model_instance_offset)
        joints = np.asarray(joints, dtype=np.float64)
        expected = (self.joint_count(model_index), 4, 4)
        if joints.shape != expected:
            msg = f"Model {model_index} has {expected[0]} joints, got matrices of shape {joints.shape}"
            logger.error(msg)
            raise ValueError(msg)
        self.joint_transforms[model_index][model_instance_offset] = joints

    def instance_ranges(self, model_index: int) -> list[tuple[int, int]]:
        """(first_instance, instance_count) of every unique mesh of a model."""
        self._check_model(model_index)
        k = self.instance_count(model_index)
        base = self.model_offsets[model_index]
        ranges = []
        first_slot = 0
        for count in self._mesh_instance_counts[model_index]:
            ranges.append((base + first_slot * k, count * k))
            first_slot += count
        return ranges

    def merge(self, other: InstanceTransformStore) -> InstanceTransformStore:
        """
        New store holding this store's models followed by `other`'s.

        Neither input is modified.
        """
        shift = len(self.global_transforms)
        merged = InstanceTransformStore(
            local_transforms=np.concatenate([self.local_transforms, other.local_transforms]),
            model_indices=np.concatenate([self.model_indices, other.model_indices + np.uint32(shift)]),
            global_transforms=np.concatenate([self.global_transforms, other.global_transforms]),
            rest_transforms=[r.copy() for r in self._rest] + [r.copy() for r in other._rest],
            mesh_instance_counts=[list(c) for c in self._mesh_instance_counts + other._mesh_instance_counts],
            instance_ordinals=[list(o) for o in self._ordinals] + [[o + shift for o in ords] for ords in other._ordinals],
            joint_transforms=[j.copy() for j in self.joint_transforms + other.joint_transforms],
            rest_joint_transforms=[j.copy() for j in self._rest_joints + other._rest_joints],
        )
        logger.debug(f"Merged into {merged}")
        return merged

    def snapshot(self) -> TransformSnapshot:
        local = np.zeros(len(self.local_transforms), dtype=LOCAL_TRANSFORM_DTYPE)
        local["matrix"] = to_column_major(self.local_transforms)
        local["model_index"] = self.model_indices
        global_ = np.zeros(len(self.global_transforms), dtype=GLOBAL_TRANSFORM_DTYPE)
        global_["matrix"] = to_column_major(self.global_transforms)

        bases = np.full(len(self.global_transforms), NO_JOINTS, dtype=JOINT_BASE_DTYPE)
        stacks = []
        running = 0
        for model_index, joints in enumerate(self.joint_transforms):
            count = self.joint_count(model_index)
            if not count:
                continue
            for instance_index, ordinal in enumerate(self._ordinals[model_index]):
                bases[ordinal] = running + instance_index * count
            stacks.append(joints.reshape(-1, 4, 4))
            running += joints.shape[0] * count
        joint_matrices = np.concatenate(stacks) if stacks else np.zeros((0, 4, 4))
        joint_records = np.zeros(len(joint_matrices), dtype=GLOBAL_TRANSFORM_DTYPE)
        joint_records["matrix"] = to_column_major(joint_matrices)

        return TransformSnapshot(
            local_records=local,
            global_records=global_,
            joint_records=joint_records,
            joint_bases=bases,
        )
