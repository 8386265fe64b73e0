"""
Animation Instance Scheduler
============================
Owns the mutable playback state of every running animation and advances it
once per tick.

A tick has two phases: instances marked finished during the previous tick
are reaped first, then every remaining instance is sampled. A finished
instance therefore still renders the frame in which it finished.

A model instance plays at most one animation at a time: starting a second
playback on a model instance that still has an active one is rejected.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import TYPE_CHECKING, Iterable, Optional

import numpy as np

from gltfinstancer.controller.animation.sampler import FINISHED, INITIAL_SAMPLE, SampleState
from gltfinstancer.controller.animation.tree import AnimationDefinition, AnimationNode
from gltfinstancer.controller.scene_walker import NodeKind
from gltfinstancer.errors import InvariantViolationError
from gltfinstancer.model.scene_description import AnimatedProperty
from gltfinstancer.model.transforms import IDENTITY, compose_trs

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class FramePose:
    """
    Sampled pose of one model instance.

    Attributes:
        slots: (slot_count, 4, 4) mesh transforms.
        joints: (joint_count, 4, 4) joint matrices, empty for unskinned models.
    """
    slots: npt.NDArray[np.float64]
    joints: npt.NDArray[np.float64]


# model index -> model instance offset -> pose
AnimationFrame = dict[int, dict[int, FramePose]]


class InstanceState(Enum):
    ACTIVE = "active"
    PENDING_REAP = "pending reap"


@dataclass(eq=False)
class AnimationInstance:
    """Playback state of one animation on one model instance."""
    definition: AnimationDefinition
    animation_index: int
    start_time: float
    model_instance_offset: int
    samples: dict[int, SampleState]
    slots: npt.NDArray[np.float64]
    joints: npt.NDArray[np.float64] = field(default_factory=lambda: np.zeros((0, 4, 4)))
    state: InstanceState = InstanceState.ACTIVE

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(model={self.model_index}, animation={self.animation_index}, "
                f"offset={self.model_instance_offset}, start={self.start_time:.3f}, state={self.state.name})")

    @property
    def model_index(self) -> int:
        return self.definition.model_index

    def pose(self) -> FramePose:
        return FramePose(slots=self.slots.copy(), joints=self.joints.copy())


@dataclass
class _ModelQueue:
    instances: deque[AnimationInstance] = field(default_factory=deque)
    pending_reap: int = 0


class AnimationInstanceScheduler:
    """
    Per-model FIFO queues of playback instances.

    Example:
        >>> scheduler = AnimationInstanceScheduler(definitions)
        >>> scheduler.initialize(animation_index=0, model_instance_offset=0, start_time=0.0)
        >>> frame = scheduler.advance(0.5)
    """

    def __init__(self, definitions: Iterable[AnimationDefinition] = ()) -> None:
        self._definitions: list[AnimationDefinition] = []
        self._queues: dict[int, _ModelQueue] = {}
        self._last_timestamp: float = 0.0
        for definition in definitions:
            self.add_definition(definition)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(definitions={len(self._definitions)}, active={self.active_count})"

    @property
    def definitions(self) -> tuple[AnimationDefinition, ...]:
        return tuple(self._definitions)

    @property
    def animation_indices(self) -> list[int]:
        return sorted({i for d in self._definitions for i in d.animation_indices})

    @property
    def active_count(self) -> int:
        return sum(len(q.instances) for q in self._queues.values())

    @property
    def is_idle(self) -> bool:
        return self.active_count == 0

    def add_definition(self, definition: AnimationDefinition) -> None:
        if any(d.model_index == definition.model_index for d in self._definitions):
            raise ValueError(f"Model {definition.model_index} already has an animation definition")
        self._definitions.append(definition)
        self._queues.setdefault(definition.model_index, _ModelQueue())

    def instances(self, model_index: int) -> list[AnimationInstance]:
        """Queued instances of one model, oldest first."""
        queue = self._queues.get(model_index)
        return list(queue.instances) if queue else []

    def definitions_for(self, animation_index: int, model_index: Optional[int] = None) -> list[AnimationDefinition]:
        return [
            d for d in self._definitions
            if animation_index in d.animation_indices and (model_index is None or d.model_index == model_index)
        ]

    def is_playing(self, model_index: int, model_instance_offset: int) -> bool:
        """True when an active playback writes into this model instance."""
        return any(
            instance.model_instance_offset == model_instance_offset and instance.state is InstanceState.ACTIVE
            for instance in self.instances(model_index)
        )

    def initialize(
        self,
        animation_index: int,
        model_instance_offset: int,
        start_time: Optional[float] = None,
        model_index: Optional[int] = None,
    ) -> list[AnimationInstance]:
        """
        Start an animation.

        Args:
            animation_index: Animation to play.
            model_instance_offset: Model instance the playback writes into.
            start_time: Timestamp the playback starts at; defaults to the
                timestamp of the most recent tick.
            model_index: Restrict the playback to one model.

        Returns:
            One new instance per model the animation drives.

        Raises:
            ValueError: The animation drives none of the requested models, or
                one of them is already playing on this model instance.
        """
        definitions = self.definitions_for(animation_index, model_index)
        if not definitions:
            scope = "any model" if model_index is None else f"model {model_index}"
            raise ValueError(f"Animation {animation_index} does not drive {scope}")

        busy = [d.model_index for d in definitions if self.is_playing(d.model_index, model_instance_offset)]
        if busy:
            raise ValueError(f"Model instance {model_instance_offset} of model(s) {busy} is already playing")

        start = self._last_timestamp if start_time is None else float(start_time)
        created = []
        for definition in definitions:
            instance = AnimationInstance(
                definition=definition,
                animation_index=animation_index,
                start_time=start,
                model_instance_offset=model_instance_offset,
                samples={s.sampler_id: INITIAL_SAMPLE for s in definition.samplers(animation_index)},
                slots=definition.rest_mesh_transforms(),
                joints=definition.rest_joint_transforms(),
            )
            self._queues[definition.model_index].instances.append(instance)
            created.append(instance)
            logger.info(f"Started {instance}")
        return created

    def advance(self, timestamp: float) -> Optional[AnimationFrame]:
        """
        Run one tick.

        Args:
            timestamp: Current time in seconds, on the same clock as the start times.

        Returns:
            Pose of every instance that was sampled, or None when nothing is
            playing.
        """
        self._last_timestamp = timestamp
        self._reap()
        if self.is_idle:
            return None

        frame: AnimationFrame = {}
        for model_index, queue in self._queues.items():
            for instance in queue.instances:
                if self._advance_instance(instance, timestamp):
                    continue
                instance.state = InstanceState.PENDING_REAP
                queue.pending_reap += 1
                logger.debug(f"Finished {instance}")
            if queue.instances:
                frame[model_index] = {
                    instance.model_instance_offset: instance.pose()
                    for instance in queue.instances
                }
        return frame

    def _reap(self) -> None:
        for model_index, queue in self._queues.items():
            if not queue.pending_reap:
                continue
            kept = deque(i for i in queue.instances if i.state is InstanceState.ACTIVE)
            removed = len(queue.instances) - len(kept)
            if removed != queue.pending_reap:
                msg = f"Model {model_index}: expected to reap {queue.pending_reap} instances, found {removed}"
                logger.error(msg)
                raise InvariantViolationError(msg)
            queue.instances = kept
            queue.pending_reap = 0
            logger.debug(f"Reaped {removed} instance(s) of model {model_index}")

    def _advance_instance(self, instance: AnimationInstance, timestamp: float) -> bool:
        """Sample one instance; True while at least one of its samplers is still running."""
        elapsed = max(0.0, timestamp - instance.start_time)
        running = False
        stack: list[tuple[AnimationNode, npt.NDArray[np.float64]]] = [(instance.definition.root, IDENTITY)]
        while stack:
            node, parent = stack.pop()
            local, node_running = self._local_transform(node, instance, elapsed)
            running = running or node_running
            composed = parent @ local
            if node.kind is NodeKind.MESH:
                self._write_slot(node, instance, composed)
            elif node.kind is NodeKind.JOINT:
                self._write_joint(node, instance, composed)
            stack.extend((child, composed) for child in reversed(node.children))
        return running

    @staticmethod
    def _local_transform(
        node: AnimationNode,
        instance: AnimationInstance,
        elapsed: float,
    ) -> tuple[npt.NDArray[np.float64], bool]:
        samplers = node.samplers_for(instance.animation_index)
        if not samplers:
            return node.rest_matrix, False

        running = False
        translation, rotation = node.translation, node.rotation
        for sampler in samplers:
            try:
                state = instance.samples[sampler.sampler_id]
            except KeyError:
                msg = f"{instance} has no state for sampler {sampler.sampler_id}"
                logger.error(msg)
                raise InvariantViolationError(msg) from None

            state = sampler.sample(state, elapsed)
            instance.samples[sampler.sampler_id] = state
            if state is not FINISHED:
                running = True

            value = sampler.value_at(state, elapsed)
            if sampler.target_path == AnimatedProperty.ROTATION:
                rotation = value
            else:
                translation = value
        return compose_trs(translation, rotation, node.scale), running

    @staticmethod
    def _write_slot(node: AnimationNode, instance: AnimationInstance, composed: npt.NDArray[np.float64]) -> None:
        slot = instance.definition.slot_map.get(node.node_id)
        if slot is None or slot >= len(instance.slots):
            msg = f"{instance} has no mesh slot for node {node.node_id}"
            logger.error(msg)
            raise InvariantViolationError(msg)
        # skinned meshes are placed by their joint matrices
        instance.slots[slot] = IDENTITY if node.skinned else composed

    @staticmethod
    def _write_joint(node: AnimationNode, instance: AnimationInstance, composed: npt.NDArray[np.float64]) -> None:
        joint = node.joint_index
        if joint is None or not 0 <= joint < len(instance.joints):
            msg = f"{instance} has no joint matrix for node {node.node_id}"
            logger.error(msg)
            raise InvariantViolationError(msg)
        instance.joints[joint] = composed @ instance.definition.inverse_bind_matrices[joint]
