from gltfinstancer.controller.animation.sampler import (
    FINISHED,
    INITIAL_SAMPLE,
    AnimationSample,
    AnimationSampler,
    Finished,
    SampleState,
)
from gltfinstancer.controller.animation.tree import AnimationDefinition, AnimationNode, AnimationTreeBuilder
from gltfinstancer.controller.animation.scheduler import (
    AnimationFrame,
    AnimationInstance,
    AnimationInstanceScheduler,
    FramePose,
    InstanceState,
)

__all__ = [
    "FINISHED",
    "INITIAL_SAMPLE",
    "AnimationSample",
    "AnimationSampler",
    "Finished",
    "SampleState",
    "AnimationDefinition",
    "AnimationNode",
    "AnimationTreeBuilder",
    "AnimationFrame",
    "AnimationInstance",
    "AnimationInstanceScheduler",
    "FramePose",
    "InstanceState",
]
