"""
Scaffold Scenes
===============
Builds Scenes from the scaffold data of `gltfinstancer.model.scaffolds`.

    >>> registry = ScaffoldRegistry.load()
    >>> scene = create_scene(registry, "triangle-row")
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from gltfinstancer.config import ASSETS_PATH
from gltfinstancer.controller.scene import Scene
from gltfinstancer.errors import MissingAssetError
from gltfinstancer.model.scaffolds import ScaffoldRegistry, SceneScaffold

logger = logging.getLogger(__name__)


def build_scene(scaffold: SceneScaffold, base_path: str = ASSETS_PATH) -> Scene:
    """
    Load, merge and configure the scene of one scaffold.

    Args:
        scaffold: Parsed scaffold entry.
        base_path: Directory the scaffold's asset directories are relative to.
    """
    if not scaffold.directories:
        msg = f"Scaffold '{scaffold.name}' lists no asset directories"
        logger.error(msg)
        raise MissingAssetError(msg)

    scene: Optional[Scene] = None
    for directory in scaffold.directories:
        loaded = Scene.from_directory(os.path.join(base_path, directory))
        scene = loaded if scene is None else scene.merge(loaded)
    scene.name = scaffold.name

    for override in scaffold.global_transforms:
        scene.update_global_transform(override.model_index, override.instance_index, override.transform)
    for extra in scaffold.instances:
        scene.add_model_instances(extra.model_index, extra.transforms)
    for animation in scaffold.autoplay:
        scene.play(
            animation.animation_index,
            model_index=animation.model_index,
            instance_index=animation.instance_index,
            start_time=animation.start_time,
        )

    logger.info(f"Created scaffold '{scaffold.name}': {scene}")
    return scene


def create_scene(registry: ScaffoldRegistry, name: str) -> Scene:
    """Build the scaffold registered under `name`; KeyError when there is none."""
    return build_scene(registry.get(name), registry.base_path)
