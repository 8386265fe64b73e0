"""
Scene Scaffolds
===============
Named example scenes loaded from `assets/scaffolds.json`.

A scaffold lists asset directories (each ingested and merged in order),
global transform overrides for existing model instances, extra model
instances, and animations started as soon as the scene is created. The
scene itself is built by `gltfinstancer.controller.scaffolds`; this module
only holds the parsed data.

Transforms are written either as {"matrix": [16 floats, column-major]} or
as {"translation": [...], "rotation": [x, y, z, w], "scale": [...]}.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np

from gltfinstancer.config import ASSETS_PATH, SCAFFOLDS_PATH
from gltfinstancer.errors import AssetIOError
from gltfinstancer.model.transforms import compose_trs, matrix_from_gltf

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def transform_from_dict(data: Dict[str, Any]) -> npt.NDArray[np.float64]:
    if "matrix" in data:
        return matrix_from_gltf(data["matrix"])
    return compose_trs(data.get("translation"), data.get("rotation"), data.get("scale"))


@dataclass
class ScaffoldGlobalTransform:
    model_index: int
    instance_index: int
    transform: npt.NDArray[np.float64]

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ScaffoldGlobalTransform:
        return ScaffoldGlobalTransform(
            model_index=int(data["model_index"]),
            instance_index=int(data.get("instance_index", 0)),
            transform=transform_from_dict(data),
        )


@dataclass
class ScaffoldModelInstances:
    model_index: int
    transforms: List[npt.NDArray[np.float64]] = field(default_factory=list)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ScaffoldModelInstances:
        return ScaffoldModelInstances(
            model_index=int(data["model_index"]),
            transforms=[transform_from_dict(t) for t in data.get("transforms", [])],
        )


@dataclass
class ScaffoldAnimation:
    animation_index: int
    model_index: Optional[int] = None
    instance_index: int = 0
    start_time: float = 0.0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ScaffoldAnimation:
        model_index = data.get("model_index")
        return ScaffoldAnimation(
            animation_index=int(data["animation_index"]),
            model_index=None if model_index is None else int(model_index),
            instance_index=int(data.get("instance_index", 0)),
            start_time=float(data.get("start_time", 0.0)),
        )


@dataclass
class SceneScaffold:
    name: str
    directories: List[str]
    description: str = ""
    global_transforms: List[ScaffoldGlobalTransform] = field(default_factory=list)
    instances: List[ScaffoldModelInstances] = field(default_factory=list)
    autoplay: List[ScaffoldAnimation] = field(default_factory=list)

    @staticmethod
    def from_dict(name: str, data: Dict[str, Any]) -> SceneScaffold:
        return SceneScaffold(
            name=name,
            directories=list(data["directories"]),
            description=data.get("description", ""),
            global_transforms=[ScaffoldGlobalTransform.from_dict(d) for d in data.get("global_transforms", [])],
            instances=[ScaffoldModelInstances.from_dict(d) for d in data.get("instances", [])],
            autoplay=[ScaffoldAnimation.from_dict(d) for d in data.get("autoplay", [])],
        )


class ScaffoldRegistry:
    """
    Name -> SceneScaffold lookup backed by a JSON file.
    """

    def __init__(self, scaffolds: Dict[str, SceneScaffold], base_path: str = ASSETS_PATH) -> None:
        self._scaffolds = scaffolds
        self.base_path = base_path

    @classmethod
    def load(cls, path: str = SCAFFOLDS_PATH) -> ScaffoldRegistry:
        """
        Read a scaffold file. Asset directories are resolved relative to the
        file's own directory.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            msg = f"Could not read scaffold file '{path}': {e}"
            logger.error(msg)
            raise AssetIOError(msg) from e

        scaffolds = {
            name: SceneScaffold.from_dict(name, entry)
            for name, entry in data.get("scaffolds", {}).items()
        }
        logger.info(f"Loaded {len(scaffolds)} scaffold(s) from {path}")
        return cls(scaffolds, base_path=os.path.dirname(os.path.abspath(path)))

    def names(self) -> list[str]:
        return list(self._scaffolds.keys())

    def get(self, name: str) -> SceneScaffold:
        scaffold = self._scaffolds.get(name)
        if scaffold is None:
            raise KeyError(f"No scaffold registered under '{name}'")
        return scaffold
