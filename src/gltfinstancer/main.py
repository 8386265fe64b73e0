"""
Headless Runner
===============
Loads a scene (a named scaffold or an asset directory), runs the animation
tick loop at a fixed rate and logs what the render collaborator would
receive each frame.

Why is this file needed?
------------------------
It acts as the composition root outside of a windowing host:
1. Sets up logging.
2. Builds the Scene through the scaffold registry or the directory loader.
3. Drives `Scene.tick` with synthetic timestamps.
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from gltfinstancer.config import DEFAULT_FRAME_RATE, SCAFFOLDS_PATH
from gltfinstancer.controller.scaffolds import create_scene
from gltfinstancer.controller.scene import Scene
from gltfinstancer.errors import SceneError
from gltfinstancer.logging_config import setup_logging
from gltfinstancer.model.scaffolds import ScaffoldRegistry

logger = logging.getLogger(__name__)

LOG_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gltfinstancer",
        description="Ingest a glTF scene and run its animations headlessly.",
    )
    parser.add_argument("scaffold", nargs="?", default="triangle",
                        help="Name of a scene scaffold (default: %(default)s)")
    parser.add_argument("--directory", "-d", default=None,
                        help="Load this asset directory instead of a scaffold")
    parser.add_argument("--scaffolds", default=SCAFFOLDS_PATH,
                        help="Scaffold registry file (default: bundled assets/scaffolds.json)")
    parser.add_argument("--animation", "-a", type=int, action="append", default=None,
                        help="Animation index to start (repeatable); defaults to the scaffold's autoplay list")
    parser.add_argument("--ticks", "-n", type=int, default=180,
                        help="Number of frames to simulate (default: %(default)s)")
    parser.add_argument("--fps", type=float, default=DEFAULT_FRAME_RATE,
                        help="Simulated frame rate (default: %(default)s)")
    parser.add_argument("--log-level", choices=list(LOG_LEVELS), default="INFO")
    parser.add_argument("--log-file", default=None, help="Also write the log to this file")
    parser.add_argument("--list", action="store_true", help="List the available scaffolds and exit")
    return parser


def load_scene(args: argparse.Namespace) -> Scene:
    if args.directory:
        return Scene.from_directory(args.directory)
    registry = ScaffoldRegistry.load(args.scaffolds)
    return create_scene(registry, args.scaffold)


def run(scene: Scene, ticks: int, fps: float) -> int:
    """
    Tick the scene `ticks` times; returns the number of frames that produced
    a transform snapshot.
    """
    if fps <= 0.0:
        raise ValueError(f"Frame rate must be positive, got {fps}")

    updated = 0
    for frame in range(ticks):
        timestamp = frame / fps
        snapshot = scene.tick(timestamp)
        if snapshot is None:
            logger.debug(f"t={timestamp:.3f}s: no animation running")
            continue
        updated += 1
        logger.debug(
            f"t={timestamp:.3f}s: {len(snapshot.local_bytes())} local bytes, "
            f"{len(snapshot.global_bytes())} global bytes, {len(snapshot.joint_bytes())} joint bytes"
        )
    return updated


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=LOG_LEVELS[args.log_level], log_file=args.log_file)

    if args.list:
        try:
            registry = ScaffoldRegistry.load(args.scaffolds)
        except SceneError as e:
            logger.error(f"Could not load scaffolds: {e}")
            return 1
        for name in registry.names():
            print(f"{name}: {registry.get(name).description}")
        return 0

    try:
        scene = load_scene(args)
        for animation_index in args.animation or []:
            scene.play(animation_index, start_time=0.0)
    except KeyError as e:
        logger.error(f"Unknown scaffold: {e}")
        return 2
    except (SceneError, ValueError, IndexError) as e:
        logger.error(f"Ingestion failed: {e}")
        return 1

    logger.info(
        f"{scene}: {len(scene.vertex_bytes())} vertex bytes, {len(scene.index_bytes())} index bytes, "
        f"{len(scene.draw_commands())} draw command(s)"
    )
    for command in scene.draw_commands():
        logger.debug(f"{command}")

    try:
        updated = run(scene, args.ticks, args.fps)
    except SceneError as e:
        logger.error(f"Animation tick failed: {e}")
        return 1

    logger.info(f"Simulated {args.ticks} frame(s) at {args.fps:g} fps, {updated} with animation updates")
    return 0


if __name__ == "__main__":
    sys.exit(main())
