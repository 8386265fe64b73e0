"""
Configuration & Path Management
===============================
This module serves as the central registry for file paths and global constants.

Why is this file needed?
------------------------
1. Abstraction: It prevents hardcoded asset paths scattered throughout the
   loaders and the scaffold registry.
2. Deployment: It handles the logic required by PyInstaller (sys._MEIPASS) to
   find assets (glTF directories, the scaffold JSON) when the app is frozen.

Exports:
    ASSETS_PATH (str): Absolute path to the assets directory.
    SCAFFOLDS_PATH (str): Absolute path to the named scene scaffold registry.
    DEFAULT_FRAME_RATE (float): Tick rate used by the headless runner.
"""
import logging
import sys
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def get_resource_path(relative_path: str) -> str:
    """
    Get absolute path to resource, works for dev and for PyInstaller.
    """
    if hasattr(sys, '_MEIPASS'):
        # PyInstaller temp folder
        base_path: str = getattr(sys, '_MEIPASS')
        return os.path.join(base_path, relative_path)

    # Development mode: resolve relative to this file
    # config.py is in src/gltfinstancer/
    current_file_path: Path = Path(__file__)
    project_root: Path = current_file_path.parent.parent.parent
    return os.path.join(str(project_root), relative_path)


# Global Constants
ASSETS_PATH: str = get_resource_path("assets")
SCAFFOLDS_PATH: str = os.path.join(ASSETS_PATH, "scaffolds.json")

DEFAULT_FRAME_RATE: float = 60.0

if not os.path.exists(ASSETS_PATH):
    logger.warning(f"Assets path not found at {ASSETS_PATH}")
