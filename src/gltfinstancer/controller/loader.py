"""
Asset Directory Loader
======================
Locates the scene description inside an asset directory, parses it with
pygltflib and assembles the binary blob every accessor reads from.

Rules:
    * exactly one `.gltf` or `.glb` file,
    * at most one `.bin` companion,
    * without a companion, buffers must be inline base64 data URIs
      (or the BIN chunk of a `.glb`).
"""
from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Optional, Union

from pygltflib import GLTF2

from gltfinstancer.errors import AssetIOError, MissingAssetError, StructuralInconsistencyError
from gltfinstancer.model.scene_description import SceneDescription

logger = logging.getLogger(__name__)

DESCRIPTION_SUFFIXES: tuple[str, ...] = (".gltf", ".glb")
BLOB_SUFFIX: str = ".bin"
DATA_URI_PREFIXES: tuple[str, ...] = (
    "data:application/octet-stream;base64,",
    "data:application/gltf-buffer;base64,",
)


def find_assets(directory: Path) -> tuple[Path, Optional[Path]]:
    """
    Pick the description file and the optional binary companion.

    Raises:
        MissingAssetError: No description, several descriptions, or several blobs.
        AssetIOError: The directory cannot be listed.
    """
    if not directory.is_dir():
        msg = f"Asset directory '{directory}' does not exist"
        logger.error(msg)
        raise MissingAssetError(msg)

    try:
        files = sorted(p for p in directory.iterdir() if p.is_file())
    except OSError as e:
        msg = f"Could not list asset directory '{directory}': {e}"
        logger.error(msg)
        raise AssetIOError(msg) from e

    descriptions = [p for p in files if p.suffix.lower() in DESCRIPTION_SUFFIXES]
    blobs = [p for p in files if p.suffix.lower() == BLOB_SUFFIX]

    if not descriptions:
        msg = f"No .gltf or .glb file in '{directory}'"
        logger.error(msg)
        raise MissingAssetError(msg)
    if len(descriptions) > 1:
        names = ", ".join(p.name for p in descriptions)
        msg = f"Ambiguous scene description in '{directory}': {names}"
        logger.error(msg)
        raise MissingAssetError(msg)
    if len(blobs) > 1:
        names = ", ".join(p.name for p in blobs)
        msg = f"More than one binary companion in '{directory}': {names}"
        logger.error(msg)
        raise MissingAssetError(msg)

    return descriptions[0], (blobs[0] if blobs else None)


def decode_data_uri(uri: str) -> Optional[bytes]:
    """Decode a base64 buffer data URI; None when `uri` is not one."""
    for prefix in DATA_URI_PREFIXES:
        if uri.startswith(prefix):
            try:
                return base64.b64decode(uri[len(prefix):], validate=True)
            except binascii.Error as e:
                msg = f"Malformed base64 data URI: {e}"
                logger.error(msg)
                raise StructuralInconsistencyError(msg) from e
    return None


def assemble_blob(gltf: GLTF2, companion: Optional[bytes], source: str) -> bytes:
    """
    Concatenate every buffer of the document in buffer order.

    Each piece is cut to the buffer's declared byteLength so the prefix sums
    of byteLength line up with the blob.
    """
    pieces: list[bytes] = []
    for index, buffer in enumerate(gltf.buffers):
        data: Optional[bytes]
        if buffer.uri is None:
            data = gltf.binary_blob()
            if data is None:
                msg = f"Buffer {index} of '{source}' has no uri and there is no BIN chunk"
                logger.error(msg)
                raise MissingAssetError(msg)
        else:
            data = decode_data_uri(buffer.uri)
            if data is None:
                if companion is None:
                    msg = f"Buffer {index} of '{source}' references '{buffer.uri}' but no .bin file was found"
                    logger.error(msg)
                    raise MissingAssetError(msg)
                data = companion

        if len(data) < buffer.byteLength:
            msg = f"Buffer {index} of '{source}' declares {buffer.byteLength} bytes but only {len(data)} are available"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        pieces.append(data[:buffer.byteLength])

    return b"".join(pieces)


def load_directory(path: Union[str, Path]) -> SceneDescription:
    """
    Load the scene stored in an asset directory.

    Args:
        path: Directory holding one description file and at most one `.bin`.

    Returns:
        The parsed scene description with its assembled blob.
    """
    directory = Path(path)
    description_path, blob_path = find_assets(directory)
    logger.info(f"Loading scene description '{description_path.name}' from {directory}")

    try:
        gltf = GLTF2().load(str(description_path))
        companion = blob_path.read_bytes() if blob_path is not None else None
    except OSError as e:
        msg = f"Could not read assets in '{directory}': {e}"
        logger.error(msg)
        raise AssetIOError(msg) from e
    except ValueError as e:
        msg = f"Malformed scene description '{description_path}': {e}"
        logger.error(msg)
        raise StructuralInconsistencyError(msg) from e

    if gltf is None:
        msg = f"pygltflib could not parse '{description_path}'"
        logger.error(msg)
        raise StructuralInconsistencyError(msg)

    blob = assemble_blob(gltf, companion, description_path.name)
    description = SceneDescription.from_gltf(gltf, blob, name=directory.name)
    logger.info(f"Loaded {description}")
    return description
