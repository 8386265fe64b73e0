import json
import shutil

import numpy as np
import pytest

from gltfinstancer.controller.scaffolds import build_scene, create_scene
from gltfinstancer.errors import AssetIOError, MissingAssetError
from gltfinstancer.model.scaffolds import ScaffoldRegistry, SceneScaffold, transform_from_dict


@pytest.fixture
def registry(scaffolds_path):
    return ScaffoldRegistry.load(scaffolds_path)


def test_bundled_names(registry):
    assert registry.names() == ["triangle", "triangle-row", "triangle-pair"]


def test_unknown_name(registry):
    with pytest.raises(KeyError):
        registry.get("cathedral")
    with pytest.raises(KeyError):
        create_scene(registry, "cathedral")


def test_triangle_autoplays(registry):
    scene = create_scene(registry, "triangle")
    assert scene.name == "triangle"
    assert scene.scheduler.active_count == 1
    assert scene.tick(0.5) is not None


def test_triangle_row(registry):
    scene = create_scene(registry, "triangle-row")
    store = scene.store
    assert store.instance_count(0) == 3
    np.testing.assert_allclose(store.global_transforms[0][:3, 3], [-3.0, 0.0, 0.0])
    np.testing.assert_allclose(store.global_transforms[2][:3, 3], [3.0, 0.0, 0.0])

    (instance,) = scene.scheduler.instances(0)
    assert instance.model_instance_offset == 1


def test_triangle_pair(registry):
    scene = create_scene(registry, "triangle-pair")
    assert scene.model_count == 2
    placement = scene.store.global_transforms[scene.store.global_ordinal(1, 0)]
    np.testing.assert_allclose(placement[:3, 3], [0.0, 2.0, 0.0])
    np.testing.assert_allclose(np.diag(placement)[:3], [0.5, 0.5, 0.5])
    assert scene.scheduler.is_idle


def test_directories_resolve_next_to_the_file(tmp_path, asset_directory):
    shutil.copytree(asset_directory, tmp_path / "models" / "tri")
    path = tmp_path / "scaffolds.json"
    path.write_text(json.dumps({"scaffolds": {"local": {"directories": ["models/tri"]}}}), encoding="utf-8")

    scene = create_scene(ScaffoldRegistry.load(str(path)), "local")
    assert scene.model_count == 1


def test_missing_file(tmp_path):
    with pytest.raises(AssetIOError):
        ScaffoldRegistry.load(str(tmp_path / "missing.json"))


def test_transform_forms_agree():
    trs = transform_from_dict({"translation": [1.0, 2.0, 3.0], "scale": [2.0, 2.0, 2.0]})
    matrix = transform_from_dict({"matrix": [2, 0, 0, 0, 0, 2, 0, 0, 0, 0, 2, 0, 1, 2, 3, 1]})
    np.testing.assert_allclose(trs, matrix)


def test_from_dict_defaults():
    scaffold = SceneScaffold.from_dict("bare", {"directories": ["x"]})
    assert scaffold.global_transforms == []
    assert scaffold.instances == []
    assert scaffold.autoplay == []


def test_scaffold_without_directories():
    scaffold = SceneScaffold.from_dict("empty", {"directories": []})
    with pytest.raises(MissingAssetError):
        build_scene(scaffold)


def test_scaffold_data_module_does_not_build_scenes():
    import gltfinstancer.model.scaffolds as scaffolds

    assert not hasattr(scaffolds, "Scene")
    assert not hasattr(SceneScaffold, "create")
    assert not hasattr(ScaffoldRegistry, "create")
