import os
from pathlib import Path

import pytest

from printvault.app import open_archive
from printvault.config import load_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("PRINTVAULT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings(tmp_path):
    return load_settings(tmp_path / "app_home")


@pytest.fixture
def archive(settings):
    a = open_archive(settings)
    yield a
    a.close()


def make_tree(root: Path, files: dict) -> Path:
    """files maps relative path -> bytes (or None for an empty directory)."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, data in files.items():
        p = root / rel
        if data is None:
            p.mkdir(parents=True, exist_ok=True)
            continue
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
    return root


@pytest.fixture
def box_folder(tmp_path):
    return make_tree(
        tmp_path / "incoming" / "box",
        {"model.stl": b"0123456789", "renders/img.png": b"x" * 20},
    )
