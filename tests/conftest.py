"""Shared fixtures for facecloak tests."""

import pytest

from facecloak.config import Config
from facecloak.geometry import Region


@pytest.fixture
def config(tmp_path):
    """Config writing into a temporary directory, detecting on every frame."""
    return Config(
        output_dir=tmp_path / "output",
        debug_dir=tmp_path / "debug",
        models_dir=tmp_path / "models",
        detection_interval=1,
    )


@pytest.fixture
def face_region():
    return Region(0.25, 0.25, 0.25, 0.25)
