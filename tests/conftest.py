import pytest


def pytest_configure(config):
    # Register custom marks used by some tests to silence warnings
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )

import sys, os

# Ensure project root is on sys.path so tests run without an install
ROOT = os.path.dirname(os.path.abspath(__file__))
PROJ = os.path.abspath(os.path.join(ROOT, os.pardir))
if PROJ not in sys.path:
    sys.path.insert(0, PROJ)


@pytest.fixture
def project_dir(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path):
    from agent_studio.settings import load_settings

    return load_settings(
        overrides={
            "storage": {"root": str(tmp_path / "data")},
            "logging": {"root_dir": str(tmp_path / "logging")},
        },
        environ={},
    )
