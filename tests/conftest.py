"""
Pytest configuration for compile farm tests.

Shared fixtures build an Env with short timeouts and a small project
tree under pytest's tmp_path.
"""

import pathlib

import pytest

from compilefarm.env import Env
from compilefarm.models import SessionContext
from compilefarm.paths import Project, ProjectPaths


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture
def env(tmp_path: pathlib.Path) -> Env:
    """Env with timeouts short enough for hung-slave tests."""
    return Env(
        COMPILEFARM_LOGS_DIRECTORY=str(tmp_path / "logs"),
        COMPILEFARM_LOCAL_PARALLELISM=2,
        COMPILEFARM_CONNECT_TIMEOUT="0.2s",
        COMPILEFARM_REQUEST_TIMEOUT="0.2s",
        COMPILEFARM_CLEANUP_TIMEOUT="0.2s",
        COMPILEFARM_DISCONNECT_TIMEOUT="0.2s",
        COMPILEFARM_SIGNAL_DISCONNECT_TIMEOUT="0.1s",
        COMPILEFARM_LOG_LEVEL="critical",
    )


@pytest.fixture
def project_root(tmp_path: pathlib.Path) -> pathlib.Path:
    root = tmp_path / "app"
    (root / "src").mkdir(parents=True)
    (root / "obj").mkdir()
    (root / "src" / "main.adb").write_text("procedure Main is begin null; end Main;\n")

    lib = tmp_path / "lib"
    (lib / "src").mkdir(parents=True)
    (lib / "src" / "util.ads").write_text("package Util is end Util;\n")

    return root


@pytest.fixture
def library_project(project_root: pathlib.Path) -> Project:
    return Project(
        name="lib",
        root=project_root.parent / "lib",
        source_dirs=[pathlib.Path("src")],
    )


@pytest.fixture
def project(project_root: pathlib.Path, library_project: Project) -> Project:
    return Project(
        name="app",
        root=project_root,
        source_dirs=[pathlib.Path("src")],
        object_dir=pathlib.Path("obj"),
        imports=[library_project],
    )


@pytest.fixture
def context(project: Project) -> SessionContext:
    return SessionContext.create(project, ProjectPaths(project), build_env="tester-app")
