"""
Tests for ProjectPaths and DirectoryWalk.
"""

import pathlib

from compilefarm.paths import (
    DirectoryKind,
    DirectoryWalk,
    Project,
    ProjectPaths,
)


class TestDirectoryWalk:
    """Test enumerating the directories slaves mirror."""

    def test_imports_visited_first(self, project: Project, project_root: pathlib.Path):
        directories = list(DirectoryWalk(project))

        assert [(directory.project, directory.kind) for directory in directories] == [
            ("lib", DirectoryKind.SOURCE),
            ("lib", DirectoryKind.OBJECT),
            ("app", DirectoryKind.SOURCE),
            ("app", DirectoryKind.OBJECT),
        ]
        assert directories[2].path == project_root / "src"
        assert directories[3].path == project_root / "obj"

    def test_walk_is_restartable(self, project: Project):
        walk = DirectoryWalk(project)

        assert list(walk) == list(walk)

    def test_sources_only(self, project: Project):
        directories = list(DirectoryWalk(project, include_objects=False))

        assert all(directory.kind == DirectoryKind.SOURCE for directory in directories)
        assert len(directories) == 2

    def test_shared_import_visited_once(
        self,
        project_root: pathlib.Path,
        library_project: Project,
    ):
        middle = Project(
            name="middle",
            root=project_root.parent / "lib",
            source_dirs=[pathlib.Path("src")],
            imports=[library_project],
        )
        top = Project(
            name="top",
            root=project_root,
            source_dirs=[pathlib.Path("src")],
            imports=[library_project, middle],
        )

        directories = list(DirectoryWalk(top, include_objects=False))
        paths = [directory.path for directory in directories]

        assert len(paths) == len(set(paths))
        assert [directory.project for directory in directories] == ["lib", "top"]

    def test_project_without_source_dirs_uses_root(self, tmp_path: pathlib.Path):
        project = Project(name="flat", root=tmp_path)

        directories = list(DirectoryWalk(project))

        assert [directory.path for directory in directories] == [tmp_path]


class TestProjectPaths:
    """Test relative paths and source file ownership."""

    def test_relative_paths_under_root(self, project: Project, project_root: pathlib.Path):
        paths = ProjectPaths(project)

        assert paths.relative(project_root / "src") == "src"
        assert paths.relative(project_root) == "."

    def test_paths_outside_root_stay_absolute(
        self,
        project: Project,
        project_root: pathlib.Path,
    ):
        paths = ProjectPaths(project)
        library_src = project_root.parent / "lib" / "src"

        assert paths.relative(library_src) == library_src.as_posix()

    def test_source_project_lookup(self, project: Project, project_root: pathlib.Path):
        paths = ProjectPaths(project)

        owner = paths.source_project(project_root.parent / "lib" / "src" / "util.ads")

        assert owner.name == "lib"
        assert paths.source_project("src/main.adb").name == "app"

    def test_unknown_source_has_no_project(
        self,
        project: Project,
        tmp_path: pathlib.Path,
    ):
        paths = ProjectPaths(project)

        assert paths.source_project(tmp_path / "elsewhere" / "x.adb") is None

    def test_lookups_are_cached_until_invalidated(
        self,
        project: Project,
        project_root: pathlib.Path,
    ):
        paths = ProjectPaths(project)

        paths.source_project("src/main.adb")
        paths.source_project("src/other.adb")

        assert paths.cached_lookups == 1

        paths.invalidate()

        assert paths.cached_lookups == 0
        assert paths.source_project("src/main.adb").name == "app"
