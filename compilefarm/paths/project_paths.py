"""
Path resolution for remote builds.

Enumerates the directories a slave has to mirror and resolves which
project a source file belongs to. Lookups are cached per session in
an explicit dictionary that callers can invalidate when the project
tree changes.
"""

from __future__ import annotations

import os
import pathlib
from enum import Enum
from typing import Iterator, NamedTuple

from .project import Project


class DirectoryKind(str, Enum):
    SOURCE = "source"
    OBJECT = "object"


class SyncDirectory(NamedTuple):
    project: str
    kind: DirectoryKind
    path: pathlib.Path


class DirectoryWalk:
    """
    Finite, restartable iterable over the directories of a project
    closure. Imported projects are visited before the projects that
    import them, and every project is visited once.
    """

    def __init__(
        self,
        project: Project,
        include_objects: bool = True,
    ) -> None:
        self._project = project
        self._include_objects = include_objects

    def __iter__(self) -> Iterator[SyncDirectory]:
        visited: set[str] = set()
        seen_paths: set[pathlib.Path] = set()

        for project in self._closure(self._project, visited):
            for source_dir in project.resolved_source_dirs:
                if source_dir not in seen_paths:
                    seen_paths.add(source_dir)
                    yield SyncDirectory(project.name, DirectoryKind.SOURCE, source_dir)

            object_dir = project.resolved_object_dir
            if self._include_objects and object_dir not in seen_paths:
                seen_paths.add(object_dir)
                yield SyncDirectory(project.name, DirectoryKind.OBJECT, object_dir)

    def _closure(self, project: Project, visited: set[str]) -> Iterator[Project]:
        if project.name in visited:
            return

        visited.add(project.name)

        for imported in project.imports:
            yield from self._closure(imported, visited)

        yield project


class ProjectPaths:
    def __init__(self, project: Project) -> None:
        self._project = project
        self._root = project.root.absolute()
        self._source_projects: dict[pathlib.Path, Project | None] = {}

    @property
    def project(self) -> Project:
        return self._project

    @property
    def root(self) -> pathlib.Path:
        return self._root

    def directories(self, include_objects: bool = True) -> DirectoryWalk:
        return DirectoryWalk(
            self._project,
            include_objects=include_objects,
        )

    def relative(self, path: pathlib.Path) -> str:
        """
        Path as sent to a slave: relative to the root project when it
        lives under it, absolute otherwise.
        """
        absolute = path.absolute()

        try:
            return absolute.relative_to(self._root).as_posix() or "."

        except ValueError:
            return absolute.as_posix()

    def source_project(self, source_file: str | os.PathLike) -> Project | None:
        source_path = pathlib.Path(source_file)
        if not source_path.is_absolute():
            source_path = self._root / source_path

        directory = source_path.parent

        if directory in self._source_projects:
            return self._source_projects[directory]

        owner: Project | None = None
        for sync_directory in self.directories(include_objects=False):
            if sync_directory.path.absolute() == directory:
                owner = self._find(sync_directory.project)
                break

        self._source_projects[directory] = owner
        return owner

    def invalidate(self) -> None:
        self._source_projects.clear()

    @property
    def cached_lookups(self) -> int:
        return len(self._source_projects)

    def _find(self, name: str) -> Project | None:
        pending = [self._project]
        while pending:
            project = pending.pop()
            if project.name == name:
                return project

            pending.extend(project.imports)

        return None
