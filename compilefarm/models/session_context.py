from __future__ import annotations

import getpass
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from compilefarm.paths import Project, ProjectPaths


def default_build_env(project: str) -> str:
    try:
        user = getpass.getuser()

    except (KeyError, OSError):
        user = "anonymous"

    return re.sub(r"[^A-Za-z0-9_.-]", "_", f"{user}-{project}")


@dataclass(slots=True)
class SessionContext:
    """
    What a newly connected slave is told about the build.

    The slave mirrors the project tree under a directory named
    after the build environment.
    """

    project: Project
    paths: ProjectPaths
    build_env: str

    @classmethod
    def create(
        cls,
        project: Project,
        paths: ProjectPaths,
        build_env: str | None = None,
    ) -> SessionContext:
        return cls(
            project=project,
            paths=paths,
            build_env=build_env or default_build_env(project.name),
        )
