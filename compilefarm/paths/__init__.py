from .project import Project as Project
from .project_paths import (
    DirectoryKind as DirectoryKind,
    DirectoryWalk as DirectoryWalk,
    ProjectPaths as ProjectPaths,
    SyncDirectory as SyncDirectory,
)
