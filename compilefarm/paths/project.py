from __future__ import annotations

import pathlib

from pydantic import BaseModel, Field, StrictStr


class Project(BaseModel):
    """
    The parts of a parsed project that the compile farm needs.

    Relative source and object directories are resolved against
    ``root``.
    """

    name: StrictStr
    root: pathlib.Path
    source_dirs: list[pathlib.Path] = Field(default_factory=list)
    object_dir: pathlib.Path | None = None
    languages: list[StrictStr] = Field(default_factory=lambda: ["ada"])
    imports: list[Project] = Field(default_factory=list)
    remote_build_slaves: list[StrictStr] = Field(default_factory=list)

    def resolve(self, path: pathlib.Path) -> pathlib.Path:
        if path.is_absolute():
            return path

        return self.root / path

    @property
    def resolved_source_dirs(self) -> list[pathlib.Path]:
        if len(self.source_dirs) == 0:
            return [self.root]

        return [self.resolve(source_dir) for source_dir in self.source_dirs]

    @property
    def resolved_object_dir(self) -> pathlib.Path:
        if self.object_dir is None:
            return self.root

        return self.resolve(self.object_dir)


Project.model_rebuild()
