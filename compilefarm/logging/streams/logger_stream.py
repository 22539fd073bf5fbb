import asyncio
import io
import os
import pathlib
import sys
from collections import defaultdict
from typing import Dict, TypeVar

import msgspec

from compilefarm.logging.config.logging_config import LoggingConfig
from compilefarm.logging.config.stream_type import StreamType
from compilefarm.logging.models import Entry, Log

T = TypeVar("T", bound=Entry)

DEFAULT_TEMPLATE = "{timestamp} - {level} - {thread_id} - {filename}:{function_name}.{line_number} - {message}"


class LoggerStream:
    def __init__(
        self,
        name: str | None = None,
        template: str | None = None,
        filename: str | None = None,
        directory: str | None = None,
    ) -> None:
        if name is None:
            name = "default"

        if template is None:
            template = DEFAULT_TEMPLATE

        self._name = name
        self._default_template = template
        self._default_logfile = filename
        self._default_log_directory = directory

        self._init_lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._encoder = msgspec.json.Encoder()

        self._files: Dict[str, io.TextIOWrapper] = {}
        self._file_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._default_logfile_path: str | None = None

        self._config = LoggingConfig()
        self._initialized: bool = False
        self._closed = False

    @property
    def name(self):
        return self._name

    async def initialize(self):
        async with self._init_lock:
            if self._initialized:
                return

            self._loop = asyncio.get_running_loop()
            self._closed = False
            self._initialized = True

    async def open_file(
        self,
        filename: str,
        directory: str | None = None,
        is_default: bool = False,
    ):
        if directory is None:
            directory = self._config.directory or os.getcwd()

        logfile_path = os.path.join(directory, filename)

        await self._loop.run_in_executor(
            None,
            self._open_file,
            logfile_path,
        )

        if is_default:
            self._default_logfile_path = logfile_path

    def _open_file(self, logfile_path: str):
        if self._files.get(logfile_path) is None or self._files[logfile_path].closed:
            path = pathlib.Path(logfile_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._files[logfile_path] = open(logfile_path, "a", encoding="utf-8")

    async def log(
        self,
        log: Log[T],
        template: str | None = None,
        path: str | None = None,
    ):
        entry = log.entry
        if self._closed or not self._config.enabled(self._name, entry.level):
            return

        if template is None:
            template = self._default_template

        self._write_to_stream(
            entry.to_template(
                template,
                context=log.context(),
            )
        )

        logfile_path = path or self._default_logfile_path
        if logfile_path:
            if self._files.get(logfile_path) is None:
                await self._loop.run_in_executor(
                    None,
                    self._open_file,
                    logfile_path,
                )

            async with self._file_locks[logfile_path]:
                await self._loop.run_in_executor(
                    None,
                    self._write_to_file,
                    logfile_path,
                    self._encoder.encode(log),
                )

    def _write_to_stream(self, line: str):
        stream = sys.stdout if self._config.output == StreamType.STDOUT else sys.stderr
        stream.write(f"{line}\n")
        stream.flush()

    def _write_to_file(self, logfile_path: str, data: bytes):
        logfile = self._files[logfile_path]
        logfile.write(f"{data.decode()}\n")
        logfile.flush()

    async def close(self):
        self._closed = True

        for logfile_path, logfile in list(self._files.items()):
            async with self._file_locks[logfile_path]:
                await self._loop.run_in_executor(None, logfile.close)

        self._files.clear()
        self._initialized = False

