from __future__ import annotations

import os
from typing import Callable, Dict, Union

import psutil
from pydantic import BaseModel, StrictInt, StrictStr, field_validator

from .time_parser import TimeParser

PrimaryType = Union[str, int, float, bytes, bool]


class Env(BaseModel):
    COMPILEFARM_LOCAL_PARALLELISM: StrictInt = psutil.cpu_count(logical=False) or 1
    COMPILEFARM_DEFAULT_SLOTS: StrictInt = 1
    COMPILEFARM_DEFAULT_PORT: StrictInt = 8484
    COMPILEFARM_SLAVES: StrictStr | None = None
    COMPILEFARM_SLAVES_FILE: StrictStr | None = None
    COMPILEFARM_BUILD_ENV: StrictStr | None = None
    COMPILEFARM_CONNECT_TIMEOUT: StrictStr = "5s"
    COMPILEFARM_REQUEST_TIMEOUT: StrictStr = "30s"
    COMPILEFARM_CLEANUP_TIMEOUT: StrictStr = "5s"
    COMPILEFARM_DISCONNECT_TIMEOUT: StrictStr = "2s"
    COMPILEFARM_SIGNAL_DISCONNECT_TIMEOUT: StrictStr = "0.5s"
    COMPILEFARM_COMPRESSION_THRESHOLD: StrictInt = 4096
    COMPILEFARM_LOG_LEVEL: StrictStr = "info"
    COMPILEFARM_LOGS_DIRECTORY: StrictStr = os.getcwd()
    COMPILEFARM_LOG_FILE: StrictStr = "compilefarm.log.json"

    @field_validator(
        "COMPILEFARM_CONNECT_TIMEOUT",
        "COMPILEFARM_REQUEST_TIMEOUT",
        "COMPILEFARM_CLEANUP_TIMEOUT",
        "COMPILEFARM_DISCONNECT_TIMEOUT",
        "COMPILEFARM_SIGNAL_DISCONNECT_TIMEOUT",
    )
    @classmethod
    def validate_duration(cls, value: str) -> str:
        TimeParser(value)
        return value

    @field_validator("COMPILEFARM_DEFAULT_SLOTS", "COMPILEFARM_DEFAULT_PORT")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")

        return value

    @field_validator("COMPILEFARM_LOCAL_PARALLELISM")
    @classmethod
    def validate_parallelism(cls, value: int) -> int:
        if value < 0:
            raise ValueError("local parallelism cannot be negative")

        return value

    @classmethod
    def types_map(cls) -> Dict[str, Callable[[str], PrimaryType]]:
        return {
            "COMPILEFARM_LOCAL_PARALLELISM": int,
            "COMPILEFARM_DEFAULT_SLOTS": int,
            "COMPILEFARM_DEFAULT_PORT": int,
            "COMPILEFARM_SLAVES": str,
            "COMPILEFARM_SLAVES_FILE": str,
            "COMPILEFARM_BUILD_ENV": str,
            "COMPILEFARM_CONNECT_TIMEOUT": str,
            "COMPILEFARM_REQUEST_TIMEOUT": str,
            "COMPILEFARM_CLEANUP_TIMEOUT": str,
            "COMPILEFARM_DISCONNECT_TIMEOUT": str,
            "COMPILEFARM_SIGNAL_DISCONNECT_TIMEOUT": str,
            "COMPILEFARM_COMPRESSION_THRESHOLD": int,
            "COMPILEFARM_LOG_LEVEL": str,
            "COMPILEFARM_LOGS_DIRECTORY": str,
            "COMPILEFARM_LOG_FILE": str,
        }

    @property
    def connect_timeout(self) -> float:
        return TimeParser(self.COMPILEFARM_CONNECT_TIMEOUT).time

    @property
    def request_timeout(self) -> float:
        return TimeParser(self.COMPILEFARM_REQUEST_TIMEOUT).time

    @property
    def cleanup_timeout(self) -> float:
        return TimeParser(self.COMPILEFARM_CLEANUP_TIMEOUT).time

    @property
    def disconnect_timeout(self) -> float:
        return TimeParser(self.COMPILEFARM_DISCONNECT_TIMEOUT).time

    @property
    def signal_disconnect_timeout(self) -> float:
        return TimeParser(self.COMPILEFARM_SIGNAL_DISCONNECT_TIMEOUT).time
