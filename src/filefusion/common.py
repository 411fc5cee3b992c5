import enum
import logging
import os
import pathlib
import re
from typing import Optional, Union

CHUNK_SIZE_DEFAULT = 2 * 1024 * 1024
BUFFER_CAPACITY_DEFAULT = 1024 * 1024

PathLike = Union[str, os.PathLike]

_CHUNK_NAME = re.compile(r"0|[1-9][0-9]*")


def as_path(path: Optional[PathLike]) -> Optional[pathlib.Path]:
    if path is None:
        return None
    return pathlib.Path(path)


def chunk_path(directory: pathlib.Path, index: int) -> pathlib.Path:
    """Path of the chunk file holding the given zero-based index"""
    return directory / str(index)


def parse_chunk_name(name: str) -> Optional[int]:
    """Chunk index encoded in a file name, or None when it is not a chunk name"""
    if not _CHUNK_NAME.fullmatch(name):
        return None
    return int(name)


class ErrorKind(enum.Enum):
    """Base for the closed sets of failure reasons.

    Members are declared as ``NAME = (code, message)``; the enum value is
    the stable code so kinds can be looked up with ``Kind("in_dir_not_set")``.
    """

    def __new__(cls, code: str, message: str):
        member = object.__new__(cls)
        member._value_ = code
        member.message = message
        return member

    @property
    def code(self) -> str:
        return self.value


class FusionError(Exception):
    """Raised when an operation could not be attempted or completed"""

    def __init__(self, kind: ErrorKind, path: Optional[pathlib.Path] = None):
        self.kind = kind
        self.path = path
        super().__init__(str(self))

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def message(self) -> str:
        return self.kind.message

    def __str__(self) -> str:
        text = f"{self.code}: {self.message}"
        if self.path is not None:
            text += f" ({self.path})"
        return text


def fail(error: FusionError, cause: Optional[BaseException] = None) -> FusionError:
    """Log an operation failure and hand the error back for raising"""
    if cause is not None:
        logging.error(f"{error} [{cause}]")
    else:
        logging.error(f"{error}")
    return error
