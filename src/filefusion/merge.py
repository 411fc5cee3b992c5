import dataclasses
import logging
import os
import pathlib
import shutil
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .backends import run_in_asyncio, run_in_trio
from .common import (
    BUFFER_CAPACITY_DEFAULT,
    ErrorKind,
    FusionError,
    PathLike,
    as_path,
    fail,
    parse_chunk_name,
)


class MergeErrorKind(ErrorKind):
    IN_DIR_NOT_FOUND = ("in_dir_not_found", "The input directory not found.")
    IN_DIR_NOT_DIR = ("in_dir_not_dir", "The input directory is not a directory.")
    IN_DIR_NOT_SET = ("in_dir_not_set", "The input directory is not set.")
    IN_DIR_NOT_READ = ("in_dir_not_read", "The input directory could not be read.")
    IN_DIR_NO_FILE = ("in_dir_no_file", "The input directory has no file.")
    IN_FILE_NAME_INVALID = ("in_file_name_invalid", "The input file name is not a chunk index.")
    IN_FILE_NOT_OPENED = ("in_file_not_opened", "The input file could not be opened.")
    IN_FILE_NOT_READ = ("in_file_not_read", "The input file could not be read.")
    OUT_DIR_NOT_CREATED = ("out_dir_not_created", "The output directory could not be created.")
    OUT_FILE_NOT_SET = ("out_file_not_set", "The output file is not set.")
    OUT_FILE_NOT_REMOVED = ("out_file_not_removed", "The output file could not be removed.")
    OUT_FILE_NOT_OPENED = ("out_file_not_opened", "The output file could not be opened.")
    OUT_FILE_NOT_WRITTEN = ("out_file_not_written", "The output file could not be written.")
    BUFFER_CAPACITY_INVALID = ("buffer_capacity_invalid", "The buffer capacity must be at least one byte.")


class MergeError(FusionError):
    """Merge process failure"""


@dataclass(frozen=True)
class MergeOptions:
    in_dir: Optional[pathlib.Path] = None
    out_file: Optional[pathlib.Path] = None
    buffer_capacity: int = BUFFER_CAPACITY_DEFAULT


def list_chunks(in_dir: pathlib.Path) -> List[pathlib.Path]:
    """Regular files of a chunk directory in ascending numeric order"""
    entries: List[Tuple[int, pathlib.Path]] = []
    try:
        with os.scandir(in_dir) as scan:
            for entry in scan:
                # subdirectories and special files are not chunks
                if not entry.is_file():
                    continue
                index = parse_chunk_name(entry.name)
                if index is None:
                    raise fail(MergeError(MergeErrorKind.IN_FILE_NAME_INVALID, pathlib.Path(entry.path)))
                entries.append((index, pathlib.Path(entry.path)))
    except OSError as e:
        raise fail(MergeError(MergeErrorKind.IN_DIR_NOT_READ, in_dir), e) from e

    entries.sort(key=lambda item: item[0])
    return [path for _, path in entries]


class Merge:
    """Merge the chunks of a directory back into a single file.

    Chunks are concatenated in ascending numeric order of their names, so
    ``10`` comes after ``9``. An existing file or directory at the output
    path is removed first.

    A failure while copying leaves the partially written output in place;
    only the raised ``MergeError`` tells whether the output is complete.
    """

    def __init__(self, options: Optional[MergeOptions] = None):
        self.options = options or MergeOptions()

    def _with(self, **changes) -> "Merge":
        return Merge(dataclasses.replace(self.options, **changes))

    def in_dir(self, path: PathLike) -> "Merge":
        return self._with(in_dir=as_path(path))

    def out_file(self, path: PathLike) -> "Merge":
        return self._with(out_file=as_path(path))

    def buffer_capacity(self, capacity: int) -> "Merge":
        """Set the size of the read/write buffers in bytes"""
        return self._with(buffer_capacity=capacity)

    def _resolve_in_dir(self) -> pathlib.Path:
        in_dir = as_path(self.options.in_dir)
        if in_dir is None:
            raise fail(MergeError(MergeErrorKind.IN_DIR_NOT_SET))
        if not in_dir.exists():
            raise fail(MergeError(MergeErrorKind.IN_DIR_NOT_FOUND, in_dir))
        if not in_dir.is_dir():
            raise fail(MergeError(MergeErrorKind.IN_DIR_NOT_DIR, in_dir))
        return in_dir

    @staticmethod
    def _prepare_out_file(out_file: pathlib.Path):
        if out_file.is_dir() and not out_file.is_symlink():
            try:
                shutil.rmtree(out_file)
            except OSError as e:
                raise fail(MergeError(MergeErrorKind.OUT_FILE_NOT_REMOVED, out_file), e) from e
        elif out_file.exists() or out_file.is_symlink():
            try:
                out_file.unlink()
            except OSError as e:
                raise fail(MergeError(MergeErrorKind.OUT_FILE_NOT_REMOVED, out_file), e) from e

        try:
            out_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise fail(MergeError(MergeErrorKind.OUT_DIR_NOT_CREATED, out_file.parent), e) from e

    def run(self) -> bool:
        """Run the merge process"""
        in_dir = self._resolve_in_dir()

        out_file = as_path(self.options.out_file)
        if out_file is None:
            raise fail(MergeError(MergeErrorKind.OUT_FILE_NOT_SET))

        buffer_capacity = self.options.buffer_capacity
        if buffer_capacity < 1:
            raise fail(MergeError(MergeErrorKind.BUFFER_CAPACITY_INVALID))

        # list before touching the output so a bad input directory leaves no file behind
        chunks = list_chunks(in_dir)
        if not chunks:
            raise fail(MergeError(MergeErrorKind.IN_DIR_NO_FILE, in_dir))

        self._prepare_out_file(out_file)

        try:
            writer = open(out_file, "wb", buffering=buffer_capacity)
        except OSError as e:
            raise fail(MergeError(MergeErrorKind.OUT_FILE_NOT_OPENED, out_file), e) from e

        buffer = bytearray(buffer_capacity)
        view = memoryview(buffer)
        total_bytes = 0

        try:
            with writer:
                for chunk in chunks:
                    total_bytes += self._copy_chunk(chunk, writer, view, buffer_capacity, out_file)
                writer.flush()
        except OSError as e:
            # raised by the final flush or close of the output
            raise fail(MergeError(MergeErrorKind.OUT_FILE_NOT_WRITTEN, out_file), e) from e

        logging.info(f"Merged {len(chunks)} chunks ({total_bytes} bytes) into {out_file}")
        return True

    @staticmethod
    def _copy_chunk(chunk: pathlib.Path, writer, view: memoryview, buffer_capacity: int, out_file: pathlib.Path) -> int:
        try:
            reader = open(chunk, "rb", buffering=buffer_capacity)
        except OSError as e:
            raise fail(MergeError(MergeErrorKind.IN_FILE_NOT_OPENED, chunk), e) from e

        copied = 0
        with reader:
            while True:
                try:
                    read = reader.readinto(view)
                except OSError as e:
                    raise fail(MergeError(MergeErrorKind.IN_FILE_NOT_READ, chunk), e) from e
                if not read:
                    break
                try:
                    writer.write(view[:read])
                except OSError as e:
                    raise fail(MergeError(MergeErrorKind.OUT_FILE_NOT_WRITTEN, out_file), e) from e
                copied += read

        logging.debug(f"Copied chunk {chunk} ({copied} bytes)")
        return copied

    async def run_async(self) -> bool:
        """Run the merge process from an asyncio event loop"""
        return await run_in_asyncio(self.run)

    async def run_trio(self) -> bool:
        """Run the merge process from a trio event loop"""
        return await run_in_trio(self.run)


def merge_chunks(
    in_dir: PathLike,
    out_file: PathLike,
    buffer_capacity: int = BUFFER_CAPACITY_DEFAULT,
) -> bool:
    """Join the chunks of a directory into the output file"""
    options = MergeOptions(
        in_dir=as_path(in_dir),
        out_file=as_path(out_file),
        buffer_capacity=buffer_capacity,
    )
    return Merge(options).run()
